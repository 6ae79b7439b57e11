from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, EmailStr, Field, model_validator


class OTPPurpose(str, Enum):
    LOGIN = "login"
    PASSWORD_RESET = "password_reset"
    EMAIL_VERIFICATION = "email_verification"


def purpose_value(purpose) -> str:
    """Plain string for an ``OTPPurpose`` member or an already-plain purpose."""
    return getattr(purpose, "value", purpose)


class OTPCredential(BaseModel):
    """A freshly issued code. Persist ``code_hash`` and ``expires_at``; deliver ``code``."""

    code: str
    code_hash: str
    issued_at: datetime
    expires_at: datetime


class DispatchResult(BaseModel):
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None

    @model_validator(mode="after")
    def check_outcome(self):
        if self.success and not self.message_id:
            raise ValueError("successful dispatch requires a message_id")
        if not self.success and not self.error:
            raise ValueError("failed dispatch requires an error")
        return self


class VerificationResult(BaseModel):
    valid: bool
    error: Optional[str] = None
    attempts_remaining: Optional[int] = None


class OTPRequest(BaseModel):
    email: EmailStr
    name: str = Field("User", max_length=100)
    purpose: OTPPurpose = OTPPurpose.LOGIN


class OTPVerifyRequest(BaseModel):
    email: EmailStr
    code: str = Field(..., pattern=r"^\d{6}$", description="6-digit code from the email")
    purpose: OTPPurpose = OTPPurpose.LOGIN


class WelcomeEmailRequest(BaseModel):
    email: EmailStr
    name: str = Field(..., min_length=1, max_length=100)
    temporary_password: str = Field(..., min_length=8)
    role: str = Field(..., min_length=1, max_length=50)


class OTPIssuedResponse(BaseModel):
    email: EmailStr
    purpose: OTPPurpose
    expires_at: datetime
