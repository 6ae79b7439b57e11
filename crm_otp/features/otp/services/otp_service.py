import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from crm_otp.features.otp.schemas.otp import DispatchResult, OTPCredential, purpose_value
from crm_otp.features.otp.utils.security import (
    DEFAULT_HASH_ALGORITHM,
    OTP_EXPIRY,
    generate_otp,
    hash_otp,
    utcnow,
    verify_otp,
)
from crm_otp.platform.config import Settings
from crm_otp.platform.logger import get_logger
from crm_otp.platform.services.email import TemplateRenderer, build_message, build_transport

logger = get_logger("otp_service")

OTP_SUBJECTS = {
    "login": "Your CRM Login OTP",
    "password_reset": "Password Reset OTP - CRM System",
    "email_verification": "Email Verification OTP - CRM System",
}
DEFAULT_OTP_SUBJECT = "Your CRM System OTP"

OTP_HEADERS = {
    "login": "One-Time Password (OTP) for Login",
    "password_reset": "Password Reset Verification",
    "email_verification": "Email Address Verification",
}
DEFAULT_OTP_HEADER = "One-Time Password (OTP) Verification"

OTP_INTROS = {
    "login": (
        "You have requested to login to the CRM System. Please use the following "
        "One-Time Password (OTP) to complete your login:"
    ),
    "password_reset": (
        "You have requested to reset your password. Please use the following OTP "
        "to verify your identity:"
    ),
    "email_verification": "Please use the following OTP to verify your email address:",
}
DEFAULT_OTP_INTRO = "Please use the following One-Time Password (OTP) to proceed:"

WELCOME_SUBJECT = "Welcome to CRM System - Account Created"


@dataclass(frozen=True)
class OTPConfig:
    expiry: timedelta = OTP_EXPIRY
    hash_algorithm: str = DEFAULT_HASH_ALGORITHM
    from_address: Optional[str] = None
    from_name: str = "CRM System"
    send_timeout: float = 10.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "OTPConfig":
        return cls(
            expiry=timedelta(minutes=settings.OTP_EXPIRY_MINUTES),
            hash_algorithm=settings.OTP_HASH_ALGORITHM,
            from_address=settings.mail_from_address,
            from_name=settings.MAIL_FROM_NAME,
            send_timeout=settings.MAIL_TIMEOUT,
        )

    @property
    def expiry_minutes(self) -> int:
        return int(self.expiry.total_seconds() // 60)


class OTPService:
    """
    Issues one-time passcodes and delivers them by email.

    Stateless: tracking which credential is outstanding for an identity,
    expiry enforcement and attempt counting belong to the caller
    (see ``OTPChallengeService``).
    """

    def __init__(
        self,
        config: OTPConfig,
        transport,
        renderer: Optional[TemplateRenderer] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.config = config
        self.transport = transport
        self.renderer = renderer or TemplateRenderer()
        self.clock = clock

    # ── Generation ──────────────────────────────

    def generate(self) -> str:
        return generate_otp()

    def generate_with_expiry(self) -> OTPCredential:
        code = self.generate()
        issued_at = self.clock()
        return OTPCredential(
            code=code,
            code_hash=self.hash(code),
            issued_at=issued_at,
            expires_at=issued_at + self.config.expiry,
        )

    # ── Hashing ─────────────────────────────────

    def hash(self, code: str) -> str:
        return hash_otp(code, self.config.hash_algorithm)

    def verify(self, candidate: str, stored_hash: str) -> bool:
        return verify_otp(candidate, stored_hash, self.config.hash_algorithm)

    # ── Delivery ────────────────────────────────

    async def send_otp_email(
        self, to_email: str, code: str, name: str = "User", purpose="login"
    ) -> DispatchResult:
        purpose = purpose_value(purpose)

        def render() -> str:
            return self.renderer.render(
                "otp_email.html",
                name=name,
                otp_code=code,
                header_text=OTP_HEADERS.get(purpose, DEFAULT_OTP_HEADER),
                intro_text=OTP_INTROS.get(purpose, DEFAULT_OTP_INTRO),
                expiration_minutes=self.config.expiry_minutes,
                year=self.clock().year,
            )

        subject = OTP_SUBJECTS.get(purpose, DEFAULT_OTP_SUBJECT)
        return await self._dispatch(to_email, subject, render, kind="OTP")

    async def send_welcome_email(
        self, to_email: str, name: str, temporary_password: str, role: str
    ) -> DispatchResult:
        def render() -> str:
            return self.renderer.render(
                "welcome_email.html",
                name=name,
                email=to_email,
                temporary_password=temporary_password,
                role=role.replace("_", " ").upper(),
                year=self.clock().year,
            )

        return await self._dispatch(to_email, WELCOME_SUBJECT, render, kind="welcome")

    async def _dispatch(
        self, to_email: str, subject: str, render: Callable[[], str], kind: str
    ) -> DispatchResult:
        """Render, build and send one message. Failures come back as a result, never raised."""
        try:
            message = build_message(
                to_email=to_email,
                subject=subject,
                html=render(),
                from_address=self.config.from_address,
                from_name=self.config.from_name,
            )
            message_id = await asyncio.wait_for(
                self.transport.send(message), timeout=self.config.send_timeout
            )
        except asyncio.TimeoutError:
            logger.error(f"Timed out sending {kind} email to {to_email}")
            return DispatchResult(
                success=False,
                error=f"Email transport timed out after {self.config.send_timeout}s",
            )
        except asyncio.CancelledError:
            task = asyncio.current_task()
            if task is not None and task.cancelling():
                raise
            logger.error(f"Sending {kind} email to {to_email} was cancelled")
            return DispatchResult(success=False, error="Email dispatch was cancelled")
        except Exception as e:
            logger.error(f"Error sending {kind} email to {to_email}: {str(e)}")
            return DispatchResult(success=False, error=str(e) or e.__class__.__name__)

        message_id = message_id or message["Message-ID"]
        logger.info(f"Sent {kind} email to {to_email}: {message_id}")
        return DispatchResult(success=True, message_id=message_id)


def build_otp_service(settings: Settings) -> OTPService:
    return OTPService(OTPConfig.from_settings(settings), build_transport(settings))
