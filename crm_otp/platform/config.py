from pathlib import Path
from typing import Literal, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ── App ─────────────────────────────────────
    APP_NAME: str = "CRM System"
    ENVIRONMENT: Literal["local", "staging", "production"] = "local"
    DEBUG: bool = True

    # ── Database ────────────────────────────────
    DATABASE_URL: str = "sqlite+aiosqlite:///./crm_otp.db"

    # ── Email Configuration ─────────────────────
    MAIL_MAILER: Literal["smtp", "mock"] = "smtp"
    SMTP_HOST: str = "smtp.gmail.com"
    SMTP_PORT: int = 587
    SMTP_USER: Optional[str] = None
    SMTP_PASS: Optional[str] = None
    SMTP_FROM: Optional[str] = None
    MAIL_ENCRYPTION: str = "tls"
    MAIL_FROM_NAME: str = "CRM System"
    MAIL_TIMEOUT: float = 10.0  # seconds per outbound message

    # ── OTP ─────────────────────────────────────
    OTP_EXPIRY_MINUTES: int = 5
    OTP_HASH_ALGORITHM: str = "sha256"
    OTP_MAX_ATTEMPTS: int = 3
    OTP_REQUEST_LIMIT: int = 5  # requests per minute per email

    class Config:
        env_file = str(Path(__file__).parent.parent.parent / ".env")
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"

    @property
    def mail_from_address(self) -> Optional[str]:
        return self.SMTP_FROM or self.SMTP_USER

    @property
    def smtp_configured(self) -> bool:
        return bool(self.SMTP_USER and self.SMTP_PASS)


settings = Settings()
