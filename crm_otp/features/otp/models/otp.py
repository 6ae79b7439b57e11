from sqlalchemy import Boolean, Column, DateTime, Index, Integer, String

from crm_otp.platform.db.base import BaseModel


class OTPChallenge(BaseModel):
    __tablename__ = "otp_challenges"

    email = Column(String, index=True, nullable=False)
    code_hash = Column(String(128), nullable=False)
    purpose = Column(String(32), nullable=False, default="login")
    expires_at = Column(DateTime, nullable=False, index=True)
    is_used = Column(Boolean, nullable=False, default=False, index=True)
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)
    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)

    __table_args__ = (
        Index("ix_otp_challenges_email_purpose_used", "email", "purpose", "is_used"),
    )
