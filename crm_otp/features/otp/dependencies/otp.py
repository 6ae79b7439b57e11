from functools import lru_cache

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from crm_otp.features.otp.services.challenge_service import OTPChallengeService
from crm_otp.features.otp.services.otp_service import OTPService, build_otp_service
from crm_otp.platform.config import settings
from crm_otp.platform.db.session import get_db


@lru_cache
def get_otp_service() -> OTPService:
    """Process-wide OTPService built from settings; override in tests."""
    return build_otp_service(settings)


async def get_challenge_service(
    db: AsyncSession = Depends(get_db),
    otp_service: OTPService = Depends(get_otp_service),
) -> OTPChallengeService:
    return OTPChallengeService(db, otp_service, max_attempts=settings.OTP_MAX_ATTEMPTS)
