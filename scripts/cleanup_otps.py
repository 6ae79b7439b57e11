import asyncio

from crm_otp.features.otp.dependencies.otp import get_otp_service
from crm_otp.features.otp.services.challenge_service import OTPChallengeService
from crm_otp.platform.db.session import SessionLocal, init_models


async def cleanup_otps():
    await init_models()
    async with SessionLocal() as db:
        deleted = await OTPChallengeService(db, get_otp_service()).cleanup_expired()
        print(f"Removed {deleted} expired or used OTP challenges")


if __name__ == "__main__":
    asyncio.run(cleanup_otps())
