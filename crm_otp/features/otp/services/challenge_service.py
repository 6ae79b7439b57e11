import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy import and_, case, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from crm_otp.features.otp.models.otp import OTPChallenge
from crm_otp.features.otp.schemas.otp import OTPCredential, VerificationResult, purpose_value
from crm_otp.features.otp.services.otp_service import OTPService
from crm_otp.features.otp.utils.security import is_expired

logger = logging.getLogger(__name__)

INVALID_OTP_MESSAGE = "Invalid or expired OTP"
MAX_ATTEMPTS_MESSAGE = "Maximum verification attempts exceeded. Please request a new OTP."
USED_RETENTION = timedelta(hours=24)


class OTPChallengeService:
    """
    Persists outstanding OTP challenges and enforces their lifecycle:
    one pending challenge per (email, purpose), expiry, attempt limit and
    single use. Only the hash of the code is stored.
    """

    def __init__(self, db: AsyncSession, otp_service: OTPService, max_attempts: int = 3):
        self.db = db
        self.otp_service = otp_service
        self.max_attempts = max_attempts

    async def issue(
        self,
        email: str,
        purpose="login",
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> OTPCredential:
        email = email.lower()
        purpose = purpose_value(purpose)

        credential = self.otp_service.generate_with_expiry()
        challenge = OTPChallenge(
            email=email,
            code_hash=credential.code_hash,
            purpose=purpose,
            expires_at=credential.expires_at,
            max_attempts=self.max_attempts,
            ip_address=ip_address,
            user_agent=user_agent,
            created_at=credential.issued_at,
        )

        try:
            self.db.add(challenge)
            await self.db.flush()

            # supersede everything else still outstanding, including rows
            # written by a concurrent issue that committed first
            await self.db.execute(
                update(OTPChallenge)
                .where(
                    OTPChallenge.email == email,
                    OTPChallenge.purpose == purpose,
                    OTPChallenge.is_used.is_(False),
                    OTPChallenge.id != challenge.id,
                )
                .values(is_used=True)
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Issued {purpose} OTP for {email}, expires at {credential.expires_at}")
        return credential

    async def verify(self, email: str, code: str, purpose="login") -> VerificationResult:
        """
        Check ``code`` against the newest pending challenge.

        Every state change is a conditional UPDATE whose row count decides the
        outcome, so concurrent requests cannot consume a challenge twice or
        count past ``max_attempts``.
        """
        email = email.lower()
        purpose = purpose_value(purpose)
        now = self.otp_service.clock()

        result = await self.db.execute(
            select(OTPChallenge)
            .where(
                OTPChallenge.email == email,
                OTPChallenge.purpose == purpose,
                OTPChallenge.is_used.is_(False),
            )
            .order_by(OTPChallenge.created_at.desc(), OTPChallenge.id.desc())
            .execution_options(populate_existing=True)
        )
        record = result.scalars().first()

        if not record or is_expired(record.expires_at, now):
            return VerificationResult(valid=False, error=INVALID_OTP_MESSAGE)

        if record.attempts >= record.max_attempts:
            return VerificationResult(valid=False, error=MAX_ATTEMPTS_MESSAGE, attempts_remaining=0)

        try:
            if self.otp_service.verify(code, record.code_hash):
                return await self._consume(record, now)
            return await self._count_attempt(record)
        except Exception:
            await self.db.rollback()
            raise

    async def _consume(self, record: OTPChallenge, now) -> VerificationResult:
        # rollback expires the instance, read what the log lines need first
        email, purpose = record.email, record.purpose
        consumed = await self.db.execute(
            update(OTPChallenge)
            .where(
                OTPChallenge.id == record.id,
                OTPChallenge.is_used.is_(False),
                OTPChallenge.attempts < OTPChallenge.max_attempts,
                OTPChallenge.expires_at > now,
            )
            .values(is_used=True)
            .execution_options(synchronize_session=False)
        )
        if consumed.rowcount != 1:
            await self.db.rollback()
            logger.warning(f"{purpose} OTP for {email} changed before it could be consumed")
            return VerificationResult(valid=False, error=INVALID_OTP_MESSAGE)

        # older challenges left pending by overlapping issues die with this one
        await self.db.execute(
            update(OTPChallenge)
            .where(
                OTPChallenge.email == email,
                OTPChallenge.purpose == purpose,
                OTPChallenge.is_used.is_(False),
            )
            .values(is_used=True)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        logger.info(f"Verified {purpose} OTP for {email}")
        return VerificationResult(valid=True)

    async def _count_attempt(self, record: OTPChallenge) -> VerificationResult:
        email, purpose, max_attempts = record.email, record.purpose, record.max_attempts
        counted = await self.db.execute(
            update(OTPChallenge)
            .where(
                OTPChallenge.id == record.id,
                OTPChallenge.is_used.is_(False),
                OTPChallenge.attempts < OTPChallenge.max_attempts,
            )
            .values(attempts=OTPChallenge.attempts + 1)
            .execution_options(synchronize_session=False)
        )
        if counted.rowcount != 1:
            await self.db.rollback()
            return VerificationResult(valid=False, error=MAX_ATTEMPTS_MESSAGE, attempts_remaining=0)

        attempts = (
            await self.db.execute(select(OTPChallenge.attempts).where(OTPChallenge.id == record.id))
        ).scalar_one()
        await self.db.commit()

        logger.warning(f"Invalid {purpose} OTP attempt {attempts} for {email}")
        return VerificationResult(
            valid=False,
            error=INVALID_OTP_MESSAGE,
            attempts_remaining=max(max_attempts - attempts, 0),
        )

    async def cleanup_expired(self) -> int:
        """Delete expired challenges and used ones older than a day."""
        now = self.otp_service.clock()
        result = await self.db.execute(
            delete(OTPChallenge).where(
                or_(
                    OTPChallenge.expires_at < now,
                    and_(
                        OTPChallenge.is_used.is_(True),
                        OTPChallenge.created_at < now - USED_RETENTION,
                    ),
                )
            )
        )
        await self.db.commit()
        logger.info(f"Cleaned up {result.rowcount} expired OTP challenges")
        return result.rowcount

    async def stats(self, email: Optional[str] = None) -> dict:
        now = self.otp_service.clock()
        stmt = select(
            func.count(OTPChallenge.id),
            func.sum(case((OTPChallenge.is_used.is_(True), 1), else_=0)),
            func.sum(case((OTPChallenge.expires_at < now, 1), else_=0)),
            func.avg(OTPChallenge.attempts),
        )
        if email:
            stmt = stmt.where(OTPChallenge.email == email.lower())

        total, used, expired, avg_attempts = (await self.db.execute(stmt)).one()
        return {
            "total": total or 0,
            "used": int(used or 0),
            "expired": int(expired or 0),
            "avg_attempts": float(avg_attempts or 0),
        }
