"""
OTP generation and hashing.

Codes are hashed before storage; the plain code only ever travels to the
delivery channel. The digest is unsalted: a 6-digit code has ~900,000
possible values, so a stored hash can be reversed by precomputation. A
hardened deployment should bind the digest to a per-issuance salt.
"""
import hashlib
import hmac
import secrets
from datetime import datetime, timedelta, timezone

OTP_LENGTH = 6
OTP_MIN = 100000
OTP_MAX = 999999
OTP_EXPIRY_MINUTES = 5
OTP_EXPIRY = timedelta(minutes=OTP_EXPIRY_MINUTES)
DEFAULT_HASH_ALGORITHM = "sha256"


class InvalidOTPFormat(ValueError):
    """Raised when a code is not exactly six ASCII digits."""


def is_valid_otp_format(code) -> bool:
    return (
        isinstance(code, str)
        and len(code) == OTP_LENGTH
        and code.isascii()
        and code.isdigit()
    )


def generate_otp() -> str:
    """Generate a secure 6-digit numeric OTP in [100000, 999999]."""
    return str(OTP_MIN + secrets.randbelow(OTP_MAX - OTP_MIN + 1))


def hash_otp(code: str, algorithm: str = DEFAULT_HASH_ALGORITHM) -> str:
    """Hex digest of the UTF-8 bytes of ``code``."""
    if not is_valid_otp_format(code):
        raise InvalidOTPFormat("OTP must be exactly 6 digits")
    return hashlib.new(algorithm, code.encode("utf-8")).hexdigest()


def verify_otp(candidate: str, stored_hash: str, algorithm: str = DEFAULT_HASH_ALGORITHM) -> bool:
    """Re-hash ``candidate`` and compare digests. Malformed input never matches."""
    if not isinstance(stored_hash, str) or not stored_hash or not stored_hash.isascii():
        return False
    if not is_valid_otp_format(candidate):
        return False
    return hmac.compare_digest(hash_otp(candidate, algorithm), stored_hash)


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what the database columns store."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def is_expired(expires_at: datetime, now: datetime | None = None) -> bool:
    return (now or utcnow()) >= expires_at
