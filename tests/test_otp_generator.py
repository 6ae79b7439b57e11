from collections import Counter
from datetime import datetime, timedelta
from unittest.mock import patch

from crm_otp.features.otp.services.otp_service import OTPConfig, OTPService
from crm_otp.features.otp.utils.security import (
    OTP_EXPIRY,
    OTP_MAX,
    OTP_MIN,
    generate_otp,
    verify_otp,
)


class TestGenerateOTP:
    """Test suite for code generation"""

    def test_code_is_six_ascii_digits_in_range(self):
        for _ in range(1000):
            code = generate_otp()
            assert len(code) == 6
            assert code.isascii() and code.isdigit()
            assert OTP_MIN <= int(code) <= OTP_MAX

    def test_range_bounds_are_reachable(self):
        """randbelow(900000) maps 0 -> 100000 and 899999 -> 999999"""
        with patch("crm_otp.features.otp.utils.security.secrets.randbelow", return_value=0):
            assert generate_otp() == "100000"
        with patch("crm_otp.features.otp.utils.security.secrets.randbelow", return_value=899999):
            assert generate_otp() == "999999"

    def test_uses_secrets_module(self):
        with patch(
            "crm_otp.features.otp.utils.security.secrets.randbelow", return_value=123456
        ) as mock_randbelow:
            assert generate_otp() == "223456"
            mock_randbelow.assert_called_once_with(900000)

    def test_distribution_covers_range_uniformly(self):
        """10,000 draws bucketed by leading digit should pass a chi-square check."""
        draws = [int(generate_otp()) for _ in range(10_000)]

        assert min(draws) < 200000
        assert max(draws) > 900000

        buckets = Counter(d // 100000 for d in draws)
        assert set(buckets) == set(range(1, 10))

        expected = len(draws) / 9
        chi_square = sum((buckets[b] - expected) ** 2 / expected for b in range(1, 10))
        # 8 degrees of freedom, p = 0.001
        assert chi_square < 26.12

    def test_no_excess_adjacent_repeats(self):
        draws = [generate_otp() for _ in range(10_000)]
        repeats = sum(1 for a, b in zip(draws, draws[1:]) if a == b)
        assert repeats <= 2


class TestGenerateWithExpiry:
    """Test suite for credential issuance"""

    def test_expiry_is_exactly_five_minutes(self, transport):
        issued = datetime(2026, 1, 1, 12, 0, 0)
        service = OTPService(OTPConfig(), transport, clock=lambda: issued)

        credential = service.generate_with_expiry()

        assert credential.issued_at == issued
        assert credential.expires_at - credential.issued_at == timedelta(minutes=5)
        assert OTP_EXPIRY == timedelta(minutes=5)

    def test_hash_matches_code(self, otp_service):
        credential = otp_service.generate_with_expiry()

        assert credential.code_hash == otp_service.hash(credential.code)
        assert credential.code_hash != credential.code
        assert verify_otp(credential.code, credential.code_hash)

    def test_each_call_returns_fresh_values(self, otp_service):
        first = otp_service.generate_with_expiry()
        second = otp_service.generate_with_expiry()

        # one in 900,000 chance of equal codes
        if first.code != second.code:
            assert first.code_hash != second.code_hash

    def test_configured_expiry_is_used(self, transport):
        service = OTPService(OTPConfig(expiry=timedelta(minutes=10)), transport)
        credential = service.generate_with_expiry()
        assert credential.expires_at - credential.issued_at == timedelta(minutes=10)
