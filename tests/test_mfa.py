"""
Tests for one-time codes and TOTP.
"""
import base64
import re
from datetime import datetime, timedelta, timezone

import pyotp
import pytest

from trust_engine.mfa import (
    compute_totp,
    generate_authenticator_secret,
    generate_otp,
    generate_qr_code,
    get_provisioning_uri,
    matching_totp_counter,
    setup_authenticator,
    totp_counter,
    verify_authenticator_code,
    verify_otp,
)

# RFC 6238 appendix B secret ("12345678901234567890") in base32
RFC_SECRET = base64.b32encode(b"12345678901234567890").decode()


class TestGenerateOTP:

    def test_always_six_digits_in_range(self):
        for _ in range(10000):
            code = generate_otp()
            assert re.fullmatch(r"\d{6}", code)
            assert 100000 <= int(code) <= 999999

    def test_codes_vary(self):
        assert len({generate_otp() for _ in range(50)}) > 1


class TestVerifyOTP:

    def test_matching_code_before_expiry(self):
        now = datetime(2026, 1, 1, tzinfo=timezone.utc)
        assert verify_otp("123456", "123456", now + timedelta(minutes=5), now=now)

    def test_mismatch(self):
        now = datetime(2026, 1, 1, tzinfo=timezone.utc)
        assert not verify_otp("123457", "123456", now + timedelta(minutes=5), now=now)

    def test_expired_even_if_equal(self):
        now = datetime(2026, 1, 1, tzinfo=timezone.utc)
        assert not verify_otp("123456", "123456", now - timedelta(seconds=1), now=now)

    def test_expiry_instant_is_still_valid(self):
        now = datetime(2026, 1, 1, tzinfo=timezone.utc)
        assert verify_otp("123456", "123456", now, now=now)

    def test_non_string_input(self):
        now = datetime(2026, 1, 1, tzinfo=timezone.utc)
        assert not verify_otp(None, "123456", now + timedelta(minutes=1), now=now)

    def test_naive_expiry_is_read_as_utc(self):
        now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
        naive_future = datetime(2026, 1, 1, 12, 5)
        naive_past = datetime(2026, 1, 1, 11, 55)

        assert verify_otp("123456", "123456", naive_future, now=now)
        assert not verify_otp("123456", "123456", naive_past, now=now)

    def test_naive_expiry_against_current_time(self):
        expires_at = datetime.now(timezone.utc).replace(tzinfo=None) + timedelta(minutes=5)
        assert verify_otp("123456", "123456", expires_at)


class TestTOTP:

    @pytest.mark.parametrize("timestamp,expected", [
        (59, "287082"),
        (1111111109, "081804"),
        (1234567890, "005924"),
        (2000000000, "279037"),
    ])
    def test_rfc6238_vectors(self, timestamp, expected):
        assert compute_totp(RFC_SECRET, totp_counter(timestamp)) == expected

    def test_matches_pyotp(self):
        secret = generate_authenticator_secret()
        timestamp = 1760000000
        assert compute_totp(secret, totp_counter(timestamp)) == pyotp.TOTP(secret).at(timestamp)

    def test_counter_is_thirty_second_steps(self):
        assert totp_counter(0) == 0
        assert totp_counter(29.9) == 0
        assert totp_counter(30) == 1

    def test_secret_has_160_bits(self):
        secret = generate_authenticator_secret()
        assert len(base64.b32decode(secret)) == 20

    def test_invalid_secret(self):
        with pytest.raises(ValueError):
            compute_totp("not base32 !!", 1)


class TestVerifyAuthenticatorCode:

    def test_same_step_validates(self):
        secret = generate_authenticator_secret()
        at = 1760000000
        code = compute_totp(secret, totp_counter(at))
        assert verify_authenticator_code(code, secret, at=at)

    @pytest.mark.parametrize("offset", [-30, 30])
    def test_adjacent_step_tolerated(self, offset):
        secret = generate_authenticator_secret()
        at = 1760000000
        code = compute_totp(secret, totp_counter(at + offset))
        assert verify_authenticator_code(code, secret, at=at)

    def test_adjacent_step_outside_zero_window(self):
        # RFC 6238 vectors: step 37037036 is 081804, step 37037037 is 050471
        assert not verify_authenticator_code("081804", RFC_SECRET, at=1111111111, window=0)
        assert verify_authenticator_code("081804", RFC_SECRET, at=1111111111, window=1)
        assert matching_totp_counter("081804", RFC_SECRET, at=1111111111) == 37037036

    @pytest.mark.parametrize("steps", [-3, -2, 2, 3])
    def test_more_than_one_step_away_fails(self, steps):
        code_step = 37037036
        current = code_step + steps
        at = current * 30 + 5
        window_codes = {compute_totp(RFC_SECRET, c) for c in range(current - 1, current + 2)}

        assert "081804" not in window_codes
        assert not verify_authenticator_code("081804", RFC_SECRET, at=at)

    def test_returns_matching_counter(self):
        secret = generate_authenticator_secret()
        at = 1760000000
        counter = totp_counter(at) - 1
        assert matching_totp_counter(compute_totp(secret, counter), secret, at=at) == counter

    @pytest.mark.parametrize("code", ["", "12345", "1234567", "abcdef", None])
    def test_malformed_code(self, code):
        assert not verify_authenticator_code(code, generate_authenticator_secret())

    def test_missing_secret(self):
        assert not verify_authenticator_code("123456", "")


class TestEnrollment:

    def test_provisioning_uri(self):
        secret = generate_authenticator_secret()
        uri = get_provisioning_uri(secret, "john@example.com", "SplitShare")
        assert uri.startswith("otpauth://totp/")
        assert f"secret={secret}" in uri
        assert "issuer=SplitShare" in uri

    def test_qr_code_is_png(self):
        png = base64.b64decode(generate_qr_code("otpauth://totp/x?secret=ABC"))
        assert png.startswith(b"\x89PNG")

    def test_setup_authenticator(self):
        secret, uri, qr_code = setup_authenticator("john@example.com", "SplitShare")
        assert secret in uri
        assert qr_code
