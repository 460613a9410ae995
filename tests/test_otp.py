"""
tests/test_otp.py -- Unit tests for OTP generation and expiry (auth/otp.py).
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from auth.otp import OtpPurpose, expiry_for, generate_otp, is_expired

_NOW = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


def test_default_code_is_six_digits_without_leading_zero():
    for _ in range(200):
        code = generate_otp()
        assert len(code) == 6
        assert code.isdigit()
        assert 100000 <= int(code) <= 999999


@pytest.mark.parametrize("length", [4, 8])
def test_custom_length(length):
    code = generate_otp(length)
    assert len(code) == length
    assert code[0] != "0"


def test_codes_vary():
    assert len({generate_otp() for _ in range(50)}) > 1


def test_verify_window_is_24_hours():
    assert expiry_for(OtpPurpose.verify, _NOW) == _NOW + timedelta(hours=24)


def test_reset_window_is_15_minutes():
    assert expiry_for(OtpPurpose.reset, _NOW) == _NOW + timedelta(minutes=15)


def test_expiry_defaults_to_current_time():
    before = datetime.now(timezone.utc)
    expires_at = expiry_for(OtpPurpose.reset)
    assert before + timedelta(minutes=15) <= expires_at <= datetime.now(timezone.utc) + timedelta(minutes=15)


def test_is_expired_is_strict():
    expires_at = _NOW + timedelta(minutes=15)
    assert is_expired(expires_at, expires_at) is False
    assert is_expired(expires_at, expires_at + timedelta(microseconds=1)) is True
    assert is_expired(expires_at, _NOW) is False


def test_missing_expiry_counts_as_expired():
    assert is_expired(None, _NOW) is True
