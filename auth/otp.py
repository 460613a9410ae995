"""
auth/otp.py -- One-time password generation and expiry windows.

Codes are numeric strings of a fixed length drawn uniformly from
[10**(length-1), 10**length), i.e. 100000-999999 for the default six digits,
so a code never has a leading zero. A code is not a security boundary on its
own: the short expiry, the single-use slot and the per-IP rate limit on the
issuing endpoints together make guessing impractical.

Two purposes exist, each with its own slot on the account and its own window:
  verify -- account activation, 24 hours
  reset  -- password recovery, 15 minutes

Expiry is checked lazily at consumption time; nothing sweeps stale codes.
"""

from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone
from enum import Enum

from core.config import get_settings

_settings = get_settings()


class OtpPurpose(str, Enum):
    verify = "verify"
    reset = "reset"


def _ttl(purpose: OtpPurpose) -> timedelta:
    if purpose is OtpPurpose.verify:
        return timedelta(seconds=_settings.verify_otp_ttl_seconds)
    return timedelta(seconds=_settings.reset_otp_ttl_seconds)


def generate_otp(length: int = 0) -> str:
    """Return a random numeric code; length 0 means Settings.otp_length."""
    digits = length if length > 0 else _settings.otp_length
    low = 10 ** (digits - 1)
    return str(low + secrets.randbelow(10**digits - low))


def expiry_for(purpose: OtpPurpose, now: datetime | None = None) -> datetime:
    """Absolute expiry instant for a code of this purpose generated at `now`."""
    if now is None:
        now = datetime.now(timezone.utc)
    return now + _ttl(purpose)


def is_expired(expires_at: datetime | None, now: datetime) -> bool:
    """True once `now` is strictly past the expiry. A missing expiry counts as expired."""
    if expires_at is None:
        return True
    return now > expires_at
