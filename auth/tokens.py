"""
auth/tokens.py -- Session JWTs, password hashing, and the session cookie.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       account_id, role, iat and exp (7 days by default). Verification returns
       None on any failure -- malformed, bad signature and expired all look
       the same to callers, so the 401 never says *why* a token was rejected.
       Tokens are stateless: logout only tells the client to drop its cookie,
       and a stolen token stays valid until it expires (accepted limitation).

  Passwords: bcrypt used directly, cost factor from BCRYPT_ROUNDS (>= 10).
       The _DUMMY_HASH constant enables timing equalization in
       authenticate_account() so response time does not reveal whether an
       email is registered [C1].

  SECRET_KEY: sourced from core.config.get_settings(), which refuses short or
       missing keys outside DEBUG mode [M6].

Layer rule: no imports from api/ or notify/. Import from core/ is allowed --
core/ is the kernel and has no reverse dependencies.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import JWTError, jwt

from core.config import get_settings

if TYPE_CHECKING:
    from auth.models import Account
    from auth.store import AccountStore

logger = logging.getLogger("cybershield.auth")

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton [M6]
# ---------------------------------------------------------------------------

_settings = get_settings()

_ALGORITHM = "HS256"

COOKIE_NAME = "token"

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a salted bcrypt hash of the given plaintext password.

    Failures propagate: a password that cannot be hashed must fail the
    calling operation rather than store something unverifiable. bcrypt only
    looks at the first 72 bytes; the API layer caps password length well
    below that.
    """
    salt = bcrypt.gensalt(rounds=_settings.bcrypt_rounds)
    return bcrypt.hashpw(plain.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    bcrypt.checkpw compares in constant time. Any error (corrupt hash,
    oversized input) is a plain mismatch, never an exception.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except Exception:
        return False


# Timing equalization dummy hash [C1].
# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("cybershield_timing_dummy")


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def create_access_token(account_id: int, role: str, expire_seconds: int = 0) -> str:
    """Encode a signed session JWT.

    Args:
        account_id:     Numeric account ID stored in the DB.
        role:           Role at issue time. Informational only -- the session
                        guard reloads the account and trusts the stored role.
        expire_seconds: Lifetime in seconds. If 0 (default), uses
                        Settings.token_expire_seconds (7 days).
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(account_id),
        "account_id": account_id,
        "role": role,
        "iat": now,
        "exp": now + timedelta(seconds=duration),
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def decode_access_token(token: str) -> dict | None:
    """Decode and verify a JWT. Returns the payload dict or None on any failure.

    Expiry is enforced by jose (ExpiredSignatureError is a JWTError).
    """
    try:
        payload = jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    if not isinstance(payload.get("account_id"), int) or "role" not in payload:
        return None
    return payload


# ---------------------------------------------------------------------------
# Account authentication (constant-time) [C1]
# ---------------------------------------------------------------------------


def authenticate_account(store: AccountStore, email: str, password: str) -> Account | None:
    """Authenticate an email/password pair with timing equalization.

    Always runs bcrypt whether or not the account exists:
    - Unknown email: bcrypt runs against _DUMMY_HASH (same cost as real check)
    - Wrong password: bcrypt runs against the real hash (same cost)

    Returns the Account on success, None on any failure.
    """
    account = store.get_by_email(email)
    if account is None or not account.hashed_password:
        # Equalize timing -- do NOT return early before running bcrypt [C1]
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, account.hashed_password):
        return None
    return account


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_auth_cookie(response, token: str, expire_seconds: int = 0) -> None:
    """Write the session JWT as the httpOnly `token` cookie.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite: "strict" by default; "none" for a cross-site frontend, which the
        settings validator only allows together with secure cookies.
    max_age: matches the JWT expiry so both expire together. The expiry is
        fixed at issuance -- requests do not slide it forward.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    response.set_cookie(
        COOKIE_NAME,
        value=token,
        httponly=True,
        samesite=_settings.cookie_samesite,
        secure=_settings.secure_cookies,
        max_age=duration,
    )


def clear_auth_cookie(response) -> None:
    """Expire the session cookie. Attributes must match the ones it was set with."""
    response.delete_cookie(
        COOKIE_NAME,
        httponly=True,
        samesite=_settings.cookie_samesite,
        secure=_settings.secure_cookies,
    )
