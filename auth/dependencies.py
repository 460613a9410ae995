"""
auth/dependencies.py -- FastAPI Depends() helpers: session guard and role gate.

The session token travels in the httpOnly "token" cookie set at login or
registration. Every protected request:
  1. reads the cookie (absent -> unauthenticated),
  2. verifies signature and expiry (invalid or expired -> unauthenticated),
  3. reloads the account from the store without its password hash. The role
     comes from the store, not from the token, so a demotion takes effect on
     the next request even though old tokens still carry the old role.
  4. attaches the account to request.state.account for downstream handlers.

Every failure in 1-3 produces the same 401 body, so a caller cannot tell a
missing token from a forged, expired or orphaned one.

try_get_current_account() is the soft variant (returns None on failure).
get_current_account() wraps it and raises HTTP 401 if unauthenticated.
require_admin() is the single role gate: HTTP 403 unless role == "admin".

Layer rule: no imports from api/ or notify/.
  auth/dependencies.py may import from fastapi (for HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.models import Account
from auth.tokens import COOKIE_NAME, decode_access_token


def try_get_current_account(request: Request) -> Account | None:
    """Authenticate the request from its session cookie.

    Returns the Account (hashed_password blanked) on success, None on any
    failure. Never raises -- callers that need a hard 401 should use
    get_current_account().
    """
    token = request.cookies.get(COOKIE_NAME)
    if not token:
        return None
    payload = decode_access_token(token)
    if payload is None:
        return None
    store = request.app.state.account_store
    account = store.get_by_id(payload["account_id"], with_password=False)
    if account is None:
        return None
    request.state.account = account
    return account


def get_current_account(request: Request) -> Account:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(account: Account = Depends(get_current_account)): ...
    """
    account = try_get_current_account(request)
    if account is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Not authorized. Log in again."},
        )
    return account


def require_admin(request: Request) -> Account:
    """Require admin role. Raises HTTP 401 if unauthenticated, HTTP 403 if not admin.

    Use as a FastAPI dependency:
        @router.delete("/admin/users/{user_id}")
        async def route(admin: Account = Depends(require_admin)): ...
    """
    account = get_current_account(request)
    if account.role != "admin":
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Admin access required."},
        )
    return account
