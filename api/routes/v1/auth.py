"""
api/routes/v1/auth.py -- Registration, login and OTP REST endpoints.

Routes:
  POST /api/v1/auth/register         -- create account; sets session cookie; 201
  POST /api/v1/auth/login            -- password login; sets session cookie
  POST /api/v1/auth/logout           -- clears session cookie; 200
  POST /api/v1/auth/send-verify-otp  -- email a verification code (requires auth)
  POST /api/v1/auth/verify-otp       -- consume verification code
  POST /api/v1/auth/send-reset-otp   -- email a password reset code
  POST /api/v1/auth/reset-password   -- consume reset code, set new password

Security:
  [H2] POST /login is rate-limited per IP (LOGIN_RATE_LIMIT, 10/minute).
  [H4] Every OTP endpoint, issuing or consuming, is rate-limited per IP
       (OTP_RATE_LIMIT, 5 per 15 minutes). A 6-digit code is only as strong
       as the number of guesses allowed before it expires.
       @router.post must be the OUTER decorator: the router registers
       whatever function it is handed, so a limiter wrapped around the
       router's return value never runs.
  [C1] AuthService.login() uses authenticate_account() timing equalization
       and one error for unknown email and wrong password.
  [M5] Cache-Control: no-store on responses that set the session cookie.

Errors raised by the service (auth.errors.AuthError) are turned into the
standard error envelope by the handler in api/main.py.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    AccountResponse,
    EmailRequest,
    LoginRequest,
    MessageResponse,
    RegisterRequest,
    ResetPasswordRequest,
    SessionResponse,
    VerifyOtpRequest,
)
from auth.dependencies import get_current_account, try_get_current_account
from auth.models import Account
from auth.service import AuthService
from auth.tokens import clear_auth_cookie, set_auth_cookie
from core.config import get_settings

_settings = get_settings()

# Auth policy:
# - POST /auth/register, /auth/login, /auth/logout:     public
# - POST /auth/send-verify-otp:                          requires auth (get_current_account)
# - POST /auth/verify-otp:                               public; falls back to the session's account
# - POST /auth/send-reset-otp, /auth/reset-password:    public -- the user cannot log in
router = APIRouter()


def _session_response(status_code: int, message: str, account: Account, token: str) -> JSONResponse:
    resp = JSONResponse(
        status_code=status_code,
        content=SessionResponse(
            message=message,
            account=AccountResponse.from_account(account),
            expires_in=_settings.token_expire_seconds,
        ).model_dump(by_alias=True),
    )
    set_auth_cookie(resp, token)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Registration and session
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=SessionResponse, status_code=201)
async def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create an unverified account and log it in immediately.

    The welcome email is best-effort; a mail failure does not undo the
    registration.
    """
    service: AuthService = request.app.state.auth_service
    account, token = await service.register(
        name=body.name,
        email=body.email,
        password=body.password,
        role=body.role,
        business_name=body.business_name,
        business_address=body.business_address,
        business_abn=body.business_abn,
    )
    return _session_response(201, "Account created.", account, token)


@router.post("/auth/login", response_model=SessionResponse)
@limiter.limit(_settings.login_rate_limit)  # [H2] must be BELOW @router so the registered endpoint is the limited one
async def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; set the session cookie.

    Unknown email and wrong password both return 401 bad_credentials with the
    same message.
    """
    service: AuthService = request.app.state.auth_service
    account, token = await service.login(body.email, body.password)
    return _session_response(200, "Logged in.", account, token)


@router.post("/auth/logout", response_model=MessageResponse)
async def logout() -> JSONResponse:
    """Clear the session cookie. Tokens are stateless -- nothing changes server-side."""
    resp = JSONResponse(content=MessageResponse(message="Logged out.").model_dump())
    clear_auth_cookie(resp)
    return resp


# ---------------------------------------------------------------------------
# Email verification
# ---------------------------------------------------------------------------


@router.post("/auth/send-verify-otp", response_model=MessageResponse)
@limiter.limit(_settings.otp_rate_limit)  # [H4]
async def send_verify_otp(
    request: Request,
    current_account: Account = Depends(get_current_account),
) -> MessageResponse:
    """Email a fresh 24h verification code to the logged-in account."""
    service: AuthService = request.app.state.auth_service
    await service.request_email_verification(current_account.id)
    return MessageResponse(message="Verification email has been sent.")


@router.post("/auth/verify-otp", response_model=MessageResponse)
@limiter.limit(_settings.otp_rate_limit)  # [H4]
async def verify_otp(request: Request, body: VerifyOtpRequest) -> MessageResponse:
    """Consume a verification code.

    userId comes from the body; without it the session cookie's account is
    used, so a logged-in client can send just the code.
    """
    service: AuthService = request.app.state.auth_service
    account_id = body.user_id
    if account_id is None:
        session_account = await run_in_threadpool(try_get_current_account, request)
        account_id = session_account.id if session_account else None
    await service.confirm_email_verification(account_id, body.otp)
    return MessageResponse(message="Email verified successfully.")


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


@router.post("/auth/send-reset-otp", response_model=MessageResponse)
@limiter.limit(_settings.otp_rate_limit)  # [H4]
async def send_reset_otp(request: Request, body: EmailRequest) -> MessageResponse:
    """Email a 15-minute password reset code.

    Responds 404 for unknown emails (existing behavior; unlike login this
    endpoint does reveal whether an account exists).
    """
    service: AuthService = request.app.state.auth_service
    await service.request_password_reset(body.email)
    return MessageResponse(message="Password reset code has been sent.")


@router.post("/auth/reset-password", response_model=MessageResponse)
@limiter.limit(_settings.otp_rate_limit)  # [H4]
async def reset_password(request: Request, body: ResetPasswordRequest) -> MessageResponse:
    """Consume a reset code and set the new password."""
    service: AuthService = request.app.state.auth_service
    await service.confirm_password_reset(body.email, body.otp, body.new_password)
    return MessageResponse(message="Password has been reset.")
