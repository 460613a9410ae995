"""
auth/errors.py -- Caller-facing error taxonomy for account operations.

Every AuthError carries the HTTP status, a stable machine-readable code and a
human message. api/main.py turns them into the standard error envelope, so
the service stays free of FastAPI imports. Anything that is not an AuthError
(store, hash or signing failure) is a server error: logged with detail,
answered with a generic 500.

Layer rule: stdlib only.
"""

from __future__ import annotations


class AuthError(Exception):
    status_code: int = 400
    code: str = "bad_request"
    message: str = "Bad request."

    def __init__(self, message: str | None = None, code: str | None = None) -> None:
        if message is not None:
            self.message = message
        if code is not None:
            self.code = code
        super().__init__(self.message)


class BadRequest(AuthError):
    """Missing or malformed input the caller can fix."""


class AlreadyVerified(BadRequest):
    code = "already_verified"
    message = "Account already verified."


class Conflict(AuthError):
    status_code = 409
    code = "conflict"
    message = "An account with that email already exists."


class Unauthenticated(AuthError):
    status_code = 401
    code = "unauthorized"
    message = "Authentication required."


class InvalidCredentials(Unauthenticated):
    """Login failure. Same code and message for unknown email and wrong password."""

    code = "bad_credentials"
    message = "Invalid email or password."


class WrongPassword(Unauthenticated):
    code = "bad_current_password"
    message = "Current password is incorrect."


class Forbidden(AuthError):
    status_code = 403
    code = "forbidden"
    message = "You do not have permission to perform this action."


class NotFound(AuthError):
    status_code = 404
    code = "not_found"
    message = "Account not found."


class InvalidOtp(AuthError):
    code = "invalid_otp"
    message = "Invalid OTP."


class OtpExpired(AuthError):
    status_code = 410
    code = "otp_expired"
    message = "OTP expired. Request a new code."
