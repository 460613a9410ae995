"""
auth/service.py -- Account lifecycle orchestration.

AuthService sequences validation, storage, token issue and notification for
one logical operation each: registration, login, email verification,
password reset, profile and password updates, plus the admin operations.

Per-account state is two independent axes read off the stored record:
  verification -- Unverified | Verified        (is_verified)
  reset        -- NoActiveReset | ResetPending (reset_otp slot empty or not)

Check ordering, used by every operation:
  input validation -> identity/existence -> secret equality -> expiry -> mutation
This decides which error a caller sees when several conditions fail at once
(e.g. a wrong code that is also past its expiry is InvalidOtp, a correct
code past its expiry is OtpExpired) and the tests pin it.

Blocking work: bcrypt and the SQLAlchemy store are synchronous. Each public
coroutine runs its blocking part (a private sync method) through
run_in_threadpool, so a slow hash never stalls the event loop. Only token
signing and notification dispatch run on the loop.

Notifications are best-effort: they run after the state change is committed
and a failure is logged, never raised. The user can request a fresh code.

No operation holds a record across two store round-trips where a race would
be observable:
  - OTP consumption is a conditional update on the code that was checked.
  - Profile saves write only profile columns; password changes write only
    the hash. Neither can undo a concurrent verification or reset.
  - The last-admin rule is enforced inside the admin UPDATE / DELETE.
  - Email uniqueness is finally enforced by the UNIQUE constraint.

Layer rule: no imports from api/ or notify/. The notifier arrives through the
constructor as anything satisfying the Notifier protocol.
"""

from __future__ import annotations

import hmac
import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import replace
from datetime import datetime, timezone
from typing import Protocol

from fastapi.concurrency import run_in_threadpool
from sqlalchemy.exc import IntegrityError

from auth.errors import (
    AlreadyVerified,
    BadRequest,
    Conflict,
    Forbidden,
    InvalidCredentials,
    InvalidOtp,
    NotFound,
    OtpExpired,
    WrongPassword,
)
from auth.models import ROLES, SELF_SERVICE_ROLES, Account, BusinessProfile, OtpSlot
from auth.otp import OtpPurpose, expiry_for, generate_otp, is_expired
from auth.store import AccountStore, normalize_email
from auth.tokens import authenticate_account, create_access_token, hash_password, verify_password

logger = logging.getLogger("cybershield.auth.service")

MIN_PASSWORD_LENGTH = 6
# bcrypt ignores (bcrypt >= 5 rejects) anything past 72 bytes.
MAX_PASSWORD_BYTES = 72

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class Notifier(Protocol):
    """Outbound messages the service asks for. Implementations may raise."""

    async def send_welcome(self, account: Account) -> None: ...

    async def send_verify_otp(self, account: Account, code: str, expires_at: datetime) -> None: ...

    async def send_reset_otp(self, account: Account, code: str, expires_at: datetime) -> None: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _clean(value: str | None) -> str:
    return value.strip() if value else ""


def _check_new_password(password: str | None, field: str = "password") -> str:
    if not password:
        raise BadRequest(f"Missing field: {field}.", code="missing_fields")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise BadRequest(
            f"{field} must be at least {MIN_PASSWORD_LENGTH} characters.",
            code="weak_password",
        )
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise BadRequest(f"{field} must be at most {MAX_PASSWORD_BYTES} bytes.", code="password_too_long")
    return password


def _check_email(email: str | None) -> str:
    normalized = normalize_email(email or "")
    if not normalized:
        raise BadRequest("Missing field: email.", code="missing_fields")
    if not _EMAIL_RE.match(normalized):
        raise BadRequest("Invalid email address.", code="invalid_email")
    return normalized


def _require(**fields: str | None) -> None:
    missing = [name for name, value in fields.items() if not _clean(value)]
    if missing:
        raise BadRequest(f"Missing fields: {', '.join(missing)}.", code="missing_fields")


def _business_profile(name: str | None, address: str | None, abn: str | None) -> BusinessProfile:
    try:
        return BusinessProfile(name=name or "", address=address or "", abn=abn or "")
    except ValueError as exc:
        raise BadRequest(f"{exc}. Complete all business fields.", code="incomplete_business_profile") from exc


def _codes_match(submitted: str, stored: str) -> bool:
    # An empty slot never matches, even an empty submission.
    if not stored:
        return False
    return hmac.compare_digest(submitted.encode("utf-8"), stored.encode("utf-8"))


class AuthService:
    """Coordinates the credential store, hasher, token issuer, OTPs and notifier.

    clock is injectable so tests can move time past an OTP expiry.
    """

    def __init__(
        self,
        store: AccountStore,
        notifier: Notifier,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.notifier = notifier
        self.clock = clock

    # ------------------------------------------------------------------
    # Registration and login
    # ------------------------------------------------------------------

    async def register(
        self,
        name: str | None,
        email: str | None,
        password: str | None,
        role: str | None = None,
        business_name: str | None = None,
        business_address: str | None = None,
        business_abn: str | None = None,
    ) -> tuple[Account, str]:
        """Create an unverified account and log it in. Returns (account, token).

        Everything is validated before the first write: a rejected
        registration leaves no record behind.
        """
        account = await run_in_threadpool(
            self._register, name, email, password, role, business_name, business_address, business_abn
        )
        token = create_access_token(account.id, account.role)
        await self._dispatch("welcome", account.id, lambda: self.notifier.send_welcome(account))
        return account, token

    async def login(self, email: str | None, password: str | None) -> tuple[Account, str]:
        """Check credentials and issue a session token.

        Unknown email and wrong password raise the same InvalidCredentials.
        Verification is not required to log in.
        """
        _require(email=email, password=password)
        account = await run_in_threadpool(authenticate_account, self.store, email, password)
        if account is None:
            logger.info("Failed login attempt")
            raise InvalidCredentials()
        return account, create_access_token(account.id, account.role)

    # ------------------------------------------------------------------
    # Email verification
    # ------------------------------------------------------------------

    async def request_email_verification(self, account_id: int) -> None:
        """Put a fresh verify code (24h) in the account's verify slot and send it.

        A second request overwrites the first code, which stops working.
        """
        account, code, expires_at = await run_in_threadpool(self._issue_verify_otp, account_id)
        await self._dispatch("verify_otp", account.id, lambda: self.notifier.send_verify_otp(account, code, expires_at))

    async def confirm_email_verification(self, account_id: int | None, code: str | None) -> Account:
        """Consume the verify code and mark the account verified."""
        return await run_in_threadpool(self._confirm_email_verification, account_id, code)

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    async def request_password_reset(self, email: str | None) -> None:
        """Put a fresh reset code (15min) in the account's reset slot and send it.

        Unlike login this reports NotFound for an unknown email. The
        asymmetry is existing API behavior, kept deliberately.
        """
        account, code, expires_at = await run_in_threadpool(self._issue_reset_otp, email)
        await self._dispatch("reset_otp", account.id, lambda: self.notifier.send_reset_otp(account, code, expires_at))

    async def confirm_password_reset(self, email: str | None, code: str | None, new_password: str | None) -> None:
        """Consume the reset code and replace the password hash in one update."""
        await run_in_threadpool(self._confirm_password_reset, email, code, new_password)

    # ------------------------------------------------------------------
    # Self-service profile
    # ------------------------------------------------------------------

    async def get_account(self, account_id: int) -> Account:
        return await run_in_threadpool(self._get, account_id)

    async def update_profile(
        self,
        account_id: int,
        name: str | None = None,
        email: str | None = None,
        role: str | None = None,
        business_name: str | None = None,
        business_address: str | None = None,
        business_abn: str | None = None,
    ) -> Account:
        """Partially update name, email, and the general/business switch.

        Omitted (None or blank) fields keep their stored value. Business
        fields merge over the stored profile; the result must be complete
        whenever the resulting role is business. Leaving business clears the
        profile. Role changes involving admin go through the admin API.
        """
        return await run_in_threadpool(
            self._update_profile, account_id, name, email, role, business_name, business_address, business_abn
        )

    async def update_password(
        self, account_id: int, current_password: str | None, new_password: str | None
    ) -> None:
        """Replace the password after checking the current one."""
        await run_in_threadpool(self._update_password, account_id, current_password, new_password)

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    async def list_accounts(self) -> list[Account]:
        return await run_in_threadpool(self.store.list_accounts)

    async def change_role(
        self,
        actor_id: int,
        target_id: int,
        role: str | None,
        business_name: str | None = None,
        business_address: str | None = None,
        business_abn: str | None = None,
    ) -> Account:
        """Set any role on any account. The last admin cannot be demoted."""
        return await run_in_threadpool(
            self._change_role, actor_id, target_id, role, business_name, business_address, business_abn
        )

    async def delete_account(self, actor_id: int, target_id: int) -> None:
        """Hard-delete an account. The last admin cannot be deleted."""
        await run_in_threadpool(self._delete_account, actor_id, target_id)

    # ------------------------------------------------------------------
    # Blocking operation bodies (run in the threadpool)
    # ------------------------------------------------------------------

    def _register(
        self,
        name: str | None,
        email: str | None,
        password: str | None,
        role: str | None,
        business_name: str | None,
        business_address: str | None,
        business_abn: str | None,
    ) -> Account:
        _require(name=name, email=email, password=password)
        normalized = _check_email(email)
        _check_new_password(password)
        role = _clean(role) or "general"
        if role not in SELF_SERVICE_ROLES:
            raise BadRequest("Invalid role. Choose general or business.", code="invalid_role")
        business = None
        if role == "business":
            business = _business_profile(business_name, business_address, business_abn)

        if self.store.email_taken(normalized):
            raise Conflict()

        account = Account(
            email=normalized,
            name=_clean(name),
            role=role,
            hashed_password=hash_password(password),
            business=business,
        )
        try:
            account.id = self.store.create_account(account)
        except IntegrityError as exc:
            # A concurrent registration won between the pre-check and the insert.
            raise Conflict() from exc

        created = self.store.get_by_id(account.id) or account
        logger.info("Registered account %s (role=%s)", created.id, created.role)
        return created

    def _issue_verify_otp(self, account_id: int) -> tuple[Account, str, datetime]:
        account = self._get(account_id)
        if account.is_verified:
            raise AlreadyVerified()
        code = generate_otp()
        expires_at = expiry_for(OtpPurpose.verify, self.clock())
        if not self.store.set_otp(account.id, OtpPurpose.verify.value, code, expires_at):
            raise NotFound()
        logger.info("Issued verification code for account %s", account.id)
        return account, code, expires_at

    def _confirm_email_verification(self, account_id: int | None, code: str | None) -> Account:
        if account_id is None or not _clean(code):
            raise BadRequest("Missing fields: userId, otp.", code="missing_fields")
        account = self._get(account_id)
        self._check_otp(account.verify_otp, _clean(code))
        if not self.store.consume_otp(account.id, OtpPurpose.verify.value, account.verify_otp.code, is_verified=True):
            # Consumed or replaced by a concurrent request since we read it.
            raise InvalidOtp()
        logger.info("Account %s verified", account.id)
        return replace(account, is_verified=True, verify_otp=OtpSlot())

    def _issue_reset_otp(self, email: str | None) -> tuple[Account, str, datetime]:
        _require(email=email)
        account = self.store.get_by_email(email)
        if account is None:
            raise NotFound()
        code = generate_otp()
        expires_at = expiry_for(OtpPurpose.reset, self.clock())
        if not self.store.set_otp(account.id, OtpPurpose.reset.value, code, expires_at):
            raise NotFound()
        logger.info("Issued password reset code for account %s", account.id)
        return account, code, expires_at

    def _confirm_password_reset(self, email: str | None, code: str | None, new_password: str | None) -> None:
        _require(email=email, otp=code, newPassword=new_password)
        _check_new_password(new_password, "newPassword")
        account = self.store.get_by_email(email)
        if account is None:
            raise NotFound()
        self._check_otp(account.reset_otp, _clean(code))
        hashed = hash_password(new_password)
        consumed = self.store.consume_otp(
            account.id, OtpPurpose.reset.value, account.reset_otp.code, hashed_password=hashed
        )
        if not consumed:
            raise InvalidOtp()
        logger.info("Password reset completed for account %s", account.id)

    def _update_profile(
        self,
        account_id: int,
        name: str | None,
        email: str | None,
        role: str | None,
        business_name: str | None,
        business_address: str | None,
        business_abn: str | None,
    ) -> Account:
        account = self._get(account_id)
        updated = replace(account)

        if _clean(name):
            updated.name = _clean(name)

        if _clean(email):
            normalized = _check_email(email)
            if normalized != account.email and self.store.email_taken(normalized, exclude_id=account.id):
                raise Conflict("Email already in use.")
            updated.email = normalized

        target_role = _clean(role) or account.role
        if target_role != account.role:
            if target_role not in ROLES:
                raise BadRequest("Invalid role.", code="invalid_role")
            if target_role not in SELF_SERVICE_ROLES or account.role not in SELF_SERVICE_ROLES:
                raise Forbidden("Role changes involving admin require an administrator.")
        updated.role = target_role
        updated.business = self._merge_business(
            target_role, account.business, business_name, business_address, business_abn
        )

        self._save(updated)
        logger.info("Profile updated for account %s", account.id)
        return updated

    def _update_password(self, account_id: int, current_password: str | None, new_password: str | None) -> None:
        _require(currentPassword=current_password, newPassword=new_password)
        _check_new_password(new_password, "newPassword")
        account = self._get(account_id)
        if not verify_password(current_password, account.hashed_password or ""):
            raise WrongPassword()
        if not self.store.set_password(account.id, hash_password(new_password)):
            raise NotFound()
        logger.info("Password changed for account %s", account.id)

    def _change_role(
        self,
        actor_id: int,
        target_id: int,
        role: str | None,
        business_name: str | None,
        business_address: str | None,
        business_abn: str | None,
    ) -> Account:
        role = _clean(role)
        if role not in ROLES:
            raise BadRequest("Invalid role.", code="invalid_role")
        account = self._get(target_id)
        account.business = self._merge_business(
            role, account.business, business_name, business_address, business_abn
        )
        account.role = role
        if not self._save(account, protect_last_admin=True):
            self._get(target_id)
            raise BadRequest("Cannot demote the last admin account.", code="last_admin")
        logger.info("Account %s role set to %s by admin %s", account.id, role, actor_id)
        return account

    def _delete_account(self, actor_id: int, target_id: int) -> None:
        if not self.store.delete(target_id, protect_last_admin=True):
            self._get(target_id)
            raise BadRequest("Cannot delete the last admin account.", code="last_admin")
        logger.info("Account %s deleted by admin %s", target_id, actor_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _get(self, account_id: int) -> Account:
        account = self.store.get_by_id(account_id)
        if account is None:
            raise NotFound()
        return account

    def _save(self, account: Account, *, protect_last_admin: bool = False) -> bool:
        """Save profile columns. False only when protect_last_admin blocked the write."""
        try:
            saved = self.store.save(account, protect_last_admin=protect_last_admin)
        except IntegrityError as exc:
            raise Conflict("Email already in use.") from exc
        if not saved and not protect_last_admin:
            raise NotFound()
        return saved

    def _check_otp(self, slot: OtpSlot, submitted: str) -> None:
        """Equality first, then expiry -- a correct but stale code is OtpExpired."""
        if not _codes_match(submitted, slot.code):
            raise InvalidOtp()
        if is_expired(slot.expires_at, self.clock()):
            raise OtpExpired()

    @staticmethod
    def _merge_business(
        role: str,
        current: BusinessProfile | None,
        name: str | None,
        address: str | None,
        abn: str | None,
    ) -> BusinessProfile | None:
        if role != "business":
            return None
        return _business_profile(
            _clean(name) or (current.name if current else ""),
            _clean(address) or (current.address if current else ""),
            _clean(abn) or (current.abn if current else ""),
        )

    async def _dispatch(self, kind: str, account_id: int | None, send: Callable[[], Awaitable[None]]) -> None:
        try:
            await send()
        except Exception:
            logger.exception("Failed to send %s notification to account %s", kind, account_id)
