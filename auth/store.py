"""
auth/store.py -- SQLAlchemy Core persistence layer for accounts.

Pattern: Repository + Data Mapper.
AccountStore is the repository; _row_to_account is the mapper.
Service and dependency code never touches SQL directly.

Concurrency:
  The store is the single mutation authority. Every method is one statement
  in its own connection, so each call is an atomic single-record read or
  write. OTP consumption uses a conditional UPDATE (WHERE id AND code) so
  two requests racing to consume the same code cannot both succeed -- the
  loser sees rowcount 0.

  Writes touch only the columns their operation owns: save() never writes
  is_verified, the password hash or the OTP slots, so a stale profile copy
  cannot undo a verification or reset that committed after it was read.
  The last-admin rule is part of the UPDATE / DELETE itself (an admin-count
  subquery in the WHERE clause), not a separate count beforehand.

Security:
  All queries use bound parameters. No f-strings in SQL.
  Emails are normalized (trimmed, lowercased) before every read and write,
  and the UNIQUE constraint on the normalized column enforces
  case-insensitive uniqueness at write time.

DB path: auth/cybershield_auth.db unless DATABASE_URL is set.

Layer rule: no imports from api/ or notify/.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, func, or_, select, text
from sqlalchemy.engine import Engine

from auth.models import Account, BusinessProfile, OtpSlot

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'cybershield_auth.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_accounts = Table(
    "accounts",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(320), nullable=False, unique=True),  # normalized
    Column("name", String(255), nullable=False),
    Column("hashed_password", Text, nullable=False),
    Column("role", String(20), nullable=False, server_default="general"),
    Column("business_name", String(255)),  # NULL unless role = business
    Column("business_address", Text),
    Column("business_abn", String(64)),
    Column("is_verified", Integer, nullable=False, server_default="0"),
    Column("verify_otp", String(16), nullable=False, server_default=""),
    Column("verify_otp_expires_at", String(32)),  # ISO 8601 UTC
    Column("reset_otp", String(16), nullable=False, server_default=""),
    Column("reset_otp_expires_at", String(32)),
    Column("created_at", String(32), nullable=False),
)

# OTP purpose -> (code column, expiry column)
_OTP_COLUMNS: dict[str, tuple[str, str]] = {
    "verify": ("verify_otp", "verify_otp_expires_at"),
    "reset": ("reset_otp", "reset_otp_expires_at"),
}

# Columns consume_otp() may change alongside clearing the slot.
_CONSUME_EXTRA_FIELDS: frozenset[str] = frozenset({"is_verified", "hashed_password"})


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers are not blocked by writers.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _to_iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    # Rows written by older builds may be naive; treat them as UTC.
    return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=timezone.utc)


def normalize_email(email: str) -> str:
    """Canonical form used for storage and lookup: trimmed and lowercased."""
    return email.strip().lower()


def _check_purpose(purpose: str) -> tuple[str, str]:
    try:
        return _OTP_COLUMNS[purpose]
    except KeyError:
        raise ValueError(f"Unknown OTP purpose: {purpose!r}") from None


def _profile_values(account: Account) -> dict:
    """Columns owned by profile and role changes -- the only ones save() writes."""
    business = account.business
    return {
        "email": normalize_email(account.email),
        "name": account.name,
        "role": account.role,
        "business_name": business.name if business else None,
        "business_address": business.address if business else None,
        "business_abn": business.abn if business else None,
    }


def _account_values(account: Account) -> dict:
    return {
        **_profile_values(account),
        "hashed_password": account.hashed_password,
        "is_verified": 1 if account.is_verified else 0,
        "verify_otp": account.verify_otp.code,
        "verify_otp_expires_at": _to_iso(account.verify_otp.expires_at),
        "reset_otp": account.reset_otp.code,
        "reset_otp_expires_at": _to_iso(account.reset_otp.expires_at),
    }


def _keeps_an_admin():
    """WHERE clause: the row is not an admin, or another admin would remain.

    The count reads an alias of the table so SQLAlchemy does not correlate it
    with the row being updated or deleted.
    """
    admins = _accounts.alias("admins")
    admin_count = select(func.count()).select_from(admins).where(admins.c.role == "admin").scalar_subquery()
    return or_(_accounts.c.role != "admin", admin_count > 1)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AccountStore:
    """Repository for Account entities.

    Usage:
        store = AccountStore()
        account_id = store.create_account(Account(email="ada@x.com", name="Ada", role="general",
                                                  hashed_password=hash_password("secret1")))
        account = store.get_by_email("ADA@x.com")
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_by_id(self, account_id: int, *, with_password: bool = True) -> Account | None:
        """Look up an account by primary key. Returns None if not found.

        with_password=False blanks hashed_password on the returned copy; the
        session guard uses it so request context never carries the hash.
        """
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.id == account_id)).fetchone()
        if row is None:
            return None
        account = _row_to_account(row)
        if not with_password:
            account.hashed_password = None
        return account

    def get_by_email(self, email: str) -> Account | None:
        """Look up an account by email, case- and whitespace-insensitively."""
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.email == normalize_email(email))).fetchone()
        return _row_to_account(row) if row is not None else None

    def email_taken(self, email: str, exclude_id: int | None = None) -> bool:
        """Return True if another account already uses this (normalized) email."""
        query = select(_accounts.c.id).where(_accounts.c.email == normalize_email(email))
        if exclude_id is not None:
            query = query.where(_accounts.c.id != exclude_id)
        with self.engine.connect() as conn:
            return conn.execute(query).first() is not None

    def list_accounts(self) -> list[Account]:
        """Return all accounts ordered by creation. Admin-only operation."""
        with self.engine.connect() as conn:
            rows = conn.execute(_accounts.select().order_by(_accounts.c.id)).fetchall()
        return [_row_to_account(r) for r in rows]

    def count_admins(self) -> int:
        """Number of admin accounts. Used to protect the last admin."""
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count()).select_from(_accounts).where(_accounts.c.role == "admin")
            ).scalar()
        return result or 0

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT 1")).scalar() == 1

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_account(self, account: Account) -> int:
        """Insert a new account and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the normalized email already
        exists. The service pre-checks, but a concurrent registration can
        still win the race -- callers treat IntegrityError as Conflict.
        """
        with self.engine.connect() as conn:
            result = conn.execute(_accounts.insert().values(created_at=_now_iso(), **_account_values(account)))
            conn.commit()
            return result.inserted_primary_key[0]

    def save(self, account: Account, *, protect_last_admin: bool = False) -> bool:
        """Write the profile columns of an existing account: name, email, role, business.

        is_verified, the password hash and the OTP slots are left alone; they
        change only through set_password(), set_otp() and consume_otp().

        protect_last_admin=True refuses (returns False) to move the last admin
        to a non-admin role, checked inside the same UPDATE.

        Raises IntegrityError if an email change collides with another
        account. Returns False if nothing was written (account gone or last
        admin protected).
        """
        if account.id is None:
            raise ValueError("save() requires a persisted account (id is None)")
        stmt = _accounts.update().where(_accounts.c.id == account.id).values(**_profile_values(account))
        if protect_last_admin and account.role != "admin":
            stmt = stmt.where(_keeps_an_admin())
        with self.engine.connect() as conn:
            result = conn.execute(stmt)
            conn.commit()
        return result.rowcount > 0

    def set_password(self, account_id: int, hashed_password: str) -> bool:
        """Replace the password hash only. Returns False if the account no longer exists."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _accounts.update().where(_accounts.c.id == account_id).values(hashed_password=hashed_password)
            )
            conn.commit()
        return result.rowcount > 0

    def set_otp(self, account_id: int, purpose: str, code: str, expires_at: datetime) -> bool:
        """Store a fresh code in one OTP slot, overwriting any previous code.

        Returns False if the account no longer exists.
        """
        code_col, expiry_col = _check_purpose(purpose)
        with self.engine.connect() as conn:
            result = conn.execute(
                _accounts.update()
                .where(_accounts.c.id == account_id)
                .values(**{code_col: code, expiry_col: _to_iso(expires_at)})
            )
            conn.commit()
        return result.rowcount > 0

    def consume_otp(self, account_id: int, purpose: str, code: str, **fields) -> bool:
        """Clear an OTP slot -- and apply fields -- only if it still holds `code`.

        Accepted fields: is_verified (bool), hashed_password (str).
        Returns True if the slot was consumed, False if the account is gone or
        the slot no longer holds that code (consumed or replaced concurrently).
        """
        unknown = set(fields) - _CONSUME_EXTRA_FIELDS
        if unknown:
            raise ValueError(f"Unknown account fields: {unknown!r}")
        if not code:
            return False
        if "is_verified" in fields:
            fields["is_verified"] = 1 if fields["is_verified"] else 0
        code_col, expiry_col = _check_purpose(purpose)
        with self.engine.connect() as conn:
            result = conn.execute(
                _accounts.update()
                .where((_accounts.c.id == account_id) & (_accounts.c[code_col] == code))
                .values(**{code_col: "", expiry_col: None}, **fields)
            )
            conn.commit()
        return result.rowcount > 0

    def delete(self, account_id: int, *, protect_last_admin: bool = False) -> bool:
        """Permanently delete an account. Returns True if deleted.

        False means not found, or -- with protect_last_admin=True -- that the
        account is the last admin. OTP state lives on the same row, so nothing
        else needs cleaning up.
        """
        stmt = _accounts.delete().where(_accounts.c.id == account_id)
        if protect_last_admin:
            stmt = stmt.where(_keeps_an_admin())
        with self.engine.connect() as conn:
            result = conn.execute(stmt)
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_account(row) -> Account:
    business = None
    if row.role == "business" and row.business_name:
        business = BusinessProfile(
            name=row.business_name,
            address=row.business_address or "",
            abn=row.business_abn or "",
        )
    return Account(
        id=row.id,
        email=row.email,
        name=row.name,
        hashed_password=row.hashed_password,
        role=row.role,
        business=business,
        is_verified=bool(row.is_verified),
        verify_otp=OtpSlot(code=row.verify_otp or "", expires_at=_from_iso(row.verify_otp_expires_at)),
        reset_otp=OtpSlot(code=row.reset_otp or "", expires_at=_from_iso(row.reset_otp_expires_at)),
        created_at=row.created_at,
    )
