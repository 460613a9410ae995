"""
auth/models.py -- Domain dataclasses for account entities.

Pattern: Data class. Dataclasses own the domain shape; the store persists
them and the service mutates them. The only logic here is construction-time
validation of the business profile, which replaces the old "required if
role == business" implicit contract with an explicit variant:

    Account.business is a BusinessProfile  <=>  Account.role == "business"
    Account.business is None               <=>  role is "general" or "admin"

Layer rule: no imports from api/ or notify/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

ROLES: tuple[str, ...] = ("general", "business", "admin")

# Roles a user may hold without an administrator being involved.
SELF_SERVICE_ROLES: tuple[str, ...] = ("general", "business")


@dataclass(frozen=True)
class BusinessProfile:
    """Business details carried by accounts with role == "business".

    All three fields are mandatory and stored trimmed. Construction raises
    ValueError naming the missing fields, so a half-filled profile can never
    exist in memory.
    """

    name: str
    address: str
    abn: str

    def __post_init__(self) -> None:
        missing = [label for label, value in self._labelled() if not (value or "").strip()]
        if missing:
            raise ValueError(f"Missing business fields: {', '.join(missing)}")
        # frozen=True -- bypass __setattr__ to store the trimmed values
        object.__setattr__(self, "name", self.name.strip())
        object.__setattr__(self, "address", self.address.strip())
        object.__setattr__(self, "abn", self.abn.strip())

    def _labelled(self) -> list[tuple[str, str | None]]:
        return [("businessName", self.name), ("businessAddress", self.address), ("businessAbn", self.abn)]


@dataclass
class OtpSlot:
    """One purpose-bound OTP slot: either empty or one code with one expiry.

    Writing a new code replaces the previous one (no queue). An empty slot has
    code == "" and expires_at None; an empty code never matches a submission.
    """

    code: str = ""
    expires_at: datetime | None = None

    @property
    def is_empty(self) -> bool:
        return not self.code


@dataclass
class Account:
    """A registered identity.

    email is always stored normalized (trimmed, lowercased).
    hashed_password is None only on copies loaded for request context by the
    session guard -- persisted records always carry a bcrypt hash.
    """

    email: str
    name: str
    role: str  # "general", "business", "admin"
    id: int | None = None
    hashed_password: str | None = None
    business: BusinessProfile | None = None
    is_verified: bool = False
    verify_otp: OtpSlot = field(default_factory=OtpSlot)
    reset_otp: OtpSlot = field(default_factory=OtpSlot)
    created_at: str | None = None
