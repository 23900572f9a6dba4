"""Entitlement records and remote account documents."""

from dataclasses import dataclass
from datetime import datetime

GUEST_DIAGNOSIS_LIMIT = 5
ACCOUNT_DIAGNOSIS_LIMIT = 20


@dataclass(frozen=True)
class EntitlementRecord:
    """Usage counter, quota and paid flag for one identity.

    A ``limit`` of ``None`` means unlimited. Paid records are always unlimited.
    """

    used_count: int
    limit: int | None
    paid: bool = False

    def __post_init__(self) -> None:
        if self.used_count < 0:
            raise ValueError("used_count must be non-negative")
        if self.limit is not None and self.limit <= 0:
            raise ValueError("limit must be positive or unlimited")
        if self.paid and self.limit is not None:
            raise ValueError("paid entitlements must be unlimited")

    @property
    def unlimited(self) -> bool:
        return self.limit is None

    @property
    def blocked(self) -> bool:
        """Return true when no further diagnosis may be requested."""
        return self.limit is not None and self.used_count >= self.limit

    @property
    def remaining(self) -> int | None:
        if self.limit is None:
            return None
        return max(0, self.limit - self.used_count)


@dataclass(frozen=True)
class AccountDocument:
    """Remote entitlement document keyed by account id."""

    account_id: str
    email: str | None
    display_name: str | None
    diagnosis_count: int
    diagnosis_limit: int | None
    has_paid: bool
    created_at: datetime | None = None

    def to_entitlement(self) -> EntitlementRecord:
        """Derive the entitlement record, treating paid documents as unlimited."""
        if self.has_paid:
            return EntitlementRecord(
                used_count=self.diagnosis_count or 0, limit=None, paid=True
            )
        return EntitlementRecord(
            used_count=self.diagnosis_count or 0,
            limit=self.diagnosis_limit or ACCOUNT_DIAGNOSIS_LIMIT,
            paid=False,
        )
