"""Entitlement store: usage counters for guests and accounts."""

import logging
from dataclasses import dataclass, field
from typing import Protocol

from crop_doctor.domain.entitlement import (
    ACCOUNT_DIAGNOSIS_LIMIT,
    GUEST_DIAGNOSIS_LIMIT,
    AccountDocument,
    EntitlementRecord,
)
from crop_doctor.domain.errors import EntitlementSyncError, StorageFailureError
from crop_doctor.domain.identity import Account, Guest, Identity
from crop_doctor.services.storage import DeviceStorageProvider, LocalStorage

logger = logging.getLogger(__name__)

GUEST_COUNTER_KEY = "guestDiagnosisCount"


class AccountRepository(Protocol):
    """Persistence interface for remote account entitlement documents."""

    def get_account(self, account_id: str) -> AccountDocument | None:
        """Return the account document, if present."""

    def create_account(self, account: Account, diagnosis_limit: int) -> AccountDocument:
        """Create a fresh unpaid account document and return it."""

    def increment_diagnosis_count(self, account_id: str) -> int | None:
        """Atomically add one to the stored counter and return the new value."""

    def find_by_email(self, email: str) -> AccountDocument | None:
        """Return the first account whose stored email equals ``email``."""

    def mark_paid(self, account_id: str) -> None:
        """Set the account paid with an unlimited diagnosis limit."""


class EntitlementStore(Protocol):
    """Entitlement state for the current identity."""

    def read(self) -> EntitlementRecord:
        """Return the current entitlement record."""

    def increment(self) -> EntitlementRecord:
        """Record one successful diagnosis and return the updated record."""


@dataclass
class GuestEntitlementStore(EntitlementStore):
    """Guest counter kept in device-local storage."""

    storage: LocalStorage
    limit: int = GUEST_DIAGNOSIS_LIMIT

    def read(self) -> EntitlementRecord:
        return EntitlementRecord(used_count=self._load_count(), limit=self.limit)

    def increment(self) -> EntitlementRecord:
        count = self._load_count() + 1
        try:
            self.storage.set_item(GUEST_COUNTER_KEY, str(count))
        except StorageFailureError:
            logger.warning("Could not persist guest diagnosis counter")
        return EntitlementRecord(used_count=count, limit=self.limit)

    def _load_count(self) -> int:
        raw = self.storage.get_item(GUEST_COUNTER_KEY)
        if raw is None:
            return 0
        try:
            return max(0, int(raw.strip()))
        except ValueError:
            return 0


@dataclass
class AccountEntitlementStore(EntitlementStore):
    """Account entitlement backed by the remote document store.

    The remote document is authoritative; ``mirror`` only reflects the last
    known value for display between reads.
    """

    repository: AccountRepository
    account: Account
    limit: int = ACCOUNT_DIAGNOSIS_LIMIT
    mirror: EntitlementRecord | None = field(default=None, init=False)

    def read(self) -> EntitlementRecord:
        """Read the remote record, creating it on first sign-in."""
        document = self.repository.get_account(self.account.account_id)
        if document is None:
            logger.info(
                "Creating entitlement document",
                extra={"account_id": self.account.account_id},
            )
            document = self.repository.create_account(self.account, self.limit)
        self.mirror = document.to_entitlement()
        return self.mirror

    def increment(self) -> EntitlementRecord:
        """Add one to the remote counter.

        Raises EntitlementSyncError when the repository call fails.
        """
        current = self.mirror or self.read()
        if current.paid:
            return current
        try:
            new_count = self.repository.increment_diagnosis_count(
                self.account.account_id
            )
        except Exception as exc:
            raise EntitlementSyncError(
                f"Could not update diagnosis count for {self.account.account_id}"
            ) from exc
        if new_count is None:
            new_count = current.used_count + 1
        self.mirror = EntitlementRecord(
            used_count=new_count, limit=current.limit, paid=False
        )
        return self.mirror


@dataclass
class EntitlementService:
    """Selects the entitlement store for an identity."""

    repository: AccountRepository
    storage_provider: DeviceStorageProvider
    guest_limit: int = GUEST_DIAGNOSIS_LIMIT
    account_limit: int = ACCOUNT_DIAGNOSIS_LIMIT

    def store_for(self, identity: Identity) -> EntitlementStore:
        """Return the backing store for the identity."""
        if isinstance(identity, Guest):
            return GuestEntitlementStore(
                storage=self.storage_provider.for_device(identity.device_id),
                limit=self.guest_limit,
            )
        return AccountEntitlementStore(
            repository=self.repository,
            account=identity,
            limit=self.account_limit,
        )

    def current(self, identity: Identity) -> EntitlementRecord:
        """Return the current entitlement for the identity."""
        return self.store_for(identity).read()

    def simulate_payment(self, account: Account) -> EntitlementRecord:
        """Grant unlimited entitlement without a payment provider."""
        store = self.store_for(account)
        store.read()
        self.repository.mark_paid(account.account_id)
        logger.info(
            "Simulated payment applied", extra={"account_id": account.account_id}
        )
        return store.read()
