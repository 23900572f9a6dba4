"""History ledger: bounded, most-recent-first log of past diagnoses."""

import json
import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

import pydantic

from crop_doctor.domain.diagnosis import SaveOutcome
from crop_doctor.domain.errors import (
    HistoryEntryNotFoundError,
    StorageFailureError,
    StorageQuotaExceededError,
)
from crop_doctor.domain.history import HistoryEntry, StoredHistoryEntry
from crop_doctor.services.storage import DeviceStorageProvider, LocalStorage

logger = logging.getLogger(__name__)

HISTORY_KEY = "diagnosisHistory"
MAX_HISTORY_ITEMS = 20

HistoryTransform = Callable[[list[HistoryEntry]], list[HistoryEntry]]


def strip_images(entries: list[HistoryEntry]) -> list[HistoryEntry]:
    """Drop image attachments, keeping the diagnosis text."""
    return [entry.model_copy(update={"image": None}) for entry in entries]


def serialize_history(entries: Sequence[HistoryEntry]) -> str:
    """Serialize entries as a JSON array."""
    return json.dumps([entry.model_dump() for entry in entries], ensure_ascii=False)


def deserialize_history(raw: str, now_ms: int | None = None) -> list[HistoryEntry]:
    """Parse a stored blob, skipping entries that don't conform.

    Entries without an id get ``now_ms + index``. Raises ``json.JSONDecodeError``
    when the blob itself is not JSON.
    """
    parsed = json.loads(raw)
    if not isinstance(parsed, list):
        return []
    base = now_ms if now_ms is not None else _now_ms()
    entries: list[HistoryEntry] = []
    for item in parsed:
        try:
            stored = StoredHistoryEntry.model_validate(item)
        except pydantic.ValidationError:
            continue
        entries.append(
            HistoryEntry(
                id=stored.id or base + len(entries),
                image=stored.image,
                diagnosis=stored.diagnosis,
                date=stored.date,
            )
        )
    return entries


@dataclass
class FallbackWriter:
    """Writes the ledger, retrying once with a fallback transform when full."""

    storage: LocalStorage
    key: str = HISTORY_KEY
    fallback: HistoryTransform = strip_images

    def write(self, entries: list[HistoryEntry]) -> SaveOutcome:
        """Persist entries and report how much of them survived."""
        attempts = (
            (SaveOutcome.SAVED, entries),
            (SaveOutcome.SAVED_WITHOUT_IMAGES, self.fallback(entries)),
        )
        for outcome, candidate in attempts:
            payload = serialize_history(candidate)
            try:
                if not self.storage.can_store(self.key, payload):
                    continue
                self.storage.set_item(self.key, payload)
            except StorageQuotaExceededError:
                continue
            except StorageFailureError:
                logger.exception("Could not save diagnosis history")
                return SaveOutcome.NOT_SAVED
            if outcome is SaveOutcome.SAVED_WITHOUT_IMAGES:
                logger.warning("History saved without images due to storage limits")
            return outcome
        logger.warning("Storage is full; diagnosis history was not saved")
        return SaveOutcome.NOT_SAVED


@dataclass
class HistoryLedger:
    """In-memory ledger for one device with best-effort persistence."""

    storage: LocalStorage
    max_items: int = MAX_HISTORY_ITEMS
    entries: list[HistoryEntry] = field(default_factory=list)
    writer: FallbackWriter = field(init=False)

    def __post_init__(self) -> None:
        self.writer = FallbackWriter(self.storage)

    def load(self) -> None:
        """Load persisted entries; a corrupt blob is cleared."""
        raw = self.storage.get_item(HISTORY_KEY)
        if raw is None:
            return
        try:
            loaded = deserialize_history(raw)
        except json.JSONDecodeError:
            logger.exception("Error parsing history, clearing it")
            self.storage.remove_item(HISTORY_KEY)
            return
        self.entries = loaded[: self.max_items]

    def list(self) -> list[HistoryEntry]:
        return list(self.entries)

    def next_id(self) -> int:
        """Return a unique id that is larger than every existing one."""
        latest = max((entry.id for entry in self.entries), default=0)
        return max(_now_ms(), latest + 1)

    def append(self, entry: HistoryEntry) -> SaveOutcome:
        """Prepend an entry, evicting the oldest beyond the bound."""
        self.entries = [entry, *self.entries][: self.max_items]
        return self.writer.write(self.entries)

    def remove(self, entry_id: int) -> SaveOutcome:
        remaining = [entry for entry in self.entries if entry.id != entry_id]
        if len(remaining) == len(self.entries):
            raise HistoryEntryNotFoundError(f"No history entry {entry_id}")
        self.entries = remaining
        return self.writer.write(self.entries)


@dataclass
class HistoryService:
    """Opens device ledgers; device storage is the only copy of the history."""

    storage_provider: DeviceStorageProvider
    max_items: int = MAX_HISTORY_ITEMS

    def ledger_for(self, device_id: str) -> HistoryLedger:
        """Return the device ledger freshly loaded from storage."""
        ledger = HistoryLedger(
            storage=self.storage_provider.for_device(device_id),
            max_items=self.max_items,
        )
        ledger.load()
        return ledger


def _now_ms() -> int:
    return time.time_ns() // 1_000_000
