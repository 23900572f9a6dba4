"""Diagnosis request and result values."""

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum

from crop_doctor.domain.entitlement import EntitlementRecord
from crop_doctor.domain.identity import Identity


class SaveOutcome(StrEnum):
    """Result of persisting the history ledger."""

    SAVED = "saved"
    SAVED_WITHOUT_IMAGES = "saved_without_images"
    NOT_SAVED = "not_saved"


@dataclass(frozen=True)
class DiagnosisRequest:
    """Transient request for one diagnosis. Never persisted."""

    image: str | None
    identity: Identity
    device_id: str
    crop: str | None = None


@dataclass(frozen=True)
class DiagnosisResult:
    """Free-form diagnostic text from the oracle plus its capture time."""

    text: str
    captured_at: datetime


@dataclass(frozen=True)
class DiagnosisReport:
    """Everything a successful diagnosis produced."""

    result: DiagnosisResult
    entitlement: EntitlementRecord
    history_entry_id: int
    history_saved: SaveOutcome
    entitlement_synced: bool = True
