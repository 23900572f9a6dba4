"""Diagnosis orchestration: quota check, oracle call, counting and history."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol

from crop_doctor.domain.diagnosis import (
    DiagnosisReport,
    DiagnosisRequest,
    DiagnosisResult,
)
from crop_doctor.domain.errors import (
    DiagnosisInProgressError,
    EntitlementSyncError,
    OracleFailureError,
    QuotaExceededError,
    ValidationError,
)
from crop_doctor.domain.entitlement import EntitlementRecord
from crop_doctor.domain.history import HistoryEntry
from crop_doctor.domain.identity import Account
from crop_doctor.services.entitlements import EntitlementService
from crop_doctor.services.history import HistoryService

logger = logging.getLogger(__name__)

DIAGNOSIS_PROMPT = (
    "Look at this crop photo and diagnose any disease or pest problem. "
    "If a disease or pest is present, explain in detail the organic and "
    "chemical control methods available, and describe the likely causes. "
    "If there is no particular problem, say that the crop is in good condition."
)
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class DiagnosisClient(Protocol):
    """Interface for the external diagnosis model."""

    async def diagnose(self, *, model: str, prompt: str, image_data_url: str) -> str:
        """Return free-form diagnostic text, raising OracleFailureError on error."""


@dataclass
class DiagnosisService:
    """Runs one diagnosis for an identity under its entitlement."""

    client: DiagnosisClient
    model: str
    entitlement_service: EntitlementService
    history_service: HistoryService
    _in_flight: set[str] = field(default_factory=set, init=False)

    async def diagnose(self, request: DiagnosisRequest) -> DiagnosisReport:
        """Diagnose the image, consuming quota only on success."""
        if not request.image:
            raise ValidationError("Upload a crop photo before requesting a diagnosis")
        key = _in_flight_key(request)
        if key in self._in_flight:
            raise DiagnosisInProgressError("A diagnosis is already in progress")
        self._in_flight.add(key)
        try:
            return await self._run(request)
        finally:
            self._in_flight.discard(key)

    async def _run(self, request: DiagnosisRequest) -> DiagnosisReport:
        store = self.entitlement_service.store_for(request.identity)
        entitlement = store.read()
        if entitlement.blocked:
            logger.info(
                "Diagnosis blocked by quota",
                extra={"identity": request.identity.kind},
            )
            raise QuotaExceededError(request.identity, entitlement.limit or 0)

        text = await self.client.diagnose(
            model=self.model,
            prompt=build_prompt(request.crop),
            image_data_url=request.image,
        )
        if not text or not text.strip():
            raise OracleFailureError("The diagnosis model returned no content")
        result = DiagnosisResult(text=text, captured_at=datetime.now().astimezone())

        synced = True
        if not entitlement.paid:
            try:
                entitlement = store.increment()
            except EntitlementSyncError:
                logger.exception("Diagnosis succeeded but was not counted")
                synced = False
                entitlement = EntitlementRecord(
                    used_count=entitlement.used_count + 1, limit=entitlement.limit
                )

        ledger = self.history_service.ledger_for(request.device_id)
        entry = HistoryEntry(
            id=ledger.next_id(),
            image=request.image,
            diagnosis=result.text,
            date=result.captured_at.strftime(DATE_FORMAT),
        )
        saved = ledger.append(entry)
        return DiagnosisReport(
            result=result,
            entitlement=entitlement,
            history_entry_id=entry.id,
            history_saved=saved,
            entitlement_synced=synced,
        )


def build_prompt(crop: str | None) -> str:
    """Return the instruction prompt, mentioning the crop when known."""
    if crop and crop.strip():
        return f"{DIAGNOSIS_PROMPT} The crop is: {crop.strip()}."
    return DIAGNOSIS_PROMPT


def _in_flight_key(request: DiagnosisRequest) -> str:
    if isinstance(request.identity, Account):
        return f"account:{request.identity.account_id}:{request.device_id}"
    return f"guest:{request.device_id}"
