"""FastAPI application factory."""

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, File, Form, Header, Request, UploadFile
from fastapi.responses import JSONResponse

from crop_doctor.app_logging import configure_logging
from crop_doctor.containers import AppContainer
from crop_doctor.domain.diagnosis import DiagnosisRequest, SaveOutcome
from crop_doctor.domain.entitlement import EntitlementRecord
from crop_doctor.domain.errors import (
    AccountLookupError,
    AuthenticationError,
    CropDoctorError,
    DiagnosisInProgressError,
    HistoryEntryNotFoundError,
    MalformedEventError,
    OracleFailureError,
    QuotaExceededError,
    ValidationError,
)
from crop_doctor.domain.identity import Account, Identity
from crop_doctor.services.identity import validate_device_id
from crop_doctor.services.payments import verify_signature

_ERROR_STATUS: dict[type[CropDoctorError], tuple[int, str]] = {
    ValidationError: (400, "validation_error"),
    AuthenticationError: (401, "unauthorized"),
    QuotaExceededError: (402, "quota_exceeded"),
    HistoryEntryNotFoundError: (404, "not_found"),
    DiagnosisInProgressError: (409, "diagnosis_in_progress"),
    OracleFailureError: (502, "oracle_failure"),
}

STORAGE_FULL_WARNING = (
    "Device storage is full, so the diagnosis history could not be saved. "
    "Deleting old entries may fix this."
)
COUNT_NOT_SYNCED_WARNING = (
    "Your diagnosis could not be counted against your account right now. "
    "The remaining count shown may be out of date."
)


def create_app(container: AppContainer) -> FastAPI:  # noqa: PLR0915
    """Create a FastAPI app configured with dependencies."""
    configure_logging(container.settings.log_level)
    logger = logging.getLogger(__name__)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        await app.state.container.close_resources()

    app = FastAPI(lifespan=lifespan)
    app.state.container = container

    @app.exception_handler(CropDoctorError)
    async def domain_error_handler(
        request: Request, exc: CropDoctorError
    ) -> JSONResponse:
        status_code, code = _status_for(exc)
        body: dict[str, object] = {"error": code, "message": str(exc)}
        if isinstance(exc, OracleFailureError):
            body["diagnosis"] = f"An error occurred: {exc}"
        return JSONResponse(status_code=status_code, content=body)

    def _resolve(authorization: str | None, x_device_id: str | None) -> Identity:
        return container.identity_service.resolve(authorization, x_device_id)

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Simple health check endpoint."""
        return {"status": "ok"}

    @app.get("/entitlement")
    async def entitlement(
        authorization: str | None = Header(default=None),
        x_device_id: str | None = Header(default=None),
    ) -> dict[str, object]:
        """Return the current entitlement, creating account records on sign-in."""
        identity = _resolve(authorization, x_device_id)
        record = container.entitlement_service.current(identity)
        return _serialize_entitlement(identity, record)

    @app.post("/images")
    async def ingest_image(
        image: UploadFile | None = File(default=None),
    ) -> dict[str, str]:
        """Normalize an upload for preview and later diagnosis."""
        if image is None:
            raise ValidationError("An image is required")
        raw = await image.read()
        data_url = await container.image_ingestor.ingest(raw, image.content_type)
        return {"image": data_url}

    @app.post("/diagnoses")
    async def create_diagnosis(
        image: UploadFile | None = File(default=None),
        crop: str | None = Form(default=None),
        authorization: str | None = Header(default=None),
        x_device_id: str | None = Header(default=None),
    ) -> dict[str, object]:
        """Diagnose an uploaded crop photo under the caller's entitlement."""
        identity = _resolve(authorization, x_device_id)
        if image is None:
            raise ValidationError("Upload a crop photo before requesting a diagnosis")
        raw = await image.read()
        data_url = await container.image_ingestor.ingest(raw, image.content_type)
        try:
            report = await container.diagnosis_service.diagnose(
                DiagnosisRequest(
                    image=data_url,
                    identity=identity,
                    device_id=validate_device_id(x_device_id),
                    crop=crop,
                )
            )
        except OracleFailureError:
            logger.exception("Diagnosis oracle failed")
            raise
        return {
            "diagnosis": report.result.text,
            "captured_at": report.result.captured_at.isoformat(),
            "entitlement": _serialize_entitlement(identity, report.entitlement),
            "history_entry_id": report.history_entry_id,
            "history_saved": report.history_saved.value,
            "warning": _storage_warning(report.history_saved),
            "entitlement_warning": None
            if report.entitlement_synced
            else COUNT_NOT_SYNCED_WARNING,
        }

    @app.get("/history")
    async def list_history(
        x_device_id: str | None = Header(default=None),
    ) -> dict[str, object]:
        """Return the device's diagnosis history, newest first."""
        device_id = validate_device_id(x_device_id)
        ledger = container.history_service.ledger_for(device_id)
        return {"entries": [entry.model_dump() for entry in ledger.list()]}

    @app.delete("/history/{entry_id}")
    async def delete_history_entry(
        entry_id: int,
        x_device_id: str | None = Header(default=None),
    ) -> dict[str, object]:
        """Remove one history entry."""
        device_id = validate_device_id(x_device_id)
        saved = container.history_service.ledger_for(device_id).remove(entry_id)
        return {
            "status": "deleted",
            "history_saved": saved.value,
            "warning": _storage_warning(saved),
        }

    @app.post("/payments/simulate")
    async def simulate_payment(
        authorization: str | None = Header(default=None),
        x_device_id: str | None = Header(default=None),
    ) -> dict[str, object]:
        """Mark the signed-in account as paid without a payment provider."""
        identity = _resolve(authorization, x_device_id)
        if not isinstance(identity, Account):
            raise AuthenticationError("Sign in before paying")
        record = container.entitlement_service.simulate_payment(identity)
        return _serialize_entitlement(identity, record)

    @app.post("/polar/webhook")
    async def polar_webhook(request: Request) -> JSONResponse:
        """Receive Polar pledge events and grant unlimited entitlement."""
        body = await request.body()
        logger.info("Polar webhook received", extra={"size": len(body)})
        secret = container.settings.polar_webhook_secret
        if secret and not verify_signature(
            secret,
            body,
            request.headers.get("webhook-id"),
            request.headers.get("webhook-timestamp"),
            request.headers.get("webhook-signature"),
        ):
            logger.warning("Rejected Polar webhook with invalid signature")
            return JSONResponse(status_code=403, content={"status": "forbidden"})
        try:
            event = json.loads(body)
            outcome = container.payment_webhook_service.handle(event)
        except MalformedEventError as exc:
            logger.warning("Malformed pledge event", exc_info=True)
            return JSONResponse(
                status_code=500,
                content={"status": "error", "detail": f"Webhook Error: {exc}"},
            )
        except AccountLookupError as exc:
            logger.warning(str(exc))
            return JSONResponse(status_code=404, content={"status": "not_found"})
        except Exception as exc:
            logger.exception("Error processing Polar webhook")
            return JSONResponse(
                status_code=500,
                content={"status": "error", "detail": f"Webhook Error: {exc}"},
            )
        return JSONResponse(status_code=200, content={"status": outcome.value})

    return app


def _status_for(exc: CropDoctorError) -> tuple[int, str]:
    for error_type, status in _ERROR_STATUS.items():
        if isinstance(exc, error_type):
            return status
    return 500, "internal_error"


def _serialize_entitlement(
    identity: Identity, record: EntitlementRecord
) -> dict[str, object]:
    return {
        "kind": identity.kind,
        "used_count": record.used_count,
        "limit": record.limit,
        "paid": record.paid,
        "remaining": record.remaining,
        "blocked": record.blocked,
    }


def _storage_warning(saved: SaveOutcome) -> str | None:
    if saved is SaveOutcome.NOT_SAVED:
        return STORAGE_FULL_WARNING
    return None
