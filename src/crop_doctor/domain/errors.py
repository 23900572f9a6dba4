"""Typed failures raised by the diagnosis and entitlement core."""

from crop_doctor.domain.identity import Identity


class CropDoctorError(Exception):
    """Base class for all domain failures."""


class ValidationError(CropDoctorError):
    """Request rejected locally before any external call."""


class AuthenticationError(CropDoctorError):
    """Bearer token could not be resolved to an account."""


class QuotaExceededError(CropDoctorError):
    """Entitlement is exhausted for the current identity."""

    def __init__(self, identity: Identity, limit: int) -> None:
        self.identity = identity
        self.limit = limit
        if identity.kind == "guest":
            message = (
                f"You have used all {limit} free diagnoses. "
                "Sign in to get more."
            )
        else:
            message = (
                "You have used all of your diagnoses. "
                "Pay once to unlock unlimited diagnoses."
            )
        super().__init__(message)


class DiagnosisInProgressError(CropDoctorError):
    """Another diagnosis for the same identity and device is still running."""


class OracleFailureError(CropDoctorError):
    """The external diagnosis model failed or returned no content."""


class StorageFailureError(CropDoctorError):
    """Device-local storage could not be written."""


class StorageQuotaExceededError(StorageFailureError):
    """Device-local storage capacity would be exceeded."""


class HistoryEntryNotFoundError(CropDoctorError, LookupError):
    """No history entry carries the requested id."""


class AccountLookupError(CropDoctorError, LookupError):
    """No account matches the payment event."""


class MalformedEventError(CropDoctorError):
    """Webhook payload does not have the expected shape."""


class EntitlementSyncError(CropDoctorError):
    """The remote diagnosis counter could not be updated."""
