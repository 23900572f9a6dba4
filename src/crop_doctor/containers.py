"""Dependency container wiring for the application."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path

from supabase import create_client

from crop_doctor.adapters.file_local_storage import FileDeviceStorageProvider
from crop_doctor.adapters.openai_diagnosis_client import OpenAIDiagnosisClient
from crop_doctor.adapters.supabase_account_repository import SupabaseAccountRepository
from crop_doctor.adapters.supabase_authenticator import SupabaseAuthenticator
from crop_doctor.config import Settings
from crop_doctor.services.diagnosis import DiagnosisService
from crop_doctor.services.entitlements import EntitlementService
from crop_doctor.services.history import HistoryService
from crop_doctor.services.identity import IdentityService
from crop_doctor.services.images import ImageIngestor
from crop_doctor.services.payments import PaymentWebhookService


@dataclass
class AppContainer:
    """Holds application-wide dependencies."""

    settings: Settings
    identity_service: IdentityService
    image_ingestor: ImageIngestor
    entitlement_service: EntitlementService
    history_service: HistoryService
    diagnosis_service: DiagnosisService
    payment_webhook_service: PaymentWebhookService
    close_resources: Callable[[], Awaitable[None]]


def build_container(settings: Settings | None = None) -> AppContainer:
    """Create the default dependency container."""
    resolved_settings = settings or Settings()
    supabase_client = create_client(
        resolved_settings.supabase_url, resolved_settings.supabase_service_key
    )
    account_repository = SupabaseAccountRepository(supabase_client)
    storage_provider = FileDeviceStorageProvider(
        root=Path(resolved_settings.device_storage_dir),
        capacity_bytes=resolved_settings.device_storage_capacity_bytes,
    )
    entitlement_service = EntitlementService(
        repository=account_repository,
        storage_provider=storage_provider,
        guest_limit=resolved_settings.guest_diagnosis_limit,
        account_limit=resolved_settings.account_diagnosis_limit,
    )
    history_service = HistoryService(
        storage_provider=storage_provider,
        max_items=resolved_settings.max_history_items,
    )
    openai_client = OpenAIDiagnosisClient.create(resolved_settings.openai_api_key)
    diagnosis_service = DiagnosisService(
        client=openai_client,
        model=resolved_settings.openai_model,
        entitlement_service=entitlement_service,
        history_service=history_service,
    )
    image_ingestor = ImageIngestor(
        target_width=resolved_settings.image_target_width,
        quality=resolved_settings.image_quality,
    )
    payment_webhook_service = PaymentWebhookService(
        repository=account_repository,
        organization=resolved_settings.polar_organization,
    )

    async def close_resources() -> None:
        await openai_client.close()

    return AppContainer(
        settings=resolved_settings,
        identity_service=IdentityService(SupabaseAuthenticator(supabase_client)),
        image_ingestor=image_ingestor,
        entitlement_service=entitlement_service,
        history_service=history_service,
        diagnosis_service=diagnosis_service,
        payment_webhook_service=payment_webhook_service,
        close_resources=close_resources,
    )
