"""Payment webhook handling for Polar pledge events."""

import base64
import hashlib
import hmac
import logging
from dataclasses import dataclass
from enum import StrEnum

import pydantic
from pydantic import BaseModel

from crop_doctor.domain.errors import AccountLookupError, MalformedEventError
from crop_doctor.services.entitlements import AccountRepository

logger = logging.getLogger(__name__)

PLEDGE_CREATED = "pledge_created"


class PolarOrganization(BaseModel):
    name: str


class PolarPledgeTier(BaseModel):
    organization: PolarOrganization


class PolarPledger(BaseModel):
    email: str


class PolarPledge(BaseModel):
    pledger: PolarPledger
    pledge_tier: PolarPledgeTier


class PolarPledgePayload(BaseModel):
    """Pledge payload fields required to grant an entitlement."""

    pledge: PolarPledge


class WebhookOutcome(StrEnum):
    UPDATED = "updated"
    SKIPPED = "skipped"


@dataclass
class PaymentWebhookService:
    """Grants unlimited entitlement when a matching pledge event arrives."""

    repository: AccountRepository
    organization: str

    def handle(self, event: object) -> WebhookOutcome:
        """Apply a decoded webhook event.

        Anything that is not a pledge event is skipped. Raises
        MalformedEventError for a pledge event without the pledge fields and
        AccountLookupError when no account has the payer email.
        """
        event_type = event.get("type") if isinstance(event, dict) else None
        if event_type != PLEDGE_CREATED:
            logger.info("Irrelevant event type, skipping", extra={"type": event_type})
            return WebhookOutcome.SKIPPED
        try:
            payload = PolarPledgePayload.model_validate(event.get("payload"))
        except pydantic.ValidationError as exc:
            raise MalformedEventError("Pledge event is missing pledge fields") from exc
        organization = payload.pledge.pledge_tier.organization.name
        if organization.lower() != self.organization.lower():
            logger.info("Irrelevant namespace, skipping", extra={"org": organization})
            return WebhookOutcome.SKIPPED

        email = payload.pledge.pledger.email
        logger.info("Processing payment", extra={"email": email})
        document = self.repository.find_by_email(email)
        if document is None:
            raise AccountLookupError(f"User with email {email} not found")
        self.repository.mark_paid(document.account_id)
        logger.info(
            "Updated user to paid status", extra={"account_id": document.account_id}
        )
        return WebhookOutcome.UPDATED


def verify_signature(
    secret: str,
    body: bytes,
    webhook_id: str | None,
    timestamp: str | None,
    signature_header: str | None,
) -> bool:
    """Return true if any ``v1`` signature in the header matches the body.

    Follows the Standard Webhooks scheme: HMAC-SHA256 over
    ``"{id}.{timestamp}.{body}"`` with a base64 secret optionally prefixed
    by ``whsec_``.
    """
    if not webhook_id or not timestamp or not signature_header:
        return False
    key = _decode_secret(secret)
    signed = f"{webhook_id}.{timestamp}.".encode() + body
    expected = base64.b64encode(hmac.new(key, signed, hashlib.sha256).digest()).decode()
    for part in signature_header.split():
        version, _, value = part.partition(",")
        if version == "v1" and hmac.compare_digest(expected, value):
            return True
    return False


def _decode_secret(secret: str) -> bytes:
    raw = secret.removeprefix("whsec_")
    try:
        return base64.b64decode(raw, validate=True)
    except ValueError:
        return secret.encode()
