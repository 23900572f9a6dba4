"""Resolves request credentials into a guest or account identity."""

import re
from dataclasses import dataclass
from typing import Protocol

from crop_doctor.domain.errors import AuthenticationError, ValidationError
from crop_doctor.domain.identity import Account, Guest, Identity

DEVICE_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


class Authenticator(Protocol):
    """Interface for the external identity provider."""

    def authenticate(self, access_token: str) -> Account | None:
        """Return the account for a valid access token, if any."""


@dataclass
class IdentityService:
    """Builds the identity for a request."""

    authenticator: Authenticator

    def resolve(self, authorization: str | None, device_id: str | None) -> Identity:
        """Return an Account for a bearer token, otherwise a Guest."""
        device = validate_device_id(device_id)
        if not authorization:
            return Guest(device_id=device)
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            raise AuthenticationError("Malformed Authorization header")
        account = self.authenticator.authenticate(token.strip())
        if account is None:
            raise AuthenticationError("Invalid or expired access token")
        return account


def validate_device_id(device_id: str | None) -> str:
    """Return the device id if it is safe to use as a storage key."""
    if not device_id or not DEVICE_ID_PATTERN.match(device_id):
        raise ValidationError("A valid X-Device-Id header is required")
    return device_id
