"""Supabase Auth adapter resolving access tokens to accounts."""

import logging
from dataclasses import dataclass

from supabase import Client

from crop_doctor.domain.identity import Account
from crop_doctor.services.identity import Authenticator

logger = logging.getLogger(__name__)


@dataclass
class SupabaseAuthenticator(Authenticator):
    """Validates access tokens with Supabase Auth."""

    client: Client

    def authenticate(self, access_token: str) -> Account | None:
        """Return the signed-in account, or None when the token is rejected."""
        try:
            response = self.client.auth.get_user(access_token)
        except Exception:
            logger.warning("Supabase rejected access token", exc_info=True)
            return None
        user = getattr(response, "user", None)
        if user is None:
            return None
        metadata = user.user_metadata or {}
        return Account(
            account_id=str(user.id),
            email=user.email,
            display_name=metadata.get("full_name") or metadata.get("name"),
        )
