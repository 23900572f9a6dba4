"""Supabase-backed account entitlement repository."""

from dataclasses import dataclass
from datetime import UTC, datetime

from supabase import Client

from crop_doctor.domain.entitlement import AccountDocument
from crop_doctor.domain.identity import Account
from crop_doctor.services.entitlements import AccountRepository

_COLUMNS = (
    "id, email, display_name, diagnosis_count, diagnosis_limit, has_paid, created_at"
)


@dataclass
class SupabaseAccountRepository(AccountRepository):
    """Supabase implementation of the ``users`` entitlement documents."""

    client: Client

    def get_account(self, account_id: str) -> AccountDocument | None:
        """Return the account document, if present."""
        response = (
            self.client.table("users")
            .select(_COLUMNS)
            .eq("id", account_id)
            .limit(1)
            .execute()
        )
        if response.data:
            return _to_document(response.data[0])
        return None

    def create_account(self, account: Account, diagnosis_limit: int) -> AccountDocument:
        """Insert a fresh unpaid document, keeping one created concurrently."""
        response = (
            self.client.table("users")
            .upsert(
                {
                    "id": account.account_id,
                    "email": account.email,
                    "display_name": account.display_name,
                    "diagnosis_count": 0,
                    "diagnosis_limit": diagnosis_limit,
                    "has_paid": False,
                    "created_at": datetime.now(tz=UTC).isoformat(),
                },
                ignore_duplicates=True,
            )
            .execute()
        )
        if response.data:
            return _to_document(response.data[0])
        existing = self.get_account(account.account_id)
        if existing is None:
            raise RuntimeError("Failed to create account in Supabase")
        return existing

    def increment_diagnosis_count(self, account_id: str) -> int | None:
        """Call the atomic increment function and return the new count."""
        response = self.client.rpc(
            "increment_diagnosis_count", {"account_id": account_id}
        ).execute()
        data = response.data
        if isinstance(data, list):
            data = data[0] if data else None
        if isinstance(data, dict):
            data = next(iter(data.values()), None)
        return int(data) if data is not None else None

    def find_by_email(self, email: str) -> AccountDocument | None:
        """Return the first account with exactly this email."""
        response = (
            self.client.table("users")
            .select(_COLUMNS)
            .eq("email", email)
            .limit(1)
            .execute()
        )
        if response.data:
            return _to_document(response.data[0])
        return None

    def mark_paid(self, account_id: str) -> None:
        """Set paid and unlimited; other columns are left untouched."""
        self.client.table("users").update(
            {"has_paid": True, "diagnosis_limit": None}
        ).eq("id", account_id).execute()


def _to_document(row: dict[str, object]) -> AccountDocument:
    created_at = row.get("created_at")
    limit = row.get("diagnosis_limit")
    return AccountDocument(
        account_id=str(row["id"]),
        email=row.get("email"),
        display_name=row.get("display_name"),
        diagnosis_count=int(row.get("diagnosis_count") or 0),
        diagnosis_limit=int(limit) if limit is not None else None,
        has_paid=bool(row.get("has_paid")),
        created_at=datetime.fromisoformat(created_at)
        if isinstance(created_at, str)
        else None,
    )
