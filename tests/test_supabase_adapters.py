"""Tests for Supabase adapter implementations."""

from dataclasses import dataclass, field
from types import SimpleNamespace

from crop_doctor.adapters.supabase_account_repository import SupabaseAccountRepository
from crop_doctor.adapters.supabase_authenticator import SupabaseAuthenticator
from crop_doctor.domain.identity import Account


@dataclass
class FakeResponse:
    data: object


@dataclass
class FakeTable:
    name: str
    response_queue: dict[str, list[object]] = field(
        default_factory=lambda: {"select": [], "upsert": [], "update": []}
    )
    last_payload: object | None = None
    last_options: dict[str, object] = field(default_factory=dict)
    last_filters: list[tuple[str, object]] = field(default_factory=list)

    def queue(self, action: str, data: object) -> None:
        self.response_queue[action].append(data)

    def select(self, *_args) -> "FakeTable":
        self._action = "select"
        return self

    def upsert(self, payload, **options) -> "FakeTable":  # type: ignore[no-untyped-def]
        self._action = "upsert"
        self.last_payload = payload
        self.last_options = options
        return self

    def update(self, payload) -> "FakeTable":  # type: ignore[no-untyped-def]
        self._action = "update"
        self.last_payload = payload
        return self

    def eq(self, column: str, value) -> "FakeTable":  # type: ignore[no-untyped-def]
        self.last_filters.append((column, value))
        return self

    def limit(self, _count: int) -> "FakeTable":
        return self

    def execute(self) -> FakeResponse:
        action = getattr(self, "_action", "select")
        queue = self.response_queue.get(action, [])
        data = queue.pop(0) if queue else []
        return FakeResponse(data=data)


@dataclass
class FakeRpc:
    data: object

    def execute(self) -> FakeResponse:
        return FakeResponse(data=self.data)


@dataclass
class FakeSupabaseClient:
    tables: dict[str, FakeTable] = field(default_factory=dict)
    rpc_result: object = None
    rpc_calls: list[tuple[str, dict[str, object]]] = field(default_factory=list)

    def table(self, name: str) -> FakeTable:
        if name not in self.tables:
            self.tables[name] = FakeTable(name=name)
        return self.tables[name]

    def rpc(self, name: str, params: dict[str, object]) -> FakeRpc:
        self.rpc_calls.append((name, params))
        return FakeRpc(self.rpc_result)


ROW = {
    "id": "acct-1",
    "email": "a@example.com",
    "display_name": "Ana",
    "diagnosis_count": 4,
    "diagnosis_limit": 20,
    "has_paid": False,
    "created_at": "2025-01-01T00:00:00+00:00",
}


def test_get_and_find_account() -> None:
    client = FakeSupabaseClient()
    users = client.table("users")
    users.queue("select", [ROW])
    users.queue("select", [ROW])
    repository = SupabaseAccountRepository(client)

    fetched = repository.get_account("acct-1")
    found = repository.find_by_email("a@example.com")

    assert fetched is not None
    assert fetched.diagnosis_count == 4
    assert fetched.created_at is not None
    assert found == fetched
    assert ("email", "a@example.com") in users.last_filters


def test_missing_account_returns_none() -> None:
    repository = SupabaseAccountRepository(FakeSupabaseClient())

    assert repository.get_account("nobody") is None


def test_create_account_inserts_defaults() -> None:
    client = FakeSupabaseClient()
    users = client.table("users")
    users.queue("upsert", [{**ROW, "diagnosis_count": 0}])
    repository = SupabaseAccountRepository(client)

    document = repository.create_account(
        Account(account_id="acct-1", email="a@example.com", display_name="Ana"), 20
    )

    assert document.diagnosis_count == 0
    assert users.last_payload["diagnosis_limit"] == 20
    assert users.last_payload["has_paid"] is False
    assert users.last_options == {"ignore_duplicates": True}


def test_create_account_keeps_concurrently_created_row() -> None:
    client = FakeSupabaseClient()
    users = client.table("users")
    users.queue("upsert", [])
    users.queue("select", [{**ROW, "diagnosis_count": 2}])
    repository = SupabaseAccountRepository(client)

    document = repository.create_account(Account(account_id="acct-1"), 20)

    assert document.diagnosis_count == 2


def test_increment_uses_rpc() -> None:
    client = FakeSupabaseClient(rpc_result=5)
    repository = SupabaseAccountRepository(client)

    assert repository.increment_diagnosis_count("acct-1") == 5
    assert client.rpc_calls == [
        ("increment_diagnosis_count", {"account_id": "acct-1"})
    ]

    client.rpc_result = [{"increment_diagnosis_count": 6}]
    assert repository.increment_diagnosis_count("acct-1") == 6


def test_mark_paid_updates_only_entitlement_columns() -> None:
    client = FakeSupabaseClient()
    repository = SupabaseAccountRepository(client)

    repository.mark_paid("acct-1")

    users = client.table("users")
    assert users.last_payload == {"has_paid": True, "diagnosis_limit": None}
    assert ("id", "acct-1") in users.last_filters


def test_paid_row_maps_to_unlimited() -> None:
    client = FakeSupabaseClient()
    client.table("users").queue(
        "select", [{**ROW, "has_paid": True, "diagnosis_limit": None}]
    )

    document = SupabaseAccountRepository(client).get_account("acct-1")

    assert document is not None
    record = document.to_entitlement()
    assert record.paid
    assert record.limit is None


class _FakeAuth:
    def __init__(self, user: object | None, error: Exception | None = None) -> None:
        self.user = user
        self.error = error

    def get_user(self, jwt: str):  # type: ignore[no-untyped-def]
        if self.error is not None:
            raise self.error
        return SimpleNamespace(user=self.user)


def test_authenticator_maps_user() -> None:
    user = SimpleNamespace(
        id="uid-1", email="a@example.com", user_metadata={"full_name": "Ana"}
    )
    authenticator = SupabaseAuthenticator(SimpleNamespace(auth=_FakeAuth(user)))

    account = authenticator.authenticate("token")

    assert account == Account(
        account_id="uid-1", email="a@example.com", display_name="Ana"
    )


def test_authenticator_rejects_invalid_token() -> None:
    client = SimpleNamespace(auth=_FakeAuth(None, error=RuntimeError("invalid JWT")))

    assert SupabaseAuthenticator(client).authenticate("token") is None
