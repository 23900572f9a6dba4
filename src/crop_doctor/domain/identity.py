"""Identity models for guests and signed-in accounts."""

from dataclasses import dataclass
from typing import ClassVar


@dataclass(frozen=True)
class Guest:
    """Anonymous identity tracked only on the local device."""

    kind: ClassVar[str] = "guest"

    device_id: str


@dataclass(frozen=True)
class Account:
    """Identity backed by a durable remote entitlement record."""

    kind: ClassVar[str] = "account"

    account_id: str
    email: str | None = None
    display_name: str | None = None


Identity = Guest | Account
