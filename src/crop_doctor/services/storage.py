"""Device-local key-value storage contract."""

from typing import Protocol


class LocalStorage(Protocol):
    """Bounded key-value storage scoped to one device."""

    def get_item(self, key: str) -> str | None:
        """Return the stored value for a key, if present."""

    def set_item(self, key: str, value: str) -> None:
        """Store a value, raising StorageQuotaExceededError when over capacity."""

    def remove_item(self, key: str) -> None:
        """Delete a key if present."""

    def can_store(self, key: str, value: str) -> bool:
        """Return true when writing the value would stay within capacity."""


class DeviceStorageProvider(Protocol):
    """Resolves the local storage area for a device id."""

    def for_device(self, device_id: str) -> LocalStorage:
        """Return the storage for a device."""
