"""File-backed device storage with a fixed capacity."""

import os
import re
from dataclasses import dataclass
from pathlib import Path

from crop_doctor.domain.errors import StorageFailureError, StorageQuotaExceededError
from crop_doctor.services.storage import DeviceStorageProvider, LocalStorage

DEFAULT_CAPACITY_BYTES = 5 * 1024 * 1024
_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")


@dataclass
class FileLocalStorage(LocalStorage):
    """Stores each key as a UTF-8 file inside one device directory."""

    directory: Path
    capacity_bytes: int = DEFAULT_CAPACITY_BYTES

    def get_item(self, key: str) -> str | None:
        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as exc:
            raise StorageFailureError(f"Could not read {key}") from exc

    def set_item(self, key: str, value: str) -> None:
        if not self.can_store(key, value):
            raise StorageQuotaExceededError(f"Storing {key} exceeds device capacity")
        path = self._path(key)
        tmp_path = path.with_name(f".{path.name}.tmp")
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(value, encoding="utf-8")
            os.replace(tmp_path, path)
        except OSError as exc:
            raise StorageFailureError(f"Could not write {key}") from exc

    def remove_item(self, key: str) -> None:
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError as exc:
            raise StorageFailureError(f"Could not remove {key}") from exc

    def can_store(self, key: str, value: str) -> bool:
        """Check capacity, counting key and value bytes of every stored item."""
        used = 0
        try:
            paths = list(self.directory.iterdir()) if self.directory.is_dir() else []
            for path in paths:
                if path.name == key or path.name.startswith("."):
                    continue
                try:
                    size = path.stat().st_size
                except FileNotFoundError:
                    continue
                used += len(path.name.encode()) + size
        except OSError as exc:
            raise StorageFailureError(f"Could not measure {self.directory}") from exc
        needed = len(key.encode()) + len(value.encode("utf-8"))
        return used + needed <= self.capacity_bytes

    def _path(self, key: str) -> Path:
        if not _KEY_PATTERN.match(key) or key.startswith("."):
            raise ValueError(f"Invalid storage key: {key!r}")
        return self.directory / key


@dataclass
class FileDeviceStorageProvider(DeviceStorageProvider):
    """One storage directory per device id under a shared root."""

    root: Path
    capacity_bytes: int = DEFAULT_CAPACITY_BYTES

    def for_device(self, device_id: str) -> FileLocalStorage:
        return FileLocalStorage(
            directory=self.root / device_id, capacity_bytes=self.capacity_bytes
        )
