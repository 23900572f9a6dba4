"""History ledger entries."""

from pydantic import BaseModel, ConfigDict


class HistoryEntry(BaseModel):
    """One past diagnosis. ``image`` may be dropped for durable storage."""

    model_config = ConfigDict(strict=True, frozen=True)

    id: int
    image: str | None = None
    diagnosis: str
    date: str


class StoredHistoryEntry(BaseModel):
    """Shape accepted when loading persisted history; ``id`` may be missing."""

    model_config = ConfigDict(strict=True)

    id: int | None = None
    image: str | None
    diagnosis: str
    date: str
