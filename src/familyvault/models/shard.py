"""
Shard and index documents.

A shard holds every media record taken in one calendar year. The index lists
the years whose shard is non-empty and caches the total record count.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from .media import MediaRecord, format_timestamp, parse_timestamp

SHARD_KEY_PREFIX = "media/"
INDEX_KEY = "index"


def shard_key(year: int) -> str:
    """Document key of a year shard."""
    return f"{SHARD_KEY_PREFIX}{int(year)}"


def year_from_shard_key(key: str) -> int | None:
    """Parse the year out of a shard key, None for keys that are not shards."""
    if not key.startswith(SHARD_KEY_PREFIX):
        return None
    suffix = key[len(SHARD_KEY_PREFIX) :]
    return int(suffix) if suffix.lstrip("-").isdigit() else None


def sort_records(records: list[MediaRecord]) -> list[MediaRecord]:
    """Sort newest first by capture time; ties ordered by id for stable output."""
    ordered = sorted(records, key=lambda r: r.id)
    ordered.sort(key=lambda r: r.taken_at, reverse=True)
    return ordered


@dataclass
class Shard:
    year: int
    media: list[MediaRecord] = field(default_factory=list)
    updated_at: datetime | None = None

    def __len__(self) -> int:
        return len(self.media)

    @property
    def is_empty(self) -> bool:
        return not self.media

    def find(self, record_id: str) -> MediaRecord | None:
        for record in self.media:
            if record.id == record_id:
                return record
        return None

    def upsert(self, record: MediaRecord) -> None:
        """Replace the record with the same id or append it."""
        for position, existing in enumerate(self.media):
            if existing.id == record.id:
                self.media[position] = record
                return
        self.media.append(record)

    def remove(self, record_id: str) -> MediaRecord | None:
        for position, existing in enumerate(self.media):
            if existing.id == record_id:
                return self.media.pop(position)
        return None

    def sort(self) -> None:
        self.media = sort_records(self.media)

    def to_dict(self) -> dict[str, Any]:
        return {
            "year": self.year,
            "media": [record.to_dict() for record in self.media],
            "updatedAt": format_timestamp(self.updated_at) if self.updated_at else None,
        }

    @classmethod
    def from_dict(cls, year: int, data: dict[str, Any]) -> "Shard":
        """
        Decode a stored shard document.

        Raises:
            ValueError: If the document is not a valid shard
        """
        media = data.get("media")
        if not isinstance(media, list):
            raise ValueError(f"Shard {year} document has no media list")
        updated_at = data.get("updatedAt")
        return cls(
            year=year,
            media=[MediaRecord.from_dict(item) for item in media],
            updated_at=parse_timestamp(updated_at) if updated_at else None,
        )


@dataclass
class MediaIndex:
    years: list[int] = field(default_factory=list)
    last_updated: datetime | None = None
    total_media: int | None = None

    def __post_init__(self) -> None:
        self.years = sorted({int(y) for y in self.years}, reverse=True)

    def contains(self, year: int) -> bool:
        return year in self.years

    def touch(self) -> None:
        self.last_updated = datetime.now(UTC)

    def to_dict(self) -> dict[str, Any]:
        return {
            "years": list(self.years),
            "lastUpdated": format_timestamp(self.last_updated) if self.last_updated else None,
            "totalMedia": self.total_media,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "MediaIndex":
        """
        Decode a stored index document.

        Raises:
            ValueError: If the document is malformed
        """
        if not data:
            return cls()
        years = data.get("years", [])
        if not isinstance(years, list):
            raise ValueError("Index document years must be a list")
        last_updated = data.get("lastUpdated")
        total = data.get("totalMedia")
        return cls(
            years=years,
            last_updated=parse_timestamp(last_updated) if last_updated else None,
            total_media=int(total) if total is not None else None,
        )
