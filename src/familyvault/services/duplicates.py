"""
Content hash duplicate detection.

Uploads are checked against the shard of their capture year and a window of
neighbouring years, target year first. Records outside the window are not
found unless the caller asks for an exhaustive scan of every indexed year.
"""

from collections import defaultdict
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ..config import get_duplicate_window
from ..errors import StorageError, ValidationError
from ..logging_config import get_logger
from ..models.media import MediaRecord, format_timestamp
from ..models.shard import Shard
from ..storage.index_manager import IndexManager

logger = get_logger(__name__)


@dataclass(frozen=True)
class DuplicateMatch:
    """An existing record with the same content hash."""

    existing_id: str
    existing_filename: str
    existing_date: datetime
    year: int

    @classmethod
    def from_record(cls, record: MediaRecord) -> "DuplicateMatch":
        return cls(
            existing_id=record.id,
            existing_filename=record.original_filename,
            existing_date=record.taken_at,
            year=record.year,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "existingId": self.existing_id,
            "existingFilename": self.existing_filename,
            "existingDate": format_timestamp(self.existing_date),
            "year": self.year,
        }


@dataclass
class DuplicateStats:
    total_records: int = 0
    unique_hashes: int = 0
    duplicate_records: int = 0
    groups: dict[str, list[str]] = field(default_factory=dict)


def window_years(target_year: int, window: int) -> list[int]:
    """Years to scan: the target first, then outward, earlier year before later."""
    years = [target_year]
    for offset in range(1, window + 1):
        years.extend([target_year - offset, target_year + offset])
    return years


class DuplicateDetector:
    """Finds records sharing a content hash."""

    def __init__(
        self,
        index_manager: IndexManager,
        read_shard: Callable[[int], Shard] | None = None,
        default_window: int | None = None,
    ):
        """
        Args:
            index_manager: Index used for exhaustive scans and statistics
            read_shard: Shard reader, defaults to the index manager's retrying reader
            default_window: Years either side of the target (defaults to config)
        """
        self.index_manager = index_manager
        self._read_shard = read_shard or index_manager.read_shard
        self.default_window = default_window if default_window is not None else get_duplicate_window()

    def _scan_years(self, target_year: int, window: int | None, exhaustive: bool) -> list[int]:
        if exhaustive:
            indexed = self.index_manager.read_index().years
            # Keep the target year first so the common case stays cheap
            return [target_year] + [y for y in indexed if y != target_year]

        size = self.default_window if window is None else window
        if size < 0:
            raise ValidationError(
                "Duplicate window must not be negative", code="invalid_window", details={"window": size}
            )
        return window_years(target_year, size)

    def _shards(self, years: Iterable[int]) -> Iterable[Shard]:
        for year in years:
            try:
                yield self._read_shard(year)
            except StorageError as e:
                logger.warning("duplicate_check_year_skipped", year=year, error=str(e))

    def find_duplicate(
        self,
        content_hash: str,
        target_year: int,
        window: int | None = None,
        exhaustive: bool = False,
    ) -> DuplicateMatch | None:
        """
        Find an existing record with ``content_hash``.

        Args:
            content_hash: Hash of the uploaded file
            target_year: Capture year of the upload
            window: Years either side of ``target_year`` to scan
            exhaustive: Scan every indexed year instead of the window

        Returns:
            The first match found, or None
        """
        if not content_hash:
            raise ValidationError("Content hash is required", code="missing_content_hash")

        years = self._scan_years(target_year, window, exhaustive)
        for shard in self._shards(years):
            for record in shard.media:
                if record.metadata.content_hash == content_hash:
                    match = DuplicateMatch.from_record(record)
                    logger.info(
                        "duplicate_found",
                        content_hash=content_hash,
                        existing_id=match.existing_id,
                        year=match.year,
                        target_year=target_year,
                    )
                    return match

        logger.debug("duplicate_not_found", content_hash=content_hash, years_scanned=years)
        return None

    def batch_find_duplicates(
        self,
        content_hashes: Iterable[str],
        target_year: int,
        window: int | None = None,
        exhaustive: bool = False,
    ) -> dict[str, DuplicateMatch | None]:
        """Check several hashes reading each shard of the scan only once."""
        results: dict[str, DuplicateMatch | None] = dict.fromkeys(h for h in content_hashes if h)
        pending = set(results)

        for shard in self._shards(self._scan_years(target_year, window, exhaustive)):
            if not pending:
                break
            for record in shard.media:
                content_hash = record.metadata.content_hash
                if content_hash in pending:
                    results[content_hash] = DuplicateMatch.from_record(record)
                    pending.discard(content_hash)

        logger.info(
            "batch_duplicate_check_completed",
            checked=len(results),
            duplicates=len(results) - len(pending),
            target_year=target_year,
        )
        return results

    def duplicate_stats(self, years: Iterable[int] | None = None) -> DuplicateStats:
        """
        Group records sharing a content hash across the indexed shards.

        Every record beyond the first of a group counts as a duplicate.
        """
        by_hash: dict[str, list[str]] = defaultdict(list)
        total = 0
        for shard in self.index_manager.load_indexed_shards(years, reader=self._read_shard):
            for record in shard.media:
                total += 1
                if record.metadata.content_hash:
                    by_hash[record.metadata.content_hash].append(record.id)

        groups = {h: ids for h, ids in by_hash.items() if len(ids) > 1}
        stats = DuplicateStats(
            total_records=total,
            unique_hashes=len(by_hash),
            duplicate_records=sum(len(ids) - 1 for ids in groups.values()),
            groups=groups,
        )
        logger.info(
            "duplicate_stats_computed",
            total_records=stats.total_records,
            duplicate_records=stats.duplicate_records,
            groups=len(groups),
        )
        return stats
