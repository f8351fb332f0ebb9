"""
Year index management.

The index document lists the years whose shard is non-empty, newest first,
together with a cached total record count. It is a hint for enumerating
shards: readers skip listed shards they cannot load, and ``rebuild_index``
restores it from the backend's key listing when it has drifted.
"""

import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import TypeVar

from ..errors import StorageError
from ..logging_config import get_logger, log_performance
from ..models.shard import INDEX_KEY, MediaIndex, Shard
from .backend import Document, DocumentBackend
from .retry import with_retry
from .shard_store import ShardStore

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class IndexVerification:
    """Differences between the index and the stored shards."""

    missing_years: list[int] = field(default_factory=list)
    stale_years: list[int] = field(default_factory=list)

    @property
    def is_consistent(self) -> bool:
        return not self.missing_years and not self.stale_years


class IndexManager:
    """Maintains the year index of the shard store."""

    def __init__(
        self,
        backend: DocumentBackend,
        shard_store: ShardStore | None = None,
        max_attempts: int | None = None,
        base_delay: float | None = None,
        max_delay: float | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.backend = backend
        self.shard_store = shard_store or ShardStore(backend)
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._sleep = sleep

    def _retry(self, operation: Callable[[], T], name: str) -> T:
        return with_retry(
            operation,
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
            operation_name=name,
            sleep=self._sleep,
        )

    def _decode(self, document: Document | None) -> MediaIndex:
        try:
            return MediaIndex.from_dict(document)
        except (TypeError, ValueError) as e:
            raise StorageError(
                f"Index document is malformed: {e}",
                code="malformed_index",
                original_exception=e,
            ) from e

    def _update(self, mutate: Callable[[MediaIndex], None], name: str) -> MediaIndex:
        def apply(document: Document | None) -> Document:
            index = self._decode(document)
            mutate(index)
            index.years = sorted(set(index.years), reverse=True)
            index.touch()
            return index.to_dict()

        persisted = self._retry(lambda: self.backend.update(INDEX_KEY, apply), name)
        return self._decode(persisted)

    def read_shard(self, year: int) -> Shard:
        """Read one shard with retries."""
        return self._retry(lambda: self.shard_store.read(year), "read_shard")

    def read_index(self) -> MediaIndex:
        """Read the index, an empty one if it has never been written."""
        return self._retry(lambda: self._decode(self.backend.read(INDEX_KEY)), "read_index")

    def add_year_to_index(self, year: int) -> MediaIndex:
        """Add ``year`` to the index. Adding a listed year changes nothing but the timestamp."""

        def mutate(index: MediaIndex) -> None:
            if year not in index.years:
                index.years.append(year)

        index = self._update(mutate, "add_year_to_index")
        logger.info("index_year_added", year=year, years=index.years)
        return index

    def remove_year_from_index(self, year: int) -> MediaIndex:
        """Remove ``year`` from the index if present."""

        def mutate(index: MediaIndex) -> None:
            index.years = [y for y in index.years if y != year]

        index = self._update(mutate, "remove_year_from_index")
        logger.info("index_year_removed", year=year, years=index.years)
        return index

    def sync_year(self, year: int, shard: Shard) -> None:
        """
        Bring the index entry of ``year`` in line with ``shard``.

        Only touches the index document when membership actually changes.
        """
        index = self.read_index()
        if shard.is_empty and index.contains(year):
            self.remove_year_from_index(year)
        elif not shard.is_empty and not index.contains(year):
            self.add_year_to_index(year)

    def load_indexed_shards(
        self,
        years: Iterable[int] | None = None,
        reader: Callable[[int], Shard] | None = None,
    ) -> list[Shard]:
        """
        Load shards for the indexed years, or for ``years`` if given.

        Shards that cannot be read after retries are skipped with a warning
        so one bad year does not fail a whole gallery query.
        """
        candidates = list(years) if years is not None else self.read_index().years
        read = reader or self.read_shard
        shards: list[Shard] = []
        skipped: list[int] = []

        for year in candidates:
            try:
                shard = read(year)
            except StorageError as e:
                skipped.append(year)
                logger.warning("shard_unreadable_skipped", year=year, error=str(e))
                continue
            shards.append(shard)

        if skipped:
            logger.warning("indexed_shards_partially_loaded", loaded=len(shards), skipped_years=skipped)
        return shards

    def update_index_media_count(self) -> int:
        """
        Recompute the cached total record count from every indexed shard.

        Reads all indexed shards, so callers run it after bulk changes rather
        than on every mutation.

        Returns:
            The new total
        """
        start_time = time.perf_counter()
        total = sum(len(shard) for shard in self.load_indexed_shards())

        def mutate(index: MediaIndex) -> None:
            index.total_media = total

        index = self._update(mutate, "update_index_media_count")
        log_performance("update_index_media_count", time.perf_counter() - start_time, years=len(index.years))
        logger.info("index_media_count_updated", total_media=total)
        return total

    def rebuild_index(self) -> MediaIndex:
        """
        Rebuild the index from the shards that actually exist in the backend.

        Every stored shard is read; years with at least one record are listed
        and the total count is recomputed. Unreadable shards fail the rebuild,
        as an index built around them would be wrong.
        """
        start_time = time.perf_counter()
        years: list[int] = []
        total = 0
        for year in self._retry(self.shard_store.list_years, "list_shards"):
            shard = self.read_shard(year)
            if not shard.is_empty:
                years.append(year)
                total += len(shard)

        def mutate(index: MediaIndex) -> None:
            index.years = years
            index.total_media = total

        index = self._update(mutate, "rebuild_index")
        log_performance("rebuild_index", time.perf_counter() - start_time, years=len(index.years))
        logger.info("index_rebuilt", years=index.years, total_media=total)
        return index

    def verify_index(self) -> IndexVerification:
        """
        Compare the index with the stored shards without changing anything.

        ``missing_years`` have records but are not indexed; ``stale_years`` are
        indexed but their shard is empty or absent.
        """
        index = self.read_index()
        populated: set[int] = set()
        for year in self._retry(self.shard_store.list_years, "list_shards"):
            shard = self.read_shard(year)
            if not shard.is_empty:
                populated.add(year)

        indexed = set(index.years)
        result = IndexVerification(
            missing_years=sorted(populated - indexed, reverse=True),
            stale_years=sorted(indexed - populated, reverse=True),
        )
        if not result.is_consistent:
            logger.warning(
                "index_inconsistent", missing_years=result.missing_years, stale_years=result.stale_years
            )
        return result
