"""
Year-sharded media record store.

One document per calendar year (``media/<year>``) holds every record whose
``taken_at`` falls in that year. Shards are always persisted sorted newest
first. Reading a year that has never been written yields an empty shard.
"""

from collections.abc import Callable
from datetime import UTC, datetime

from ..errors import StorageError, ValidationError
from ..logging_config import get_logger
from ..models.shard import SHARD_KEY_PREFIX, Shard, shard_key, year_from_shard_key
from .backend import Document, DocumentBackend

logger = get_logger(__name__)

ShardMutator = Callable[[Shard], Shard | None]


class ShardStore:
    """Reads and writes year shards through a document backend."""

    def __init__(self, backend: DocumentBackend):
        self.backend = backend

    def _decode(self, year: int, document: Document | None) -> Shard:
        if document is None:
            return Shard(year=year)
        try:
            return Shard.from_dict(year, document)
        except ValueError as e:
            raise StorageError(
                f"Shard {year} is malformed: {e}",
                code="malformed_shard",
                details={"year": year},
                original_exception=e,
            ) from e

    @staticmethod
    def _check_membership(year: int, shard: Shard) -> None:
        if shard.year != year:
            raise ValidationError(
                f"Shard for {shard.year} cannot be stored as {year}",
                code="shard_year_mismatch",
                details={"year": year, "shard_year": shard.year},
            )

        seen: set[str] = set()
        for record in shard.media:
            if record.year != year:
                raise ValidationError(
                    f"Record {record.id} taken in {record.year} does not belong to shard {year}",
                    code="record_in_wrong_shard",
                    details={"year": year, "record_id": record.id, "record_year": record.year},
                )
            if record.id in seen:
                raise ValidationError(
                    f"Record {record.id} appears twice in shard {year}",
                    code="duplicate_record_id",
                    details={"year": year, "record_id": record.id},
                )
            seen.add(record.id)

    def _prepare(self, year: int, shard: Shard) -> Document:
        self._check_membership(year, shard)
        shard.sort()
        shard.updated_at = datetime.now(UTC)
        return shard.to_dict()

    def read(self, year: int) -> Shard:
        """
        Read the shard of ``year``.

        Returns:
            The stored shard, or an empty shard if none exists

        Raises:
            StorageError: If the backend fails or the stored document is malformed
        """
        return self._decode(year, self.backend.read(shard_key(year)))

    def write(self, year: int, shard: Shard) -> None:
        """
        Replace the shard of ``year``.

        Raises:
            ValidationError: If a record does not belong to ``year``
            StorageError: If the backend fails
        """
        document = self._prepare(year, shard)
        self.backend.write(shard_key(year), document)
        logger.debug("shard_written", year=year, record_count=len(shard))

    def update(self, year: int, mutator: ShardMutator) -> Shard:
        """
        Read, mutate and write the shard of ``year`` as one backend update.

        The mutator may change the shard in place and return None, or return a
        new shard. The result is re-sorted newest first before it is stored.
        If the mutator raises, nothing is written.

        Returns:
            The shard as persisted
        """

        def apply(document: Document | None) -> Document:
            shard = self._decode(year, document)
            result = mutator(shard)
            return self._prepare(year, result if result is not None else shard)

        persisted = self.backend.update(shard_key(year), apply)
        shard = self._decode(year, persisted)
        logger.debug("shard_updated", year=year, record_count=len(shard))
        return shard

    def delete(self, year: int) -> None:
        """Remove the shard document of ``year``."""
        self.backend.delete(shard_key(year))
        logger.info("shard_deleted", year=year)

    def list_years(self) -> list[int]:
        """
        Years that have a stored shard document, newest first.

        Documents that exist but are empty are included.
        """
        years = {year_from_shard_key(key) for key in self.backend.list_keys(SHARD_KEY_PREFIX)}
        return sorted((year for year in years if year is not None), reverse=True)
