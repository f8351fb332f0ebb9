"""
Media library service for familyvault.

This module is the entry point the application uses for media metadata. It
ties the storage layer (shard store, year index, shard cache) to the access
control engine and the duplicate detector:

1. Reads go through the shard cache and the year index
2. Every shard mutation runs with retries, then syncs the index entry of the
   year and invalidates its cache entry
3. Gallery queries load the indexed shards and are filtered per user
4. Edits, deletions and bulk operations check the acting user's permissions

Date corrections that move a record to another year are migrations: the
record is removed from the old shard and inserted into the new one. If the
insert fails the record is put back into the old shard.

Usage Examples:
    library = get_media_library()

    library.add_media(record)
    records = library.query_accessible(user, {"tags": ["beach"]})
    library.edit_media(user, record.id, {"takenAt": "2024-06-01T10:00:00Z"})
"""

import copy
import time
from collections import defaultdict
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any, NoReturn, TypeVar

from ..config import get_database_path, get_shard_cache_ttl, get_storage_backend_name
from ..errors import AccessDeniedError, NotFoundError, StorageError, ValidationError
from ..logging_config import get_logger, log_context, log_error, log_performance, log_user_action
from ..models.media import MediaRecord, Visibility, normalize_tags, parse_timestamp
from ..models.permissions import UserPermissions
from ..models.shard import MediaIndex, Shard
from ..storage.backend import DocumentBackend
from ..storage.cache import ShardCache
from ..storage.index_manager import IndexManager, IndexVerification
from ..storage.retry import with_retry
from ..storage.shard_store import ShardMutator, ShardStore
from .access_control import AccessControlEngine, MediaAnalytics, QueryFilters, SearchParams
from .duplicates import DuplicateDetector, DuplicateMatch, DuplicateStats

logger = get_logger(__name__)

T = TypeVar("T")

BULK_TAG_OPERATIONS = ("add", "remove", "set")

# Request field name -> MediaRecord attribute
_EDITABLE_FIELDS = {
    "tags": "tags",
    "subjects": "subjects",
    "visibility": "visibility",
    "filename": "filename",
    "originalFilename": "original_filename",
    "original_filename": "original_filename",
    "thumbnailPath": "thumbnail_path",
    "thumbnail_path": "thumbnail_path",
    "allowedUsers": "allowed_users",
    "allowed_users": "allowed_users",
    "restrictedUsers": "restricted_users",
    "restricted_users": "restricted_users",
    "takenAt": "taken_at",
    "taken_at": "taken_at",
}


@dataclass
class BulkResult:
    """Outcome of a bulk operation, per record id."""

    operation: str
    succeeded: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def success_count(self) -> int:
        return len(self.succeeded)

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation": self.operation,
            "succeeded": list(self.succeeded),
            "failed": dict(self.failed),
            "successCount": self.success_count,
            "failureCount": len(self.failed),
        }


def _string_list(field_name: str, value: Any) -> list[str]:
    if isinstance(value, str):
        return [value]
    if not isinstance(value, (list, tuple)) or not all(isinstance(v, str) for v in value):
        raise ValidationError(
            f"{field_name} must be a list of strings", code="invalid_update", details={"field": field_name}
        )
    return list(value)


def parse_media_updates(updates: dict[str, Any]) -> dict[str, Any]:
    """
    Convert edit request data into MediaRecord field changes.

    Raises:
        ValidationError: If a field is unknown or has an invalid value
    """
    if not isinstance(updates, dict) or not updates:
        raise ValidationError("No updates given", code="invalid_update")

    changes: dict[str, Any] = {}
    for key, value in updates.items():
        attribute = _EDITABLE_FIELDS.get(key)
        if attribute is None:
            raise ValidationError(f"Field {key!r} cannot be edited", code="invalid_update", details={"field": key})

        if attribute in ("tags", "subjects"):
            changes[attribute] = normalize_tags(_string_list(key, value))
        elif attribute == "visibility":
            try:
                changes[attribute] = Visibility(value)
            except ValueError as e:
                raise ValidationError(
                    f"Unknown visibility: {value!r}",
                    code="invalid_visibility",
                    details={"visibility": str(value), "valid": [v.value for v in Visibility]},
                ) from e
        elif attribute == "taken_at":
            try:
                changes[attribute] = parse_timestamp(value)
            except (TypeError, ValueError) as e:
                raise ValidationError(
                    f"Invalid capture time: {value!r}", code="invalid_update", details={"field": key}
                ) from e
        elif attribute in ("allowed_users", "restricted_users"):
            changes[attribute] = None if value is None else _string_list(key, value)
        elif attribute == "thumbnail_path":
            if value is not None and not isinstance(value, str):
                raise ValidationError("thumbnailPath must be a string", code="invalid_update", details={"field": key})
            changes[attribute] = value
        else:
            if not isinstance(value, str) or not value.strip():
                raise ValidationError(f"{key} must be a non-empty string", code="invalid_update", details={"field": key})
            changes[attribute] = value.strip()
    return changes


class MediaLibrary:
    """Permission-aware access to the year-sharded media metadata."""

    def __init__(
        self,
        backend: DocumentBackend,
        cache: ShardCache | None = None,
        engine: AccessControlEngine | None = None,
        max_attempts: int | None = None,
        base_delay: float | None = None,
        max_delay: float | None = None,
        duplicate_window: int | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the library.

        Args:
            backend: Document backend holding shards and the index
            cache: Shard cache (defaults to one with the configured TTL)
            engine: Access control engine
            max_attempts: Retry attempts per storage call (defaults to config)
            base_delay: First retry delay in seconds (defaults to config)
            max_delay: Retry delay cap in seconds (defaults to config)
            duplicate_window: Default duplicate scan window (defaults to config)
            sleep: Sleep function used between retries
        """
        self.backend = backend
        self.shard_store = ShardStore(backend)
        self.index = IndexManager(
            backend,
            self.shard_store,
            max_attempts=max_attempts,
            base_delay=base_delay,
            max_delay=max_delay,
            sleep=sleep,
        )
        self.cache = cache if cache is not None else ShardCache(ttl_seconds=get_shard_cache_ttl())
        self.engine = engine or AccessControlEngine()
        self.duplicates = DuplicateDetector(self.index, read_shard=self.get_shard, default_window=duplicate_window)
        self._retry_settings = {"max_attempts": max_attempts, "base_delay": base_delay, "max_delay": max_delay}
        self._sleep = sleep

    def _retry(self, operation: Callable[[], T], name: str) -> T:
        return with_retry(operation, operation_name=name, sleep=self._sleep, **self._retry_settings)

    # Shards and index

    def get_shard(self, year: int) -> Shard:
        """
        Read the shard of ``year``, from the cache when fresh.

        Returns a copy; changing it does not change the cached shard.
        """
        self.cache.evict_expired()
        shard = self.cache.get(year)
        if shard is None:
            shard = self.index.read_shard(year)
            self.cache.put(year, shard)
        return Shard(year=shard.year, media=copy.deepcopy(shard.media), updated_at=shard.updated_at)

    def update_shard(self, year: int, mutator: ShardMutator) -> Shard:
        """
        Mutate the shard of ``year`` with retries, then sync the index.

        The mutator may run more than once when a storage attempt fails, so
        it must only depend on the shard it is given. Errors other than
        storage errors raised by the mutator abort the update without a write.

        Returns:
            The shard as persisted
        """
        try:
            shard = self._retry(lambda: self.shard_store.update(year, mutator), "update_shard")
        finally:
            self.cache.invalidate(year)
        try:
            self.index.sync_year(year, shard)
        except StorageError as e:
            # The shard write stands; rebuild_index repairs the entry
            logger.warning("index_sync_failed", year=year, error=str(e))
        return shard

    def add_year_to_index(self, year: int) -> MediaIndex:
        return self.index.add_year_to_index(year)

    def remove_year_from_index(self, year: int) -> MediaIndex:
        return self.index.remove_year_from_index(year)

    def read_index(self) -> MediaIndex:
        return self.index.read_index()

    def update_index_media_count(self) -> int:
        return self.index.update_index_media_count()

    def rebuild_index(self) -> MediaIndex:
        self.cache.clear()
        return self.index.rebuild_index()

    def verify_index(self) -> IndexVerification:
        return self.index.verify_index()

    def load_records(self, years: Iterable[int] | None = None) -> list[MediaRecord]:
        """
        All records of the indexed years, or of ``years`` if given.

        Unreadable years are skipped and logged.
        """
        shards = self.index.load_indexed_shards(years, reader=self.get_shard)
        return [record for shard in shards for record in shard.media]

    # Single records

    def add_media(self, record: MediaRecord, user: UserPermissions | None = None) -> MediaRecord:
        """
        Store a record once its file upload is confirmed.

        A record with the same id is replaced. When the stored copy is in
        another year it is moved, so an id is only ever held by one shard.

        Args:
            record: Record to store
            user: Uploading user; when given, must be allowed to upload

        Raises:
            ValidationError: If the record is invalid
            AccessDeniedError: If ``user`` may not upload
        """
        problems = record.validate()
        if problems:
            raise ValidationError(
                f"Invalid media record: {'; '.join(problems)}",
                code="invalid_media_record",
                details={"media_id": record.id, "problems": problems},
            )
        if user is not None and not user.is_admin and not user.permissions.can_upload:
            self._deny(user, "add_media", record.id, "upload not permitted")

        start_time = time.perf_counter()

        def insert(shard: Shard) -> None:
            shard.upsert(record)

        existing = self.find_record(record.id)
        if existing is not None and existing.year != record.year:
            self._migrate(existing.year, record.id, lambda _original: record)
        else:
            self.update_shard(record.year, insert)
        log_performance("add_media", time.perf_counter() - start_time, year=record.year)
        log_user_action(user.user_id if user else record.uploaded_by, "add_media", media_id=record.id, year=record.year)
        return record

    def find_record(self, media_id: str) -> MediaRecord | None:
        """Look up a record by id across every indexed year."""
        for year in self.index.read_index().years:
            try:
                shard = self.get_shard(year)
            except StorageError as e:
                logger.warning("shard_unreadable_skipped", year=year, error=str(e))
                continue
            record = shard.find(media_id)
            if record is not None:
                return record
        return None

    def _require_record(self, media_id: str) -> MediaRecord:
        record = self.find_record(media_id)
        if record is None:
            raise NotFoundError(f"Media {media_id} not found", details={"media_id": media_id})
        return record

    def _deny(self, user: UserPermissions, action: str, media_id: str | None, reason: str) -> NoReturn:
        raise AccessDeniedError(
            f"User {user.user_id} may not {action.replace('_', ' ')}",
            details={"user_id": user.user_id, "action": action, "media_id": media_id, "reason": reason},
        )

    def get_record(self, user: UserPermissions, media_id: str) -> MediaRecord:
        """
        Fetch a record the user is allowed to see.

        Raises:
            NotFoundError: If no indexed shard holds the record
            AccessDeniedError: If the record exists but the user may not see it
        """
        record = self._require_record(media_id)
        if not self.engine.is_accessible(user, record):
            self._deny(user, "view_media", media_id, "not accessible")
        return record

    def _check_edit(self, user: UserPermissions, record: MediaRecord, changes: dict[str, Any]) -> None:
        if not user.is_admin and record.uploaded_by != user.user_id:
            self._deny(user, "edit_media", record.id, "not owner")
        if ("tags" in changes or "subjects" in changes) and not user.permissions.can_tag:
            self._deny(user, "edit_media", record.id, "tagging not permitted")
        visibility = changes.get("visibility")
        if visibility is not None and visibility not in user.permissions.can_share:
            self._deny(user, "edit_media", record.id, f"cannot share as {visibility.value}")

    def edit_media(self, user: UserPermissions, media_id: str, updates: dict[str, Any]) -> MediaRecord:
        """
        Edit a record.

        A new capture time in another year migrates the record between shards.

        Raises:
            ValidationError: If the updates are malformed
            NotFoundError: If the record does not exist
            AccessDeniedError: If the user may not make these changes
        """
        changes = parse_media_updates(updates)
        record = self._require_record(media_id)
        self._check_edit(user, record, changes)

        updated = record.with_updates(**changes)
        problems = updated.validate()
        if problems:
            raise ValidationError(
                f"Invalid media record: {'; '.join(problems)}",
                code="invalid_media_record",
                details={"media_id": media_id, "problems": problems},
            )

        if updated.year == record.year:
            result = self._apply_in_place(record.year, media_id, changes)
        else:
            result = self._migrate(record.year, media_id, lambda original: original.with_updates(**changes))

        log_user_action(
            user.user_id,
            "edit_media",
            media_id=media_id,
            fields=sorted(changes),
            from_year=record.year,
            to_year=result.year,
        )
        return result

    def _apply_in_place(self, year: int, media_id: str, changes: dict[str, Any]) -> MediaRecord:
        edited: dict[str, MediaRecord] = {}

        def apply(shard: Shard) -> None:
            current = shard.find(media_id)
            if current is None:
                raise NotFoundError(f"Media {media_id} not found", details={"media_id": media_id, "year": year})
            edited["record"] = current.with_updates(**changes)
            shard.upsert(edited["record"])

        self.update_shard(year, apply)
        return edited["record"]

    def _migrate(
        self, old_year: int, media_id: str, rebuild: Callable[[MediaRecord], MediaRecord]
    ) -> MediaRecord:
        removed: dict[str, MediaRecord] = {}

        def take(shard: Shard) -> None:
            current = shard.remove(media_id)
            if current is None:
                raise NotFoundError(f"Media {media_id} not found", details={"media_id": media_id, "year": old_year})
            removed["record"] = current

        self.update_shard(old_year, take)
        original = removed["record"]
        moved = rebuild(original)

        def insert(shard: Shard) -> None:
            shard.upsert(moved)

        try:
            self.update_shard(moved.year, insert)
        except Exception as e:
            self._restore(old_year, original, e)
            raise

        logger.info("media_migrated", media_id=media_id, from_year=old_year, to_year=moved.year)
        return moved

    def _restore(self, year: int, original: MediaRecord, cause: Exception) -> None:
        def put_back(shard: Shard) -> None:
            shard.upsert(original)

        try:
            self.update_shard(year, put_back)
        except Exception as e:
            log_error(e, {"operation": "media_migration_compensation", "media_id": original.id, "year": year})
            logger.error("media_migration_compensation_failed", media_id=original.id, year=year, cause=str(cause))
            return
        logger.warning("media_migration_compensated", media_id=original.id, year=year, cause=str(cause))

    def set_visibility(self, user: UserPermissions, media_id: str, visibility: Visibility | str) -> MediaRecord:
        value = visibility.value if isinstance(visibility, Visibility) else visibility
        return self.edit_media(user, media_id, {"visibility": value})

    def update_tags(self, user: UserPermissions, media_id: str, tags: Iterable[str]) -> MediaRecord:
        return self.edit_media(user, media_id, {"tags": list(tags)})

    def update_subjects(self, user: UserPermissions, media_id: str, subjects: Iterable[str]) -> MediaRecord:
        return self.edit_media(user, media_id, {"subjects": list(subjects)})

    def delete_media(self, user: UserPermissions, media_id: str) -> MediaRecord:
        """
        Delete a record. An emptied shard drops out of the index.

        Raises:
            NotFoundError: If the record does not exist
            AccessDeniedError: If the user may not delete
        """
        record = self._require_record(media_id)
        if not user.permissions.can_delete:
            self._deny(user, "delete_media", media_id, "delete not permitted")

        def drop(shard: Shard) -> None:
            if shard.remove(media_id) is None:
                raise NotFoundError(f"Media {media_id} not found", details={"media_id": media_id})

        self.update_shard(record.year, drop)
        log_user_action(user.user_id, "delete_media", media_id=media_id, year=record.year)
        return record

    # Bulk operations

    def _require_admin(self, user: UserPermissions, action: str) -> None:
        if not user.is_admin:
            self._deny(user, action, None, "admin role required")

    def _group_by_year(self, media_ids: Iterable[str], result: BulkResult) -> dict[int, list[str]]:
        wanted = list(dict.fromkeys(media_ids))
        located = {record.id: record.year for record in self.load_records() if record.id in wanted}
        by_year: dict[int, list[str]] = defaultdict(list)
        for media_id in wanted:
            if media_id in located:
                by_year[located[media_id]].append(media_id)
            else:
                result.failed[media_id] = "not_found"
        return by_year

    def _run_bulk(
        self,
        user: UserPermissions,
        media_ids: Iterable[str],
        result: BulkResult,
        apply: Callable[[Shard, str], bool],
    ) -> BulkResult:
        start_time = time.perf_counter()
        with log_context(logger, operation=result.operation, user_id=user.user_id) as bulk_logger:
            for year, ids in sorted(self._group_by_year(media_ids, result).items()):
                done: list[str] = []

                def mutate(shard: Shard) -> None:
                    done.clear()
                    for media_id in ids:
                        if apply(shard, media_id):
                            done.append(media_id)

                try:
                    self.update_shard(year, mutate)
                except StorageError as e:
                    bulk_logger.error("bulk_operation_year_failed", year=year, error=str(e))
                    for media_id in ids:
                        result.failed[media_id] = e.code
                    continue

                result.succeeded.extend(done)
                for media_id in ids:
                    if media_id not in done:
                        result.failed[media_id] = "not_found"
                bulk_logger.debug("bulk_operation_year_done", year=year, records=len(done))

        self.index.update_index_media_count()
        log_performance(f"bulk_{result.operation}", time.perf_counter() - start_time, records=len(result.succeeded))
        log_user_action(
            user.user_id,
            f"bulk_{result.operation}",
            succeeded=len(result.succeeded),
            failed=len(result.failed),
        )
        return result

    def bulk_delete(self, user: UserPermissions, media_ids: Iterable[str]) -> BulkResult:
        """Delete several records (admin only), one shard update per year."""
        self._require_admin(user, "bulk_delete")

        def drop(shard: Shard, media_id: str) -> bool:
            return shard.remove(media_id) is not None

        return self._run_bulk(user, media_ids, BulkResult(operation="delete"), drop)

    def bulk_tag_operation(
        self,
        user: UserPermissions,
        media_ids: Iterable[str],
        operation: str,
        tags: Iterable[str],
    ) -> BulkResult:
        """
        Add, remove or replace tags on several records (admin only).

        Raises:
            ValidationError: If the operation is unknown
            AccessDeniedError: If the user is not an admin
        """
        if operation not in BULK_TAG_OPERATIONS:
            raise ValidationError(
                f"Unknown bulk tag operation: {operation!r}",
                code="invalid_bulk_operation",
                details={"operation": operation, "valid": list(BULK_TAG_OPERATIONS)},
            )
        self._require_admin(user, f"bulk_tag_{operation}")
        requested = normalize_tags(_string_list("tags", tags if isinstance(tags, str) else list(tags)))

        def retag(shard: Shard, media_id: str) -> bool:
            record = shard.find(media_id)
            if record is None:
                return False
            if operation == "add":
                new_tags = record.tags + requested
            elif operation == "remove":
                new_tags = [tag for tag in record.tags if tag not in requested]
            else:
                new_tags = requested
            shard.upsert(record.with_updates(tags=new_tags))
            return True

        return self._run_bulk(user, media_ids, BulkResult(operation=f"tag_{operation}"), retag)

    # Queries

    def query_accessible(
        self,
        user: UserPermissions,
        filters: QueryFilters | dict[str, Any] | None = None,
        years: Iterable[int] | None = None,
    ) -> list[MediaRecord]:
        """Records the user can see that match ``filters``, newest first."""
        if not isinstance(filters, QueryFilters):
            filters = QueryFilters.from_dict(filters)
        start_time = time.perf_counter()
        result = self.engine.query_accessible(user, self.load_records(years), filters)
        log_performance("query_accessible", time.perf_counter() - start_time, result_count=len(result))
        return result

    def advanced_search(
        self,
        user: UserPermissions,
        params: SearchParams | dict[str, Any] | None = None,
        years: Iterable[int] | None = None,
    ) -> list[MediaRecord]:
        if not isinstance(params, SearchParams):
            params = SearchParams.from_dict(params)
        start_time = time.perf_counter()
        result = self.engine.advanced_search(user, self.load_records(years), params)
        log_performance("advanced_search", time.perf_counter() - start_time, result_count=len(result))
        return result

    def analytics(self, user: UserPermissions) -> MediaAnalytics:
        return self.engine.analytics(user, self.load_records())

    def tag_suggestions(self, user: UserPermissions, query: str | None = None, limit: int = 20) -> list[tuple[str, int]]:
        return self.engine.tag_suggestions(user, self.load_records(), query=query, limit=limit)

    def find_duplicate(
        self,
        content_hash: str,
        target_year: int,
        window: int | None = None,
        exhaustive: bool = False,
    ) -> DuplicateMatch | None:
        return self.duplicates.find_duplicate(content_hash, target_year, window=window, exhaustive=exhaustive)

    def batch_find_duplicates(
        self, content_hashes: Iterable[str], target_year: int, window: int | None = None
    ) -> dict[str, DuplicateMatch | None]:
        return self.duplicates.batch_find_duplicates(content_hashes, target_year, window=window)

    def duplicate_stats(self, years: Iterable[int] | None = None) -> DuplicateStats:
        return self.duplicates.duplicate_stats(years)

    def close(self) -> None:
        self.cache.clear()
        self.backend.close()


def create_backend(backend_name: str | None = None) -> DocumentBackend:
    """
    Create the configured document backend.

    Raises:
        ValidationError: If the backend name is unknown
    """
    name = (backend_name or get_storage_backend_name()).lower()
    if name == "duckdb":
        from ..storage.duckdb_backend import DuckDBDocumentBackend

        return DuckDBDocumentBackend(get_database_path())
    if name == "gcs":
        from ..storage.gcs_backend import GCSDocumentBackend

        return GCSDocumentBackend()
    raise ValidationError(
        f"Unknown storage backend: {name!r}",
        code="unknown_storage_backend",
        details={"backend": name, "valid": ["duckdb", "gcs"]},
    )


# Global media library instance
_media_library: MediaLibrary | None = None


def get_media_library() -> MediaLibrary:
    """
    Get the global media library instance.

    Returns:
        MediaLibrary: Global media library instance
    """
    global _media_library
    if _media_library is None:
        _media_library = MediaLibrary(create_backend())
    return _media_library
