"""
Unit tests for the media library service.
"""

from unittest.mock import patch

import pytest

from familyvault.errors import AccessDeniedError, NotFoundError, StorageError, ValidationError
from familyvault.models.media import Visibility
from familyvault.models.permissions import create_user_permissions
from familyvault.models.shard import Shard
from familyvault.services import media_library as media_library_module
from familyvault.services.media_library import MediaLibrary, create_backend, get_media_library, parse_media_updates
from familyvault.storage.cache import ShardCache
from familyvault.storage.duckdb_backend import DuckDBDocumentBackend
from tests.conftest import FlakyBackend, build_record, make_library


class TestShardAccess:
    """Test cases for shard reads, updates and the index."""

    def test_update_shard_keeps_index_in_sync(self, library):
        """A shard enters the index when it gets records and leaves it when emptied."""
        record = build_record(taken_at="2024-03-03T00:00:00Z")

        library.update_shard(2024, lambda shard: shard.upsert(record))
        assert library.read_index().years == [2024]

        library.update_shard(2024, lambda shard: shard.remove(record.id))
        assert library.read_index().years == []

    def test_add_and_remove_year_are_idempotent(self, library):
        library.add_year_to_index(2021)
        library.add_year_to_index(2021)
        assert library.read_index().years == [2021]

        library.remove_year_from_index(2021)
        library.remove_year_from_index(2021)
        assert library.read_index().years == []

    def test_exhausted_retries_leave_shard_unchanged(self, backend):
        """When every attempt fails the shard is exactly as before and a StorageError is raised."""
        existing = build_record(taken_at="2024-01-01T00:00:00Z")
        library = make_library(backend)
        library.add_media(existing)
        before = backend.read("media/2024")

        flaky = FlakyBackend(backend, failures=10, operations=("update",))
        failing_library = make_library(flaky)

        with pytest.raises(StorageError) as exc_info:
            failing_library.update_shard(2024, lambda shard: shard.media.clear())

        assert exc_info.value.retryable is False
        assert flaky.calls["update"] == 3
        assert backend.read("media/2024") == before

    def test_transient_failure_is_retried(self, backend):
        flaky = FlakyBackend(backend, failures=1, operations=("update",))
        library = make_library(flaky)
        record = build_record()

        library.add_media(record)

        assert library.find_record(record.id) == record

    def test_get_shard_uses_cache_until_invalidated(self, backend):
        library = make_library(backend, cache=ShardCache(ttl_seconds=60))
        record = build_record(taken_at="2024-01-01T00:00:00Z")
        library.add_media(record)

        library.get_shard(2024)
        with patch.object(library.index, "read_shard", wraps=library.index.read_shard) as read_shard:
            library.get_shard(2024)
            read_shard.assert_not_called()

            library.update_shard(2024, lambda shard: None)
            library.get_shard(2024)
            read_shard.assert_called_once_with(2024)

    def test_get_shard_returns_copy(self, backend):
        library = make_library(backend, cache=ShardCache(ttl_seconds=60))
        library.add_media(build_record(taken_at="2024-01-01T00:00:00Z"))

        library.get_shard(2024).media.clear()
        library.get_shard(2024).media[0].tags.append("secret")

        shard = library.get_shard(2024)
        assert len(shard) == 1
        assert "secret" not in shard.media[0].tags


class TestRecords:
    """Test cases for adding and fetching single records."""

    def test_add_media_upserts_by_id(self, library):
        record = build_record(tags=["a"])
        library.add_media(record)
        library.add_media(record.with_updates(tags=["b"]))

        shard = library.get_shard(record.year)
        assert len(shard) == 1
        assert shard.find(record.id).tags == ["b"]

    def test_add_media_moves_same_id_to_new_year(self, library):
        """Re-adding an id under another capture year leaves it in one shard only."""
        library.add_media(build_record(id="dup", taken_at="2023-05-01T00:00:00Z"))
        library.add_media(build_record(id="dup", taken_at="2024-05-01T00:00:00Z"))

        assert library.read_index().years == [2024]
        assert library.get_shard(2023).find("dup") is None
        assert library.get_shard(2024).find("dup") is not None
        assert library.find_record("dup").year == 2024

    def test_offset_capture_time_uses_utc_year(self, library):
        """A capture time with an offset lands in the shard of its UTC year."""
        early = library.add_media(build_record(taken_at="2024-01-01T00:30:00+02:00"))
        library.add_media(build_record(taken_at="2023-06-01T00:00:00Z"))

        shard = library.get_shard(2023)
        assert len(shard) == 2
        assert library.get_shard(2024).is_empty
        assert library.find_record(early.id).year == 2023
        assert library.read_index().years == [2023]

    def test_add_media_validates(self, library):
        with pytest.raises(ValidationError):
            library.add_media(build_record(size=0))

        assert library.read_index().years == []

    def test_add_media_requires_upload_permission(self, library, friend):
        with pytest.raises(AccessDeniedError):
            library.add_media(build_record(uploaded_by=friend.user_id), user=friend)

    def test_get_record_not_found_vs_denied(self, library, friend):
        """Missing records and hidden records raise different errors."""
        hidden = build_record(visibility="family")
        library.add_media(hidden)

        with pytest.raises(NotFoundError):
            library.get_record(friend, "no-such-id")
        with pytest.raises(AccessDeniedError):
            library.get_record(friend, hidden.id)

    def test_get_record_accessible(self, library, family_user):
        record = build_record(visibility="family")
        library.add_media(record)

        assert library.get_record(family_user, record.id) == record


class TestEditMedia:
    """Test cases for edits and date corrections."""

    def test_owner_edits_tags_and_visibility(self, library):
        owner = create_user_permissions("owner", "family")
        record = build_record(uploaded_by="owner")
        library.add_media(record)

        updated = library.edit_media(owner, record.id, {"tags": ["Beach", "beach"], "visibility": "public"})

        assert updated.tags == ["beach"]
        assert updated.visibility is Visibility.PUBLIC
        assert library.find_record(record.id) == updated

    def test_non_owner_cannot_edit(self, library, family_user):
        record = build_record(uploaded_by="someone-else", visibility="family")
        library.add_media(record)

        with pytest.raises(AccessDeniedError):
            library.update_tags(family_user, record.id, ["x"])

    def test_tagging_requires_can_tag(self, library):
        owner = create_user_permissions("owner", "friend")
        record = build_record(uploaded_by="owner")
        library.add_media(record)

        with pytest.raises(AccessDeniedError):
            library.update_subjects(owner, record.id, ["grandpa"])

        assert library.edit_media(owner, record.id, {"filename": "renamed.jpg"}).filename == "renamed.jpg"

    def test_visibility_limited_to_can_share(self, library, admin):
        owner = create_user_permissions("owner", "extended-family")
        record = build_record(uploaded_by="owner")
        library.add_media(record)

        with pytest.raises(AccessDeniedError):
            library.set_visibility(owner, record.id, Visibility.FAMILY)

        assert library.set_visibility(admin, record.id, "private").visibility is Visibility.PRIVATE

    def test_admin_visibility_follows_role_can_share(self, library):
        """Admin visibility changes are checked against the admin permission set like any other role."""
        admin = create_user_permissions("admin-1", "admin")
        record = build_record(uploaded_by="owner")
        library.add_media(record)

        assert Visibility.PRIVATE in admin.permissions.can_share
        for level in Visibility:
            assert library.set_visibility(admin, record.id, level).visibility is level

    def test_invalid_updates_rejected_before_storage(self, library, admin):
        with pytest.raises(ValidationError):
            library.edit_media(admin, "missing", {"visibility": "everyone"})
        with pytest.raises(ValidationError):
            library.edit_media(admin, "missing", {"uploadedBy": "me"})

    def test_edit_missing_record(self, library, admin):
        with pytest.raises(NotFoundError):
            library.edit_media(admin, "missing", {"tags": ["x"]})

    def test_date_correction_migrates_between_shards(self, library, admin):
        """Moving a record to another year updates both shards and the index."""
        moving = build_record(taken_at="2023-04-01T00:00:00Z")
        resident = build_record(taken_at="2024-02-01T00:00:00Z")
        library.add_media(moving)
        library.add_media(resident)

        moved = library.edit_media(admin, moving.id, {"takenAt": "2024-09-01T00:00:00Z"})

        assert moved.year == 2024
        assert library.get_shard(2023).is_empty
        assert [r.id for r in library.get_shard(2024).media] == [moving.id, resident.id]
        assert library.read_index().years == [2024]

    def test_failed_migration_restores_old_shard(self, backend, admin):
        """If the insert into the new year fails the record goes back to its old shard."""
        flaky = FlakyBackend(backend)
        library = make_library(flaky)
        record = build_record(taken_at="2023-04-01T00:00:00Z")
        library.add_media(record)

        flaky.failures = 10
        flaky.failed_keys = {"media/2025"}

        with pytest.raises(StorageError):
            library.edit_media(admin, record.id, {"takenAt": "2025-01-01T00:00:00Z"})

        assert library.get_shard(2023).find(record.id) == record
        assert library.get_shard(2025).is_empty
        assert library.read_index().years == [2023]


class TestDeletion:
    """Test cases for single and bulk deletion and bulk tagging."""

    def test_delete_requires_can_delete(self, library, family_user):
        record = build_record(uploaded_by=family_user.user_id)
        library.add_media(record)

        with pytest.raises(AccessDeniedError):
            library.delete_media(family_user, record.id)

    def test_delete_last_record_shrinks_index(self, library, admin):
        record = build_record(taken_at="2022-01-01T00:00:00Z")
        library.add_media(record)

        assert library.delete_media(admin, record.id) == record
        assert library.read_index().years == []
        with pytest.raises(NotFoundError):
            library.delete_media(admin, record.id)

    def test_bulk_delete(self, library, admin):
        records = [
            build_record(taken_at="2022-01-01T00:00:00Z"),
            build_record(taken_at="2023-01-01T00:00:00Z"),
            build_record(taken_at="2023-02-01T00:00:00Z"),
        ]
        for record in records:
            library.add_media(record)

        result = library.bulk_delete(admin, [records[0].id, records[1].id, "missing"])

        assert sorted(result.succeeded) == sorted([records[0].id, records[1].id])
        assert result.failed == {"missing": "not_found"}
        assert library.read_index().years == [2023]
        assert library.read_index().total_media == 1

    def test_bulk_delete_continues_past_failed_year(self, backend, admin):
        """A year whose update keeps failing is reported; other years still change."""
        flaky = FlakyBackend(backend)
        library = make_library(flaky)
        stuck = build_record(taken_at="2022-01-01T00:00:00Z")
        gone = build_record(taken_at="2023-01-01T00:00:00Z")
        library.add_media(stuck)
        library.add_media(gone)

        flaky.failures = 10
        flaky.failed_keys = {"media/2022"}

        result = library.bulk_delete(admin, [stuck.id, gone.id])

        assert result.succeeded == [gone.id]
        assert result.failed == {stuck.id: "retries_exhausted"}
        assert library.find_record(stuck.id) == stuck

    def test_bulk_operations_require_admin(self, library, family_user):
        with pytest.raises(AccessDeniedError):
            library.bulk_delete(family_user, ["x"])
        with pytest.raises(AccessDeniedError):
            library.bulk_tag_operation(family_user, ["x"], "add", ["y"])

    def test_bulk_tag_operations(self, library, admin):
        first = build_record(tags=["beach"], taken_at="2024-01-01T00:00:00Z")
        second = build_record(tags=["beach", "old"], taken_at="2021-01-01T00:00:00Z")
        library.add_media(first)
        library.add_media(second)
        ids = [first.id, second.id]

        library.bulk_tag_operation(admin, ids, "add", ["Summer"])
        assert library.find_record(first.id).tags == ["beach", "summer"]

        library.bulk_tag_operation(admin, ids, "remove", ["beach"])
        assert library.find_record(second.id).tags == ["old", "summer"]

        result = library.bulk_tag_operation(admin, ids, "set", ["final"])
        assert result.success_count == 2
        assert library.find_record(first.id).tags == ["final"]

    def test_bulk_tag_unknown_operation(self, library, admin):
        with pytest.raises(ValidationError):
            library.bulk_tag_operation(admin, ["x"], "merge", ["y"])


class TestQueries:
    """Test cases for the gallery query entry points."""

    def test_query_accessible_reads_indexed_years(self, library, family_user):
        visible = build_record(visibility="family", tags=["beach"], taken_at="2021-01-01T00:00:00Z")
        hidden = build_record(visibility="private", tags=["beach"], taken_at="2024-01-01T00:00:00Z")
        library.add_media(visible)
        library.add_media(hidden)

        assert library.query_accessible(family_user, {"tags": ["beach"]}) == [visible]

    def test_query_skips_unreadable_year(self, library, backend, admin):
        good = build_record(taken_at="2024-01-01T00:00:00Z")
        library.add_media(good)
        library.add_year_to_index(2020)
        backend.write("media/2020", {"media": "corrupt"})

        assert library.query_accessible(admin) == [good]

    def test_malformed_filters_rejected(self, library, admin):
        with pytest.raises(ValidationError):
            library.query_accessible(admin, {"dateRange": "last week"})

    def test_analytics_suggestions_and_search(self, library, admin):
        library.add_media(build_record(tags=["beach"], camera="Pixel", gps=(1.0, 2.0)))
        library.add_media(build_record(tags=["beach", "sun"], taken_at="2023-01-01T00:00:00Z"))

        stats = library.analytics(admin)
        assert stats.total_accessible == 2
        assert stats.by_year == {2024: 1, 2023: 1}

        assert library.tag_suggestions(admin, "su") == [("sun", 1)]
        assert len(library.advanced_search(admin, {"hasGps": True})) == 1

    def test_find_duplicate(self, library):
        record = build_record(taken_at="2022-05-05T00:00:00Z", content_hash="H")
        library.add_media(record)

        assert library.find_duplicate("H", 2023).existing_id == record.id
        assert library.find_duplicate("H", 2025) is None
        assert library.find_duplicate("H", 2025, exhaustive=True) is not None

    def test_rebuild_index(self, library, backend):
        record = build_record(taken_at="2019-01-01T00:00:00Z")
        library.shard_store.write(2019, Shard(year=2019, media=[record]))

        assert library.verify_index().missing_years == [2019]
        assert library.rebuild_index().years == [2019]
        assert library.find_record(record.id) == record


class TestParseMediaUpdates:
    """Test cases for edit request parsing."""

    def test_camel_case_fields(self):
        changes = parse_media_updates({"originalFilename": " a.jpg ", "thumbnailPath": None, "allowedUsers": ["u"]})

        assert changes == {"original_filename": "a.jpg", "thumbnail_path": None, "allowed_users": ["u"]}

    @pytest.mark.parametrize(
        "updates",
        [{}, {"tags": 3}, {"takenAt": "soon"}, {"filename": ""}, {"id": "new"}],
    )
    def test_invalid(self, updates):
        with pytest.raises(ValidationError):
            parse_media_updates(updates)


class TestFactories:
    """Test cases for backend and library factories."""

    def test_create_backend_duckdb(self, temp_dir):
        db_path = str(temp_dir / "vault.duckdb")
        with patch.dict("os.environ", {"FAMILYVAULT_STORAGE_BACKEND": "duckdb", "FAMILYVAULT_DB_PATH": db_path}):
            backend = create_backend()

        assert isinstance(backend, DuckDBDocumentBackend)
        assert backend.db_path == db_path
        backend.close()

    def test_create_backend_unknown(self):
        with pytest.raises(ValidationError):
            create_backend("sqlite")

    def test_get_media_library_is_singleton(self, backend):
        with patch.object(media_library_module, "_media_library", None):
            with patch.object(media_library_module, "create_backend", return_value=backend) as factory:
                first = get_media_library()
                second = get_media_library()

        assert first is second
        assert isinstance(first, MediaLibrary)
        factory.assert_called_once()
