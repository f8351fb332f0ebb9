"""
Unit tests for the shard store.
"""

import pytest

from familyvault.errors import StorageError, ValidationError
from familyvault.models.shard import Shard
from familyvault.storage.shard_store import ShardStore
from tests.conftest import build_record


class TestShardStore:
    """Test cases for ShardStore."""

    @pytest.fixture
    def store(self, backend):
        return ShardStore(backend)

    def test_read_missing_year_is_empty(self, store):
        """Reading a year that was never written is not an error."""
        shard = store.read(1987)

        assert shard.year == 1987
        assert shard.is_empty

    def test_write_sorts_and_stamps(self, store):
        older = build_record(taken_at="2024-01-01T00:00:00Z")
        newer = build_record(taken_at="2024-09-01T00:00:00Z")

        store.write(2024, Shard(year=2024, media=[older, newer]))
        shard = store.read(2024)

        assert [r.id for r in shard.media] == [newer.id, older.id]
        assert shard.updated_at is not None

    def test_write_rejects_record_from_other_year(self, store, backend):
        """A record always lives in the shard of its capture year."""
        record = build_record(taken_at="2023-05-05T00:00:00Z")

        with pytest.raises(ValidationError) as exc_info:
            store.write(2024, Shard(year=2024, media=[record]))

        assert exc_info.value.code == "record_in_wrong_shard"
        assert backend.read("media/2024") is None

    def test_write_rejects_duplicate_ids(self, store):
        record = build_record()

        with pytest.raises(ValidationError) as exc_info:
            store.write(2024, Shard(year=2024, media=[record, record]))

        assert exc_info.value.code == "duplicate_record_id"

    def test_update_resorts(self, store):
        """update re-sorts the shard newest first whatever the mutator did."""
        first = build_record(taken_at="2024-03-01T00:00:00Z")
        store.write(2024, Shard(year=2024, media=[first]))
        latest = build_record(taken_at="2024-11-01T00:00:00Z")

        def append(shard):
            shard.media.append(latest)

        result = store.update(2024, append)

        assert [r.id for r in result.media] == [latest.id, first.id]
        assert [r.id for r in store.read(2024).media] == [latest.id, first.id]

    def test_update_with_returned_shard(self, store):
        record = build_record()

        result = store.update(2024, lambda shard: Shard(year=2024, media=[record]))

        assert result.find(record.id) == record

    def test_update_mutator_error_writes_nothing(self, store, backend):
        record = build_record()
        store.write(2024, Shard(year=2024, media=[record]))
        version = backend.document_version("media/2024")

        def broken(shard):
            shard.media.clear()
            raise ValueError("mutator bug")

        with pytest.raises(ValueError):
            store.update(2024, broken)

        assert store.read(2024).find(record.id) == record
        assert backend.document_version("media/2024") == version

    def test_malformed_shard_is_storage_error(self, store, backend):
        """A stored shard that does not decode is a retryable storage failure."""
        backend.write("media/2021", {"year": 2021, "media": "not a list"})

        with pytest.raises(StorageError) as exc_info:
            store.read(2021)

        assert exc_info.value.code == "malformed_shard"
        assert exc_info.value.retryable is True

    def test_list_years_and_delete(self, store, backend):
        store.write(2022, Shard(year=2022))
        store.write(2024, Shard(year=2024, media=[build_record()]))
        backend.write("index", {"years": [2024]})

        assert store.list_years() == [2024, 2022]

        store.delete(2022)
        assert store.list_years() == [2024]
