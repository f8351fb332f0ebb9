"""Integration tests for the gallery flow on a DuckDB file."""

import pytest

from familyvault.errors import AccessDeniedError
from familyvault.models.media import DateInfo, MediaFileMetadata, MediaRecord
from familyvault.models.permissions import create_user_permissions
from familyvault.storage.duckdb_backend import DuckDBDocumentBackend
from tests.conftest import make_library

pytestmark = pytest.mark.integration


def upload(library, uploader, filename, taken_at, content_hash, **kwargs):
    record = MediaRecord.create_new(
        filename=filename,
        original_filename=filename,
        path=f"originals/{filename}",
        media_type="photo",
        uploaded_by=uploader.user_id,
        taken_at=taken_at,
        metadata=MediaFileMetadata(size=2048, content_hash=content_hash),
        date_info=DateInfo(source="exif", confidence="high"),
        **kwargs,
    )
    return library.add_media(record, user=uploader)


class TestGalleryFlow:
    """End-to-end flow: upload, browse, correct, deduplicate, reopen."""

    def test_full_flow(self, temp_dir):
        db_path = str(temp_dir / "vault.duckdb")
        admin = create_user_permissions("mum", "admin")
        family = create_user_permissions("kid", "family")
        friend = create_user_permissions("neighbour", "friend")

        library = make_library(DuckDBDocumentBackend(db_path))
        picnic = upload(library, family, "picnic.jpg", "2023-07-14T12:00:00Z", "h-picnic", tags=["Picnic", "summer"])
        party = upload(library, admin, "party.jpg", "2024-01-01T00:30:00Z", "h-party", visibility="public")
        diary = upload(library, admin, "diary.jpg", "2024-02-02T09:00:00Z", "h-diary", visibility="private")

        assert library.read_index().years == [2024, 2023]
        assert [r.id for r in library.query_accessible(family)] == [party.id, picnic.id]
        assert [r.id for r in library.query_accessible(friend)] == [party.id]
        assert library.query_accessible(admin, {"search": "diary"}) == [diary]

        with pytest.raises(AccessDeniedError):
            library.get_record(friend, picnic.id)

        # The picnic was actually in 2024; its 2023 shard empties
        moved = library.edit_media(family, picnic.id, {"takenAt": "2024-07-14T12:00:00Z"})
        assert moved.year == 2024
        assert library.read_index().years == [2024]

        assert library.find_duplicate("h-picnic", 2024).existing_id == picnic.id
        assert library.find_duplicate("h-picnic", 2022) is None

        result = library.bulk_tag_operation(admin, [picnic.id, party.id], "add", ["family"])
        assert result.success_count == 2
        assert library.read_index().total_media == 3
        library.close()

        reopened = make_library(DuckDBDocumentBackend(db_path))
        try:
            assert reopened.verify_index().is_consistent
            records = reopened.query_accessible(family, {"tags": ["family", "picnic"]})
            assert [r.id for r in records] == [picnic.id]
            assert records[0].taken_at.year == 2024

            analytics = reopened.analytics(family)
            assert analytics.total_accessible == 2
            assert analytics.my_uploads == 1
        finally:
            reopened.close()
