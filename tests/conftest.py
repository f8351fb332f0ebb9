"""
Pytest configuration and fixtures for familyvault tests.
"""

import itertools
import tempfile
from collections.abc import Generator
from datetime import datetime
from pathlib import Path
from typing import Any

import pytest

from familyvault.config import get_config
from familyvault.errors import StorageError
from familyvault.models.media import (
    DateInfo,
    GpsLocation,
    MediaFileMetadata,
    MediaRecord,
    MediaType,
    Visibility,
)
from familyvault.models.permissions import UserPermissions, create_user_permissions
from familyvault.services.media_library import MediaLibrary
from familyvault.storage.backend import Document, DocumentBackend, DocumentMutator
from familyvault.storage.cache import ShardCache
from familyvault.storage.duckdb_backend import DuckDBDocumentBackend

_ids = itertools.count(1)


def build_record(
    taken_at: str | datetime = "2024-06-15T10:00:00Z",
    tags: list[str] | None = None,
    visibility: Visibility | str = Visibility.FAMILY,
    uploaded_by: str = "uploader",
    content_hash: str | None = None,
    camera: str | None = None,
    gps: tuple[float | None, float | None] | None = None,
    media_type: MediaType | str = MediaType.PHOTO,
    **overrides: Any,
) -> MediaRecord:
    """Build a valid MediaRecord with a unique id and hash."""
    number = next(_ids)
    record_id = overrides.pop("id", f"media-{number:04d}")
    filename = overrides.pop("filename", f"IMG_{number:04d}.jpg")
    location = GpsLocation(latitude=gps[0], longitude=gps[1]) if gps is not None else None
    return MediaRecord(
        id=record_id,
        filename=filename,
        original_filename=overrides.pop("original_filename", filename),
        path=overrides.pop("path", f"originals/{filename}"),
        type=media_type,
        uploaded_by=uploaded_by,
        uploaded_at=overrides.pop("uploaded_at", "2024-12-01T00:00:00Z"),
        taken_at=taken_at,
        metadata=MediaFileMetadata(
            size=overrides.pop("size", 1024),
            content_hash=content_hash or f"hash-{record_id}",
            width=4000,
            height=3000,
            camera=camera,
            gps_location=location,
        ),
        date_info=DateInfo(source="exif", confidence="high"),
        tags=tags or [],
        visibility=visibility,
        **overrides,
    )


class FlakyBackend(DocumentBackend):
    """Backend wrapper that fails selected operations a number of times."""

    name = "flaky"

    def __init__(self, inner: DocumentBackend, failures: int = 0, operations: tuple[str, ...] = ("update",)):
        self.inner = inner
        self.failures = failures
        self.operations = operations
        self.calls: dict[str, int] = {}
        self.failed_keys: set[str] | None = None

    def _maybe_fail(self, operation: str, key: str) -> None:
        self.calls[operation] = self.calls.get(operation, 0) + 1
        if operation not in self.operations or self.failures <= 0:
            return
        if self.failed_keys is not None and key not in self.failed_keys:
            return
        self.failures -= 1
        raise StorageError(f"Simulated {operation} failure for {key}", code="simulated_failure")

    def read(self, key: str) -> Document | None:
        self._maybe_fail("read", key)
        return self.inner.read(key)

    def write(self, key: str, document: Document) -> None:
        self._maybe_fail("write", key)
        self.inner.write(key, document)

    def update(self, key: str, mutator: DocumentMutator) -> Document:
        self._maybe_fail("update", key)
        return self.inner.update(key, mutator)

    def delete(self, key: str) -> None:
        self._maybe_fail("delete", key)
        self.inner.delete(key)

    def list_keys(self, prefix: str = "") -> list[str]:
        return self.inner.list_keys(prefix)

    def close(self) -> None:
        self.inner.close()


def no_sleep(_seconds: float) -> None:
    return None


def make_library(backend: DocumentBackend, **kwargs: Any) -> MediaLibrary:
    """MediaLibrary without caching or retry delays."""
    kwargs.setdefault("cache", ShardCache(ttl_seconds=0))
    kwargs.setdefault("max_attempts", 3)
    kwargs.setdefault("base_delay", 0)
    kwargs.setdefault("max_delay", 0)
    kwargs.setdefault("duplicate_window", 1)
    kwargs.setdefault("sleep", no_sleep)
    return MediaLibrary(backend, **kwargs)


@pytest.fixture(autouse=True)
def clear_config_cache() -> Generator[None, None, None]:
    """Environment based settings are cached; reset around each test."""
    get_config().clear_cache()
    yield
    get_config().clear_cache()


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmp_dir:
        yield Path(tmp_dir)


@pytest.fixture
def backend() -> Generator[DuckDBDocumentBackend, None, None]:
    """In-memory DuckDB document backend."""
    instance = DuckDBDocumentBackend(":memory:")
    yield instance
    instance.close()


@pytest.fixture
def library(backend: DuckDBDocumentBackend) -> MediaLibrary:
    return make_library(backend)


@pytest.fixture
def admin() -> UserPermissions:
    return create_user_permissions("admin-1", "admin")


@pytest.fixture
def family_user() -> UserPermissions:
    return create_user_permissions("family-1", "family")


@pytest.fixture
def friend() -> UserPermissions:
    return create_user_permissions("friend-1", "friend")


@pytest.fixture
def guest() -> UserPermissions:
    return create_user_permissions("guest-1", "guest")
