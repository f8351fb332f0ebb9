"""
DuckDB document backend.

Documents live in the ``documents`` table. ``update`` runs its read and write
inside one transaction while holding the backend lock, so concurrent updates
of the same key within the process are serialized instead of lost.
"""

import threading
from datetime import UTC, datetime

import duckdb

from ..errors import StorageError
from ..logging_config import get_logger
from ..models.database import MEMORY_PATH, DatabaseManager, get_database_manager
from .backend import Document, DocumentBackend, DocumentMutator, decode_document, encode_document

logger = get_logger(__name__)

_UPSERT_SQL = """
INSERT INTO documents (key, document, version, updated_at)
VALUES (?, ?, 1, ?)
ON CONFLICT (key) DO UPDATE SET
    document = excluded.document,
    version = version + 1,
    updated_at = excluded.updated_at
"""


def _utc_now() -> datetime:
    # Stored in a TIMESTAMP column, so naive UTC
    return datetime.now(UTC).replace(tzinfo=None)


class DuckDBDocumentBackend(DocumentBackend):
    """Document store on an embedded DuckDB database."""

    name = "duckdb"

    def __init__(self, db_path: str = MEMORY_PATH, db_manager: DatabaseManager | None = None):
        """
        Open (and if needed create) the document database.

        Args:
            db_path: DuckDB file path, ``:memory:`` for a private in-memory store
            db_manager: Pre-built manager, mainly for tests
        """
        try:
            self._db = db_manager or get_database_manager(db_path, create_if_missing=True)
        except (RuntimeError, duckdb.Error) as e:
            raise StorageError(
                f"Failed to open document database at {db_path}: {e}",
                code="database_open_failed",
                details={"db_path": db_path},
                original_exception=e,
            ) from e
        self._lock = threading.RLock()
        logger.info("duckdb_document_backend_ready", db_path=self._db.db_path)

    @property
    def db_path(self) -> str:
        return self._db.db_path

    def _storage_error(self, operation: str, key: str | None, error: Exception) -> StorageError:
        return StorageError(
            f"DuckDB {operation} failed for '{key}': {error}",
            code=f"duckdb_{operation}_failed",
            details={"key": key, "operation": operation, "db_path": self._db.db_path},
            original_exception=error,
        )

    def read(self, key: str) -> Document | None:
        with self._lock:
            try:
                rows = self._db.execute_query("SELECT document FROM documents WHERE key = ?", (key,))
            except duckdb.Error as e:
                raise self._storage_error("read", key, e) from e

        if not rows:
            return None
        return decode_document(key, rows[0][0])

    def write(self, key: str, document: Document) -> None:
        payload = encode_document(key, document)
        with self._lock:
            try:
                self._db.connect().execute(_UPSERT_SQL, (key, payload, _utc_now()))
            except duckdb.Error as e:
                raise self._storage_error("write", key, e) from e

    def update(self, key: str, mutator: DocumentMutator) -> Document:
        with self._lock:
            try:
                conn = self._db.connect()
                conn.begin()
            except duckdb.Error as e:
                raise self._storage_error("begin", key, e) from e

            try:
                rows = conn.execute("SELECT document FROM documents WHERE key = ?", (key,)).fetchall()
                current = decode_document(key, rows[0][0]) if rows else None
                payload = encode_document(key, mutator(current))
                conn.execute(_UPSERT_SQL, (key, payload, _utc_now()))
                conn.commit()
            except duckdb.Error as e:
                self._rollback(conn, key)
                raise self._storage_error("update", key, e) from e
            except BaseException:
                self._rollback(conn, key)
                raise

        return decode_document(key, payload)

    def _rollback(self, conn: duckdb.DuckDBPyConnection, key: str) -> None:
        try:
            conn.rollback()
        except duckdb.Error as e:
            logger.warning("duckdb_rollback_failed", key=key, error=str(e))

    def delete(self, key: str) -> None:
        with self._lock:
            try:
                self._db.connect().execute("DELETE FROM documents WHERE key = ?", (key,))
            except duckdb.Error as e:
                raise self._storage_error("delete", key, e) from e

    def list_keys(self, prefix: str = "") -> list[str]:
        with self._lock:
            try:
                rows = self._db.execute_query(
                    "SELECT key FROM documents WHERE starts_with(key, ?) ORDER BY key", (prefix,)
                )
            except duckdb.Error as e:
                raise self._storage_error("list", prefix, e) from e
        return [row[0] for row in rows]

    def document_version(self, key: str) -> int | None:
        """Number of times ``key`` has been written, None if absent."""
        with self._lock:
            try:
                rows = self._db.execute_query("SELECT version FROM documents WHERE key = ?", (key,))
            except duckdb.Error as e:
                raise self._storage_error("read", key, e) from e
        return int(rows[0][0]) if rows else None

    def close(self) -> None:
        with self._lock:
            self._db.close()
