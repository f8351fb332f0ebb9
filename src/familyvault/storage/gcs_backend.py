"""
Google Cloud Storage document backend.

Each key is stored as ``<prefix>/<key>.json`` in the metadata bucket. Updates
are guarded with object generation preconditions: when another writer
replaced the object between our read and our write the upload is rejected
and a ``ShardConflictError`` is raised for the retry wrapper to repeat.
Any other client failure, including transport errors raised by the HTTP
layer, becomes a retryable ``StorageError``.
"""

from google.api_core.exceptions import PreconditionFailed
from google.cloud import storage  # type: ignore[attr-defined]
from google.cloud.exceptions import NotFound

from ..config import get_metadata_bucket, get_metadata_prefix, get_project_id
from ..errors import ShardConflictError, StorageError
from ..logging_config import get_logger
from .backend import Document, DocumentBackend, DocumentMutator, decode_document, encode_document

logger = get_logger(__name__)

_CONTENT_TYPE = "application/json"


class GCSDocumentBackend(DocumentBackend):
    """Document store on a GCS bucket."""

    name = "gcs"

    def __init__(
        self,
        bucket_name: str | None = None,
        prefix: str | None = None,
        project_id: str | None = None,
        client: storage.Client | None = None,
    ) -> None:
        """
        Initialize the backend.

        Args:
            bucket_name: Metadata bucket (defaults to GCS_METADATA_BUCKET)
            prefix: Object name prefix (defaults to GCS_METADATA_PREFIX)
            project_id: GCP project ID (defaults to GOOGLE_CLOUD_PROJECT)
            client: Pre-built storage client
        """
        self.bucket_name = bucket_name or get_metadata_bucket()
        self.prefix = (prefix if prefix is not None else get_metadata_prefix()).strip("/")
        self.project_id = project_id or get_project_id()

        try:
            self.client = client or storage.Client(project=self.project_id)
            self.bucket = self.client.bucket(self.bucket_name)
        except Exception as e:
            raise StorageError(
                f"Failed to initialize GCS client: {e}",
                code="gcs_init_failed",
                details={"bucket": self.bucket_name},
                original_exception=e,
            ) from e

        logger.info("gcs_document_backend_ready", bucket=self.bucket_name, prefix=self.prefix)

    def _object_name(self, key: str) -> str:
        return f"{self.prefix}/{key}.json" if self.prefix else f"{key}.json"

    def _key_from_object(self, name: str) -> str:
        if self.prefix:
            name = name[len(self.prefix) + 1 :]
        return name[: -len(".json")] if name.endswith(".json") else name

    def _storage_error(self, operation: str, key: str, error: Exception) -> StorageError:
        return StorageError(
            f"GCS {operation} failed for '{key}': {error}",
            code=f"gcs_{operation}_failed",
            details={"key": key, "operation": operation, "bucket": self.bucket_name},
            original_exception=error,
        )

    def read(self, key: str) -> Document | None:
        blob = self.bucket.blob(self._object_name(key))
        try:
            raw = blob.download_as_text()
        except NotFound:
            return None
        except Exception as e:
            raise self._storage_error("read", key, e) from e
        return decode_document(key, raw)

    def write(self, key: str, document: Document) -> None:
        payload = encode_document(key, document)
        blob = self.bucket.blob(self._object_name(key))
        try:
            blob.upload_from_string(payload, content_type=_CONTENT_TYPE)
        except Exception as e:
            raise self._storage_error("write", key, e) from e

    def update(self, key: str, mutator: DocumentMutator) -> Document:
        name = self._object_name(key)
        try:
            existing = self.bucket.get_blob(name)
            if existing is None:
                raw, generation = None, 0
            else:
                generation = existing.generation
                raw = existing.download_as_text(if_generation_match=generation)
        except (NotFound, PreconditionFailed) as e:
            raise ShardConflictError(
                f"Document '{key}' changed while it was being read", details={"key": key, "error": str(e)}
            ) from e
        except Exception as e:
            raise self._storage_error("read", key, e) from e

        current = decode_document(key, raw) if raw is not None else None
        payload = encode_document(key, mutator(current))

        try:
            self.bucket.blob(name).upload_from_string(
                payload, content_type=_CONTENT_TYPE, if_generation_match=generation
            )
        except PreconditionFailed as e:
            logger.warning("gcs_update_conflict", key=key, expected_generation=generation)
            raise ShardConflictError(
                f"Document '{key}' was modified concurrently", details={"key": key, "generation": generation}
            ) from e
        except Exception as e:
            raise self._storage_error("write", key, e) from e

        return decode_document(key, payload)

    def delete(self, key: str) -> None:
        try:
            self.bucket.blob(self._object_name(key)).delete()
        except NotFound:
            return
        except Exception as e:
            raise self._storage_error("delete", key, e) from e

    def list_keys(self, prefix: str = "") -> list[str]:
        object_prefix = f"{self.prefix}/{prefix}" if self.prefix else prefix
        try:
            names = [blob.name for blob in self.client.list_blobs(self.bucket_name, prefix=object_prefix)]
        except Exception as e:
            raise self._storage_error("list", prefix, e) from e
        return sorted(self._key_from_object(name) for name in names if name.endswith(".json"))
