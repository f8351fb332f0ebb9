"""
Persistence substrate interface.

The shard store and index manager only ever talk to a ``DocumentBackend``: a
key to JSON-document store with an atomic ``update``. Backends translate their
driver errors into ``StorageError``.
"""

import json
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

from ..errors import StorageError

Document = dict[str, Any]
DocumentMutator = Callable[[Document | None], Document]


def encode_document(key: str, document: Document) -> str:
    """
    Serialize a document for storage.

    Raises:
        StorageError: If the document is not JSON serializable (not retryable)
    """
    try:
        return json.dumps(document, ensure_ascii=False, sort_keys=True)
    except (TypeError, ValueError) as e:
        raise StorageError(
            f"Document '{key}' is not JSON serializable: {e}",
            code="document_encode_failed",
            details={"key": key},
            retryable=False,
            original_exception=e,
        ) from e


def decode_document(key: str, raw: str | bytes) -> Document:
    """
    Parse a stored document.

    Raises:
        StorageError: If the stored content is not a JSON object
    """
    try:
        document = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise StorageError(
            f"Document '{key}' is malformed: {e}",
            code="malformed_document",
            details={"key": key},
            original_exception=e,
        ) from e

    if not isinstance(document, dict):
        raise StorageError(
            f"Document '{key}' is not a JSON object",
            code="malformed_document",
            details={"key": key, "document_type": type(document).__name__},
        )
    return document


class DocumentBackend(ABC):
    """Abstract key to JSON-document store."""

    name = "abstract"

    @abstractmethod
    def read(self, key: str) -> Document | None:
        """Return the stored document, or None if the key does not exist."""

    @abstractmethod
    def write(self, key: str, document: Document) -> None:
        """Store ``document`` under ``key``, replacing any previous version."""

    @abstractmethod
    def update(self, key: str, mutator: DocumentMutator) -> Document:
        """
        Atomically read, mutate and write a document.

        ``mutator`` receives the current document (None if absent) and returns
        the document to store. If the mutator raises nothing is written.

        Returns:
            The document as persisted
        """

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove the document. Missing keys are ignored."""

    @abstractmethod
    def list_keys(self, prefix: str = "") -> list[str]:
        """List stored keys starting with ``prefix``, sorted."""

    def close(self) -> None:
        """Release backend resources."""
