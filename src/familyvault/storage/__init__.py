"""
Storage module for familyvault.

This module contains the persistence layer:
- DocumentBackend: Key to JSON document store (DuckDB or GCS)
- ShardStore: Year shard reads and updates
- IndexManager: Index of populated years
- ShardCache: TTL cache of decoded shards
- with_retry: Bounded retries for transient failures
"""

from .backend import DocumentBackend
from .cache import ShardCache
from .index_manager import IndexManager, IndexVerification
from .retry import with_retry
from .shard_store import ShardStore

__all__ = [
    "DocumentBackend",
    "ShardCache",
    "IndexManager",
    "IndexVerification",
    "ShardStore",
    "with_retry",
]
