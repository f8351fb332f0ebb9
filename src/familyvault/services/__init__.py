"""
Services module for familyvault.

This module contains the service classes that handle business logic:
- AccessControlEngine: Permission checks, queries, search and analytics
- DuplicateDetector: Content hash lookups across year shards
- MediaLibrary: Entry point tying storage, access control and duplicates together
"""

from .access_control import AccessControlEngine, MediaAnalytics, QueryFilters, SearchParams
from .duplicates import DuplicateDetector, DuplicateMatch, DuplicateStats
from .media_library import BulkResult, MediaLibrary, create_backend, get_media_library

__all__ = [
    "AccessControlEngine",
    "MediaAnalytics",
    "QueryFilters",
    "SearchParams",
    "DuplicateDetector",
    "DuplicateMatch",
    "DuplicateStats",
    "BulkResult",
    "MediaLibrary",
    "create_backend",
    "get_media_library",
]
