"""
Models module for familyvault.

This module contains data models and schemas:
- MediaRecord: Metadata of one photo or video
- Shard / MediaIndex: Year shard and year index documents
- UserPermissions: Role based permission sets
- DatabaseManager: DuckDB connection and schema management
"""

from .database import DatabaseManager, create_database, get_database_manager
from .media import DateInfo, GpsLocation, MediaFileMetadata, MediaRecord, MediaType, Visibility
from .permissions import CustomAccess, PermissionSet, Role, UserPermissions, create_user_permissions
from .schema import get_schema_statements, validate_schema_compatibility
from .shard import MediaIndex, Shard

__all__ = [
    "MediaRecord",
    "MediaFileMetadata",
    "MediaType",
    "Visibility",
    "DateInfo",
    "GpsLocation",
    "Shard",
    "MediaIndex",
    "Role",
    "PermissionSet",
    "CustomAccess",
    "UserPermissions",
    "create_user_permissions",
    "DatabaseManager",
    "create_database",
    "get_database_manager",
    "get_schema_statements",
    "validate_schema_compatibility",
]
