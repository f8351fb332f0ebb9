"""
Database schema definitions for the DuckDB document backend.

Every shard and the index are stored as one JSON document per key.
"""

DOCUMENTS_TABLE_SCHEMA = """
CREATE TABLE IF NOT EXISTS documents (
    key TEXT PRIMARY KEY,
    document TEXT NOT NULL,
    version BIGINT NOT NULL DEFAULT 1,
    updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
);
"""

REQUIRED_COLUMNS = frozenset({"key", "document", "version", "updated_at"})

ALL_SCHEMA_STATEMENTS = [DOCUMENTS_TABLE_SCHEMA]


def get_schema_statements() -> list[str]:
    """
    Get all database schema creation statements.

    Returns:
        List of SQL statements to create tables
    """
    return list(ALL_SCHEMA_STATEMENTS)


def validate_schema_compatibility() -> bool:
    """
    Check that the documents table definition declares every required column.

    Returns:
        True if schema is compatible, False otherwise
    """
    schema_lower = DOCUMENTS_TABLE_SCHEMA.lower()
    return all(column in schema_lower for column in REQUIRED_COLUMNS)
