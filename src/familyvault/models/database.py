"""
DuckDB connection and schema management.

``:memory:`` is accepted as a path for throwaway databases.
"""

from pathlib import Path
from typing import Any

import duckdb

from ..logging_config import get_logger
from .schema import REQUIRED_COLUMNS, get_schema_statements, validate_schema_compatibility

logger = get_logger(__name__)

MEMORY_PATH = ":memory:"


class DatabaseManager:
    """
    Manages a DuckDB connection and the documents schema.
    """

    def __init__(self, db_path: str):
        """
        Initialize DatabaseManager.

        Args:
            db_path: Path to the DuckDB database file, or ``:memory:``
        """
        self.db_path = db_path
        self._connection: duckdb.DuckDBPyConnection | None = None

    @property
    def is_connected(self) -> bool:
        return self._connection is not None

    def connect(self) -> duckdb.DuckDBPyConnection:
        """
        Get or create the database connection.

        Returns:
            DuckDB connection object
        """
        if self._connection is None:
            self._connection = duckdb.connect(self.db_path)
            logger.info("duckdb_connected", db_path=self.db_path)

        return self._connection

    def close(self) -> None:
        """Close the database connection."""
        if self._connection is not None:
            self._connection.close()
            self._connection = None
            logger.info("duckdb_connection_closed", db_path=self.db_path)

    def initialize_schema(self) -> None:
        """
        Create the documents table if it does not exist.

        Raises:
            RuntimeError: If schema validation fails
            duckdb.Error: If database operations fail
        """
        if not validate_schema_compatibility():
            raise RuntimeError("Documents schema is missing required columns")

        conn = self.connect()
        try:
            for statement in get_schema_statements():
                conn.execute(statement)
            logger.info("database_schema_initialized", db_path=self.db_path)
        except duckdb.Error as e:
            logger.error("database_schema_initialization_failed", db_path=self.db_path, error=str(e))
            raise

    def verify_schema(self) -> bool:
        """
        Verify that the documents table exists with every required column.

        Returns:
            True if schema is valid, False otherwise
        """
        conn = self.connect()
        try:
            columns = conn.execute("PRAGMA table_info('documents')").fetchall()
        except duckdb.Error as e:
            logger.warning("schema_verification_failed", db_path=self.db_path, error=str(e))
            return False

        missing = REQUIRED_COLUMNS - {col[1] for col in columns}
        if missing:
            logger.warning("schema_missing_columns", db_path=self.db_path, missing=sorted(missing))
            return False
        return True

    def execute_query(self, query: str, parameters: tuple | list | None = None) -> list[tuple]:
        """
        Execute a parameterized SQL query and return all rows.

        Raises:
            duckdb.Error: If query execution fails
        """
        conn = self.connect()
        result = conn.execute(query, parameters) if parameters else conn.execute(query)
        return result.fetchall()

    def __enter__(self) -> "DatabaseManager":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()


def create_database(db_path: str) -> DatabaseManager:
    """
    Create and initialize a DuckDB database.

    Args:
        db_path: Path where the database file should be created

    Returns:
        Initialized DatabaseManager instance

    Raises:
        RuntimeError: If database creation fails
    """
    try:
        if db_path != MEMORY_PATH:
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        db_manager = DatabaseManager(db_path)
        db_manager.initialize_schema()

        if not db_manager.verify_schema():
            raise RuntimeError("Schema verification failed after creation")

        return db_manager
    except (OSError, duckdb.Error) as e:
        logger.error("database_creation_failed", db_path=db_path, error=str(e))
        raise RuntimeError(f"Database creation failed: {e}") from e


def get_database_manager(db_path: str, create_if_missing: bool = True) -> DatabaseManager:
    """
    Get a DatabaseManager, creating the database if it doesn't exist.

    Raises:
        FileNotFoundError: If database doesn't exist and create_if_missing is False
        RuntimeError: If database operations fail
    """
    if db_path == MEMORY_PATH or not Path(db_path).exists():
        if create_if_missing:
            return create_database(db_path)
        raise FileNotFoundError(f"Database file not found: {db_path}")

    db_manager = DatabaseManager(db_path)
    if not db_manager.verify_schema():
        logger.warning("schema_verification_failed_reinitializing", db_path=db_path)
        db_manager.initialize_schema()
    return db_manager
