"""
Chat store connection management.

Provides the read-write connection the importer works through, with explicit
transaction control: one run-wide transaction and one savepoint per record.
"""

import sqlite3
from contextlib import closing, contextmanager
from pathlib import Path
from typing import Dict, Iterator, Optional, Union
import logging

logger = logging.getLogger(__name__)


class StoreConnection:
    """
    Connection manager for the chat store.

    The underlying sqlite3 connection runs in autocommit mode
    (``isolation_level=None``) so that BEGIN / SAVEPOINT / COMMIT are issued
    explicitly by :meth:`transaction` and :meth:`savepoint` rather than
    implicitly by the sqlite3 module.
    """

    def __init__(self, db_path: Union[str, Path], *, create: bool = True):
        """
        Initialize the store connection.

        Args:
            db_path: Path to the SQLite store file.
            create: Create the schema on connect if it doesn't exist yet.
        """
        self.db_path = Path(db_path)
        self.create = create
        self._connection: Optional[sqlite3.Connection] = None
        self._savepoint_seq = 0

    def __enter__(self):
        """Context manager entry."""
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()

    def connect(self) -> sqlite3.Connection:
        """
        Open the store, creating the schema first if requested.

        Raises:
            FileNotFoundError: If the store doesn't exist and create is False.
            sqlite3.Error: If the connection fails.
        """
        if self._connection is not None:
            return self._connection

        # Imported here: slack_import.etl imports this module.
        from slack_import.etl.schema import create_schema

        if self.create:
            create_schema(self.db_path)
        elif not self.db_path.exists():
            raise FileNotFoundError(f"Chat store not found: {self.db_path}")

        try:
            self._connection = sqlite3.connect(str(self.db_path), isolation_level=None)
            self._connection.execute("PRAGMA foreign_keys = ON;")
            logger.info(f"Connected to chat store: {self.db_path}")
            return self._connection
        except sqlite3.Error as e:
            logger.error(f"Failed to connect to chat store: {e}")
            raise

    def close(self) -> None:
        """Close the store connection."""
        if self._connection:
            self._connection.close()
            self._connection = None
            logger.info("Chat store connection closed")

    @property
    def connection(self) -> sqlite3.Connection:
        """
        Get the open connection.

        Raises:
            RuntimeError: If connect() hasn't been called.
        """
        if self._connection is None:
            raise RuntimeError("Store connection not established. Call connect() first.")
        return self._connection

    @property
    def in_transaction(self) -> bool:
        """True while a transaction opened by :meth:`transaction` is active."""
        return self._connection is not None and self._connection.in_transaction

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Run the enclosed block in one write transaction.

        Commits when the block exits normally, rolls back and re-raises when
        it raises. BEGIN IMMEDIATE takes the write lock up front so that a
        second writer fails fast instead of midway through a run.

        Raises:
            RuntimeError: If a transaction is already open on this connection.
        """
        conn = self.connection
        if conn.in_transaction:
            raise RuntimeError("A transaction is already open on this connection")

        conn.execute("BEGIN IMMEDIATE;")
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK;")
            logger.warning("Transaction rolled back")
            raise
        conn.execute("COMMIT;")

    @contextmanager
    def savepoint(self) -> Iterator[sqlite3.Connection]:
        """
        Run the enclosed block under a savepoint inside the open transaction.

        On error only the block's writes are undone; the exception is
        re-raised for the caller to record.
        """
        conn = self.connection
        self._savepoint_seq += 1
        name = f"sp_{self._savepoint_seq}"

        conn.execute(f"SAVEPOINT {name};")
        try:
            yield conn
        except BaseException:
            conn.execute(f"ROLLBACK TO SAVEPOINT {name};")
            conn.execute(f"RELEASE SAVEPOINT {name};")
            raise
        conn.execute(f"RELEASE SAVEPOINT {name};")

    def count_rows(self, table_name: str) -> int:
        """
        Count rows in one of the store tables.

        SQLite can't bind identifiers, so only known table names are accepted.

        Raises:
            ValueError: If table_name isn't a store table.
        """
        from slack_import.etl.schema import REQUIRED_TABLES

        if table_name not in REQUIRED_TABLES:
            raise ValueError(f"Unknown store table: {table_name}")

        with closing(self.connection.cursor()) as cursor:
            cursor.execute(f"SELECT COUNT(*) FROM {table_name};")
            result = cursor.fetchone()
            return result[0] if result else 0

    def get_row_counts(self) -> Dict[str, int]:
        """Get row counts for every store table."""
        from slack_import.etl.schema import REQUIRED_TABLES

        return {name: self.count_rows(name) for name in sorted(REQUIRED_TABLES)}
