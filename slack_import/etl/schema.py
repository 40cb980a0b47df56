"""
Schema definitions for the chat store.

The store holds the canonical entities the importer writes: users, rooms,
room memberships and messages, plus a small key/value table recording the
last import run.

Design Decisions:
    1. INTEGER autoincrement ids; source-platform ids are never stored, the
       per-run identity maps are the only bridge between the two id spaces
    2. UNIQUE(room_id, client_message_id) makes the dedup key a hard
       guarantee, not just a lookup convention
    3. ISO-8601 TEXT timestamps in UTC
    4. Room kind is a CHECK-constrained column instead of one table per kind
"""

import sqlite3
from pathlib import Path
from typing import List
import logging

logger = logging.getLogger(__name__)

SCHEMA_VERSION = "1.0.0"

ROOM_KINDS = ("open", "closed", "direct", "default")
INVOLVEMENTS = ("invisible", "nothing", "mentions", "everything")

SCHEMA_DDL = """
-- =============================================================================
-- users: people who can post in rooms
-- =============================================================================
-- email_address is optional (Slack users without a profile email) but unique
-- when present. Matching during import is case-insensitive.
--
CREATE TABLE IF NOT EXISTS users (
    user_id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL CHECK (length(trim(name)) > 0),
    email_address TEXT UNIQUE COLLATE NOCASE,
    active INTEGER NOT NULL DEFAULT 1 CHECK (active IN (0, 1)),
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_users_name ON users(name);

-- =============================================================================
-- rooms: open / closed / direct / default-fallback rooms
-- =============================================================================
CREATE TABLE IF NOT EXISTS rooms (
    room_id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL CHECK (length(trim(name)) > 0),
    kind TEXT NOT NULL CHECK (kind IN ('open', 'closed', 'direct', 'default')),
    creator_id INTEGER NOT NULL REFERENCES users(user_id),
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_rooms_name ON rooms(name, kind);

-- =============================================================================
-- memberships: which users belong to which rooms
-- =============================================================================
CREATE TABLE IF NOT EXISTS memberships (
    membership_id INTEGER PRIMARY KEY AUTOINCREMENT,
    room_id INTEGER NOT NULL REFERENCES rooms(room_id),
    user_id INTEGER NOT NULL REFERENCES users(user_id),
    involvement TEXT NOT NULL DEFAULT 'mentions'
        CHECK (involvement IN ('invisible', 'nothing', 'mentions', 'everything')),
    created_at TEXT NOT NULL,
    UNIQUE (room_id, user_id)
);

-- =============================================================================
-- messages: rich-text messages posted in rooms
-- =============================================================================
-- client_message_id is the dedup key: unique within a room. Imported messages
-- carry their historical time in both created_at and updated_at.
--
CREATE TABLE IF NOT EXISTS messages (
    message_id INTEGER PRIMARY KEY AUTOINCREMENT,
    room_id INTEGER NOT NULL REFERENCES rooms(room_id),
    creator_id INTEGER NOT NULL REFERENCES users(user_id),
    client_message_id TEXT NOT NULL,
    body TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE (room_id, client_message_id)
);

CREATE INDEX IF NOT EXISTS idx_messages_room_created
    ON messages(room_id, created_at);

CREATE INDEX IF NOT EXISTS idx_messages_creator
    ON messages(creator_id);

-- =============================================================================
-- import_state: bookkeeping for import runs
-- =============================================================================
-- Common keys:
--   - 'schema_version'
--   - 'last_import_at': wall-clock time the last run committed
--   - 'last_import_archive': path of the archive that run read
--   - 'last_import_stats': JSON rendering of its ImportStats
--
CREATE TABLE IF NOT EXISTS import_state (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

INSERT OR REPLACE INTO import_state (key, value, updated_at)
VALUES ('schema_version', '{schema_version}', strftime('%Y-%m-%dT%H:%M:%SZ', 'now'));
""".format(
    schema_version=SCHEMA_VERSION
)

REQUIRED_TABLES = {"users", "rooms", "memberships", "messages", "import_state"}


def create_schema(db_path: Path) -> None:
    """
    Create the chat store schema if it doesn't exist.

    Idempotent: every statement uses IF NOT EXISTS.

    Args:
        db_path: Path to the store file. Parent directory is created if needed.

    Raises:
        sqlite3.Error: If schema creation fails.
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)

    logger.info(f"Creating/verifying schema at: {db_path}")

    conn = sqlite3.connect(str(db_path))
    try:
        conn.execute("PRAGMA foreign_keys = ON;")
        conn.executescript(SCHEMA_DDL)
        conn.commit()

        logger.info(f"Schema created/verified successfully (version {SCHEMA_VERSION})")
    except sqlite3.Error as e:
        logger.error(f"Schema creation failed: {e}")
        raise
    finally:
        conn.close()


def get_table_names(db_path: Path) -> List[str]:
    """Get all table names in the store, sorted."""
    conn = sqlite3.connect(str(db_path))
    try:
        cursor = conn.execute(
            "SELECT name FROM sqlite_master "
            "WHERE type='table' AND name NOT LIKE 'sqlite_%' ORDER BY name;"
        )
        return [row[0] for row in cursor.fetchall()]
    finally:
        conn.close()


def verify_schema(db_path: Path) -> bool:
    """
    Verify that the store exists and has all required tables.

    Args:
        db_path: Path to the store file.

    Returns:
        True if schema is valid, False otherwise.
    """
    if not db_path.exists():
        return False

    existing_tables = set(get_table_names(db_path))
    return REQUIRED_TABLES.issubset(existing_tables)
