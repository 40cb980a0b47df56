"""
ETL Loaders for the chat store.

Find and create functions for the canonical entities. Each write is a single
INSERT; none of them commits. The importer owns the transaction, so one
failing record can be undone with its savepoint and a fatal error undoes the
whole run.

Design Decisions:
    1. Lookups before inserts ("find or create") instead of INSERT OR IGNORE,
       so the caller always knows whether a row was created or reused
    2. Validation happens here, before SQL, and raises RecordInvalid; the
       schema's constraints are the second line of defense (sqlite3.Error)
    3. Message timestamps are supplied by the caller; only users, rooms and
       memberships are stamped with the wall clock
"""

import json
import sqlite3
from contextlib import closing
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional
import logging

from slack_import.etl.schema import INVOLVEMENTS, ROOM_KINDS

logger = logging.getLogger(__name__)


class RecordInvalid(ValueError):
    """A single record can't be persisted; the run continues without it."""


@dataclass(frozen=True)
class UserRef:
    """Reference to a user row."""

    user_id: int
    name: str
    email: Optional[str] = None


@dataclass(frozen=True)
class RoomRef:
    """Reference to a room row."""

    room_id: int
    name: str
    kind: str


def _now_iso() -> str:
    """Get current UTC timestamp in ISO-8601 format."""
    return datetime.now(tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


# =============================================================================
# Users
# =============================================================================


def find_user_by_id(conn: sqlite3.Connection, user_id: int) -> Optional[UserRef]:
    """Look up a user by primary key."""
    with closing(conn.cursor()) as cursor:
        cursor.execute(
            "SELECT user_id, name, email_address FROM users WHERE user_id = ?;", (user_id,)
        )
        row = cursor.fetchone()
    return UserRef(*row) if row else None


def find_user_by_email(conn: sqlite3.Connection, email: str) -> Optional[UserRef]:
    """Look up a user by email address (case-insensitive)."""
    with closing(conn.cursor()) as cursor:
        cursor.execute(
            "SELECT user_id, name, email_address FROM users "
            "WHERE email_address = ? COLLATE NOCASE LIMIT 1;",
            (email.strip(),),
        )
        row = cursor.fetchone()
    return UserRef(*row) if row else None


def find_active_user_by_name(conn: sqlite3.Connection, name: str) -> Optional[UserRef]:
    """Look up the oldest active user with exactly this name."""
    with closing(conn.cursor()) as cursor:
        cursor.execute(
            "SELECT user_id, name, email_address FROM users "
            "WHERE name = ? AND active = 1 ORDER BY user_id LIMIT 1;",
            (name,),
        )
        row = cursor.fetchone()
    return UserRef(*row) if row else None


def create_user(conn: sqlite3.Connection, name: str, email: Optional[str] = None) -> UserRef:
    """
    Insert an active user.

    Raises:
        RecordInvalid: If the name is blank.
        sqlite3.IntegrityError: If the email is already taken.
    """
    if not name or not name.strip():
        raise RecordInvalid("Name can't be blank")

    now = _now_iso()
    with closing(conn.cursor()) as cursor:
        cursor.execute(
            "INSERT INTO users (name, email_address, active, created_at, updated_at) "
            "VALUES (?, ?, 1, ?, ?);",
            (name, email, now, now),
        )
        user_id = cursor.lastrowid

    logger.debug(f"Created user {user_id}: {name}")
    return UserRef(user_id=user_id, name=name, email=email)


# =============================================================================
# Rooms and memberships
# =============================================================================


def find_room(conn: sqlite3.Connection, name: str, kind: str) -> Optional[RoomRef]:
    """
    Look up a room by name.

    Open, closed and direct rooms only match rooms of the same kind; the
    default kind matches a room of any kind with that name.
    """
    query = "SELECT room_id, name, kind FROM rooms WHERE name = ?"
    params: tuple = (name,)
    if kind != "default":
        query += " AND kind = ?"
        params = (name, kind)
    query += " ORDER BY room_id LIMIT 1;"

    with closing(conn.cursor()) as cursor:
        cursor.execute(query, params)
        row = cursor.fetchone()
    return RoomRef(*row) if row else None


def create_room(conn: sqlite3.Connection, name: Optional[str], kind: str, creator_id: int) -> RoomRef:
    """
    Insert a room owned by creator_id.

    Raises:
        RecordInvalid: If the name is blank or the kind unknown.
    """
    if not name or not name.strip():
        raise RecordInvalid("Name can't be blank")
    if kind not in ROOM_KINDS:
        raise RecordInvalid(f"Unknown room kind: {kind}")

    now = _now_iso()
    with closing(conn.cursor()) as cursor:
        cursor.execute(
            "INSERT INTO rooms (name, kind, creator_id, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?);",
            (name, kind, creator_id, now, now),
        )
        room_id = cursor.lastrowid

    logger.debug(f"Created {kind} room {room_id}: {name}")
    return RoomRef(room_id=room_id, name=name, kind=kind)


def default_involvement(kind: str) -> str:
    """Direct rooms notify on everything; other rooms on mentions only."""
    return "everything" if kind == "direct" else "mentions"


def membership_exists(conn: sqlite3.Connection, room_id: int, user_id: int) -> bool:
    """Check whether user_id already belongs to room_id."""
    with closing(conn.cursor()) as cursor:
        cursor.execute(
            "SELECT 1 FROM memberships WHERE room_id = ? AND user_id = ? LIMIT 1;",
            (room_id, user_id),
        )
        return cursor.fetchone() is not None


def create_membership(
    conn: sqlite3.Connection,
    room_id: int,
    user_id: int,
    involvement: str = "mentions",
) -> int:
    """
    Insert a membership.

    Returns:
        The new membership id.
    """
    if involvement not in INVOLVEMENTS:
        raise RecordInvalid(f"Unknown involvement: {involvement}")

    with closing(conn.cursor()) as cursor:
        cursor.execute(
            "INSERT INTO memberships (room_id, user_id, involvement, created_at) "
            "VALUES (?, ?, ?, ?);",
            (room_id, user_id, involvement, _now_iso()),
        )
        return cursor.lastrowid


# =============================================================================
# Messages
# =============================================================================


def message_exists(conn: sqlite3.Connection, room_id: int, client_message_id: str) -> bool:
    """Check whether a message with this dedup key is already in the room."""
    with closing(conn.cursor()) as cursor:
        cursor.execute(
            "SELECT 1 FROM messages WHERE room_id = ? AND client_message_id = ? LIMIT 1;",
            (room_id, client_message_id),
        )
        return cursor.fetchone() is not None


def create_message(
    conn: sqlite3.Connection,
    room_id: int,
    creator_id: int,
    client_message_id: str,
    body: str,
    created_at: Optional[str],
) -> Dict[str, Any]:
    """
    Insert a message with a historical timestamp.

    created_at is used for both created_at and updated_at.

    Returns:
        The inserted row as a dict (handed to the broadcaster).

    Raises:
        RecordInvalid: If the dedup key or timestamp is missing.
        sqlite3.IntegrityError: If the dedup key is already used in the room.
    """
    if not client_message_id:
        raise RecordInvalid("Client message id can't be blank")
    if not created_at:
        raise RecordInvalid("Timestamp is missing or invalid")

    with closing(conn.cursor()) as cursor:
        cursor.execute(
            "INSERT INTO messages "
            "(room_id, creator_id, client_message_id, body, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?);",
            (room_id, creator_id, client_message_id, body, created_at, created_at),
        )
        message_id = cursor.lastrowid

    return {
        "message_id": message_id,
        "room_id": room_id,
        "creator_id": creator_id,
        "client_message_id": client_message_id,
        "body": body,
        "created_at": created_at,
        "updated_at": created_at,
    }


# =============================================================================
# Import state
# =============================================================================


def update_import_state(conn: sqlite3.Connection, key: str, value: str) -> None:
    """Update or insert an import state value."""
    with closing(conn.cursor()) as cursor:
        cursor.execute(
            "INSERT OR REPLACE INTO import_state (key, value, updated_at) VALUES (?, ?, ?);",
            (key, value, _now_iso()),
        )

    logger.debug(f"Updated import state: {key} = {value}")


def get_import_state(conn: sqlite3.Connection, key: str) -> Optional[str]:
    """Get an import state value, or None if not set."""
    with closing(conn.cursor()) as cursor:
        cursor.execute("SELECT value FROM import_state WHERE key = ?;", (key,))
        result = cursor.fetchone()
        return result[0] if result else None


def get_last_import_stats(conn: sqlite3.Connection) -> Optional[Dict[str, Any]]:
    """Get the stats recorded by the last committed import run."""
    raw = get_import_state(conn, "last_import_stats")
    return json.loads(raw) if raw else None
