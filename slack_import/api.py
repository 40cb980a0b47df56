"""
FastAPI backend for Slack Import.

Read-only view of the chat store, for checking what an import produced.
It never writes; run `slack-import import ...` to populate the store.
"""

from __future__ import annotations

import os
import sqlite3
from pathlib import Path
from typing import Any, Dict, List

from fastapi import FastAPI, HTTPException, Query

from slack_import.config import Config
from slack_import.etl.loaders import get_import_state, get_last_import_stats


def _get_store_path() -> Path:
    """Get the path to the chat store."""
    return Path(
        os.getenv(
            Config.DB_PATH_ENV,
            str(Config.DEFAULT_STORE_PATH / Config.DEFAULT_STORE_DB_NAME),
        )
    )


def _open_store() -> sqlite3.Connection:
    """
    Open the chat store read-only.

    Raises HTTPException (503) if the store doesn't exist yet.
    """
    path = _get_store_path()
    if not path.exists():
        raise HTTPException(
            status_code=503,
            detail={
                "error": "chat store not found",
                "message": "Run `slack-import import` first to populate the chat store",
                "path": str(path),
            },
        )
    return sqlite3.connect(f"file:{path}?mode=ro", uri=True)


app = FastAPI(
    title="Slack Import API",
    version="0.1.0",
    description="Read-only API over the chat store populated by Slack imports.",
)


@app.get("/health")
def health() -> Dict[str, Any]:
    """Health check - also reports whether the chat store exists."""
    path = _get_store_path()
    return {
        "status": "ok" if path.exists() else "degraded",
        "store_exists": path.exists(),
        "store_path": str(path),
    }


@app.get("/summary")
def summary() -> Dict[str, Any]:
    """Row counts and the last import run."""
    conn = _open_store()
    try:
        cursor = conn.cursor()
        counts = {}
        for table in ("users", "rooms", "memberships", "messages"):
            cursor.execute(f"SELECT COUNT(*) FROM {table}")
            counts[table] = cursor.fetchone()[0]

        return {
            "total_users": counts["users"],
            "total_rooms": counts["rooms"],
            "total_memberships": counts["memberships"],
            "total_messages": counts["messages"],
            "last_import_at": get_import_state(conn, "last_import_at"),
            "last_import_archive": get_import_state(conn, "last_import_archive"),
            "last_import_stats": get_last_import_stats(conn),
            "store_path": str(_get_store_path()),
        }
    finally:
        conn.close()


@app.get("/rooms")
def rooms() -> List[Dict[str, Any]]:
    """All rooms with member and message counts, busiest first."""
    conn = _open_store()
    try:
        cursor = conn.cursor()
        cursor.execute(
            """
            SELECT
                r.room_id,
                r.name,
                r.kind,
                (SELECT COUNT(*) FROM memberships mb WHERE mb.room_id = r.room_id),
                (SELECT COUNT(*) FROM messages m WHERE m.room_id = r.room_id)
            FROM rooms r
            ORDER BY 5 DESC, r.name
            """
        )
        return [
            {
                "room_id": room_id,
                "name": name,
                "kind": kind,
                "member_count": member_count,
                "message_count": message_count,
            }
            for room_id, name, kind, member_count, message_count in cursor.fetchall()
        ]
    finally:
        conn.close()


@app.get("/rooms/{room_id}/messages")
def room_messages(
    room_id: int,
    limit: int = Query(default=50, ge=1, le=500),
) -> List[Dict[str, Any]]:
    """The latest messages of a room, oldest first."""
    conn = _open_store()
    try:
        cursor = conn.cursor()
        cursor.execute("SELECT 1 FROM rooms WHERE room_id = ?", (room_id,))
        if cursor.fetchone() is None:
            raise HTTPException(status_code=404, detail=f"Room {room_id} not found")

        cursor.execute(
            """
            SELECT m.message_id, m.client_message_id, m.body, m.created_at, u.name
            FROM messages m
            JOIN users u ON m.creator_id = u.user_id
            WHERE m.room_id = ?
            ORDER BY m.created_at DESC, m.message_id DESC
            LIMIT ?
            """,
            (room_id, limit),
        )
        rows = cursor.fetchall()
        return [
            {
                "message_id": message_id,
                "client_message_id": client_message_id,
                "body": body,
                "created_at": created_at,
                "creator": creator,
            }
            for message_id, client_message_id, body, created_at, creator in reversed(rows)
        ]
    finally:
        conn.close()
