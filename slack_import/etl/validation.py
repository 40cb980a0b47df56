"""
Post-import validation of the chat store.

Run after an import to confirm the store is consistent. Each check returns a
ValidationCheck; validate_store() runs them all.

Validation Checks:
    1. Dedup keys are unique within each room
    2. No orphaned messages (room and creator exist)
    3. No orphaned memberships (room and user exist)
    4. Message timestamps are ISO-8601 and created_at == updated_at
    5. Direct rooms have at most two members
"""

import re
import sqlite3
from contextlib import closing
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional
import logging

logger = logging.getLogger(__name__)

# ISO-8601 UTC timestamp with optional fraction, as written by format_time()
ISO8601_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(\.\d{1,6})?Z$")


@dataclass
class ValidationCheck:
    """Result of a single validation check."""

    name: str
    passed: bool
    message: str
    details: Optional[str] = None


@dataclass
class ValidationResult:
    """Result of all validation checks."""

    passed: bool
    checks: List[ValidationCheck] = field(default_factory=list)

    def __str__(self) -> str:
        lines = []
        for check in self.checks:
            icon = "✓" if check.passed else "✗"
            lines.append(f"{icon} {check.name}: {check.message}")
            if check.details and not check.passed:
                lines.append(f"  → {check.details}")

        status = "All checks passed" if self.passed else "Some checks failed"
        lines.append(f"\n{status}.")
        return "\n".join(lines)


def _scalar(conn: sqlite3.Connection, query: str) -> int:
    with closing(conn.cursor()) as cursor:
        cursor.execute(query)
        result = cursor.fetchone()
        return result[0] if result and result[0] is not None else 0


def check_unique_dedup_keys(conn: sqlite3.Connection) -> ValidationCheck:
    """Verify no room holds two messages with the same client message id."""
    duplicates = _scalar(
        conn,
        """
        SELECT COUNT(*) FROM (
            SELECT room_id, client_message_id
            FROM messages
            GROUP BY room_id, client_message_id
            HAVING COUNT(*) > 1
        );
        """,
    )
    return ValidationCheck(
        name="Dedup keys",
        passed=duplicates == 0,
        message="unique per room" if duplicates == 0 else f"{duplicates} duplicated keys",
        details="Messages were imported more than once" if duplicates else None,
    )


def check_orphaned_messages(conn: sqlite3.Connection) -> ValidationCheck:
    """Verify every message points at an existing room and creator."""
    orphans = _scalar(
        conn,
        """
        SELECT COUNT(*) FROM messages m
        LEFT JOIN rooms r ON m.room_id = r.room_id
        LEFT JOIN users u ON m.creator_id = u.user_id
        WHERE r.room_id IS NULL OR u.user_id IS NULL;
        """,
    )
    return ValidationCheck(
        name="Orphaned messages",
        passed=orphans == 0,
        message="none" if orphans == 0 else f"{orphans} messages",
        details="Messages reference missing rooms or users" if orphans else None,
    )


def check_orphaned_memberships(conn: sqlite3.Connection) -> ValidationCheck:
    """Verify every membership points at an existing room and user."""
    orphans = _scalar(
        conn,
        """
        SELECT COUNT(*) FROM memberships mb
        LEFT JOIN rooms r ON mb.room_id = r.room_id
        LEFT JOIN users u ON mb.user_id = u.user_id
        WHERE r.room_id IS NULL OR u.user_id IS NULL;
        """,
    )
    return ValidationCheck(
        name="Orphaned memberships",
        passed=orphans == 0,
        message="none" if orphans == 0 else f"{orphans} memberships",
    )


def check_message_timestamps(conn: sqlite3.Connection, sample_size: int = 1000) -> ValidationCheck:
    """
    Verify message timestamps are ISO-8601 and untouched since import.

    Checks the most recent sample_size messages.
    """
    with closing(conn.cursor()) as cursor:
        cursor.execute(
            "SELECT created_at, updated_at FROM messages ORDER BY message_id DESC LIMIT ?;",
            (sample_size,),
        )
        rows = cursor.fetchall()

    if not rows:
        return ValidationCheck(name="Message timestamps", passed=True, message="no messages")

    malformed = sum(1 for created, _ in rows if not ISO8601_PATTERN.match(created or ""))
    drifted = sum(1 for created, updated in rows if created != updated)
    passed = malformed == 0 and drifted == 0

    return ValidationCheck(
        name="Message timestamps",
        passed=passed,
        message=f"{len(rows) - malformed}/{len(rows)} valid",
        details=f"{malformed} malformed, {drifted} with updated_at != created_at"
        if not passed
        else None,
    )


def check_direct_rooms(conn: sqlite3.Connection) -> ValidationCheck:
    """Verify direct rooms have at most two members."""
    crowded = _scalar(
        conn,
        """
        SELECT COUNT(*) FROM (
            SELECT r.room_id
            FROM rooms r
            JOIN memberships mb ON mb.room_id = r.room_id
            WHERE r.kind = 'direct'
            GROUP BY r.room_id
            HAVING COUNT(*) > 2
        );
        """,
    )
    return ValidationCheck(
        name="Direct rooms",
        passed=crowded == 0,
        message="at most two members each" if crowded == 0 else f"{crowded} with >2 members",
        details="Different conversations may have been merged into one room" if crowded else None,
    )


def validate_store(db_path: Path) -> ValidationResult:
    """
    Run all validation checks against the chat store.

    Args:
        db_path: Path to the store file.

    Returns:
        ValidationResult with every check.
    """
    if not db_path.exists():
        return ValidationResult(
            passed=False,
            checks=[ValidationCheck("Chat store", False, f"not found at {db_path}")],
        )

    conn = sqlite3.connect(f"file:{db_path}?mode=ro", uri=True)
    try:
        checks = [
            check_unique_dedup_keys(conn),
            check_orphaned_messages(conn),
            check_orphaned_memberships(conn),
            check_message_timestamps(conn),
            check_direct_rooms(conn),
        ]
    finally:
        conn.close()

    result = ValidationResult(passed=all(c.passed for c in checks), checks=checks)
    logger.info(f"Validation {'passed' if result.passed else 'failed'} ({len(checks)} checks)")
    return result
