"""
Slack import pipeline orchestration.

Replays a Slack export into the chat store in three ordered phases:

    1. Users:    users.json → users            (builds the user identity map)
    2. Rooms:    channels.json → rooms + memberships (builds the room map)
    3. Messages: <channel>/*.json → messages   (uses both maps)

The whole run is one transaction: it commits at the end or, on a fatal
error, rolls back every phase. Each record runs under its own savepoint and
produces a RecordResult; a failed record is rolled back alone, reported in
ImportStats.errors, and the phase moves on.

Reruns are idempotent: users and rooms are found before they are created,
memberships are only added when missing, and a message whose dedup key is
already in its room is skipped.
"""

import json
import sqlite3
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Union
import logging

from slack_import.broadcast import ImportContext, RoomBroadcaster, bulk_import
from slack_import.database import StoreConnection
from slack_import.etl.extractors import ExportReader, RawChannel, RawMessage, RawUser
from slack_import.etl.identity import IdentityMap, RoomMap, UserMap, resolve_room, resolve_user
from slack_import.etl.loaders import (
    RecordInvalid,
    RoomRef,
    create_membership,
    create_message,
    default_involvement,
    find_user_by_email,
    find_user_by_id,
    get_import_state,
    get_last_import_stats,
    membership_exists,
    message_exists,
    update_import_state,
)
from slack_import.etl.normalizers import (
    derive_client_message_id,
    derive_direct_message_name,
    format_time,
    normalize_message_body,
    normalize_room_name,
    normalize_user_email,
    normalize_user_name,
    room_kind_for,
    slack_timestamp_to_time,
)
from slack_import.etl.schema import verify_schema

logger = logging.getLogger(__name__)

Outcome = Literal["created", "matched", "reused", "skipped", "ignored", "failed"]

# Errors a single record can cause without putting the run at risk
RECORD_ERRORS = (RecordInvalid, sqlite3.IntegrityError)


class ImportAbortedError(Exception):
    """The run can't start or continue; nothing it wrote is kept."""


@dataclass
class RecordResult:
    """Outcome of processing one raw record."""

    outcome: Outcome
    error: Optional[str] = None
    memberships_created: int = 0

    @classmethod
    def failed(cls, error: str) -> "RecordResult":
        return cls(outcome="failed", error=error)


@dataclass
class ImportStats:
    """Counters and errors of one import run."""

    users_created: int = 0
    users_updated: int = 0
    rooms_created: int = 0
    memberships_created: int = 0
    messages_created: int = 0
    messages_skipped: int = 0
    messages_ignored: int = 0
    errors: List[str] = field(default_factory=list)
    archive_path: Optional[str] = None
    duration_seconds: float = 0.0

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def __str__(self) -> str:
        status = "OK" if not self.errors else f"{len(self.errors)} error(s)"
        return (
            f"Slack import {status}\n"
            f"  Users: {self.users_created} created, {self.users_updated} matched by name\n"
            f"  Rooms: {self.rooms_created} created, "
            f"{self.memberships_created} memberships added\n"
            f"  Messages: {self.messages_created} created, {self.messages_skipped} "
            f"already imported, {self.messages_ignored} ignored\n"
            f"  Duration: {self.duration_seconds:.2f}s"
        )


class SlackImporter:
    """
    Imports one Slack export into the chat store.

    Args:
        store: Open store connection (no transaction in progress).
        archive_path: Slack export directory or .zip file.
        creator_id: Store user that owns the rooms the import creates.
        broadcaster: Real-time delivery component; it sees every created
            message but stays silent while the import runs.
        context: Run context carrying the bulk-import signal.
    """

    def __init__(
        self,
        store: StoreConnection,
        archive_path: Union[str, Path],
        creator_id: int,
        broadcaster: Optional[RoomBroadcaster] = None,
        context: Optional[ImportContext] = None,
    ):
        self.store = store
        self.archive_path = Path(archive_path)
        self.creator_id = creator_id
        self.broadcaster = broadcaster or RoomBroadcaster()
        self.context = context or ImportContext()

    def run(self) -> ImportStats:
        """
        Run all three phases in one transaction.

        Returns:
            ImportStats of the run. Per-record problems are reported in
            ImportStats.errors, never raised.

        Raises:
            ArchiveError: If the export or its top-level files are unreadable.
            ImportAbortedError: If the creator doesn't exist.
            sqlite3.Error: On store failures that aren't tied to one record.
        """
        start_time = datetime.now()
        stats = ImportStats(archive_path=str(self.archive_path))

        with ExportReader(self.archive_path) as reader:
            raw_users = reader.list_users()
            raw_channels = reader.list_channels()

            with bulk_import(self.context):
                with self.store.transaction() as conn:
                    if find_user_by_id(conn, self.creator_id) is None:
                        raise ImportAbortedError(f"Creator user {self.creator_id} not found")

                    logger.info(f"Starting Slack import from {self.archive_path}")

                    logger.info("Phase 1: Importing users...")
                    user_map = self._upsert_users(raw_users, stats)

                    logger.info("Phase 2: Importing rooms and memberships...")
                    room_map = self._upsert_rooms(raw_channels, user_map, stats)

                    logger.info("Phase 3: Importing messages...")
                    self._import_messages(reader, raw_channels, room_map, user_map, stats)

                    stats.duration_seconds = (datetime.now() - start_time).total_seconds()
                    self._record_run(conn, stats)

        logger.info(f"Slack import completed. {stats}")
        return stats

    # -------------------------------------------------------------------------
    # Phase 1: users
    # -------------------------------------------------------------------------

    def _upsert_users(self, raw_users: List[RawUser], stats: ImportStats) -> UserMap:
        user_map: UserMap = IdentityMap("user")

        for raw in raw_users:
            if raw.deleted or raw.is_bot:
                continue

            result = self._upsert_user(raw, user_map)
            if result.outcome == "created":
                stats.users_created += 1
            elif result.outcome == "reused":
                stats.users_updated += 1
            elif result.error:
                stats.errors.append(result.error)

        logger.info(
            f"Users: {stats.users_created} created, {stats.users_updated} matched by name, "
            f"{len(user_map)} mapped"
        )
        return user_map

    def _upsert_user(self, raw: RawUser, user_map: UserMap) -> RecordResult:
        name = normalize_user_name(raw)
        email = normalize_user_email(raw)

        if raw.id and raw.id in user_map:
            return RecordResult.failed(f"User creation failed for {name}: duplicate Slack id {raw.id}")

        try:
            with self.store.savepoint() as conn:
                user, outcome = resolve_user(conn, name, email)
        except RECORD_ERRORS as e:
            logger.warning(f"Failed to create user {name}: {e}")
            return RecordResult.failed(f"User creation failed for {name}: {e}")

        if raw.id:
            user_map.add(raw.id, user)
        return RecordResult(outcome)

    # -------------------------------------------------------------------------
    # Phase 2: rooms and memberships
    # -------------------------------------------------------------------------

    def _upsert_rooms(
        self,
        raw_channels: List[RawChannel],
        user_map: UserMap,
        stats: ImportStats,
    ) -> RoomMap:
        room_map: RoomMap = IdentityMap("room")

        for raw in raw_channels:
            if raw.is_archived:
                continue

            result = self._upsert_room(raw, user_map, room_map)
            if result.outcome == "failed":
                stats.errors.append(result.error or "Room creation failed")
                continue
            if result.outcome == "created":
                stats.rooms_created += 1
            stats.memberships_created += result.memberships_created

        logger.info(
            f"Rooms: {stats.rooms_created} created, {stats.memberships_created} "
            f"memberships added, {len(room_map)} mapped"
        )
        return room_map

    def _upsert_room(self, raw: RawChannel, user_map: UserMap, room_map: RoomMap) -> RecordResult:
        kind = room_kind_for(raw)
        if kind == "direct":
            room_name = derive_direct_message_name(raw.members, raw.id, user_map)
        else:
            room_name = normalize_room_name(raw)

        if raw.id and raw.id in room_map:
            return RecordResult.failed(f"Room creation failed for {room_name}: duplicate Slack id {raw.id}")

        try:
            with self.store.savepoint() as conn:
                room, created = resolve_room(conn, room_name, kind, self.creator_id)
                added = self._add_memberships(conn, room, raw.members, user_map)
        except RECORD_ERRORS as e:
            logger.warning(f"Failed to create room {room_name}: {e}")
            return RecordResult.failed(f"Room creation failed for {room_name}: {e}")

        if raw.id:
            room_map.add(raw.id, room)
        return RecordResult("created" if created else "reused", memberships_created=added)

    def _add_memberships(
        self,
        conn: sqlite3.Connection,
        room: RoomRef,
        member_ids: List[str],
        user_map: UserMap,
    ) -> int:
        added = 0
        for member_id in member_ids:
            user = user_map.get(member_id)
            if user is None:
                continue
            if membership_exists(conn, room.room_id, user.user_id):
                continue
            create_membership(conn, room.room_id, user.user_id, default_involvement(room.kind))
            added += 1
        return added

    # -------------------------------------------------------------------------
    # Phase 3: messages
    # -------------------------------------------------------------------------

    def _import_messages(
        self,
        reader: ExportReader,
        raw_channels: List[RawChannel],
        room_map: RoomMap,
        user_map: UserMap,
        stats: ImportStats,
    ) -> None:
        for channel in raw_channels:
            room = room_map.get(channel.id) if channel.id else None
            if room is None:
                continue

            for raw in reader.messages_for_channel(channel.id):
                result = self._import_message(raw, room, user_map, channel.id)
                if result.outcome == "created":
                    stats.messages_created += 1
                elif result.outcome == "skipped":
                    stats.messages_skipped += 1
                elif result.outcome == "ignored":
                    stats.messages_ignored += 1
                elif result.error:
                    stats.errors.append(result.error)

        logger.info(
            f"Messages: {stats.messages_created} created, {stats.messages_skipped} "
            f"already imported, {stats.messages_ignored} ignored"
        )

    def _import_message(
        self,
        raw: RawMessage,
        room: RoomRef,
        user_map: UserMap,
        channel_id: str,
    ) -> RecordResult:
        # System messages (joins, topic changes, bot posts) and unattributable
        # messages have no author in the store.
        if raw.subtype or not raw.user or not raw.user.strip():
            return RecordResult("ignored")

        creator = user_map.get(raw.user)
        if creator is None:
            logger.debug(f"Ignoring message at {raw.ts} in {room.name}: unmapped user {raw.user}")
            return RecordResult("ignored")

        client_message_id = derive_client_message_id(raw, channel_id)

        try:
            with self.store.savepoint() as conn:
                if message_exists(conn, room.room_id, client_message_id):
                    return RecordResult("skipped")

                body = normalize_message_body(raw, user_map)
                created = slack_timestamp_to_time(raw.ts)
                message = create_message(
                    conn,
                    room.room_id,
                    creator.user_id,
                    client_message_id,
                    body,
                    format_time(created) if created else None,
                )
                self.broadcaster.receive(self.context, room.room_id, message)
        except RECORD_ERRORS as e:
            logger.warning(f"Failed to create message in {room.name}: {e}")
            return RecordResult.failed(f"Message creation failed in {room.name} at {raw.ts}: {e}")
        except sqlite3.OperationalError:
            raise
        except Exception as e:
            logger.error(f"Unexpected error importing message: {e}")
            return RecordResult.failed(f"Unexpected error in {room.name} at {raw.ts}: {e}")

        return RecordResult("created")

    def _record_run(self, conn: sqlite3.Connection, stats: ImportStats) -> None:
        now_iso = datetime.now(tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        update_import_state(conn, "last_import_at", now_iso)
        update_import_state(conn, "last_import_archive", str(self.archive_path))
        update_import_state(conn, "last_import_stats", json.dumps(stats.as_dict()))


def run_import(
    archive_path: Union[str, Path],
    db_path: Union[str, Path],
    creator_email: str,
    broadcaster: Optional[RoomBroadcaster] = None,
) -> ImportStats:
    """
    Import a Slack export into the chat store at db_path.

    The store schema is created if needed; the creator must already exist.

    Raises:
        ImportAbortedError: If no user has creator_email.
        ArchiveError: If the export is unreadable.
    """
    with StoreConnection(db_path) as store:
        creator = find_user_by_email(store.connection, creator_email)
        if creator is None:
            raise ImportAbortedError(f"No user with email {creator_email} to own imported rooms")

        importer = SlackImporter(store, archive_path, creator.user_id, broadcaster=broadcaster)
        return importer.run()


def get_import_status(db_path: Path) -> Dict[str, Any]:
    """
    Get a summary of the chat store and its last import run.

    Returns:
        Dictionary with row counts and import state.
    """
    if not db_path.exists():
        return {"exists": False}

    if not verify_schema(db_path):
        return {"exists": True, "schema_valid": False}

    with StoreConnection(db_path, create=False) as store:
        conn = store.connection
        counts = store.get_row_counts()
        return {
            "exists": True,
            "schema_valid": True,
            "user_count": counts["users"],
            "room_count": counts["rooms"],
            "membership_count": counts["memberships"],
            "message_count": counts["messages"],
            "schema_version": get_import_state(conn, "schema_version"),
            "last_import_at": get_import_state(conn, "last_import_at"),
            "last_import_archive": get_import_state(conn, "last_import_archive"),
            "last_import_stats": get_last_import_stats(conn),
        }
