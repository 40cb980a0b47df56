"""
ETL (Extract, Transform, Load) module for Slack Import.

Replays a Slack export archive into the chat store.

Architecture Overview:
    Slack export (read-only)       Chat store (read-write)
    ├── users.json            →    users
    ├── channels.json         →    rooms, memberships
    └── <channel_id>/*.json   →    messages
                                   import_state

Key Design Decisions:
    1. The export is untrusted input: raw records have total accessors and a
       corrupt shard never stops the run
    2. Normalization is pure, so reruns derive identical names and dedup keys
    3. Source ids only live in per-run identity maps, never in the store
    4. One transaction per run, one savepoint per record
"""

from slack_import.etl.schema import create_schema, verify_schema, SCHEMA_VERSION
from slack_import.etl.extractors import (
    ArchiveError,
    ExportReader,
    RawChannel,
    RawFile,
    RawMessage,
    RawUser,
)
from slack_import.etl.normalizers import (
    derive_client_message_id,
    derive_direct_message_name,
    normalize_message_body,
    normalize_room_name,
    normalize_user_email,
    normalize_user_name,
    room_kind_for,
    slack_timestamp_to_time,
)
from slack_import.etl.loaders import RecordInvalid, RoomRef, UserRef
from slack_import.etl.identity import IdentityMap, resolve_room, resolve_user
from slack_import.etl.pipeline import (
    ImportAbortedError,
    ImportStats,
    RecordResult,
    SlackImporter,
    get_import_status,
    run_import,
)
from slack_import.etl.validation import validate_store, ValidationResult

__all__ = [
    # Schema
    "create_schema",
    "verify_schema",
    "SCHEMA_VERSION",
    # Extractors
    "ArchiveError",
    "ExportReader",
    "RawChannel",
    "RawFile",
    "RawMessage",
    "RawUser",
    # Normalizers
    "derive_client_message_id",
    "derive_direct_message_name",
    "normalize_message_body",
    "normalize_room_name",
    "normalize_user_email",
    "normalize_user_name",
    "room_kind_for",
    "slack_timestamp_to_time",
    # Loaders
    "RecordInvalid",
    "RoomRef",
    "UserRef",
    # Identity
    "IdentityMap",
    "resolve_room",
    "resolve_user",
    # Pipeline
    "ImportAbortedError",
    "ImportStats",
    "RecordResult",
    "SlackImporter",
    "get_import_status",
    "run_import",
    # Validation
    "validate_store",
    "ValidationResult",
]
