"""
Pytest fixtures for Slack Import tests.

This module provides shared fixtures for testing the import pipeline,
including sample Slack exports and chat stores.

Fixture Categories:
    1. Export fixtures (sample export directory, zipped export, builder)
    2. Store fixtures (empty store with a creator, populated store)

Design Notes:
    - Fixtures use tmp_path for isolation between tests
    - The sample export follows Slack's layout: users.json, channels.json
      and one folder of daily shard files per channel
"""

import json
import zipfile
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

from slack_import.database import StoreConnection
from slack_import.etl.loaders import create_user
from slack_import.etl.pipeline import run_import

CREATOR_EMAIL = "admin@example.com"


def pytest_configure(config):
    config.addinivalue_line("markers", "property: Hypothesis property-based tests")


SAMPLE_USERS: List[Dict[str, Any]] = [
    {
        "id": "U111111",
        "name": "alice",
        "real_name": "Alice Smith",
        "profile": {"real_name": "Alice Smith", "email": "alice@example.com"},
    },
    {
        "id": "U222222",
        "name": "bob",
        "real_name": "Bob Jones",
        "profile": {"real_name": "Bob Jones", "email": "bob@example.com"},
    },
]

SAMPLE_CHANNELS: List[Dict[str, Any]] = [
    {
        "id": "C123456",
        "name": "general",
        "type": "channel",
        "members": ["U111111", "U222222"],
    },
]

SAMPLE_MESSAGES: List[Dict[str, Any]] = [
    {
        "type": "message",
        "user": "U111111",
        "text": "Hello everyone!",
        "ts": "1699123400.000000",
        "client_msg_id": "msg-001",
    },
    {
        "type": "message",
        "user": "U222222",
        "text": "Hi <@U111111>! How are you?",
        "ts": "1699123456.000000",
        "client_msg_id": "msg-002",
    },
]


def write_export(
    root: Path,
    users: Optional[List[Dict[str, Any]]] = None,
    channels: Optional[List[Dict[str, Any]]] = None,
    messages: Optional[Dict[str, Dict[str, List[Dict[str, Any]]]]] = None,
) -> Path:
    """
    Write a Slack export directory.

    Args:
        root: Directory to create the export in.
        users: Contents of users.json (omitted when None).
        channels: Contents of channels.json (omitted when None).
        messages: channel id → shard file name → message array.

    Returns:
        The export root.
    """
    root.mkdir(parents=True, exist_ok=True)
    if users is not None:
        (root / "users.json").write_text(json.dumps(users), encoding="utf-8")
    if channels is not None:
        (root / "channels.json").write_text(json.dumps(channels), encoding="utf-8")
    for channel_id, shards in (messages or {}).items():
        channel_dir = root / channel_id
        channel_dir.mkdir(exist_ok=True)
        for shard_name, payload in shards.items():
            (channel_dir / shard_name).write_text(json.dumps(payload), encoding="utf-8")
    return root


# =============================================================================
# Export fixtures
# =============================================================================


@pytest.fixture
def sample_export(tmp_path: Path) -> Path:
    """
    Create a minimal Slack export with two users and one channel.

    Returns:
        Path to the export directory.
    """
    return write_export(
        tmp_path / "export",
        users=SAMPLE_USERS,
        channels=SAMPLE_CHANNELS,
        messages={"C123456": {"2023-11-04.json": SAMPLE_MESSAGES}},
    )


@pytest.fixture
def sample_export_zip(sample_export: Path, tmp_path: Path) -> Path:
    """The sample export zipped with a top-level folder, as Slack delivers it."""
    zip_path = tmp_path / "export.zip"
    with zipfile.ZipFile(zip_path, "w") as archive:
        for file_path in sorted(sample_export.rglob("*")):
            if file_path.is_file():
                archive.write(file_path, Path("Acme Slack export") / file_path.relative_to(sample_export))
    return zip_path


# =============================================================================
# Store fixtures
# =============================================================================


@pytest.fixture
def store_path(tmp_path: Path) -> Path:
    """
    Create an empty chat store holding only the creator user.

    Returns:
        Path to the store file.
    """
    db_path = tmp_path / "store.db"
    with StoreConnection(db_path) as store:
        with store.transaction() as conn:
            create_user(conn, "Admin", CREATOR_EMAIL)
    return db_path


@pytest.fixture
def store(store_path: Path):
    """Open connection to the store_path store."""
    with StoreConnection(store_path) as connection:
        yield connection


@pytest.fixture
def creator_id(store: StoreConnection) -> int:
    """User id of the creator in the store fixture."""
    row = store.connection.execute(
        "SELECT user_id FROM users WHERE email_address = ?;", (CREATOR_EMAIL,)
    ).fetchone()
    return row[0]


@pytest.fixture
def populated_store(sample_export: Path, store_path: Path) -> Path:
    """
    Chat store after one import of the sample export.

    Returns:
        Path to the store file.
    """
    run_import(sample_export, store_path, CREATOR_EMAIL)
    return store_path


@pytest.fixture
def make_export(tmp_path: Path):
    """
    Factory for custom exports.

    Usage:
        export = make_export(users=[...], channels=[...], messages={...})
    """
    counter = {"n": 0}

    def _make(**kwargs: Any) -> Path:
        counter["n"] += 1
        return write_export(tmp_path / f"custom_export_{counter['n']}", **kwargs)

    return _make
