"""
ETL Extractors for Slack export archives.

A Slack export is a fixed-layout directory tree (optionally zipped):

    users.json              array of user objects
    channels.json           array of channel objects
    <channel_id>/*.json     one or more shard files per channel, each an
                            array of message objects

Design Decisions:
    1. Never trust the export to be complete: every raw record is a dataclass
       with total accessors, missing strings become None, missing flags False
       and missing lists empty
    2. The two top-level files are required to be well-formed; a corrupt
       users.json or channels.json aborts the run (ArchiveError)
    3. A corrupt shard is logged and contributes no messages; its siblings
       are still read
    4. Message order is shard filename (ascending), then array position.
       Slack names shards by day (2023-11-04.json), so this is chronological
"""

import json
import shutil
import tempfile
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union
import logging

logger = logging.getLogger(__name__)

USERS_FILE = "users.json"
CHANNELS_FILE = "channels.json"


class ArchiveError(Exception):
    """The export can't be read at all; the import run must abort."""


def _text(value: Any) -> Optional[str]:
    """Coerce a scalar JSON value to str; containers and null become None."""
    if value is None or isinstance(value, (dict, list)):
        return None
    if isinstance(value, bool):
        return str(value).lower()
    return value if isinstance(value, str) else str(value)


def _flag(value: Any) -> bool:
    """Slack flags are JSON booleans; anything else truthy counts as set."""
    return bool(value) if not isinstance(value, str) else value.lower() == "true"


def _mapping(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


# =============================================================================
# Raw record types
# =============================================================================


@dataclass
class RawUser:
    """User object from users.json."""

    id: Optional[str] = None
    name: Optional[str] = None
    real_name: Optional[str] = None
    profile_real_name: Optional[str] = None
    profile_email: Optional[str] = None
    deleted: bool = False
    is_bot: bool = False
    data: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RawUser":
        profile = _mapping(data.get("profile"))
        return cls(
            id=_text(data.get("id")),
            name=_text(data.get("name")),
            real_name=_text(data.get("real_name")),
            profile_real_name=_text(profile.get("real_name")),
            profile_email=_text(profile.get("email")),
            deleted=_flag(data.get("deleted")),
            is_bot=_flag(data.get("is_bot")),
            data=data,
        )


@dataclass
class RawChannel:
    """Channel object from channels.json."""

    id: Optional[str] = None
    name: Optional[str] = None
    type: Optional[str] = None
    is_archived: bool = False
    members: List[str] = field(default_factory=list)
    data: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RawChannel":
        members = data.get("members")
        member_ids = [] if not isinstance(members, list) else members
        return cls(
            id=_text(data.get("id")),
            name=_text(data.get("name")),
            type=_text(data.get("type")),
            is_archived=_flag(data.get("is_archived")),
            members=[m for m in (_text(member) for member in member_ids) if m],
            data=data,
        )


@dataclass
class RawFile:
    """File attachment entry of a message."""

    url_private: Optional[str] = None
    permalink: Optional[str] = None
    name: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RawFile":
        return cls(
            url_private=_text(data.get("url_private")),
            permalink=_text(data.get("permalink")),
            name=_text(data.get("name")),
        )


@dataclass
class RawMessage:
    """Message object from a channel shard file."""

    user: Optional[str] = None
    text: Optional[str] = None
    ts: Optional[str] = None
    client_msg_id: Optional[str] = None
    thread_ts: Optional[str] = None
    subtype: Optional[str] = None
    files: List[RawFile] = field(default_factory=list)
    data: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RawMessage":
        files = data.get("files")
        return cls(
            user=_text(data.get("user")),
            text=_text(data.get("text")),
            ts=_text(data.get("ts")),
            client_msg_id=_text(data.get("client_msg_id")),
            thread_ts=_text(data.get("thread_ts")),
            subtype=_text(data.get("subtype")),
            files=[RawFile.from_dict(f) for f in files if isinstance(f, dict)]
            if isinstance(files, list)
            else [],
            data=data,
        )


# =============================================================================
# Export reader
# =============================================================================


def _is_safe_member(name: str, base_dir: Path) -> bool:
    """True if a zip entry stays inside base_dir once extracted."""
    try:
        target = (base_dir / name).resolve()
        return target.is_relative_to(base_dir.resolve())
    except (ValueError, RuntimeError):
        return False


class ExportReader:
    """
    Reads raw records from a Slack export directory or .zip file.

    Use as a context manager (or call close()) so that a zip export's
    temporary extraction directory is removed.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._root: Optional[Path] = None
        self._workdir: Optional[Path] = None
        self._users: Optional[List[RawUser]] = None
        self._channels: Optional[List[RawChannel]] = None

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    @property
    def root(self) -> Path:
        """Directory holding users.json, channels.json and the channel folders."""
        return self.open()

    def open(self) -> Path:
        """
        Locate (and, for zip exports, extract) the archive.

        Raises:
            ArchiveError: If the path doesn't exist or isn't a readable export.
        """
        if self._root is not None:
            return self._root

        if not self.path.exists():
            raise ArchiveError(f"Export not found: {self.path}")

        if self.path.is_dir():
            self._root = self.path
        elif zipfile.is_zipfile(self.path):
            self._root = self._extract_zip()
        else:
            raise ArchiveError(f"Export is neither a directory nor a zip file: {self.path}")

        logger.info(f"Reading Slack export from: {self._root}")
        return self._root

    def close(self) -> None:
        """Remove the temporary extraction directory of a zip export."""
        if self._workdir is not None:
            shutil.rmtree(self._workdir, ignore_errors=True)
            self._workdir = None
            self._root = None

    def _extract_zip(self) -> Path:
        workdir = Path(tempfile.mkdtemp(prefix="slack_export_"))
        self._workdir = workdir
        try:
            with zipfile.ZipFile(self.path) as archive:
                for info in archive.infolist():
                    if not _is_safe_member(info.filename, workdir):
                        logger.warning(f"Skipping zip entry outside export: {info.filename}")
                        continue
                    archive.extract(info, workdir)
        except (zipfile.BadZipFile, OSError) as e:
            self.close()
            raise ArchiveError(f"Cannot extract export {self.path}: {e}") from e

        # Exports zipped by hand often wrap everything in one top-level folder
        if not (workdir / CHANNELS_FILE).exists():
            nested = [p for p in workdir.iterdir() if p.is_dir() and (p / CHANNELS_FILE).exists()]
            if len(nested) == 1:
                return nested[0]
        return workdir

    def _read_json_array(self, relative: Path, *, required: bool) -> List[Dict[str, Any]]:
        """
        Read a JSON array of objects from the export.

        Args:
            relative: Path relative to the export root.
            required: Whether a malformed file is fatal (top-level files) or
                only worth a warning (shards).
        """
        file_path = self.root / relative
        if not file_path.exists():
            logger.warning(f"Export file missing: {relative}")
            return []

        try:
            payload = json.loads(file_path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError, OSError) as e:
            if required:
                raise ArchiveError(f"Failed to parse {relative}: {e}") from e
            logger.warning(f"Failed to parse JSON file {relative}: {e}")
            return []

        if not isinstance(payload, list):
            if required:
                raise ArchiveError(f"{relative} must contain a JSON array")
            logger.warning(f"Ignoring {relative}: expected a JSON array")
            return []

        records = [item for item in payload if isinstance(item, dict)]
        if len(records) != len(payload):
            logger.warning(f"Dropped {len(payload) - len(records)} non-object entries in {relative}")
        return records

    def list_users(self) -> List[RawUser]:
        """Users from users.json, in file order."""
        if self._users is None:
            self._users = [
                RawUser.from_dict(item)
                for item in self._read_json_array(Path(USERS_FILE), required=True)
            ]
            logger.info(f"Extracted {len(self._users)} users from export")
        return self._users

    def list_channels(self) -> List[RawChannel]:
        """Channels from channels.json, in file order."""
        if self._channels is None:
            self._channels = [
                RawChannel.from_dict(item)
                for item in self._read_json_array(Path(CHANNELS_FILE), required=True)
            ]
            logger.info(f"Extracted {len(self._channels)} channels from export")
        return self._channels

    def message_files_for_channel(self, channel_id: Optional[str]) -> List[Path]:
        """Shard files of a channel, sorted by file name."""
        if not channel_id or channel_id in (".", "..") or "/" in channel_id or "\\" in channel_id:
            return []

        channel_dir = self.root / channel_id
        if not channel_dir.is_dir():
            return []

        return sorted(
            (p for p in channel_dir.glob("*.json") if p.is_file()),
            key=lambda p: p.name,
        )

    def messages_for_channel(self, channel_id: Optional[str]) -> List[RawMessage]:
        """
        All messages of a channel in import order.

        Shards are concatenated by ascending file name; within a shard the
        array order is kept.
        """
        messages: List[RawMessage] = []
        for shard in self.message_files_for_channel(channel_id):
            relative = shard.relative_to(self.root)
            messages.extend(
                RawMessage.from_dict(item)
                for item in self._read_json_array(relative, required=False)
            )

        logger.debug(f"Extracted {len(messages)} messages for channel {channel_id}")
        return messages

    def all_channels_with_messages(self) -> Iterator[Tuple[RawChannel, List[RawMessage]]]:
        """Pair each channel (channels.json order) with its messages."""
        for channel in self.list_channels():
            yield channel, self.messages_for_channel(channel.id)
