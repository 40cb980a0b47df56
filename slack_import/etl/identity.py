"""
Identity resolution for the Slack import.

Slack ids (U123, C456) never enter the chat store. During a run, two
identity maps translate them to the store rows they were matched to or
created as; the maps are built phase by phase and dropped when the run ends.

Resolution Strategy (users):
    1. Profile email present: reuse the user with that email (any case),
       otherwise create one with the email
    2. No email: reuse the oldest active user with exactly that name,
       otherwise create one without an email

Resolution Strategy (rooms):
    Find by (name, kind), otherwise create owned by the run's creator.
    Direct-message rooms are named after their two participants, so the
    user map must be complete before rooms are resolved.
"""

import sqlite3
from typing import Dict, Generic, Iterator, Literal, Mapping, Optional, Tuple, TypeVar
import logging

from slack_import.etl.loaders import (
    RoomRef,
    UserRef,
    create_room,
    create_user,
    find_active_user_by_name,
    find_room,
    find_user_by_email,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class IdentityMap(Mapping[str, T], Generic[T]):
    """
    Append-only mapping from source-platform ids to store references.

    Once an id is mapped it keeps its target for the rest of the run.
    """

    def __init__(self, label: str):
        self.label = label
        self._entries: Dict[str, T] = {}

    def __getitem__(self, source_id: str) -> T:
        return self._entries[source_id]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"IdentityMap({self.label!r}, {len(self)} entries)"

    def add(self, source_id: str, target: T) -> bool:
        """
        Map source_id to target.

        Returns:
            True if the entry is new, False if it was already mapped to target.

        Raises:
            ValueError: If source_id is already mapped to a different target.
        """
        existing = self._entries.get(source_id)
        if existing is not None:
            if existing != target:
                raise ValueError(
                    f"{self.label} id {source_id} already mapped to {existing}, not {target}"
                )
            return False

        self._entries[source_id] = target
        return True


UserMap = IdentityMap[UserRef]
RoomMap = IdentityMap[RoomRef]

# "matched" is an email hit; "reused" is a name hit for a user without email
UserOutcome = Literal["created", "matched", "reused"]


def resolve_user(
    conn: sqlite3.Connection,
    name: str,
    email: Optional[str],
) -> Tuple[UserRef, UserOutcome]:
    """
    Match a Slack user to a store user, creating one if needed.

    Args:
        conn: Connection to the chat store (inside the run transaction).
        name: Normalized display name.
        email: Normalized email, or None.

    Returns:
        Tuple of (user reference, outcome). Only a name match is
        reported as "reused"; it is the one counted as an updated user.
    """
    if email:
        existing = find_user_by_email(conn, email)
        if existing:
            logger.debug(f"Matched user by email: {email} → {existing.user_id}")
            return existing, "matched"
        return create_user(conn, name, email), "created"

    existing = find_active_user_by_name(conn, name)
    if existing:
        logger.debug(f"Matched user by name: {name} → {existing.user_id}")
        return existing, "reused"
    return create_user(conn, name, None), "created"


def resolve_room(
    conn: sqlite3.Connection,
    name: Optional[str],
    kind: str,
    creator_id: int,
) -> Tuple[RoomRef, bool]:
    """
    Match a channel to a store room, creating one if needed.

    Returns:
        Tuple of (room reference, True if the room was created).
    """
    if name:
        existing = find_room(conn, name, kind)
        if existing:
            logger.debug(f"Matched {kind} room by name: {name} → {existing.room_id}")
            return existing, False
    return create_room(conn, name, kind, creator_id), True
