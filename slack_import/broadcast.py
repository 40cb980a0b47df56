"""
Run context and real-time broadcast suppression.

A bulk import creates thousands of historical messages; none of them should
reach live subscribers. Instead of a process-wide "importing" flag, the
importer carries an :class:`ImportContext` through every persistence call
and the broadcaster consults it before emitting anything.
"""

from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional
import logging
import uuid

logger = logging.getLogger(__name__)

MessageListener = Callable[[int, Dict[str, Any]], None]


@dataclass
class ImportContext:
    """State shared by the persistence calls of one import run."""

    run_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    importing: bool = False


@contextmanager
def bulk_import(context: ImportContext) -> Iterator[ImportContext]:
    """
    Raise the bulk-import suppression signal for the enclosed block.

    The signal is reset when the block exits, whether it succeeds or raises.
    """
    context.importing = True
    logger.debug(f"Bulk import signal raised (run {context.run_id})")
    try:
        yield context
    finally:
        context.importing = False
        logger.debug(f"Bulk import signal reset (run {context.run_id})")


class RoomBroadcaster:
    """
    In-process stand-in for the real-time delivery component.

    Listeners register per room (or for every room) and receive
    ``(room_id, message)`` for each message created outside a bulk import.
    """

    def __init__(self) -> None:
        self._room_listeners: Dict[int, List[MessageListener]] = {}
        self._global_listeners: List[MessageListener] = []
        self.suppressed_count = 0
        self.delivered_count = 0

    def subscribe(self, listener: MessageListener, room_id: Optional[int] = None) -> None:
        """Register a listener for one room, or for all rooms when room_id is None."""
        if room_id is None:
            self._global_listeners.append(listener)
        else:
            self._room_listeners.setdefault(room_id, []).append(listener)

    def receive(self, context: ImportContext, room_id: int, message: Dict[str, Any]) -> bool:
        """
        Deliver a newly created message to the room's listeners.

        Returns:
            True if the message was delivered, False if it was suppressed
            because a bulk import is in progress.
        """
        if context.importing:
            self.suppressed_count += 1
            return False

        listeners = self._global_listeners + self._room_listeners.get(room_id, [])
        for listener in listeners:
            listener(room_id, message)

        self.delivered_count += 1
        logger.debug(f"Broadcast message to {len(listeners)} listener(s) in room {room_id}")
        return True
