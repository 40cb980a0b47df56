"""
Slack Import - replays a Slack export into a chat store.

This package provides functionality to:
- Read Slack export archives (directory or .zip)
- Import users, rooms and messages idempotently
- Inspect and validate the resulting chat store
"""

__version__ = "0.1.0"

from slack_import.config import get_config, Config
from slack_import.database import StoreConnection

__all__ = [
    "get_config",
    "Config",
    "StoreConnection",
]
