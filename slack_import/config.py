"""
Configuration module for Slack Import.

Handles the three settings an import run needs:

    - archive path: the Slack export (directory or .zip) to read from
    - store path: the SQLite chat store the import writes into
    - creator email: the existing store user that owns created rooms

Each setting can be passed explicitly or picked up from the environment
(SLACK_IMPORT_ARCHIVE, SLACK_IMPORT_DB_PATH, SLACK_IMPORT_CREATOR_EMAIL).
"""

import os
from pathlib import Path
from typing import Optional


class Config:
    """Configuration class for Slack Import."""

    DEFAULT_STORE_PATH = Path.home() / ".slack_import"
    DEFAULT_STORE_DB_NAME = "store.db"

    ARCHIVE_ENV = "SLACK_IMPORT_ARCHIVE"
    DB_PATH_ENV = "SLACK_IMPORT_DB_PATH"
    CREATOR_EMAIL_ENV = "SLACK_IMPORT_CREATOR_EMAIL"

    def __init__(
        self,
        archive_path: Optional[str] = None,
        db_path: Optional[str] = None,
        creator_email: Optional[str] = None,
    ):
        """
        Initialize configuration.

        Args:
            archive_path: Optional path to the Slack export. Falls back to
                    SLACK_IMPORT_ARCHIVE; stays None when neither is set.
            db_path: Optional path to the chat store. Falls back to
                    SLACK_IMPORT_DB_PATH, then ~/.slack_import/store.db.
            creator_email: Email of the store user that will own created rooms.
                    Falls back to SLACK_IMPORT_CREATOR_EMAIL.
        """
        archive_path = archive_path or os.getenv(self.ARCHIVE_ENV)
        self._archive_path: Optional[Path] = Path(archive_path) if archive_path else None

        db_path = db_path or os.getenv(self.DB_PATH_ENV)
        self._db_path: Path
        if db_path:
            self._db_path = Path(db_path)
        else:
            self._db_path = self.DEFAULT_STORE_PATH / self.DEFAULT_STORE_DB_NAME

        self._creator_email: Optional[str] = (
            creator_email or os.getenv(self.CREATOR_EMAIL_ENV) or None
        )

    @property
    def archive_path(self) -> Optional[Path]:
        """Get the Slack export path (source)."""
        return self._archive_path

    @property
    def archive_path_str(self) -> Optional[str]:
        """Get the Slack export path as a string."""
        return str(self._archive_path) if self._archive_path else None

    @property
    def db_path(self) -> Path:
        """Get the chat store path (target)."""
        return self._db_path

    @property
    def db_path_str(self) -> str:
        """Get the chat store path as a string."""
        return str(self._db_path)

    @property
    def creator_email(self) -> Optional[str]:
        """Get the email of the user that owns imported rooms."""
        return self._creator_email

    def validate_archive(self) -> bool:
        """
        Validate that the export exists and is readable.

        Both an extracted export directory and a .zip file are accepted.

        Returns:
            True if the archive exists and is readable, False otherwise.
        """
        if not self._archive_path:
            return False
        if not self._archive_path.exists():
            return False
        return os.access(self._archive_path, os.R_OK)

    def ensure_db_dir(self) -> None:
        """Create the chat store parent directory if it doesn't exist."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)


# Global configuration instance
_config: Optional[Config] = None


def get_config(
    archive_path: Optional[str] = None,
    db_path: Optional[str] = None,
    creator_email: Optional[str] = None,
) -> Config:
    """
    Get or create the global configuration instance.

    Passing any argument rebuilds the instance.

    Returns:
        Config instance.
    """
    global _config
    overrides = (archive_path, db_path, creator_email)
    if _config is None or any(value is not None for value in overrides):
        _config = Config(archive_path, db_path, creator_email)
    return _config


def set_config(config: Config) -> None:
    """
    Set the global configuration instance.

    Args:
        config: Config instance to use.
    """
    global _config
    _config = config
