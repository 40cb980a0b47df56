"""
Utility functions and classes for Slack Import.
"""


class Colors:
    """ANSI color codes for terminal output."""

    HEADER = "\033[95m"
    OKBLUE = "\033[94m"
    OKGREEN = "\033[92m"
    WARNING = "\033[93m"
    FAIL = "\033[91m"
    ENDC = "\033[0m"
    BOLD = "\033[1m"


def format_count(count: int) -> str:
    """
    Format a record count with appropriate units.

    Args:
        count: Number of records.

    Returns:
        Formatted string (e.g., "999", "1.2K" or "3.4M").
    """
    if count < 1000:
        return str(count)
    elif count < 1_000_000:
        return f"{count / 1000:.1f}K"
    else:
        return f"{count / 1_000_000:.1f}M"


def truncate(text: str, width: int = 60) -> str:
    """Shorten text to width characters, marking the cut with an ellipsis."""
    if len(text) <= width:
        return text
    return text[: max(width - 1, 0)] + "…"
