"""
Visualization of imported chat data.

Plots built with plotly graph objects from the chat store, used by the
`slack-import plot` command to eyeball an import (which rooms got the
messages, and whether the history spans the expected period).
"""

import sqlite3
from contextlib import closing
from typing import Any, Dict, List, Optional
import logging

import plotly.graph_objects as go  # type: ignore[import-untyped]

logger = logging.getLogger(__name__)


def get_messages_per_room(conn: sqlite3.Connection) -> List[Dict[str, Any]]:
    """
    Count messages per room, busiest first.

    Returns:
        List of dictionaries with 'room' and 'message_count'.
    """
    query = """
        SELECT r.name, COUNT(m.message_id)
        FROM rooms r
        LEFT JOIN messages m ON m.room_id = r.room_id
        GROUP BY r.room_id
        ORDER BY 2 DESC, r.name;
    """
    with closing(conn.cursor()) as cursor:
        cursor.execute(query)
        return [{"room": name, "message_count": count} for name, count in cursor.fetchall()]


def get_daily_message_counts(conn: sqlite3.Connection) -> List[Dict[str, Any]]:
    """
    Count messages per day of their (historical) creation time.

    Returns:
        List of dictionaries with 'date' (YYYY-MM-DD) and 'message_count'.
    """
    query = """
        SELECT substr(created_at, 1, 10) AS day, COUNT(*)
        FROM messages
        GROUP BY day
        ORDER BY day;
    """
    with closing(conn.cursor()) as cursor:
        cursor.execute(query)
        return [{"date": day, "message_count": count} for day, count in cursor.fetchall()]


def plot_messages_by_room(
    stats: List[Dict[str, Any]], output_file: Optional[str] = None
) -> go.Figure:
    """
    Bar chart of message counts per room.

    Args:
        stats: List of dictionaries with 'room' and 'message_count'.
        output_file: Optional HTML file path to save the plot.

    Returns:
        The plotly figure.
    """
    figure = go.Figure(
        data=[
            go.Bar(
                x=[row["room"] for row in stats],
                y=[row["message_count"] for row in stats],
            )
        ]
    )
    figure.update_layout(
        title="Imported messages by room",
        xaxis_title="Room",
        yaxis_title="Messages",
    )

    if output_file:
        figure.write_html(output_file)
        logger.info(f"Wrote room chart to {output_file}")
    return figure


def plot_messages_over_time(
    daily_counts: List[Dict[str, Any]], output_file: Optional[str] = None
) -> go.Figure:
    """
    Line chart of imported messages per day.

    Args:
        daily_counts: List of dictionaries with 'date' and 'message_count'.
        output_file: Optional HTML file path to save the plot.

    Returns:
        The plotly figure.
    """
    figure = go.Figure(
        data=[
            go.Scatter(
                x=[row["date"] for row in daily_counts],
                y=[row["message_count"] for row in daily_counts],
                mode="lines+markers",
            )
        ]
    )
    figure.update_layout(
        title="Imported messages over time",
        xaxis_title="Date",
        yaxis_title="Messages",
    )

    if output_file:
        figure.write_html(output_file)
        logger.info(f"Wrote timeline chart to {output_file}")
    return figure
