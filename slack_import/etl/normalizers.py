"""
Normalization of raw Slack records into canonical entity fields.

Every function here is pure: the output depends only on the arguments, so a
rerun over the same export derives exactly the same names, bodies and dedup
keys. That property is what makes reruns idempotent.

Design Decisions:
    1. Never fail on incomplete input; fall back to documented defaults
       ("Unknown User", "public-channel", ...)
    2. Slack mrkdwn is converted to the small HTML subset the chat store
       renders: <strong>, <em>, <code>, <a>
    3. Angle-bracket tokens (<@U123>, <http://...|label>) are converted
       first and fenced off during the bold/italic pass: delimiters around
       a token still pair up, but underscores in URLs and resolved user
       names are never turned into <em>
    4. Slack timestamps ("1699123456.123456") are parsed with Decimal to
       keep the microseconds exact
"""

import html
import re
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, List, Literal, Mapping, Optional, Protocol, Sequence

from slack_import.etl.extractors import RawChannel, RawMessage, RawUser

# Type alias for room kinds
RoomKind = Literal["open", "closed", "direct", "default"]

UNKNOWN_USER_NAME = "Unknown User"
UNKNOWN_MENTION = "@unknown-user"
THREAD_MARKER = "(thread) "
ATTACHMENT_ICON = "\U0001f4ce"  # paperclip

# First second of year 10000; anything at or past it is not a real timestamp
MAX_TIMESTAMP = Decimal(253402300800)

OPEN_TYPES = ("channel", "public_channel")
CLOSED_TYPES = ("group", "private_channel")
DIRECT_TYPE = "im"
MULTI_DIRECT_TYPE = "mpim"

# Regex patterns
ANGLE_TOKEN_PATTERN = re.compile(r"<([^<>]+)>")
BOLD_PATTERN = re.compile(r"\*([^*]+)\*")
ITALIC_PATTERN = re.compile(r"_([^_]+)_")
CODE_PATTERN = re.compile(r"`([^`]+)`")
URL_PATTERN = re.compile(r"^https?://", re.IGNORECASE)


class Named(Protocol):
    """Anything with a display name, e.g. an identity-map user reference."""

    name: str


def _present(value: Optional[str]) -> Optional[str]:
    """Return value unless it is None or blank."""
    if value is None or not value.strip():
        return None
    return value


# =============================================================================
# Users
# =============================================================================


def normalize_user_name(raw: Optional[RawUser]) -> str:
    """
    Pick the display name of a Slack user.

    Priority:
        1. profile.real_name
        2. real_name
        3. name (the Slack handle)
        4. "Unknown User"

    Examples:
        >>> normalize_user_name(RawUser(name="john.doe", profile_real_name="John Doe"))
        'John Doe'
        >>> normalize_user_name(RawUser(name="john.doe"))
        'john.doe'
        >>> normalize_user_name(None)
        'Unknown User'
    """
    if raw is None:
        return UNKNOWN_USER_NAME

    return (
        _present(raw.profile_real_name)
        or _present(raw.real_name)
        or _present(raw.name)
        or UNKNOWN_USER_NAME
    )


def normalize_user_email(raw: Optional[RawUser]) -> Optional[str]:
    """
    Get the profile email of a Slack user, stripped.

    Returns:
        The email, or None when missing or blank.
    """
    if raw is None:
        return None

    email = _present(raw.profile_email)
    return email.strip() if email else None


# =============================================================================
# Rooms
# =============================================================================


def normalize_room_name(raw: Optional[RawChannel]) -> Optional[str]:
    """
    Derive the room name for a channel from its type tag.

    Direct messages (type "im") return None: their name is derived later
    from the resolved participants, see derive_direct_message_name().

    Examples:
        >>> normalize_room_name(RawChannel(type="channel", name="general"))
        'general'
        >>> normalize_room_name(RawChannel(type="group"))
        'private-channel'
        >>> normalize_room_name(RawChannel(type="im")) is None
        True
    """
    if raw is None:
        return "Unknown Channel"

    name = _present(raw.name)
    if raw.type in OPEN_TYPES:
        return name or "public-channel"
    if raw.type in CLOSED_TYPES:
        return name or "private-channel"
    if raw.type == DIRECT_TYPE:
        return None
    if raw.type == MULTI_DIRECT_TYPE:
        return name or "group-dm"
    return name or "unknown-channel"


def room_kind_for(raw: RawChannel) -> RoomKind:
    """
    Classify the target room kind of a channel.

    Multi-person DMs become closed rooms; unrecognized types fall back to
    the default kind.
    """
    if raw.type in OPEN_TYPES:
        return "open"
    if raw.type in CLOSED_TYPES or raw.type == MULTI_DIRECT_TYPE:
        return "closed"
    if raw.type == DIRECT_TYPE:
        return "direct"
    return "default"


def derive_direct_message_name(
    member_ids: Sequence[str],
    channel_id: Optional[str],
    user_map: Mapping[str, Any],
) -> str:
    """
    Name a direct-message room after its two participants.

    Names are sorted so that both sides of a conversation map to the same
    room; unmapped participants show as "unknown". Anything other than
    exactly two members is keyed by the channel id instead.

    Examples:
        >>> derive_direct_message_name(["U2", "U1"], "D1", {})
        'dm-unknown-unknown'
        >>> derive_direct_message_name(["U1"], "D1", {})
        'dm-D1'
    """
    if len(member_ids) == 2:
        names: List[str] = []
        for member_id in member_ids:
            ref = user_map.get(member_id)
            names.append(ref.name if ref is not None else "unknown")
        return "dm-" + "-".join(sorted(names))

    return f"dm-{channel_id}"


# =============================================================================
# Messages
# =============================================================================


def _convert_markdown(text: str) -> str:
    text = BOLD_PATTERN.sub(r"<strong>\1</strong>", text)
    text = ITALIC_PATTERN.sub(r"<em>\1</em>", text)
    text = CODE_PATTERN.sub(r"<code>\1</code>", text)
    return text


def _convert_token(token: str, user_map: Mapping[str, Named]) -> Optional[str]:
    """
    Convert the inside of one <...> token, or None to leave it untouched.

    Handles user mentions (<@U123>, <@U123|bob>), special mentions
    (<!here>), channel references (<#C123|general>) and links
    (<http://x|label>, <http://x>).
    """
    target, _, label = token.partition("|")

    if target.startswith("@"):
        ref = user_map.get(target[1:])
        return f"@{ref.name}" if ref is not None else UNKNOWN_MENTION

    if target.startswith("!"):
        return f"@{label or target[1:]}"

    if target.startswith("#"):
        return f"#{label or target[1:]}"

    if label:
        return f'<a href="{target}">{label}</a>'

    if URL_PATTERN.match(target):
        return f'<a href="{target}">{target}</a>'

    return None


def _placeholder_mark(text: str) -> str:
    """A character absent from text, used to fence converted tokens."""
    for code_point in range(0xE000, 0xF900):
        mark = chr(code_point)
        if mark not in text:
            return mark
    raise ValueError("message text uses every private-use character")


def _convert_text(text: str, user_map: Mapping[str, Named]) -> str:
    # Tokens are swapped for placeholders so *bold* and _italic_ can wrap a
    # link or mention while the token's own text stays out of the pass.
    mark = _placeholder_mark(text)
    tokens: List[str] = []

    def stash(match: "re.Match[str]") -> str:
        converted = _convert_token(match.group(1), user_map)
        tokens.append(converted if converted is not None else match.group(0))
        return f"{mark}{len(tokens) - 1}{mark}"

    fenced = _convert_markdown(ANGLE_TOKEN_PATTERN.sub(stash, text))
    return re.sub(f"{mark}(\\d+){mark}", lambda m: tokens[int(m.group(1))], fenced)


def is_thread_reply(raw: RawMessage) -> bool:
    """True if the message replies in a thread rather than starting one."""
    return raw.thread_ts is not None and raw.thread_ts != raw.ts


def normalize_message_body(
    raw: Optional[RawMessage],
    user_map: Optional[Mapping[str, Named]] = None,
) -> str:
    """
    Convert a Slack message into the HTML body stored for it.

    Steps:
        1. mrkdwn → HTML (*bold*, _italic_, `code`, links)
        2. <@U123> → "@Name" through the user identity map, or "@unknown-user"
        3. one "📎 name" link line per attached file
           (url_private, else permalink, else "#")
        4. "(thread) " prefix for thread replies

    Args:
        raw: The raw message.
        user_map: Source user id → object with a ``name`` attribute.

    Returns:
        HTML body; empty string for a missing message.

    Examples:
        >>> normalize_message_body(RawMessage(text="This is *bold*"))
        'This is <strong>bold</strong>'
        >>> normalize_message_body(RawMessage(text="hi <@U1>"))
        'hi @unknown-user'
    """
    if raw is None:
        return ""

    body = _convert_text(raw.text or "", user_map or {})

    for attachment in raw.files:
        url = html.escape(attachment.url_private or attachment.permalink or "#", quote=True)
        name = html.escape(attachment.name or "Attachment", quote=True)
        body += f'\n<a href="{url}">{ATTACHMENT_ICON} {name}</a>'

    if is_thread_reply(raw):
        body = THREAD_MARKER + body

    return body


def slack_timestamp_to_time(ts: Optional[str]) -> Optional[datetime]:
    """
    Parse a Slack timestamp into an aware UTC datetime.

    Slack timestamps are seconds since the Unix epoch with a microsecond
    fraction, e.g. "1699123456.123456".

    Returns:
        The datetime, or None for missing or unparseable input.

    Examples:
        >>> slack_timestamp_to_time("1699123456.123456").isoformat()
        '2023-11-04T18:44:16.123456+00:00'
        >>> slack_timestamp_to_time(None) is None
        True
    """
    if ts is None or not str(ts).strip():
        return None

    try:
        value = Decimal(str(ts).strip())
        if not value.is_finite() or abs(value) >= MAX_TIMESTAMP:
            return None
        seconds = int(value)
        micros = int((value - seconds) * 1_000_000)
        return datetime.fromtimestamp(seconds, tz=timezone.utc) + timedelta(microseconds=micros)
    except (InvalidOperation, ValueError, OverflowError, OSError):
        return None


def format_time(dt: datetime) -> str:
    """Render a datetime as the ISO-8601 UTC text stored in the chat store."""
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def derive_client_message_id(raw: RawMessage, channel_id: Optional[str]) -> str:
    """
    Derive the dedup key of a message.

    Slack's own client_msg_id wins when present; otherwise the key is
    composed from the channel id and the raw ts string, which is unique per
    message within a channel.

    Examples:
        >>> derive_client_message_id(RawMessage(client_msg_id="abc-123"), "C1")
        'abc-123'
        >>> derive_client_message_id(RawMessage(ts="1699123456.123456"), "C1")
        'slack:C1:1699123456.123456'
    """
    return _present(raw.client_msg_id) or f"slack:{channel_id}:{raw.ts}"
