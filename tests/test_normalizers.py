"""
Tests for ETL normalizers module.

Tests user/room naming, message body conversion, timestamps and dedup keys.
"""

from datetime import datetime, timezone

import pytest

from slack_import.etl.extractors import RawChannel, RawFile, RawMessage, RawUser
from slack_import.etl.loaders import UserRef
from slack_import.etl.normalizers import (
    UNKNOWN_USER_NAME,
    derive_client_message_id,
    derive_direct_message_name,
    format_time,
    is_thread_reply,
    normalize_message_body,
    normalize_room_name,
    normalize_user_email,
    normalize_user_name,
    room_kind_for,
    slack_timestamp_to_time,
)

USER_MAP = {
    "U111111": UserRef(user_id=1, name="Alice Smith", email="alice@example.com"),
    "U222222": UserRef(user_id=2, name="Bob Jones", email="bob@example.com"),
    "U333333": UserRef(user_id=3, name="snake_case_name"),
}


class TestNormalizeUserName:
    """Tests for user display name priority."""

    def test_profile_real_name_first(self):
        raw = RawUser(name="alice", real_name="Alice", profile_real_name="Alice Smith")
        assert normalize_user_name(raw) == "Alice Smith"

    def test_real_name_second(self):
        raw = RawUser(name="alice", real_name="Alice")
        assert normalize_user_name(raw) == "Alice"

    def test_handle_third(self):
        assert normalize_user_name(RawUser(name="alice")) == "alice"

    def test_blank_values_skipped(self):
        """Blank names fall through to the next candidate."""
        raw = RawUser(name="alice", real_name="  ", profile_real_name="")
        assert normalize_user_name(raw) == "alice"

    def test_unknown_fallback(self):
        assert normalize_user_name(RawUser()) == UNKNOWN_USER_NAME
        assert normalize_user_name(None) == "Unknown User"


class TestNormalizeUserEmail:
    """Tests for profile email extraction."""

    def test_email_stripped(self):
        assert normalize_user_email(RawUser(profile_email="  a@example.com ")) == "a@example.com"

    def test_blank_email_is_none(self):
        assert normalize_user_email(RawUser(profile_email="   ")) is None

    def test_missing(self):
        assert normalize_user_email(RawUser()) is None
        assert normalize_user_email(None) is None


class TestRoomNaming:
    """Tests for room names and kinds."""

    @pytest.mark.parametrize(
        "channel_type,expected_kind",
        [
            ("channel", "open"),
            ("public_channel", "open"),
            ("group", "closed"),
            ("private_channel", "closed"),
            ("mpim", "closed"),
            ("im", "direct"),
            ("shared_something", "default"),
            (None, "default"),
        ],
    )
    def test_room_kind_for(self, channel_type, expected_kind):
        assert room_kind_for(RawChannel(type=channel_type)) == expected_kind

    def test_open_channel_name(self):
        assert normalize_room_name(RawChannel(type="channel", name="general")) == "general"

    def test_name_fallbacks(self):
        assert normalize_room_name(RawChannel(type="channel")) == "public-channel"
        assert normalize_room_name(RawChannel(type="group")) == "private-channel"
        assert normalize_room_name(RawChannel(type="mpim")) == "group-dm"
        assert normalize_room_name(RawChannel(type="weird")) == "unknown-channel"

    def test_direct_message_has_no_name(self):
        assert normalize_room_name(RawChannel(type="im", name="ignored")) is None

    def test_missing_channel(self):
        assert normalize_room_name(None) == "Unknown Channel"


class TestDirectMessageName:
    """Tests for direct-message room naming."""

    def test_sorted_participant_names(self):
        name = derive_direct_message_name(["U222222", "U111111"], "D1", USER_MAP)
        assert name == "dm-Alice Smith-Bob Jones"

    def test_order_independent(self):
        a = derive_direct_message_name(["U111111", "U222222"], "D1", USER_MAP)
        b = derive_direct_message_name(["U222222", "U111111"], "D2", USER_MAP)
        assert a == b

    def test_unmapped_participant(self):
        name = derive_direct_message_name(["U111111", "U999999"], "D1", USER_MAP)
        assert name == "dm-Alice Smith-unknown"

    def test_other_member_counts_use_channel_id(self):
        assert derive_direct_message_name(["U111111"], "D1", USER_MAP) == "dm-D1"
        assert derive_direct_message_name([], "D1", USER_MAP) == "dm-D1"
        three = ["U111111", "U222222", "U333333"]
        assert derive_direct_message_name(three, "D7", USER_MAP) == "dm-D7"


class TestNormalizeMessageBody:
    """Tests for message body conversion."""

    def test_markdown_conversion(self):
        raw = RawMessage(text="This is *bold* and _italic_ and `code`")
        body = normalize_message_body(raw)
        assert "<strong>bold</strong>" in body
        assert "<em>italic</em>" in body
        assert "<code>code</code>" in body

    def test_plain_text_unchanged(self):
        assert normalize_message_body(RawMessage(text="Hello everyone!")) == "Hello everyone!"

    def test_mention_resolved(self):
        raw = RawMessage(text="Hi <@U111111>! How are you?")
        assert normalize_message_body(raw, USER_MAP) == "Hi @Alice Smith! How are you?"

    def test_mention_with_label(self):
        raw = RawMessage(text="cc <@U222222|bob>")
        assert normalize_message_body(raw, USER_MAP) == "cc @Bob Jones"

    def test_unknown_mention(self):
        raw = RawMessage(text="Hi <@U999999>")
        assert normalize_message_body(raw, USER_MAP) == "Hi @unknown-user"

    def test_resolved_name_not_italicized(self):
        """Underscores in resolved names stay literal."""
        raw = RawMessage(text="ping <@U333333>")
        assert normalize_message_body(raw, USER_MAP) == "ping @snake_case_name"

    def test_special_mention(self):
        assert normalize_message_body(RawMessage(text="<!here> look")) == "@here look"
        assert normalize_message_body(RawMessage(text="<!channel|channel>")) == "@channel"

    def test_channel_reference(self):
        assert normalize_message_body(RawMessage(text="see <#C123|general>")) == "see #general"

    def test_link_with_label(self):
        raw = RawMessage(text="<https://example.com/a_b_c|the docs>")
        assert normalize_message_body(raw) == '<a href="https://example.com/a_b_c">the docs</a>'

    def test_bare_link(self):
        raw = RawMessage(text="go to <https://example.com>")
        assert normalize_message_body(raw) == 'go to <a href="https://example.com">https://example.com</a>'

    def test_bold_around_link(self):
        raw = RawMessage(text="*<https://x.io/a_b|docs>*")
        assert normalize_message_body(raw) == '<strong><a href="https://x.io/a_b">docs</a></strong>'

    def test_italic_around_mention(self):
        raw = RawMessage(text="_<@U111111>_ said hi")
        assert normalize_message_body(raw, USER_MAP) == "<em>@Alice Smith</em> said hi"

    def test_italic_span_containing_tokens(self):
        raw = RawMessage(text="_ask <@U333333> about <#C1|ops>_")
        assert normalize_message_body(raw, USER_MAP) == "<em>ask @snake_case_name about #ops</em>"

    def test_unconverted_token_kept_verbatim(self):
        raw = RawMessage(text="*see* <not a link>")
        assert normalize_message_body(raw) == "<strong>see</strong> <not a link>"

    def test_attachment_fields_escaped(self):
        raw = RawMessage(files=[RawFile(url_private='https://f/"x"', name='a"><script>')])
        assert normalize_message_body(raw) == (
            '\n<a href="https://f/&quot;x&quot;">\U0001f4ce a&quot;&gt;&lt;script&gt;</a>'
        )

    def test_files_appended(self):
        raw = RawMessage(
            text="report",
            files=[
                RawFile(url_private="https://files/r.pdf", name="r.pdf"),
                RawFile(permalink="https://perma/s.png", name="s.png"),
                RawFile(),
            ],
        )
        lines = normalize_message_body(raw).split("\n")
        assert lines[0] == "report"
        assert lines[1] == '<a href="https://files/r.pdf">\U0001f4ce r.pdf</a>'
        assert lines[2] == '<a href="https://perma/s.png">\U0001f4ce s.png</a>'
        assert lines[3] == '<a href="#">\U0001f4ce Attachment</a>'

    def test_thread_reply_prefixed(self):
        raw = RawMessage(text="reply", ts="1699123500.000100", thread_ts="1699123400.000000")
        assert normalize_message_body(raw) == "(thread) reply"

    def test_thread_parent_not_prefixed(self):
        raw = RawMessage(text="parent", ts="1699123400.000000", thread_ts="1699123400.000000")
        assert normalize_message_body(raw) == "parent"

    def test_missing_text(self):
        assert normalize_message_body(RawMessage()) == ""
        assert normalize_message_body(None) == ""


class TestIsThreadReply:
    """Tests for thread reply detection."""

    def test_no_thread(self):
        assert not is_thread_reply(RawMessage(ts="1"))

    def test_reply(self):
        assert is_thread_reply(RawMessage(ts="2", thread_ts="1"))


class TestTimestamps:
    """Tests for Slack timestamp parsing."""

    def test_parse(self):
        dt = slack_timestamp_to_time("1699123456.123456")
        assert dt == datetime(2023, 11, 4, 18, 44, 16, 123456, tzinfo=timezone.utc)

    def test_parse_whole_seconds(self):
        dt = slack_timestamp_to_time("1699123400")
        assert dt == datetime(2023, 11, 4, 18, 43, 20, tzinfo=timezone.utc)

    @pytest.mark.parametrize("value", [None, "", "   ", "abc", "12.34.56"])
    def test_invalid(self, value):
        assert slack_timestamp_to_time(value) is None

    def test_format_time(self):
        dt = datetime(2023, 11, 4, 18, 44, 16, 123456, tzinfo=timezone.utc)
        assert format_time(dt) == "2023-11-04T18:44:16.123456Z"


class TestDedupKey:
    """Tests for client message id derivation."""

    def test_client_msg_id_wins(self):
        raw = RawMessage(client_msg_id="msg-001", ts="1699123400.000000")
        assert derive_client_message_id(raw, "C123456") == "msg-001"

    def test_composed_key(self):
        raw = RawMessage(ts="1699123400.000000")
        assert derive_client_message_id(raw, "C123456") == "slack:C123456:1699123400.000000"

    def test_blank_client_msg_id_ignored(self):
        raw = RawMessage(client_msg_id="  ", ts="1.5")
        assert derive_client_message_id(raw, "C1") == "slack:C1:1.5"
