"""
Property-based tests using Hypothesis.

These tests verify invariant properties across a wide range of inputs,
helping to find edge cases that might be missed by example-based tests.
"""

from datetime import datetime, timedelta, timezone

import pytest

from hypothesis import given, strategies as st

from slack_import.etl.extractors import RawChannel, RawMessage, RawUser
from slack_import.etl.loaders import UserRef
from slack_import.etl.normalizers import (
    derive_client_message_id,
    derive_direct_message_name,
    format_time,
    normalize_message_body,
    normalize_room_name,
    normalize_user_name,
    room_kind_for,
    slack_timestamp_to_time,
)

slack_ids = st.from_regex(r"[UCDG][A-Z0-9]{6,10}", fullmatch=True)
optional_text = st.one_of(st.none(), st.text(max_size=50))


# =============================================================================
# Raw record properties
# =============================================================================


@pytest.mark.property
class TestRawRecordProperties:
    """Raw records accept any JSON object."""

    @given(st.dictionaries(st.text(max_size=10), st.one_of(st.none(), st.text(), st.integers(), st.booleans())))
    def test_from_dict_never_crashes(self, data):
        RawUser.from_dict(data)
        RawChannel.from_dict(data)
        RawMessage.from_dict(data)


# =============================================================================
# Name properties
# =============================================================================


@pytest.mark.property
class TestNameProperties:
    """Property-based tests for user and room naming."""

    @given(optional_text, optional_text, optional_text)
    def test_user_name_never_blank(self, name, real_name, profile_real_name):
        raw = RawUser(name=name, real_name=real_name, profile_real_name=profile_real_name)
        assert normalize_user_name(raw).strip()

    @given(optional_text, st.sampled_from(["channel", "group", "mpim", "im", "other", None]))
    def test_room_name_never_blank_except_direct(self, name, channel_type):
        raw = RawChannel(name=name, type=channel_type)
        result = normalize_room_name(raw)
        if room_kind_for(raw) == "direct":
            assert result is None
        else:
            assert result and result.strip()

    @given(
        st.lists(slack_ids, min_size=2, max_size=2, unique=True),
        st.dictionaries(slack_ids, st.text(min_size=1, max_size=20)),
    )
    def test_direct_message_name_symmetric(self, members, names):
        user_map = {k: UserRef(user_id=i, name=v) for i, (k, v) in enumerate(names.items())}
        forward = derive_direct_message_name(members, "D1", user_map)
        backward = derive_direct_message_name(list(reversed(members)), "D2", user_map)
        assert forward == backward


# =============================================================================
# Message properties
# =============================================================================


@pytest.mark.property
class TestMessageProperties:
    """Property-based tests for message normalization."""

    @given(st.text(max_size=200))
    def test_body_never_crashes(self, text):
        assert isinstance(normalize_message_body(RawMessage(text=text)), str)

    @given(st.text(alphabet=st.characters(exclude_characters="<>*_`"), max_size=200))
    def test_plain_text_unchanged(self, text):
        assert normalize_message_body(RawMessage(text=text)) == text

    @given(st.text(max_size=100), optional_text)
    def test_body_is_deterministic(self, text, thread_ts):
        raw = RawMessage(text=text, ts="1.0", thread_ts=thread_ts)
        assert normalize_message_body(raw) == normalize_message_body(raw)

    @given(st.text(max_size=100), st.text(min_size=1, max_size=20))
    def test_thread_marker_only_for_replies(self, text, ts):
        parent = RawMessage(text=text, ts=ts, thread_ts=ts)
        assert not normalize_message_body(parent).startswith("(thread) ") or text.startswith("(thread) ")

    @given(slack_ids, st.from_regex(r"[0-9]{10}\.[0-9]{6}", fullmatch=True))
    def test_composed_dedup_key_stable(self, channel_id, ts):
        raw = RawMessage(ts=ts)
        key = derive_client_message_id(raw, channel_id)
        assert key == f"slack:{channel_id}:{ts}"
        assert key == derive_client_message_id(RawMessage(ts=ts), channel_id)


# =============================================================================
# Timestamp properties
# =============================================================================


@pytest.mark.property
class TestTimestampProperties:
    """Property-based tests for Slack timestamp parsing."""

    @given(st.integers(min_value=0, max_value=4_102_444_800), st.integers(min_value=0, max_value=999_999))
    def test_microseconds_exact(self, seconds, micros):
        dt = slack_timestamp_to_time(f"{seconds}.{micros:06d}")
        assert dt is not None
        assert dt.tzinfo == timezone.utc
        assert dt.microsecond == micros
        epoch = datetime(1970, 1, 1, tzinfo=timezone.utc)
        assert dt == epoch + timedelta(seconds=seconds, microseconds=micros)

    @given(st.integers(min_value=0, max_value=4_102_444_800), st.integers(min_value=0, max_value=999_999))
    def test_format_time_sorts_chronologically(self, seconds, micros):
        earlier = slack_timestamp_to_time(f"{seconds}.{micros:06d}")
        later = slack_timestamp_to_time(f"{seconds + 1}.{micros:06d}")
        assert format_time(earlier) < format_time(later)

    @given(st.text(max_size=30))
    def test_never_crashes(self, ts):
        result = slack_timestamp_to_time(ts)
        assert result is None or result.tzinfo is not None
