"""Tests for SSE framing and parsing."""

import pytest

from chat_stream.utils.sse import (
    SSE_HEADERS,
    SSEMessage,
    format_done_sentinel,
    format_sse_comment,
    format_sse_event,
    iter_sse_events,
)


async def lines_of(*lines):
    for line in lines:
        yield line


async def collect(lines):
    return [message async for message in iter_sse_events(lines)]


class TestFraming:
    """Tests for frame formatting."""

    def test_event(self):
        assert format_sse_event("token", {"text": "Hi"}) == 'event: token\ndata: {"text": "Hi"}\n\n'

    def test_comment(self):
        assert format_sse_comment("heartbeat 1") == ": heartbeat 1\n\n"

    def test_done_sentinel(self):
        assert format_done_sentinel() == "data: [DONE]\n\n"

    def test_headers(self):
        assert SSE_HEADERS["Content-Type"] == "text/event-stream"
        assert SSE_HEADERS["X-Accel-Buffering"] == "no"


class TestParsing:
    """Tests for iter_sse_events."""

    async def test_skips_comments_and_stops_at_done(self):
        messages = await collect(lines_of(
            ": Connected to chat stream", "",
            "event: token", 'data: {"text": "Hi"}', "",
            ": heartbeat 1700000000000", "",
            "event: done", 'data: {"finish_reason": "stop"}', "",
            "event: token", 'data: {"text": "late"}', "",
        ))

        assert [m.event for m in messages] == ["token", "done"]
        assert messages[0].json() == {"text": "Hi"}
        assert messages[1].json() == {"finish_reason": "stop"}

    async def test_stops_at_legacy_sentinel(self):
        messages = await collect(lines_of(
            "event: token", 'data: {"text": "Hi"}', "",
            "data: [DONE]", "",
            "event: token", 'data: {"text": "late"}', "",
        ))

        assert [m.event for m in messages] == ["token"]

    async def test_multiline_data(self):
        messages = await collect(lines_of("event: memory", "data: a", "data: b", ""))

        assert messages[0].data == "a\nb"

    async def test_crlf_and_unterminated_tail(self):
        messages = await collect(lines_of("event: token\r", 'data: {"text": "x"}'))

        assert messages == [SSEMessage(event="token", data='{"text": "x"}')]

    @pytest.mark.parametrize(
        "message,expected",
        [
            (SSEMessage(event=None, data="[DONE]"), True),
            (SSEMessage(event="token", data="[DONE]"), False),
        ],
    )
    def test_is_done_sentinel(self, message, expected):
        assert message.is_done_sentinel is expected
