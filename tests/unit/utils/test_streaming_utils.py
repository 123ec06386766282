"""Tests for streaming chunk helpers."""

from types import SimpleNamespace

from langchain_core.messages import AIMessageChunk

from chat_stream.utils.streaming_utils import (
    coerce_to_text,
    extract_chunk_text,
    extract_finish_reason,
    extract_usage_from_chunk,
)


class TestChunkText:
    """Tests for text extraction."""

    def test_message_chunk(self):
        assert extract_chunk_text(AIMessageChunk(content="Hello")) == "Hello"

    def test_content_blocks(self):
        chunk = AIMessageChunk(content=[{"type": "text", "text": "Hel"}, {"type": "text", "text": "lo"}])

        assert extract_chunk_text(chunk) == "Hello"

    def test_plain_values(self):
        assert extract_chunk_text("raw") == "raw"
        assert extract_chunk_text(None) == ""
        assert coerce_to_text({"delta": {"content": "d"}}) == "d"
        assert coerce_to_text(42) == ""


class TestUsage:
    """Tests for usage extraction."""

    def test_usage_metadata(self):
        chunk = AIMessageChunk(content="", usage_metadata={"input_tokens": 8, "output_tokens": 2, "total_tokens": 10})

        assert extract_usage_from_chunk(chunk) == (8, 2)

    def test_token_usage_mapping(self):
        chunk = SimpleNamespace(response_metadata={"token_usage": {"prompt_tokens": 5, "completion_tokens": 3}})

        assert extract_usage_from_chunk(chunk) == (5, 3)

    def test_raw_usage_dict(self):
        assert extract_usage_from_chunk({"usage": {"prompt_tokens": 4}}) == (4, 0)

    def test_no_usage(self):
        assert extract_usage_from_chunk(AIMessageChunk(content="Hi")) is None
        assert extract_usage_from_chunk(None) is None


class TestFinishReason:
    def test_from_response_metadata(self):
        chunk = AIMessageChunk(content="", response_metadata={"finish_reason": "length"})

        assert extract_finish_reason(chunk) == "length"

    def test_absent(self):
        assert extract_finish_reason(AIMessageChunk(content="Hi")) is None
        assert extract_finish_reason({"finish_reason": "stop"}) == "stop"
