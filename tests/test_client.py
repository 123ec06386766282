"""Tests for the SSE chat client and CLI."""

from unittest.mock import AsyncMock, patch

import pytest
from httpx import ASGITransport

from chat_stream.cli import create_parser, main
from chat_stream.client import ChatResult, ChatStreamClient
from chat_stream.utils.sse import SSEMessage


@pytest.fixture
def stream_client(app):
    return ChatStreamClient(
        base_url="http://testserver",
        user_id="user-42",
        transport=ASGITransport(app=app),
    )


class TestChatStreamClient:
    """Tests for ChatStreamClient against the app."""

    def test_build_body(self):
        body = ChatStreamClient.build_body(
            "Hi",
            use_memory=True,
            session_id="session-20240101-120000-abcd",
            testing_mode=True,
        )

        assert body == {
            "message": "Hi",
            "useMemory": True,
            "sessionId": "session-20240101-120000-abcd",
            "testingMode": True,
        }

    async def test_chat(self, stream_client, telemetry):
        """Test a full turn is assembled from the stream."""
        async with stream_client as client:
            result = await client.chat("Hi")

        assert result.ok is True
        assert result.text == "Hello!"
        assert result.finish_reason == "stop"
        assert result.usage["tokens_in"] == 8
        assert result.ttft_ms is not None
        assert result.events == ["token", "token", "usage", "done"]
        assert telemetry.named("message_sent")[0][0][0] == "user-42"

    async def test_memory_event(self, stream_client, memory_client, memory_fragments):
        memory_client.fragments = memory_fragments

        async with stream_client as client:
            result = await client.chat("Hi", use_memory=True)

        assert result.memory["results"].startswith("1. User prefers metric units.")
        assert result.events[0] == "memory"

    async def test_provider_error(self, stream_client, container, make_provider):
        """Test an in-band provider error is reported on the result."""
        container.orchestrator.provider = make_provider(tokens=[], error=Exception("busy"), status_code=429)

        async with stream_client as client:
            result = await client.chat("Hi")

        assert result.ok is False
        assert result.finish_reason == "error"
        assert result.error == "Overloaded, please try again soon."

    async def test_malformed_event_is_skipped(self, stream_client):
        """Test one undecodable data line does not lose the rest of the turn."""
        async def scripted_events(body):
            yield SSEMessage(event="token", data='{"text": "Hel"}')
            yield SSEMessage(event="token", data='{"text": ')
            yield SSEMessage(event="token", data='{"text": "lo"}')
            yield SSEMessage(event="done", data='{"finish_reason": "stop"}')

        with patch.object(stream_client, "stream_events", scripted_events):
            result = await stream_client.chat("Hi")

        assert result.ok is True
        assert result.text == "Hello"
        assert result.finish_reason == "stop"
        assert result.events == ["token", "token", "done"]

    async def test_validation_error(self, stream_client):
        """Test a rejected request is reported without raising."""
        async with stream_client as client:
            result = await client.chat("")

        assert result.ok is False
        assert result.finish_reason is None
        assert result.error == "Invalid request body"
        assert result.error_code == "VALIDATION_ERROR"


class TestCli:
    """Tests for the command line entry point."""

    def test_parser(self):
        args = create_parser().parse_args(["--user-id", "u1", "chat", "Hi", "--use-memory", "--show-usage"])

        assert args.command == "chat"
        assert args.message == "Hi"
        assert args.use_memory is True
        assert args.show_usage is True
        assert args.user_id == "u1"

    def test_chat_command(self, capsys):
        with patch("chat_stream.cli.ChatStreamClient") as client_cls:
            client = client_cls.return_value.__aenter__.return_value
            client.chat = AsyncMock(return_value=ChatResult(
                text="Hello!",
                finish_reason="stop",
                usage={"model": "gpt-4o-mini", "tokens_in": 8, "tokens_out": 2, "cost_usd": 0.000002},
            ))

            exit_code = main(["chat", "Hi", "--show-usage"])

        captured = capsys.readouterr()
        assert exit_code == 0
        assert captured.out.strip() == "Hello!"
        assert "tokens in=8 out=2" in captured.err
        client.chat.assert_awaited_once()
        assert client.chat.await_args.kwargs["use_memory"] is False

    def test_chat_command_rejected(self, capsys):
        with patch("chat_stream.cli.ChatStreamClient") as client_cls:
            client = client_cls.return_value.__aenter__.return_value
            client.chat = AsyncMock(return_value=ChatResult(error="Invalid request body"))

            exit_code = main(["chat", "Hi"])

        assert exit_code == 1
        assert "Invalid request body" in capsys.readouterr().err
