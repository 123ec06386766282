#!/usr/bin/env python3
"""Command line client for the chat stream service."""

import argparse
import asyncio
import json
import sys
from typing import List, Optional

from chat_stream.client import ChatStreamClient


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser."""
    parser = argparse.ArgumentParser(
        description="Chat stream service CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Send a message and print the streamed reply
  python -m chat_stream.cli chat "Hi"

  # Use long-term memory within a session and show usage
  python -m chat_stream.cli chat "What did I say earlier?" \\
      --use-memory --session-id session-20240101-120000-abcd --show-usage

  # Print raw events as they arrive
  python -m chat_stream.cli events "Hi" --model gpt-4o-mini
""",
    )
    parser.add_argument(
        "--url",
        default="http://localhost:3000",
        help="Service base URL (default: http://localhost:3000)",
    )
    parser.add_argument("--api-prefix", default="/api/v1", help="API prefix (default: /api/v1)")
    parser.add_argument("--user-id", default=None, help="Caller id sent as X-User-Id")

    subparsers = parser.add_subparsers(dest="command", required=True)

    for name, help_text in (
        ("chat", "Send a message and print the reply"),
        ("events", "Send a message and print each stream event"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("message", help="Message to send")
        sub.add_argument("--model", default=None, help="Model to request")
        sub.add_argument("--use-memory", action="store_true", help="Consult long-term memory")
        sub.add_argument("--session-id", default=None, help="Session id (session-YYYYMMDD-HHMMSS-xxxx)")
        sub.add_argument("--system-prompt", default=None, help="Override the system prompt")
        sub.add_argument("--return-memory", action="store_true", help="Always emit the memory event")
        sub.add_argument("--testing-mode", action="store_true", help="Do not store the turn in memory")
        if name == "chat":
            sub.add_argument("--show-usage", action="store_true", help="Print token usage and cost")

    return parser


def _request_options(args: argparse.Namespace) -> dict:
    return {
        "use_memory": args.use_memory,
        "session_id": args.session_id,
        "model": args.model,
        "system_prompt": args.system_prompt,
        "return_memory": args.return_memory,
        "testing_mode": args.testing_mode,
    }


async def run_chat(args: argparse.Namespace) -> int:
    async with ChatStreamClient(args.url, args.api_prefix, user_id=args.user_id) as client:
        result = await client.chat(args.message, **_request_options(args))

    if result.error and result.finish_reason is None:
        print(f"Error: {result.error}", file=sys.stderr)
        return 1

    print(result.text)
    if args.show_usage and result.usage:
        usage = result.usage
        print(
            f"\n[{usage['model']}] tokens in={usage['tokens_in']} out={usage['tokens_out']} "
            f"cost=${usage['cost_usd']:.6f}",
            file=sys.stderr,
        )
    return 0 if result.ok else 1


async def run_events(args: argparse.Namespace) -> int:
    async with ChatStreamClient(args.url, args.api_prefix, user_id=args.user_id) as client:
        body = client.build_body(args.message, **_request_options(args))
        async for event in client.stream_events(body):
            print(json.dumps({"event": event.event, "data": event.json()}))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command == "chat":
        return asyncio.run(run_chat(args))
    elif args.command == "events":
        return asyncio.run(run_events(args))

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
