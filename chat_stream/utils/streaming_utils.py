"""Helpers for interpreting streaming chunks from LangChain chat models."""

from __future__ import annotations

from typing import Any, Iterable, Optional, Tuple


def coerce_to_text(payload: Any) -> str:
    """Safely coerce streaming payload structures into plain text."""

    if payload is None:
        return ""

    if isinstance(payload, str):
        return payload

    if isinstance(payload, dict):
        if payload.get("type") == "text" and "text" in payload:
            return str(payload["text"])
        for key in ("text", "content", "delta"):
            if key in payload:
                text_value = coerce_to_text(payload[key])
                if text_value:
                    return text_value
        return ""

    for attr in ("content", "text", "delta"):
        if hasattr(payload, attr):
            text_value = coerce_to_text(getattr(payload, attr))
            if text_value:
                return text_value

    if hasattr(payload, "additional_kwargs"):
        # Message-like payload with no textual delta yet
        return ""

    if isinstance(payload, Iterable):
        fragments = [coerce_to_text(item) for item in payload]
        return "".join(fragment for fragment in fragments if fragment)

    return ""


def extract_chunk_text(chunk: Any) -> str:
    """Extract textual content from a LangChain chunk object."""

    if chunk is None:
        return ""

    if isinstance(chunk, str):
        return chunk

    return coerce_to_text(chunk)


def _as_count(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    return None


def extract_usage_from_chunk(chunk: Any) -> Optional[Tuple[int, int]]:
    """Return ``(tokens_in, tokens_out)`` if the chunk carries usage, else None.

    LangChain puts streamed usage on ``usage_metadata``; raw OpenAI payloads
    use ``prompt_tokens``/``completion_tokens`` under ``token_usage`` or
    ``usage`` in the response metadata.
    """

    if chunk is None:
        return None

    usage_metadata = getattr(chunk, "usage_metadata", None)
    if isinstance(usage_metadata, dict):
        tokens_in = _as_count(usage_metadata.get("input_tokens"))
        tokens_out = _as_count(usage_metadata.get("output_tokens"))
        if tokens_in is not None or tokens_out is not None:
            return tokens_in or 0, tokens_out or 0

    candidate_maps = []
    for attr in ("response_metadata", "generation_info"):
        value = getattr(chunk, attr, None)
        if isinstance(value, dict):
            candidate_maps.append(value)
    if isinstance(chunk, dict):
        candidate_maps.append(chunk)

    for mapping in candidate_maps:
        for key in ("token_usage", "usage"):
            usage = mapping.get(key)
            if not isinstance(usage, dict):
                continue
            tokens_in = _as_count(usage.get("prompt_tokens", usage.get("input_tokens")))
            tokens_out = _as_count(usage.get("completion_tokens", usage.get("output_tokens")))
            if tokens_in is not None or tokens_out is not None:
                return tokens_in or 0, tokens_out or 0

    return None


def extract_finish_reason(chunk: Any) -> Optional[str]:
    """Return the upstream finish reason carried by a chunk, if any."""

    if chunk is None:
        return None

    for attr in ("response_metadata", "generation_info"):
        value = getattr(chunk, attr, None)
        if isinstance(value, dict) and value.get("finish_reason"):
            return str(value["finish_reason"])

    if isinstance(chunk, dict) and chunk.get("finish_reason"):
        return str(chunk["finish_reason"])

    return None
