"""HTTP client for the Zep long-term memory service."""

import math
import re
import time
from typing import Any, Dict, List, Optional

import httpx

from chat_stream.core.config import settings
from chat_stream.core.errors import MemoryRetrievalError
from chat_stream.core.logging import get_logger
from chat_stream.models.chat import MemoryFragment

logger = get_logger(__name__)

_CODE_CHARS = re.compile(r"[{};()\[\]<>]")
_SENTENCE_END = re.compile(r"(?<=[.!?])\s+")


def estimate_memory_tokens(text: str) -> int:
    """Rough token estimate: 4 chars per token, 2.5 for code-like text."""
    chars_per_token = 2.5 if _CODE_CHARS.search(text) else 4
    return math.ceil(len(text) / chars_per_token)


def clip_sentences(text: str, max_sentences: int) -> str:
    """Keep at most ``max_sentences`` leading sentences of ``text``."""
    if max_sentences <= 0:
        return text
    sentences = [s for s in _SENTENCE_END.split(text.strip()) if s]
    if len(sentences) <= max_sentences:
        return text.strip()
    return " ".join(sentences[:max_sentences])


def filter_by_score(fragments: List[MemoryFragment], min_score: float) -> List[MemoryFragment]:
    return [f for f in fragments if f.score >= min_score]


def sort_by_relevance(fragments: List[MemoryFragment]) -> List[MemoryFragment]:
    return sorted(fragments, key=lambda f: f.score, reverse=True)


def trim_to_token_budget(fragments: List[MemoryFragment], max_tokens: int) -> List[MemoryFragment]:
    """Keep leading fragments while their summed estimates fit ``max_tokens``."""
    trimmed: List[MemoryFragment] = []
    total = 0
    for fragment in fragments:
        if total + fragment.tokens_estimate > max_tokens:
            break
        trimmed.append(fragment)
        total += fragment.tokens_estimate
    return trimmed


class ZepMemoryClient:
    """Async client for Zep graph search and thread storage."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        token_budget: Optional[int] = None,
        clip_sentence_count: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.zep_api_key
        self.base_url = (base_url or settings.zep_base_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.memory_timeout_seconds
        self.token_budget = token_budget if token_budget is not None else settings.memory_token_budget
        self.clip_sentence_count = (
            clip_sentence_count if clip_sentence_count is not None else settings.memory_clip_sentences
        )
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Api-Key {self.api_key}"
        return headers

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout),
                headers=self._headers(),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _parse_fragment(self, item: Dict[str, Any], session_id: Optional[str]) -> Optional[MemoryFragment]:
        text = item.get("fact") or item.get("content") or item.get("text")
        if not text:
            return None
        text = clip_sentences(str(text), self.clip_sentence_count)
        source_type = "fact" if "fact" in item else "message"
        return MemoryFragment(
            id=str(item.get("uuid") or item.get("id") or ""),
            text=text,
            score=float(item.get("score") or 0.0),
            source_type=source_type,
            tokens_estimate=estimate_memory_tokens(text),
            session_id=session_id,
            metadata={k: item[k] for k in ("created_at", "valid_at", "name") if k in item},
        )

    async def search(
        self,
        user_id: str,
        query: str,
        session_id: Optional[str] = None,
        limit: Optional[int] = None,
        min_score: Optional[float] = None,
    ) -> List[MemoryFragment]:
        """Search the user's memory graph.

        Args:
            user_id: Owner of the memory graph.
            query: Text to search for, normally the user message.
            session_id: Session the turn belongs to, copied onto results.
            limit: Maximum fragments to return.
            min_score: Fragments below this relevance are dropped.

        Returns:
            Fragments sorted by relevance, clipped and trimmed to the token
            budget.

        Raises:
            MemoryRetrievalError: If the service is unreachable or errors.
        """
        limit = limit or settings.memory_top_k
        min_score = settings.memory_min_score if min_score is None else min_score

        client = await self._ensure_client()
        start_time = time.perf_counter()
        try:
            response = await client.post(
                "/api/v2/graph/search",
                json={"user_id": user_id, "query": query[:400], "limit": limit, "scope": "edges"},
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise MemoryRetrievalError(
                f"Memory search failed with HTTP {e.response.status_code}", operation="search"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise MemoryRetrievalError(f"Memory search failed: {e}", operation="search") from e

        if isinstance(data, dict):
            raw_items = data.get("edges") or data.get("results") or []
        else:
            raw_items = data or []
        fragments = [
            fragment
            for fragment in (self._parse_fragment(item, session_id) for item in raw_items)
            if fragment is not None
        ]

        ranked = sort_by_relevance(filter_by_score(fragments, min_score))[:limit]
        result = trim_to_token_budget(ranked, self.token_budget)

        logger.debug(
            "Memory search complete",
            extra={
                "user_id": user_id,
                "session_id": session_id,
                "raw_count": len(raw_items),
                "result_count": len(result),
                "zep_ms": (time.perf_counter() - start_time) * 1000,
            },
        )
        return result

    async def store_turn(
        self,
        user_id: str,
        session_id: str,
        user_message: str,
        assistant_message: str,
    ) -> bool:
        """Append a user/assistant exchange to the session thread.

        Returns:
            True if the memory service accepted the messages.
        """
        client = await self._ensure_client()
        try:
            response = await client.post(
                f"/api/v2/threads/{session_id}/messages",
                json={
                    "messages": [
                        {"role": "user", "content": user_message, "name": user_id},
                        {"role": "assistant", "content": assistant_message},
                    ]
                },
            )
            response.raise_for_status()
            return True
        except httpx.HTTPError as e:
            logger.warning(f"Failed to store conversation turn for session {session_id}: {e}")
            return False
