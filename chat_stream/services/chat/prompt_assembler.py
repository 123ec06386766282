"""Prompt assembly with per-section token budgets."""

import math
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from chat_stream.core.config import settings
from chat_stream.core.logging import get_logger
from chat_stream.models.chat import MemoryFragment, PromptMessage

logger = get_logger(__name__)

CONTEXT_HEADER = "## Relevant Context"
TRUNCATION_NOTICE = "\n\n[Message truncated due to length]"
MIN_PARTIAL_ITEM_TOKENS = 50

_SENTENCE = re.compile(r"[^.!?]+[.!?]+")
_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class TokenBudget:
    total: int = 4000
    memory: int = 1500
    system: int = 200
    user: int = 2000


@dataclass
class PromptPlan:
    """Assembled messages plus how the budget was spent."""
    messages: List[PromptMessage] = field(default_factory=list)
    total_tokens: int = 0
    memory_tokens: int = 0
    system_tokens: int = 0
    user_tokens: int = 0
    items_included: int = 0
    items_excluded: int = 0
    excluded_reasons: List[str] = field(default_factory=list)

    @property
    def prompt_text(self) -> str:
        return "\n".join(message.content for message in self.messages)

    def summary(self) -> Dict[str, Any]:
        """Plan summary for telemetry."""
        return {
            "total_tokens": self.total_tokens,
            "memory_tokens": self.memory_tokens,
            "system_tokens": self.system_tokens,
            "user_tokens": self.user_tokens,
            "items_included": self.items_included,
            "items_excluded": self.items_excluded,
            "excluded_reasons": list(self.excluded_reasons),
        }


def estimate_prompt_tokens(text: str) -> int:
    """Average of a word-based (1.3/word) and char-based (4 chars) estimate."""
    words = len(_WHITESPACE.split(text))
    return math.ceil((words * 1.3 + len(text) / 4) / 2)


def truncate_text(text: str, max_tokens: int) -> str:
    """Cut ``text`` to roughly ``max_tokens``, preferring a word boundary."""
    max_chars = max_tokens * 4
    if len(text) <= max_chars:
        return text

    truncated = text[:max_chars]
    last_space = truncated.rfind(" ")
    if last_space > max_chars * 0.8:
        return truncated[:last_space]
    return truncated


def clip_to_sentences(text: str, max_sentences: int) -> str:
    if max_sentences <= 0:
        return text
    sentences = _SENTENCE.findall(text) or [text]
    if len(sentences) > max_sentences:
        return " ".join(s.strip() for s in sentences[:max_sentences])
    return text


class PromptAssembler:
    """Builds the ordered role/content list sent upstream.

    Memory context is appended to the system message under a
    "Relevant Context" header; each section is held to its token budget.
    """

    def __init__(
        self,
        default_system_prompt: Optional[str] = None,
        budget: Optional[TokenBudget] = None,
        top_k: Optional[int] = None,
        clip_sentences: Optional[int] = None,
    ):
        self.default_system_prompt = default_system_prompt or settings.default_system_prompt
        self.budget = budget or TokenBudget(
            memory=settings.memory_token_budget,
            system=settings.prompt_system_token_budget,
            user=settings.prompt_user_token_budget,
        )
        self.top_k = top_k or settings.memory_top_k
        self.clip_sentences = (
            clip_sentences if clip_sentences is not None else settings.memory_clip_sentences
        )

    def assemble(
        self,
        user_message: str,
        memory: Sequence[MemoryFragment] = (),
        system_prompt: Optional[str] = None,
    ) -> PromptPlan:
        """Assemble the prompt for one turn.

        Args:
            user_message: The caller's message.
            memory: Retrieved memory fragments, any order.
            system_prompt: Overrides the default system prompt.

        Returns:
            PromptPlan with messages and budget accounting.
        """
        plan = PromptPlan()

        system_content = system_prompt or self.default_system_prompt
        system_tokens = estimate_prompt_tokens(system_content)
        if system_tokens > self.budget.system:
            system_content = truncate_text(system_content, self.budget.system)
            system_tokens = self.budget.system
            plan.excluded_reasons.append("System prompt truncated to fit budget")
        plan.system_tokens = system_tokens
        plan.total_tokens += system_tokens

        if memory:
            context, memory_tokens = self._build_memory_context(memory, plan)
            if context:
                system_content += f"\n\n{CONTEXT_HEADER}\n{context}"
                plan.memory_tokens = memory_tokens
                plan.total_tokens += memory_tokens

        plan.messages.append(PromptMessage(role="system", content=system_content))

        user_tokens = estimate_prompt_tokens(user_message)
        if user_tokens <= self.budget.user:
            plan.messages.append(PromptMessage(role="user", content=user_message))
            plan.user_tokens = user_tokens
        else:
            truncated = truncate_text(user_message, self.budget.user)
            plan.messages.append(PromptMessage(role="user", content=truncated + TRUNCATION_NOTICE))
            plan.user_tokens = self.budget.user
            plan.excluded_reasons.append("User message truncated to fit budget")
        plan.total_tokens += plan.user_tokens

        logger.info("Prompt assembled", extra={"prompt_plan": plan.summary()})
        return plan

    def _build_memory_context(self, memory: Sequence[MemoryFragment], plan: PromptPlan):
        ranked = sorted(memory, key=lambda fragment: fragment.score, reverse=True)
        top_k = min(self.top_k, len(ranked))
        candidates = ranked[:top_k]

        if len(ranked) > top_k:
            dropped = len(ranked) - top_k
            plan.items_excluded += dropped
            plan.excluded_reasons.append(f"{dropped} items excluded by top_k={top_k} limit")

        parts: List[str] = []
        used_tokens = 0
        for fragment in candidates:
            text = clip_to_sentences(fragment.text, self.clip_sentences)
            item_tokens = estimate_prompt_tokens(text)

            if used_tokens + item_tokens > self.budget.memory:
                remaining = self.budget.memory - used_tokens
                if remaining > MIN_PARTIAL_ITEM_TOKENS:
                    truncated = truncate_text(text, remaining)
                    parts.append(f"- {truncated}...")
                    used_tokens += estimate_prompt_tokens(truncated)
                    plan.items_included += 1
                    plan.excluded_reasons.append("Last item truncated to fit token budget")
                else:
                    plan.items_excluded += 1
                    plan.excluded_reasons.append("Item excluded: would exceed token budget")
                break

            parts.append(f"- {text}")
            used_tokens += item_tokens
            plan.items_included += 1

        return "\n".join(parts), used_tokens
