"""Chat turn, stream event and usage models."""

import math
from enum import Enum
from typing import Any, ClassVar, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

SESSION_ID_PATTERN = r"^session-[0-9]{8}-[0-9]{6}-[a-z0-9]{4}$"
MAX_MESSAGE_LENGTH = 4000


class ChatTurnRequest(BaseModel):
    """Inbound chat turn request. Immutable once accepted."""
    message: str = Field(
        ..., min_length=1, max_length=MAX_MESSAGE_LENGTH, description="User message"
    )
    use_memory: bool = Field(False, alias="useMemory", description="Consult long-term memory")
    session_id: Optional[str] = Field(
        None, alias="sessionId", pattern=SESSION_ID_PATTERN, description="Conversation session"
    )
    model: Optional[str] = Field(None, max_length=100, description="Requested model")
    system_prompt: Optional[str] = Field(
        None, alias="systemPrompt", description="Override for the default system prompt"
    )
    return_memory: bool = Field(
        False, alias="returnMemory", description="Always emit a memory event, even when empty"
    )
    testing_mode: bool = Field(
        False, alias="testingMode", description="Skip writing the turn back to memory"
    )

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")


class FinishReason(str, Enum):
    """Why the upstream generation ended."""
    STOP = "stop"
    LENGTH = "length"
    CONTENT_FILTER = "content_filter"
    ERROR = "error"


class StreamEventType(str, Enum):
    """Event names used on the wire."""
    MEMORY = "memory"
    TOKEN = "token"
    USAGE = "usage"
    DONE = "done"
    ERROR = "error"


class _StreamEvent(BaseModel):
    event_type: ClassVar[StreamEventType]

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    def payload(self) -> Dict[str, Any]:
        """JSON payload as it appears on the ``data:`` line."""
        return self.model_dump(by_alias=True, mode="json")


class MemoryEvent(_StreamEvent):
    event_type: ClassVar[StreamEventType] = StreamEventType.MEMORY
    results: Optional[str] = None
    memory_ms: float = Field(0.0, alias="memoryMs", ge=0)


class TokenEvent(_StreamEvent):
    event_type: ClassVar[StreamEventType] = StreamEventType.TOKEN
    text: str


class UsageEvent(_StreamEvent):
    event_type: ClassVar[StreamEventType] = StreamEventType.USAGE
    tokens_in: int = Field(..., ge=0)
    tokens_out: int = Field(..., ge=0)
    cost_usd: float = Field(..., ge=0)
    model: str


class DoneEvent(_StreamEvent):
    event_type: ClassVar[StreamEventType] = StreamEventType.DONE
    finish_reason: FinishReason


class ErrorEvent(_StreamEvent):
    event_type: ClassVar[StreamEventType] = StreamEventType.ERROR
    error: str
    code: str


StreamEvent = Union[MemoryEvent, TokenEvent, UsageEvent, DoneEvent, ErrorEvent]


class UsageSource(str, Enum):
    """Where the token counts of a usage record came from."""
    PROVIDER = "provider"
    ESTIMATED = "estimated"


class UsageRecord(BaseModel):
    """Token usage and cost of one turn. Created exactly once per turn."""
    tokens_in: int = Field(..., ge=0)
    tokens_out: int = Field(..., ge=0)
    cost_usd: float = Field(..., ge=0)
    model: str
    ttft_ms: Optional[float] = None
    source: UsageSource

    model_config = ConfigDict(frozen=True)

    @field_validator("cost_usd")
    @classmethod
    def _finite_cost(cls, value: float) -> float:
        if not math.isfinite(value):
            raise ValueError("cost_usd must be finite")
        return value

    @property
    def has_provider_usage(self) -> bool:
        return self.source == UsageSource.PROVIDER

    def to_event(self) -> UsageEvent:
        return UsageEvent(
            tokens_in=self.tokens_in,
            tokens_out=self.tokens_out,
            cost_usd=self.cost_usd,
            model=self.model,
        )


class MemoryFragment(BaseModel):
    """A single ranked memory result."""
    id: str
    text: str
    score: float = 0.0
    source_type: str = "message"
    tokens_estimate: int = 0
    session_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class MemoryContext(BaseModel):
    """Memory fragments retrieved for one turn. Never persisted here."""
    fragments: List[MemoryFragment] = Field(default_factory=list)
    total_tokens: int = 0
    latency_ms: float = 0.0

    @property
    def is_empty(self) -> bool:
        return not self.fragments

    @property
    def context_text(self) -> str:
        return "\n".join(
            f"{index}. {fragment.text}" for index, fragment in enumerate(self.fragments, start=1)
        )


class PromptMessage(BaseModel):
    """A single role/content pair sent upstream."""
    role: Literal["system", "user", "assistant"]
    content: str

    model_config = ConfigDict(frozen=True)
