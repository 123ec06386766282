"""Chat turn services: validation, memory, prompt, session, relay and usage."""

from chat_stream.services.chat.completion_relay import CompletionRelay, RelayResult
from chat_stream.services.chat.memory_retriever import MemoryRetriever
from chat_stream.services.chat.orchestrator import ChatTurnOrchestrator
from chat_stream.services.chat.prompt_assembler import PromptAssembler, PromptPlan
from chat_stream.services.chat.request_validator import validate_chat_request
from chat_stream.services.chat.stream_session import SessionState, StreamingSession
from chat_stream.services.chat.usage_finalizer import CharRatioEstimator, UsageFinalizer

__all__ = [
    "ChatTurnOrchestrator",
    "CharRatioEstimator",
    "CompletionRelay",
    "MemoryRetriever",
    "PromptAssembler",
    "PromptPlan",
    "RelayResult",
    "SessionState",
    "StreamingSession",
    "UsageFinalizer",
    "validate_chat_request",
]
