"""Token usage and cost computation for a chat turn."""

import math
from typing import Any, Optional

from chat_stream.core.errors import UsageAlreadyFinalizedError
from chat_stream.core.interfaces import ITokenEstimator
from chat_stream.core.logging import get_logger
from chat_stream.models.chat import UsageRecord, UsageSource
from chat_stream.services.model_registry import ModelPricing, ModelRegistry, calculate_cost

logger = get_logger(__name__)

COST_DECIMALS = 6


class CharRatioEstimator:
    """Estimate tokens as ``ceil(len(text) / chars_per_token)``."""

    def __init__(self, chars_per_token: float = 4.0):
        if chars_per_token <= 0:
            raise ValueError("chars_per_token must be positive")
        self.chars_per_token = chars_per_token

    def estimate(self, text: str) -> int:
        if not text:
            return 0
        return math.ceil(len(text) / self.chars_per_token)


def _clamp_count(value: Any) -> int:
    """Coerce a provider-reported count to a non-negative int."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    if not math.isfinite(value) or value < 0:
        return 0
    return int(value)


class UsageFinalizer:
    """Produces the single UsageRecord of one turn.

    Provider-reported counts win; estimation is only used when the provider
    reported nothing. A second finalize call raises.
    """

    def __init__(self, registry: ModelRegistry, estimator: Optional[ITokenEstimator] = None):
        self.registry = registry
        self.estimator = estimator or CharRatioEstimator()
        self.pricing: Optional[ModelPricing] = None
        self._record: Optional[UsageRecord] = None

    @property
    def record(self) -> Optional[UsageRecord]:
        return self._record

    @property
    def is_finalized(self) -> bool:
        return self._record is not None

    def _finalize(
        self,
        tokens_in: int,
        tokens_out: int,
        model: str,
        ttft_ms: Optional[float],
        source: UsageSource,
    ) -> UsageRecord:
        if self._record is not None:
            raise UsageAlreadyFinalizedError()

        self.pricing = self.registry.get_pricing(model)
        cost = calculate_cost(self.pricing, tokens_in, tokens_out)
        if not math.isfinite(cost) or cost < 0:
            logger.warning(f"Discarding invalid cost {cost!r} for model {model}")
            cost = 0.0

        self._record = UsageRecord(
            tokens_in=tokens_in,
            tokens_out=tokens_out,
            cost_usd=round(cost, COST_DECIMALS),
            model=model,
            ttft_ms=ttft_ms,
            source=source,
        )
        return self._record

    def finalize_from_provider(
        self,
        tokens_in: Any,
        tokens_out: Any,
        model: str,
        ttft_ms: Optional[float] = None,
    ) -> UsageRecord:
        """Build the record from counts reported by the provider."""
        return self._finalize(
            _clamp_count(tokens_in),
            _clamp_count(tokens_out),
            model,
            ttft_ms,
            UsageSource.PROVIDER,
        )

    def finalize_estimated(
        self,
        prompt_text: str,
        output_text: str,
        model: str,
        ttft_ms: Optional[float] = None,
    ) -> UsageRecord:
        """Build the record from estimated counts."""
        return self._finalize(
            self.estimator.estimate(prompt_text),
            self.estimator.estimate(output_text),
            model,
            ttft_ms,
            UsageSource.ESTIMATED,
        )
