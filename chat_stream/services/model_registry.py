"""Model registry and pricing lookups.

Resolves the model requested by a chat turn against the configured pricing
table and provides per-million-token prices used for cost calculation. The
table is loaded from an optional JSON file and refreshed after a TTL.
"""

import json
import os
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from chat_stream.core.config import settings
from chat_stream.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class ModelPricing:
    """Per-million-token prices for a model, in USD."""
    model: str
    input_per_mtok: float
    output_per_mtok: float
    cached_input_per_mtok: Optional[float] = None


@dataclass(frozen=True)
class ModelValidation:
    """Outcome of resolving a requested model name."""
    valid: bool
    model: str
    pricing: ModelPricing
    is_default: bool


DEFAULT_PRICING: Dict[str, ModelPricing] = {
    "gpt-4o-mini": ModelPricing("gpt-4o-mini", 0.15, 0.60, 0.075),
    "gpt-4o": ModelPricing("gpt-4o", 2.50, 10.00, 1.25),
    "gpt-3.5-turbo": ModelPricing("gpt-3.5-turbo", 0.50, 1.50),
}

# Ordered most specific first: "gpt-4o-mini" must win over "gpt-4o" and "gpt-4"
PRICING_PATTERNS: List[Tuple[str, float, float]] = [
    ("gpt-4o-mini", 0.15, 0.60),
    ("gpt-4o", 2.50, 10.00),
    ("gpt-4", 30.00, 60.00),
    ("gpt-3.5", 0.50, 1.50),
]

FALLBACK_PRICES = (0.50, 1.50)


def pricing_for_unknown_model(model: str) -> ModelPricing:
    """Price a model missing from the table by matching its name."""
    name = model.lower()
    for prefix, input_price, output_price in PRICING_PATTERNS:
        if prefix in name:
            return ModelPricing(model, input_price, output_price)
    return ModelPricing(model, *FALLBACK_PRICES)


def calculate_cost(
    pricing: ModelPricing,
    tokens_in: int,
    tokens_out: int,
    cached_input_tokens: int = 0,
) -> float:
    """Compute the unrounded USD cost of a completion.

    Args:
        pricing: Prices for the model that served the completion.
        tokens_in: Prompt tokens, including any cached ones.
        tokens_out: Completion tokens.
        cached_input_tokens: Portion of ``tokens_in`` billed at the cached rate.

    Returns:
        Cost in USD.
    """
    cached = min(max(cached_input_tokens, 0), max(tokens_in, 0))
    uncached = max(tokens_in, 0) - cached
    cached_rate = (
        pricing.cached_input_per_mtok
        if pricing.cached_input_per_mtok is not None
        else pricing.input_per_mtok
    )
    return (
        uncached * pricing.input_per_mtok / 1_000_000
        + cached * cached_rate / 1_000_000
        + max(tokens_out, 0) * pricing.output_per_mtok / 1_000_000
    )


def load_pricing_file(path: str) -> Dict[str, ModelPricing]:
    """Load a pricing table from JSON.

    Accepts either a list of entries or ``{"models": [...]}``. Each entry has
    ``model``, ``input_per_mtok`` and ``output_per_mtok`` and optionally
    ``cached_input_per_mtok``.
    """
    with open(path, "r") as f:
        raw = json.load(f)

    entries = raw.get("models", []) if isinstance(raw, dict) else raw
    table: Dict[str, ModelPricing] = {}
    for entry in entries:
        try:
            pricing = ModelPricing(
                model=str(entry["model"]),
                input_per_mtok=float(entry["input_per_mtok"]),
                output_per_mtok=float(entry["output_per_mtok"]),
                cached_input_per_mtok=(
                    float(entry["cached_input_per_mtok"])
                    if entry.get("cached_input_per_mtok") is not None
                    else None
                ),
            )
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Skipping malformed pricing entry {entry!r}: {e}")
            continue
        table[pricing.model] = pricing
    return table


class ModelRegistry:
    """Resolves models and prices with a TTL-refreshed cache."""

    def __init__(
        self,
        default_model: Optional[str] = None,
        allowed_models: Optional[List[str]] = None,
        pricing_file: Optional[str] = None,
        ttl_seconds: Optional[float] = None,
        pricing: Optional[Dict[str, ModelPricing]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.default_model = default_model or settings.default_model
        self.allowed_models = list(allowed_models if allowed_models is not None else settings.allowed_models)
        self.pricing_file = pricing_file if pricing_file is not None else settings.pricing_file
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.pricing_cache_ttl_seconds
        self._static_pricing = pricing
        self._clock = clock
        self._table: Dict[str, ModelPricing] = {}
        self._loaded_at: Optional[float] = None

    def _load_table(self) -> Dict[str, ModelPricing]:
        if self._static_pricing is not None:
            return dict(self._static_pricing)

        table = dict(DEFAULT_PRICING)
        if self.pricing_file and os.path.exists(self.pricing_file):
            try:
                table.update(load_pricing_file(self.pricing_file))
                logger.info(f"Loaded model pricing from {self.pricing_file}")
            except Exception as e:
                logger.warning(f"Failed to load pricing from {self.pricing_file}: {e}")
        return table

    def _ensure_fresh(self) -> Dict[str, ModelPricing]:
        now = self._clock()
        if self._loaded_at is None or now - self._loaded_at >= self.ttl_seconds:
            self._table = self._load_table()
            self._loaded_at = now
        return self._table

    def invalidate(self) -> None:
        """Force the next lookup to reload the pricing table."""
        self._loaded_at = None

    def _is_selectable(self, model: str, table: Dict[str, ModelPricing]) -> bool:
        if model not in table:
            return False
        return not self.allowed_models or model in self.allowed_models

    def list_models(self) -> List[ModelPricing]:
        """Models a caller may request, with their prices."""
        table = self._ensure_fresh()
        return [pricing for name, pricing in sorted(table.items()) if self._is_selectable(name, table)]

    def get_pricing(self, model: str) -> ModelPricing:
        """Prices for ``model``, falling back to name-pattern pricing."""
        table = self._ensure_fresh()
        pricing = table.get(model)
        if pricing is None:
            pricing = pricing_for_unknown_model(model)
        return pricing

    def validate_model(self, requested: Optional[str]) -> ModelValidation:
        """Resolve a requested model, falling back to the default model.

        Args:
            requested: Model name from the request, or None.

        Returns:
            ModelValidation; ``valid`` is False when the request named an
            unknown model and the default was substituted.
        """
        table = self._ensure_fresh()

        if requested and self._is_selectable(requested, table):
            return ModelValidation(
                valid=True,
                model=requested,
                pricing=table[requested],
                is_default=requested == self.default_model,
            )

        if requested:
            logger.warning(
                f"Requested model '{requested}' is not available; using default '{self.default_model}'"
            )

        return ModelValidation(
            valid=not requested,
            model=self.default_model,
            pricing=self.get_pricing(self.default_model),
            is_default=True,
        )
