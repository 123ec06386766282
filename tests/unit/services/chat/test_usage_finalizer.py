"""Tests for usage finalization and cost calculation."""

import pytest

from chat_stream.core.errors import UsageAlreadyFinalizedError
from chat_stream.models.chat import UsageSource
from chat_stream.services.chat.usage_finalizer import (
    CharRatioEstimator,
    UsageFinalizer,
    _clamp_count,
)


class TestCharRatioEstimator:
    """Tests for the character ratio estimator."""

    def test_rounds_up(self):
        assert CharRatioEstimator().estimate("abcde") == 2

    def test_empty_text(self):
        assert CharRatioEstimator().estimate("") == 0

    def test_custom_ratio(self):
        assert CharRatioEstimator(chars_per_token=2).estimate("abcde") == 3

    def test_rejects_non_positive_ratio(self):
        with pytest.raises(ValueError):
            CharRatioEstimator(chars_per_token=0)


class TestClampCount:
    """Tests for provider count coercion."""

    @pytest.mark.parametrize(
        "value,expected",
        [(5, 5), (3.7, 3), (-1, 0), ("12", 0), (None, 0), (True, 0), (float("nan"), 0), (float("inf"), 0)],
    )
    def test_values(self, value, expected):
        assert _clamp_count(value) == expected


class TestUsageFinalizer:
    """Tests for the once-per-turn usage record."""

    def test_provider_counts(self, registry):
        """Test provider counts are priced and rounded to six decimals."""
        finalizer = UsageFinalizer(registry)

        record = finalizer.finalize_from_provider(8, 2, "gpt-4o-mini", ttft_ms=120.0)

        assert record.tokens_in == 8
        assert record.tokens_out == 2
        assert record.cost_usd == pytest.approx(0.000002)
        assert record.source == UsageSource.PROVIDER
        assert record.has_provider_usage is True
        assert record.ttft_ms == 120.0
        assert finalizer.pricing.input_per_mtok == pytest.approx(0.15)

    def test_large_counts(self, registry):
        """Test a million tokens each way on gpt-4o-mini."""
        record = UsageFinalizer(registry).finalize_from_provider(1_000_000, 1_000_000, "gpt-4o-mini")

        assert record.cost_usd == pytest.approx(0.75)

    def test_estimated_counts(self, registry):
        """Test estimated counts use the configured estimator."""
        finalizer = UsageFinalizer(registry, CharRatioEstimator())

        record = finalizer.finalize_estimated("abcdefgh", "Hello!", "gpt-4o")

        assert record.tokens_in == 2
        assert record.tokens_out == 2
        assert record.source == UsageSource.ESTIMATED
        assert record.cost_usd == pytest.approx(round(2 * 2.5 / 1e6 + 2 * 10 / 1e6, 6))

    def test_pattern_pricing_for_unknown_model(self, registry):
        """Test models outside the table are priced by name."""
        record = UsageFinalizer(registry).finalize_from_provider(1000, 1000, "gpt-4-turbo")

        assert record.cost_usd == pytest.approx(0.09)

    def test_second_finalize_raises(self, registry):
        """Test usage cannot be finalized twice."""
        finalizer = UsageFinalizer(registry)
        finalizer.finalize_from_provider(1, 1, "gpt-4o-mini")

        with pytest.raises(UsageAlreadyFinalizedError):
            finalizer.finalize_estimated("prompt", "output", "gpt-4o-mini")

        assert finalizer.is_finalized is True
        assert finalizer.record.tokens_in == 1

    def test_clamps_invalid_counts(self, registry):
        """Test negative and non-numeric counts are recorded as zero."""
        record = UsageFinalizer(registry).finalize_from_provider(-10, "x", "gpt-4o-mini")

        assert record.tokens_in == 0
        assert record.tokens_out == 0
        assert record.cost_usd == 0

    def test_usage_event(self, registry):
        """Test the wire payload of the usage record."""
        record = UsageFinalizer(registry).finalize_from_provider(8, 2, "gpt-4o-mini")

        assert record.to_event().payload() == {
            "tokens_in": 8,
            "tokens_out": 2,
            "cost_usd": 0.000002,
            "model": "gpt-4o-mini",
        }
