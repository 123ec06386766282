"""Tests for the model registry and pricing."""

import json

import pytest

from chat_stream.services.model_registry import (
    DEFAULT_PRICING,
    ModelPricing,
    ModelRegistry,
    calculate_cost,
    load_pricing_file,
    pricing_for_unknown_model,
)


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestValidateModel:
    """Tests for ModelRegistry.validate_model."""

    def test_no_model_uses_default(self, registry):
        validation = registry.validate_model(None)

        assert validation.valid is True
        assert validation.model == "gpt-4o-mini"
        assert validation.is_default is True

    def test_known_model(self, registry):
        validation = registry.validate_model("gpt-4o")

        assert validation.valid is True
        assert validation.model == "gpt-4o"
        assert validation.is_default is False
        assert validation.pricing.output_per_mtok == pytest.approx(10.0)

    def test_unknown_model_falls_back(self, registry):
        """Test an unknown model resolves to the default and is flagged."""
        validation = registry.validate_model("gpt-unknown")

        assert validation.valid is False
        assert validation.model == "gpt-4o-mini"
        assert validation.is_default is True

    def test_model_outside_allow_list(self, registry):
        """Test a priced model that is not allowed falls back."""
        validation = registry.validate_model("gpt-3.5-turbo")

        assert validation.valid is False
        assert validation.model == "gpt-4o-mini"

    def test_empty_allow_list_allows_priced_models(self):
        registry = ModelRegistry(default_model="gpt-4o-mini", allowed_models=[], pricing=dict(DEFAULT_PRICING))

        assert registry.validate_model("gpt-3.5-turbo").valid is True


class TestPricing:
    """Tests for price lookups and cost calculation."""

    def test_list_models(self, registry):
        assert [p.model for p in registry.list_models()] == ["gpt-4o", "gpt-4o-mini"]

    @pytest.mark.parametrize(
        "model,expected",
        [
            ("gpt-4o-mini-2024-07-18", (0.15, 0.60)),
            ("gpt-4o-2024-08-06", (2.50, 10.00)),
            ("gpt-4-0613", (30.00, 60.00)),
            ("gpt-3.5-turbo-0125", (0.50, 1.50)),
            ("llama-3", (0.50, 1.50)),
        ],
    )
    def test_pattern_pricing(self, model, expected):
        pricing = pricing_for_unknown_model(model)

        assert (pricing.input_per_mtok, pricing.output_per_mtok) == expected
        assert pricing.model == model

    def test_get_pricing_falls_back_to_patterns(self, registry):
        assert registry.get_pricing("gpt-4-0613").input_per_mtok == pytest.approx(30.0)

    def test_calculate_cost(self):
        pricing = ModelPricing("gpt-4o-mini", 0.15, 0.60, 0.075)

        assert calculate_cost(pricing, 8, 2) == pytest.approx(0.0000024)

    def test_cached_input_rate(self):
        """Test cached prompt tokens are billed at the cached rate."""
        pricing = ModelPricing("gpt-4o-mini", 0.15, 0.60, 0.075)

        cost = calculate_cost(pricing, 1_000_000, 0, cached_input_tokens=400_000)

        assert cost == pytest.approx(0.12)

    def test_cached_without_cached_rate(self):
        pricing = ModelPricing("gpt-3.5-turbo", 0.50, 1.50)

        assert calculate_cost(pricing, 1000, 0, cached_input_tokens=1000) == pytest.approx(0.0005)


class TestPricingFile:
    """Tests for file-backed pricing with a TTL cache."""

    def write(self, path, entries):
        path.write_text(json.dumps({"models": entries}))

    def test_load_skips_malformed(self, tmp_path):
        path = tmp_path / "pricing.json"
        self.write(path, [
            {"model": "custom-model", "input_per_mtok": 1.0, "output_per_mtok": 2.0},
            {"model": "broken", "input_per_mtok": "n/a", "output_per_mtok": 2.0},
            {"input_per_mtok": 1.0},
        ])

        table = load_pricing_file(str(path))

        assert list(table) == ["custom-model"]

    def test_list_format(self, tmp_path):
        path = tmp_path / "pricing.json"
        path.write_text(json.dumps([{"model": "m", "input_per_mtok": 1, "output_per_mtok": 1}]))

        assert load_pricing_file(str(path))["m"].input_per_mtok == 1.0

    def test_file_overrides_defaults(self, tmp_path):
        path = tmp_path / "pricing.json"
        self.write(path, [{"model": "gpt-4o-mini", "input_per_mtok": 0.2, "output_per_mtok": 0.8}])
        registry = ModelRegistry(default_model="gpt-4o-mini", allowed_models=[], pricing_file=str(path))

        assert registry.get_pricing("gpt-4o-mini").input_per_mtok == pytest.approx(0.2)
        assert registry.get_pricing("gpt-4o").input_per_mtok == pytest.approx(2.5)

    def test_refresh_after_ttl(self, tmp_path):
        """Test prices reload only once the TTL has passed."""
        path = tmp_path / "pricing.json"
        self.write(path, [{"model": "gpt-4o-mini", "input_per_mtok": 0.2, "output_per_mtok": 0.8}])
        clock = FakeClock()
        registry = ModelRegistry(
            default_model="gpt-4o-mini",
            allowed_models=[],
            pricing_file=str(path),
            ttl_seconds=300,
            clock=clock,
        )
        assert registry.get_pricing("gpt-4o-mini").input_per_mtok == pytest.approx(0.2)

        self.write(path, [{"model": "gpt-4o-mini", "input_per_mtok": 0.3, "output_per_mtok": 0.9}])
        clock.now = 100
        assert registry.get_pricing("gpt-4o-mini").input_per_mtok == pytest.approx(0.2)

        clock.now = 300
        assert registry.get_pricing("gpt-4o-mini").input_per_mtok == pytest.approx(0.3)

    def test_invalidate(self, tmp_path):
        path = tmp_path / "pricing.json"
        self.write(path, [{"model": "gpt-4o-mini", "input_per_mtok": 0.2, "output_per_mtok": 0.8}])
        registry = ModelRegistry(default_model="gpt-4o-mini", allowed_models=[], pricing_file=str(path),
                                 clock=FakeClock())
        registry.get_pricing("gpt-4o-mini")
        self.write(path, [{"model": "gpt-4o-mini", "input_per_mtok": 0.4, "output_per_mtok": 0.8}])

        registry.invalidate()

        assert registry.get_pricing("gpt-4o-mini").input_per_mtok == pytest.approx(0.4)

    def test_unreadable_file_keeps_defaults(self, tmp_path):
        path = tmp_path / "pricing.json"
        path.write_text("{not json")
        registry = ModelRegistry(default_model="gpt-4o-mini", allowed_models=[], pricing_file=str(path))

        assert registry.get_pricing("gpt-4o-mini").input_per_mtok == pytest.approx(0.15)
