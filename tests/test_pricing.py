"""Tests for cost estimation."""

import pytest

from oai_gateway.pricing import (
    calculate_cost,
    get_model_pricing,
    normalize_usage,
    supported_models,
)


class TestNormalizeUsage:
    """Tests for usage normalization."""

    def test_responses_usage(self):
        """Test a Responses API usage block with details."""
        usage = {
            "input_tokens": 100,
            "input_tokens_details": {"cached_tokens": 20},
            "output_tokens": 50,
            "output_tokens_details": {"reasoning_tokens": 30},
            "total_tokens": 150,
        }
        assert normalize_usage(usage) == {
            "input_tokens": 100,
            "output_tokens": 50,
            "cached_tokens": 20,
            "reasoning_tokens": 30,
            "total_tokens": 150,
        }

    def test_chat_completions_usage(self):
        """Test that prompt/completion counters are accepted."""
        assert normalize_usage({"prompt_tokens": 7, "completion_tokens": 3}) == {
            "input_tokens": 7,
            "output_tokens": 3,
            "total_tokens": 10,
        }

    def test_invalid_usage(self):
        """Test that non-mapping usage gives an empty dict."""
        assert normalize_usage(None) == {}
        assert normalize_usage("lots") == {}


class TestCalculateCost:
    """Tests for calculate_cost."""

    def test_gpt_4o_cost(self):
        """Test the cost of a gpt-4o call."""
        cost = calculate_cost("gpt-4o", {"input_tokens": 1000, "output_tokens": 500})
        assert cost == pytest.approx(0.0000075)

    def test_cached_and_reasoning_tokens(self):
        """Test that cached and reasoning tokens are billed at their own rates."""
        usage = {
            "input_tokens": 1_000_000,
            "input_tokens_details": {"cached_tokens": 1_000_000},
            "output_tokens": 1_000_000,
            "output_tokens_details": {"reasoning_tokens": 1_000_000},
        }
        assert calculate_cost("o1", usage) == pytest.approx(0.015 + 0.0075 + 0.06 + 0.06)

    def test_unknown_model_is_free(self):
        """Test that unknown models cost nothing."""
        assert calculate_cost("my-finetune", {"input_tokens": 100}) == 0.0

    def test_missing_usage_is_free(self):
        """Test that missing usage costs nothing."""
        assert calculate_cost("gpt-4o", None) == 0.0
        assert calculate_cost("gpt-4o", {}) == 0.0

    def test_supported_models(self):
        """Test the pricing table lookup."""
        assert "gpt-4o-mini" in supported_models()
        assert get_model_pricing("gpt-image-1").image == 0.04
        assert get_model_pricing("unknown") is None
