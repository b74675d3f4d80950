"""Tests for token estimation."""

import pytest

from contextsmith.token_counter import (
    CharEstimator,
    ModelFamily,
    TiktokenEstimator,
    default_estimator,
    estimate_tokens,
    estimator_for_model,
    format_budget,
    parse_model,
)


class TestCharEstimator:
    """Tests for the character heuristic."""

    def test_empty_text(self):
        """Empty text is zero tokens."""
        assert CharEstimator().estimate("") == 0

    def test_rounds_up(self):
        """Partial tokens round up."""
        assert CharEstimator(ModelFamily.GPT4).estimate("abcde") == 2
        assert CharEstimator(ModelFamily.GPT4).estimate("abcd") == 1

    def test_counts_utf8_bytes(self):
        """Multi-byte characters count by encoded length."""
        # "é" is two bytes in UTF-8
        assert CharEstimator(ModelFamily.GPT4).estimate("éééé") == 2

    def test_claude_ratio(self):
        """Claude-class models use 3.5 chars per token."""
        assert CharEstimator(ModelFamily.CLAUDE).estimate("x" * 35) == 10

    def test_model_name(self):
        """The estimator reports its family name."""
        assert CharEstimator(ModelFamily.CLAUDE).model_name == "claude"
        assert default_estimator().model_name == "gpt-4"

    def test_estimate_tokens_helper(self):
        """The module helper uses the same heuristic."""
        assert estimate_tokens("x" * 40) == 10


class TestParseModel:
    """Tests for model family detection."""

    @pytest.mark.parametrize("name,family", [
        ("claude-3-opus", ModelFamily.CLAUDE),
        ("Claude-Sonnet", ModelFamily.CLAUDE),
        ("gpt-4o", ModelFamily.GPT4),
        ("gpt4", ModelFamily.GPT4),
        ("gpt-3.5-turbo", ModelFamily.GPT35),
        ("llama-3", ModelFamily.UNKNOWN),
    ])
    def test_families(self, name, family):
        """Names map to families by substring."""
        assert parse_model(name) == family

    def test_unknown_uses_default_ratio(self):
        """Unknown models fall back to 4 chars per token."""
        assert ModelFamily.UNKNOWN.chars_per_token == 4.0


class TestEstimatorForModel:
    """Tests for estimator selection."""

    def test_heuristic_by_default(self):
        """Without exact counting the heuristic is used."""
        estimator = estimator_for_model("claude-3-haiku")

        assert isinstance(estimator, CharEstimator)
        assert estimator.family == ModelFamily.CLAUDE

    def test_exact_selects_tiktoken(self):
        """exact=True picks the tiktoken estimator."""
        estimator = estimator_for_model("gpt-4", exact=True)

        assert isinstance(estimator, TiktokenEstimator)
        assert estimator.model_name == "tiktoken:cl100k_base"


class TestTiktokenEstimator:
    """Tests for exact BPE counting."""

    def test_known_string(self):
        """cl100k_base splits "hello world" into two tokens."""
        assert TiktokenEstimator().estimate("hello world") == 2

    def test_empty_text(self):
        """Empty text is zero tokens without loading the encoder."""
        assert TiktokenEstimator().estimate("") == 0

    def test_special_tokens_counted_as_text(self):
        """Special-token markers in source code do not raise."""
        assert TiktokenEstimator().estimate("<|endoftext|>") > 0


class TestFormatBudget:
    """Tests for format_budget."""

    def test_format(self):
        """Used, total and percentage are shown."""
        assert format_budget(6234, 8000) == "6,234 / 8,000 (77%)"

    def test_zero_total(self):
        """A zero budget does not divide by zero."""
        assert format_budget(10, 0) == "10 / 0 (0%)"
