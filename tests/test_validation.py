"""Tests for prompt and API key validation."""

import pytest

from perplexity_cli.validation import (
    MAX_PROMPT_LENGTH,
    ValidationError,
    sanitize_prompt,
    validate_api_key,
    validate_prompt,
)


class TestPrompt:
    def test_trims(self):
        assert validate_prompt("  hello \n") == "hello"

    @pytest.mark.parametrize("prompt", ["", "   ", "\n\t"])
    def test_empty(self, prompt):
        with pytest.raises(ValidationError, match="empty"):
            validate_prompt(prompt)

    def test_too_long(self):
        with pytest.raises(ValidationError, match="maximum length"):
            validate_prompt("a" * (MAX_PROMPT_LENGTH + 1))
        assert len(validate_prompt("a" * MAX_PROMPT_LENGTH)) == MAX_PROMPT_LENGTH

    def test_sanitize_keeps_whitespace(self):
        assert sanitize_prompt("a\x00b\x1bc\nd\te\rf") == "abc\nd\te\rf"


class TestAPIKey:
    def test_valid_key(self):
        assert validate_api_key("pplx-" + "a" * 40) is None

    def test_missing_prefix_is_a_warning(self):
        warning = validate_api_key("x" * 40)
        assert warning is not None
        assert "pplx-" in warning

    def test_too_short(self):
        with pytest.raises(ValidationError, match="too short"):
            validate_api_key("pplx-abc")

    def test_too_long(self):
        with pytest.raises(ValidationError, match="maximum"):
            validate_api_key("pplx-" + "a" * 300)

    def test_invalid_characters(self):
        with pytest.raises(ValidationError, match="position 9"):
            validate_api_key("pplx-abcd$efghijklmnopqrst")

    def test_empty(self):
        with pytest.raises(ValidationError):
            validate_api_key("   ")
