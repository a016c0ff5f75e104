"""Input checks for prompts and API keys."""

import re
from typing import Optional

# Roughly 25-50k tokens depending on language
MAX_PROMPT_LENGTH = 100_000

MIN_API_KEY_LENGTH = 20
MAX_API_KEY_LENGTH = 256
API_KEY_PREFIX = "pplx-"

_API_KEY_CHARS = re.compile(r"[A-Za-z0-9_-]")


class ValidationError(ValueError):
    """Raised when user input fails validation."""

    pass


def validate_prompt(prompt: str) -> str:
    """
    Validate a prompt and return it trimmed.

    Raises:
        ValidationError: If the prompt is empty or too long
    """
    cleaned = prompt.strip()
    if not cleaned:
        raise ValidationError("prompt cannot be empty")

    if len(cleaned) > MAX_PROMPT_LENGTH:
        raise ValidationError(
            f"prompt exceeds maximum length: {len(cleaned)} characters (max: {MAX_PROMPT_LENGTH})"
        )

    return cleaned


def sanitize_prompt(prompt: str) -> str:
    """Remove control characters, keeping newlines, tabs and carriage returns."""
    return "".join(ch for ch in prompt if ord(ch) >= 32 or ch in "\n\t\r")


def validate_api_key(key: str) -> Optional[str]:
    """
    Check the format of an API key.

    Returns:
        A warning message for keys that look unusual but are accepted, else None

    Raises:
        ValidationError: If the key is malformed
    """
    key = key.strip()
    if not key:
        raise ValidationError("invalid API key format")

    if len(key) < MIN_API_KEY_LENGTH:
        raise ValidationError(
            f"API key is too short: got {len(key)} characters, minimum is {MIN_API_KEY_LENGTH}"
        )

    if len(key) > MAX_API_KEY_LENGTH:
        raise ValidationError(
            f"invalid API key format: got {len(key)} characters, maximum is {MAX_API_KEY_LENGTH}"
        )

    for position, ch in enumerate(key):
        if not _API_KEY_CHARS.fullmatch(ch):
            raise ValidationError(
                f"API key contains invalid characters: invalid character at position {position}"
            )

    if not key.startswith(API_KEY_PREFIX):
        return "API key does not start with 'pplx-' prefix; verify it's a valid Perplexity API key"
    return None
