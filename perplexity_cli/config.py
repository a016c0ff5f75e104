"""Application configuration and API key loading."""

import logging
import os
import random
from dataclasses import dataclass, field
from typing import Optional, List

from .keys import KeyRing
from .models import PerplexityError
from .validation import ValidationError, validate_api_key

log = logging.getLogger(__name__)

AVAILABLE_MODELS = [
    "sonar-reasoning-pro",
    "sonar-reasoning",
    "sonar-pro",
    "sonar",
    "sonar-deep-research",
]

DEFAULT_MODEL = "sonar-pro"
DEFAULT_SYSTEM_MESSAGE = "Be precise and concise."
FAILED_RESPONSE_PLACEHOLDER = "I apologize, but I couldn't generate a response."
DEFAULT_API_URL = "https://api.perplexity.ai/chat/completions"
DEFAULT_TIMEOUT = 120.0
DEFAULT_RATE_LIMIT = 0.0  # requests per minute, 0 = unlimited

ENV_API_KEYS = "PERPLEXITY_API_KEYS"  # Comma-separated list of API keys
ENV_API_KEY = "PERPLEXITY_API_KEY"  # Single API key (fallback)
ENV_TIMEOUT = "PERPLEXITY_TIMEOUT"  # Timeout in seconds
ENV_RATE_LIMIT = "PERPLEXITY_RATE_LIMIT"  # Requests per minute


class ConfigError(PerplexityError):
    """Raised when the configuration is invalid."""

    pass


class MissingAPIKeyError(ConfigError):
    """Raised when no API key is available."""

    def __init__(self):
        super().__init__(
            "API key not found. Set PERPLEXITY_API_KEYS or PERPLEXITY_API_KEY "
            "environment variable, or use --api-key flag"
        )


class InvalidModelError(ConfigError):
    """Raised when an unknown model is requested."""

    def __init__(self, model: str):
        super().__init__(
            f"invalid model specified: {model}. Available models: {available_models_string()}"
        )
        self.model = model


def validate_model(model: str) -> bool:
    """Check if the model is supported."""
    return model in AVAILABLE_MODELS


def available_models_string() -> str:
    return ", ".join(AVAILABLE_MODELS)


def get_api_keys_from_env() -> List[str]:
    """
    Read API keys from the environment.

    PERPLEXITY_API_KEYS (comma-separated) wins over PERPLEXITY_API_KEY.
    """
    keys_env = os.environ.get(ENV_API_KEYS, "")
    keys = [key.strip() for key in keys_env.split(",") if key.strip()]
    if keys:
        return keys

    key = os.environ.get(ENV_API_KEY, "").strip()
    if key:
        return [key]

    return []


def _float_from_env(name: str) -> Optional[float]:
    raw = os.environ.get(name)
    if not raw:
        return None
    try:
        value = float(raw)
    except ValueError:
        log.warning("Ignoring non-numeric %s=%r", name, raw)
        return None
    return value


@dataclass
class Config:
    """Configuration for the client and the command line front end."""

    api_url: str = DEFAULT_API_URL
    model: str = DEFAULT_MODEL
    # None means PERPLEXITY_TIMEOUT / PERPLEXITY_RATE_LIMIT, then the defaults
    timeout: Optional[float] = None
    rate_limit: Optional[float] = None
    system_message: str = DEFAULT_SYSTEM_MESSAGE

    # Explicit key (single key mode); otherwise keys come from the environment
    api_key: Optional[str] = None
    keys: KeyRing = field(default_factory=lambda: KeyRing([]))

    # Presentation
    usage: bool = False
    citations: bool = False
    stream: bool = False
    interactive: bool = False
    output_file: Optional[str] = None
    render: bool = False

    def __post_init__(self) -> None:
        self._resolve_tuning()

    @classmethod
    def from_keys(cls, keys: List[str], index: int = 0, **kwargs) -> "Config":
        """Build a config around an explicit key list, skipping validation."""
        return cls(keys=KeyRing(keys, index), **kwargs)

    @classmethod
    def from_env(cls, **kwargs) -> "Config":
        """Build and validate a config, loading keys and tuning from the environment."""
        config = cls(**kwargs)
        config.validate()
        return config

    @property
    def current_key(self) -> str:
        return self.keys.current

    def _resolve_tuning(self) -> None:
        """Fill unset timeout and rate limit from the environment, then the defaults."""
        if self.timeout is None:
            timeout = _float_from_env(ENV_TIMEOUT)
            self.timeout = timeout if timeout is not None and timeout > 0 else DEFAULT_TIMEOUT

        if self.rate_limit is None:
            rate_limit = _float_from_env(ENV_RATE_LIMIT)
            self.rate_limit = rate_limit if rate_limit is not None else DEFAULT_RATE_LIMIT

    def validate(self) -> None:
        """
        Validate the configuration and load API keys.

        Raises:
            MissingAPIKeyError: If no key is configured
            ConfigError: If a key is malformed
            InvalidModelError: If the model is not supported
        """
        if self.api_key:
            self._check_key(self.api_key, "invalid API key")
            self.keys = KeyRing([self.api_key.strip()])
        else:
            keys = get_api_keys_from_env()
            if not keys:
                raise MissingAPIKeyError()

            for i, key in enumerate(keys, start=1):
                self._check_key(key, f"invalid API key {i}")

            # Start at a random key
            self.keys = KeyRing(keys, random.randrange(len(keys)))

        log.debug("Loaded %d API key(s), starting at key %d", self.keys.count, self.keys.index + 1)

        if not validate_model(self.model):
            raise InvalidModelError(self.model)

    @staticmethod
    def _check_key(key: str, label: str) -> None:
        try:
            warning = validate_api_key(key)
        except ValidationError as e:
            raise ConfigError(f"{label}: {e}") from e
        if warning:
            log.warning(warning)
