"""
perplexity-cli - Command-line client for the Perplexity chat completions API.

This package provides:
- Exponential backoff with jitter for transient network failures
- Client-side request pacing
- Rotation across several API keys when one is rejected or out of credit
- Blocking and streaming queries, with full conversation history
- An interactive chat session with saved conversations

Basic usage:
    from perplexity_cli import Config, PerplexityClient

    config = Config.from_env()
    with PerplexityClient(config) as client:
        response = client.query("What is the capital of France?")
        print(response.content)

Streaming:
    client.query_stream("Tell me a story", on_chunk=lambda text: print(text, end=""))

Cancellation:
    cancel = threading.Event()
    client.query("...", cancel=cancel)  # cancel.set() from another thread
"""

__version__ = "0.1.0"

# Main client
from .client import PerplexityClient

# Configuration
from .config import (
    Config,
    ConfigError,
    MissingAPIKeyError,
    InvalidModelError,
    AVAILABLE_MODELS,
    DEFAULT_MODEL,
)

# Building blocks
from .keys import KeyRing, should_rotate_key
from .ratelimit import RateLimiter
from .retry import (
    RetryConfig,
    RetryInfo,
    is_retryable_error,
    retry_call,
    with_retry,
)
from .streaming import parse_event, iter_stream, iter_content, consume_stream

# Messages, responses and errors
from .models import (
    Message,
    Usage,
    Choice,
    ChatResponse,
    PerplexityError,
    APIError,
    KeysExhaustedError,
    NoAvailableKeysError,
    RequestCancelled,
    RequestBuildError,
    ResponseParseError,
    StreamError,
)

__all__ = [
    # Version
    "__version__",
    # Main client
    "PerplexityClient",
    # Configuration
    "Config",
    "ConfigError",
    "MissingAPIKeyError",
    "InvalidModelError",
    "AVAILABLE_MODELS",
    "DEFAULT_MODEL",
    # Building blocks
    "KeyRing",
    "should_rotate_key",
    "RateLimiter",
    "RetryConfig",
    "RetryInfo",
    "is_retryable_error",
    "retry_call",
    "with_retry",
    "parse_event",
    "iter_stream",
    "iter_content",
    "consume_stream",
    # Messages and errors
    "Message",
    "Usage",
    "Choice",
    "ChatResponse",
    "PerplexityError",
    "APIError",
    "KeysExhaustedError",
    "NoAvailableKeysError",
    "RequestCancelled",
    "RequestBuildError",
    "ResponseParseError",
    "StreamError",
]
