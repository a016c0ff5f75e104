"""Chat messages, API responses, and the error types raised by the client."""

from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any


ROLE_SYSTEM = "system"
ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"


@dataclass
class Message:
    """A chat message."""

    role: str  # "system", "user", "assistant"
    content: str

    def to_dict(self) -> Dict[str, str]:
        """Convert to dictionary."""
        return {"role": self.role, "content": self.content}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        """Build a message from a decoded JSON object. Non-string fields read as empty."""
        role = data.get("role")
        content = data.get("content")
        return cls(
            role=role if isinstance(role, str) else "",
            content=content if isinstance(content, str) else "",
        )

    @classmethod
    def system(cls, content: str) -> "Message":
        """Create a system message."""
        return cls(role=ROLE_SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> "Message":
        """Create a user message."""
        return cls(role=ROLE_USER, content=content)

    @classmethod
    def assistant(cls, content: str) -> "Message":
        """Create an assistant message."""
        return cls(role=ROLE_ASSISTANT, content=content)


@dataclass
class Usage:
    """Token usage reported by the API."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "Usage":
        """
        Raises:
            ValueError: If a token count is not a number
        """
        if not isinstance(data, dict):
            return cls()
        try:
            return cls(
                prompt_tokens=int(data.get("prompt_tokens") or 0),
                completion_tokens=int(data.get("completion_tokens") or 0),
                total_tokens=int(data.get("total_tokens") or 0),
            )
        except (TypeError, OverflowError) as e:
            raise ValueError(f"invalid token count: {e}") from e

    def to_dict(self) -> Dict[str, int]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass
class Choice:
    """One response choice.

    Complete responses fill ``message``; streamed chunks fill ``delta``.
    """

    message: Message = field(default_factory=lambda: Message(role="", content=""))
    delta: Message = field(default_factory=lambda: Message(role="", content=""))
    finish_reason: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Choice":
        message = data.get("message")
        delta = data.get("delta")
        return cls(
            message=Message.from_dict(message if isinstance(message, dict) else {}),
            delta=Message.from_dict(delta if isinstance(delta, dict) else {}),
            finish_reason=data.get("finish_reason"),
        )


@dataclass
class ChatResponse:
    """A chat completion response, or a single streamed chunk of one."""

    choices: List[Choice] = field(default_factory=list)
    usage: Usage = field(default_factory=Usage)
    citations: List[str] = field(default_factory=list)
    raw_response: Optional[Dict[str, Any]] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChatResponse":
        """Parse a decoded JSON response body.

        Raises:
            ValueError: If ``data`` is not a JSON object or a field has the wrong type.
        """
        if not isinstance(data, dict):
            raise ValueError(f"expected a JSON object, got {type(data).__name__}")

        raw_choices = data.get("choices") or []
        if not isinstance(raw_choices, list):
            raise ValueError(f"choices must be a list, got {type(raw_choices).__name__}")

        raw_citations = data.get("citations") or []
        if not isinstance(raw_citations, list):
            raise ValueError(f"citations must be a list, got {type(raw_citations).__name__}")

        choices = [Choice.from_dict(choice) for choice in raw_choices if isinstance(choice, dict)]
        citations = [str(c) for c in raw_citations]

        return cls(
            choices=choices,
            usage=Usage.from_dict(data.get("usage")),
            citations=citations,
            raw_response=data,
        )

    @property
    def content(self) -> str:
        """Text of the first choice, preferring the complete message over the delta."""
        if not self.choices:
            return ""
        choice = self.choices[0]
        if choice.message.content:
            return choice.message.content
        return choice.delta.content

    @property
    def delta_content(self) -> str:
        """Incremental text carried by a streamed chunk."""
        if not self.choices:
            return ""
        return self.choices[0].delta.content

    @property
    def has_metadata(self) -> bool:
        """True when the chunk carries citations or a token count."""
        return bool(self.citations) or self.usage.total_tokens > 0

    def get_usage_map(self) -> Dict[str, int]:
        """Usage as a plain mapping for display."""
        return self.usage.to_dict()


class PerplexityError(Exception):
    """Base exception for client errors."""

    pass


class APIError(PerplexityError):
    """Raised when the API answers with a non-2xx status."""

    def __init__(self, status_code: int, message: str):
        super().__init__(f"API error: {message}")
        self.status_code = status_code
        self.message = message


class KeysExhaustedError(APIError):
    """Raised when every configured API key failed with a key-related error."""

    def __init__(self, original: APIError):
        super().__init__(
            original.status_code,
            f"{original.message} (no more API keys available)",
        )
        self.original = original


class NoAvailableKeysError(PerplexityError):
    """Raised by key rotation when there is no untried key left."""

    def __init__(self, message: str = "all API keys exhausted"):
        super().__init__(message)


class RequestCancelled(PerplexityError):
    """Raised when the caller cancels an in-flight request."""

    def __init__(self, message: str = "request cancelled"):
        super().__init__(message)


class RequestBuildError(PerplexityError):
    """Raised when the request payload cannot be built."""

    pass


class ResponseParseError(PerplexityError):
    """Raised when a successful response body cannot be decoded."""

    pass


class StreamError(PerplexityError):
    """Raised when reading a response stream fails after it has started."""

    pass
