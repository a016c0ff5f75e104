"""Perplexity chat completions client with pacing, retry, and key rotation."""

import json
import threading
from contextlib import contextmanager
from typing import Optional, List, Dict, Any, Callable, Iterator, Generator, TypeVar

import httpx

from .config import Config
from .keys import should_rotate_key
from .models import (
    APIError,
    ChatResponse,
    KeysExhaustedError,
    Message,
    NoAvailableKeysError,
    RequestBuildError,
    RequestCancelled,
    ResponseParseError,
)
from .ratelimit import RateLimiter
from .retry import OnRetry, RetryConfig, retry_call
from .streaming import OnChunk, OnDone, consume_stream, iter_content

T = TypeVar("T")

OnKeyRotation = Callable[[int, int, int], None]  # (from, to, total), 1-based

JSON_CONTENT_TYPE = "application/json"
EVENT_STREAM_CONTENT_TYPE = "text/event-stream"


def _is_cancelled(cancel: Optional[threading.Event]) -> bool:
    return cancel is not None and cancel.is_set()


class PerplexityClient:
    """
    Client for the Perplexity chat completions endpoint.

    Every request goes through two layers of resilience:
    - An inner retry loop absorbs transient network failures with
      exponential backoff, without touching the API key.
    - An outer loop rotates to the next configured key when the API rejects
      the current one (unauthorized, forbidden, rate limited, out of credit).

    Streaming requests only retry and rotate while connecting. Once the body
    starts arriving, errors are raised as-is so no content is delivered twice.
    """

    def __init__(
        self,
        config: Config,
        http_client: Optional[httpx.Client] = None,
        retry_config: Optional[RetryConfig] = None,
    ):
        self.config = config
        self.retry_config = retry_config or RetryConfig()
        self.rate_limiter = RateLimiter(config.rate_limit)

        self._client = http_client
        self._owns_client = http_client is None

        self._on_key_rotation: Optional[OnKeyRotation] = None
        self._on_retry: Optional[OnRetry] = None

    @property
    def client(self) -> httpx.Client:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.Client(timeout=self.config.timeout)
        return self._client

    def on_key_rotation(self, callback: Optional[OnKeyRotation]) -> None:
        """Register a callback fired after each successful key rotation."""
        self._on_key_rotation = callback

    def on_retry(self, callback: Optional[OnRetry]) -> None:
        """Register a callback fired before each network retry."""
        self._on_retry = callback

    def set_retry_config(self, config: RetryConfig) -> None:
        self.retry_config = config

    def set_base_url(self, url: str) -> None:
        """Point the client at another endpoint (e.g. a mock server)."""
        self.config.api_url = url

    # Request construction

    def _single_turn(self, prompt: str) -> List[Message]:
        return [Message.system(self.config.system_message), Message.user(prompt)]

    def _encode_payload(self, messages: List[Message], stream: bool) -> bytes:
        """Serialize the request body."""
        try:
            body: Dict[str, Any] = {
                "model": self.config.model,
                "messages": [m.to_dict() for m in messages],
                "stream": stream,
            }
            return json.dumps(body).encode("utf-8")
        except (AttributeError, TypeError, ValueError) as e:
            raise RequestBuildError(f"failed to marshal request: {e}") from e

    def _build_request(self, payload: bytes, accept: str) -> httpx.Request:
        headers = {
            "Accept": accept,
            "Content-Type": JSON_CONTENT_TYPE,
            "Authorization": f"Bearer {self.config.keys.current}",
        }
        try:
            return self.client.build_request("POST", self.config.api_url, content=payload, headers=headers)
        except (httpx.InvalidURL, ValueError) as e:
            raise RequestBuildError(f"failed to create request: {e}") from e

    @staticmethod
    def _api_error(response: httpx.Response) -> APIError:
        """Convert a non-2xx response into an APIError."""
        message = f"status code {response.status_code}"
        try:
            data = response.json()
        except ValueError:
            data = None

        if isinstance(data, dict):
            error = data.get("error")
            if isinstance(error, dict) and error.get("message"):
                message = str(error["message"])

        return APIError(response.status_code, message)

    # Single attempts

    def _complete_once(self, messages: List[Message], cancel: Optional[threading.Event]) -> ChatResponse:
        """One attempt with the current key: pace, then send with network retry."""
        self.rate_limiter.wait(cancel)
        payload = self._encode_payload(messages, stream=False)

        def exchange() -> ChatResponse:
            request = self._build_request(payload, JSON_CONTENT_TYPE)
            response = self.client.send(request)

            if not response.is_success:
                raise self._api_error(response)

            try:
                return ChatResponse.from_dict(response.json())
            except (TypeError, ValueError) as e:
                raise ResponseParseError(f"failed to parse response: {e}") from e

        return retry_call(exchange, self.retry_config, self._on_retry, cancel)

    def _connect_stream_once(self, messages: List[Message], cancel: Optional[threading.Event]) -> httpx.Response:
        """One connection attempt; returns an open response with a 2xx status."""
        self.rate_limiter.wait(cancel)
        payload = self._encode_payload(messages, stream=True)

        def connect() -> httpx.Response:
            request = self._build_request(payload, EVENT_STREAM_CONTENT_TYPE)
            response = self.client.send(request, stream=True)

            if not response.is_success:
                try:
                    response.read()
                finally:
                    response.close()
                raise self._api_error(response)

            return response

        return retry_call(connect, self.retry_config, self._on_retry, cancel)

    # Key rotation

    def _rotate_key(self) -> None:
        """
        Switch to the next key and notify the rotation callback.

        Raises:
            NoAvailableKeysError: If every key has been tried
        """
        keys = self.config.keys
        rotation = keys.rotate()

        if self._on_key_rotation:
            self._on_key_rotation(rotation.from_index + 1, rotation.to_index + 1, keys.count)

    def _with_key_rotation(self, attempt: Callable[[], T], cancel: Optional[threading.Event]) -> T:
        """Run ``attempt``, rotating keys on key-related API errors."""
        if self.config.keys.count <= 1:
            return attempt()

        while True:
            try:
                result = attempt()
            except RequestCancelled:
                raise
            except APIError as e:
                if _is_cancelled(cancel):
                    raise RequestCancelled() from e

                if not should_rotate_key(e.status_code, e.message):
                    raise

                try:
                    self._rotate_key()
                except NoAvailableKeysError:
                    raise KeysExhaustedError(e) from e
                continue
            except Exception as e:
                if _is_cancelled(cancel):
                    raise RequestCancelled() from e
                raise

            self.config.keys.reset_cycle()
            return result

    @contextmanager
    def _stream(self, messages: List[Message], cancel: Optional[threading.Event]) -> Iterator[httpx.Response]:
        """Open a streaming response and guarantee it is closed."""
        response = self._with_key_rotation(lambda: self._connect_stream_once(messages, cancel), cancel)
        try:
            yield response
        finally:
            response.close()

    # Public API

    def query(self, prompt: str, cancel: Optional[threading.Event] = None) -> ChatResponse:
        """
        Send a single prompt and wait for the complete response.

        Args:
            prompt: User prompt, sent after the configured system message
            cancel: Optional cancellation token

        Returns:
            ChatResponse with content, citations and usage
        """
        return self.query_with_history(self._single_turn(prompt), cancel)

    def query_stream(
        self,
        prompt: str,
        on_chunk: OnChunk,
        on_done: Optional[OnDone] = None,
        cancel: Optional[threading.Event] = None,
    ) -> None:
        """
        Send a single prompt and stream the response.

        Args:
            prompt: User prompt
            on_chunk: Called with each incremental piece of content
            on_done: Called once with the chunk carrying citations and usage,
                if the stream had one
            cancel: Optional cancellation token
        """
        self.query_stream_with_history(self._single_turn(prompt), on_chunk, on_done, cancel)

    def query_with_history(
        self,
        messages: List[Message],
        cancel: Optional[threading.Event] = None,
    ) -> ChatResponse:
        """Send a full conversation and wait for the complete response."""
        return self._with_key_rotation(lambda: self._complete_once(messages, cancel), cancel)

    def query_stream_with_history(
        self,
        messages: List[Message],
        on_chunk: OnChunk,
        on_done: Optional[OnDone] = None,
        cancel: Optional[threading.Event] = None,
    ) -> None:
        """Send a full conversation and stream the response through callbacks."""
        with self._stream(messages, cancel) as response:
            consume_stream(response.iter_lines(), on_chunk, on_done, cancel)

    def iter_stream_with_history(
        self,
        messages: List[Message],
        cancel: Optional[threading.Event] = None,
    ) -> Generator[str, None, Optional[ChatResponse]]:
        """
        Send a full conversation and yield content deltas as they arrive.

        The connection is made on the first ``next()``. The generator's return
        value is the final chunk with citations and usage, or None.
        """
        with self._stream(messages, cancel) as response:
            final = yield from iter_content(response.iter_lines(), cancel)
        return final

    def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._client is not None and self._owns_client:
            self._client.close()
            self._client = None

    def __enter__(self) -> "PerplexityClient":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
