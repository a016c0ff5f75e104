"""Shared fixtures and helpers for perplexity_cli tests (no network needed)."""

import json
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

from perplexity_cli import display
from perplexity_cli.client import PerplexityClient
from perplexity_cli.config import Config
from perplexity_cli.retry import RetryConfig

API_URL = "https://api.test/chat/completions"

KEY_A = "pplx-aaaaaaaaaaaaaaaaaaaaaaaa"
KEY_B = "pplx-bbbbbbbbbbbbbbbbbbbbbbbb"
KEY_C = "pplx-cccccccccccccccccccccccc"

FAST_RETRY = RetryConfig(max_retries=2, initial_backoff=0.001, max_backoff=0.01, jitter=0)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for name in (
        "PERPLEXITY_API_KEYS",
        "PERPLEXITY_API_KEY",
        "PERPLEXITY_TIMEOUT",
        "PERPLEXITY_RATE_LIMIT",
        "NO_COLOR",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("PERPLEXITY_HISTORY_PATH", str(tmp_path / "history.json"))
    display.set_color(False)


def make_config(keys: Optional[List[str]] = None, **kwargs: Any) -> Config:
    kwargs.setdefault("api_url", API_URL)
    return Config.from_keys(keys or [KEY_A], **kwargs)


def make_client(
    handler: Callable[[httpx.Request], httpx.Response],
    config: Optional[Config] = None,
    retry_config: RetryConfig = FAST_RETRY,
) -> PerplexityClient:
    http_client = httpx.Client(transport=httpx.MockTransport(handler))
    return PerplexityClient(config or make_config(), http_client=http_client, retry_config=retry_config)


def completion(content: str, citations: Optional[List[str]] = None, total_tokens: int = 0) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "id": "cmpl-1",
        "model": "sonar-pro",
        "choices": [{"index": 0, "message": {"role": "assistant", "content": content}, "finish_reason": "stop"}],
        "usage": {"prompt_tokens": 3, "completion_tokens": total_tokens - 3 if total_tokens else 0,
                  "total_tokens": total_tokens},
    }
    if citations is not None:
        body["citations"] = citations
    return body


def delta(text: str) -> Dict[str, Any]:
    return {"choices": [{"index": 0, "delta": {"role": "assistant", "content": text}}]}


def sse(*events: Any, done: bool = True) -> bytes:
    """Encode events as a server-sent-event body."""
    lines = []
    for event in events:
        data = event if isinstance(event, str) else json.dumps(event)
        lines.append(f"data: {data}\n\n")
    if done:
        lines.append("data: [DONE]\n\n")
    return "".join(lines).encode("utf-8")


def bearer(request: httpx.Request) -> str:
    return request.headers["Authorization"][len("Bearer "):]
