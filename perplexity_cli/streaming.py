"""Parser for server-sent-event chat completion streams.

Each frame is a line of the form ``data: <json>``; the stream ends with
``data: [DONE]`` or when the connection closes. Content arrives as
incremental deltas, while citations and token usage are carried by a
trailing informational chunk.
"""

import json
import threading
from typing import Callable, Generator, Iterable, Iterator, Optional

import httpx

from .models import ChatResponse, RequestCancelled, StreamError

DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"

OnChunk = Callable[[str], None]
OnDone = Callable[[ChatResponse], None]


def parse_event(line: str) -> Optional[ChatResponse]:
    """
    Parse one stream line.

    Returns None for blank lines, non-data lines, the terminal sentinel and
    chunks that are not valid JSON objects.
    """
    line = line.strip()
    if not line.startswith(DATA_PREFIX):
        return None

    data = line[len(DATA_PREFIX):].strip()
    if not data or data == DONE_SENTINEL:
        return None

    try:
        return ChatResponse.from_dict(json.loads(data))
    except (TypeError, ValueError):
        return None


def _is_done(line: str) -> bool:
    line = line.strip()
    return line.startswith(DATA_PREFIX) and line[len(DATA_PREFIX):].strip() == DONE_SENTINEL


def _read_lines(lines: Iterable[str], cancel: Optional[threading.Event]) -> Iterator[str]:
    """Yield raw lines, translating transport failures and honouring cancellation."""
    iterator = iter(lines)
    while True:
        if cancel is not None and cancel.is_set():
            raise RequestCancelled()
        try:
            line = next(iterator)
        except StopIteration:
            return
        except (httpx.HTTPError, httpx.StreamError, OSError) as e:
            raise StreamError(f"failed to read stream: {e}") from e
        yield line


def iter_stream(
    lines: Iterable[str],
    cancel: Optional[threading.Event] = None,
) -> Iterator[ChatResponse]:
    """
    Yield parsed chunks until the terminal sentinel or end of stream.

    Malformed chunks are skipped.

    Raises:
        StreamError: If reading the underlying transport fails
        RequestCancelled: If ``cancel`` is set between lines
    """
    for line in _read_lines(lines, cancel):
        if _is_done(line):
            return
        chunk = parse_event(line)
        if chunk is not None:
            yield chunk


def iter_content(
    lines: Iterable[str],
    cancel: Optional[threading.Event] = None,
) -> Generator[str, None, Optional[ChatResponse]]:
    """
    Yield content deltas as they arrive.

    The generator's return value is the last chunk that carried citations or
    token usage, or None when the stream had no such chunk.
    """
    final: Optional[ChatResponse] = None

    for chunk in iter_stream(lines, cancel):
        text = chunk.delta_content
        if text:
            yield text
        if chunk.has_metadata:
            final = chunk

    return final


def consume_stream(
    lines: Iterable[str],
    on_chunk: OnChunk,
    on_done: Optional[OnDone] = None,
    cancel: Optional[threading.Event] = None,
) -> Optional[ChatResponse]:
    """
    Drive callbacks from a stream.

    ``on_chunk`` receives each incremental piece of text, never the
    accumulated text. ``on_done`` is called once with the final metadata
    chunk, and only if one was seen.

    Returns:
        The final metadata chunk, if any
    """
    content = iter_content(lines, cancel)
    while True:
        try:
            text = next(content)
        except StopIteration as stop:
            final = stop.value
            break
        on_chunk(text)

    if final is not None and on_done is not None:
        on_done(final)
    return final
