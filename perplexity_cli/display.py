"""Terminal output helpers."""

import itertools
import os
import socket
import sys
import threading
import time
from typing import Dict, List, Optional, Tuple

import click
import httpx
from rich.console import Console
from rich.markdown import Markdown

from .models import APIError, KeysExhaustedError

_color_enabled = True


def set_color(enabled: bool) -> None:
    """Enable or disable ANSI styling for all display helpers."""
    global _color_enabled
    _color_enabled = enabled


def use_color(no_color_flag: bool = False) -> bool:
    """Decide whether to colorize stdout: --no-color, then NO_COLOR, then TTY check."""
    if no_color_flag:
        return False
    if os.environ.get("NO_COLOR"):
        return False
    return sys.stdout.isatty()


def _style(text: str, **styles) -> str:
    if not _color_enabled:
        return text
    return click.style(text, **styles)


def _heading(title: str) -> None:
    click.echo(_style(f" {title} ", fg="bright_yellow", bg="blue", bold=True))


def render_markdown(content: str) -> None:
    """Print markdown with terminal formatting."""
    console = Console(no_color=not _color_enabled, highlight=False)
    console.print(Markdown(content))


def show_content(content: str, render: bool = False) -> None:
    """Show the main response content, as raw text or rendered markdown."""
    _heading("Content")
    if render:
        render_markdown(content)
    else:
        click.echo(content)


def show_rendered_stream(content: str) -> None:
    """Follow raw streamed text with its rendered form."""
    click.echo("---")
    render_markdown(content)


def show_citations(citations: List[str]) -> None:
    _heading("Citations")
    for i, citation in enumerate(citations, start=1):
        click.echo(f"[{i}] {citation}")
    click.echo()


def show_usage(usage: Dict[str, int]) -> None:
    _heading("Tokens")
    for key, value in usage.items():
        click.echo(f"- {key}: {value}")
    click.echo()


def show_models(models: List[str], current: str) -> None:
    click.echo("Available models:")
    for model in models:
        default = " (default)" if model == current else ""
        click.echo(f"  - {model}{default}")


def show_error(message: str) -> None:
    """Show an error message in red on stderr."""
    click.echo(_style(message, fg="bright_red"), err=True)


def show_friendly_error(message: str, hint: Optional[str] = None) -> None:
    click.echo(_style(f"Error: {message}", fg="bright_red"), err=True)
    if hint:
        click.echo(_style(f"Hint: {hint}", fg="yellow"), err=True)


def show_key_rotation(from_index: int, to_index: int, total: int) -> None:
    """Tell the user that a key failed and another one is being tried."""
    click.echo(
        _style(f"API key {from_index}/{total} failed, switching to key {to_index}/{total}...", fg="yellow"),
        err=True,
    )


def show_retry(attempt: int, max_retries: int, backoff: float) -> None:
    click.echo(
        _style(f"Network error, retrying in {backoff:.1f}s (attempt {attempt}/{max_retries})...", fg="yellow"),
        err=True,
    )


def format_network_error(error: BaseException) -> Tuple[str, Optional[str]]:
    """Map an error to a friendly message and an optional hint."""
    if isinstance(error, KeysExhaustedError):
        return (
            f"All API keys failed: {error.original.message}",
            "Check your keys' credit and permissions, then use /retry or run the command again.",
        )

    if isinstance(error, APIError):
        if error.status_code == 401:
            return "Authentication failed (invalid API key).", "Check PERPLEXITY_API_KEY or --api-key."
        if error.status_code == 403:
            return "Access denied for this API key.", "Check the key's permissions."
        if error.status_code == 429:
            return "Rate limit exceeded.", "Wait a moment, or set --rate-limit to pace requests."
        if error.status_code >= 500:
            return f"The API is having problems ({error.message}).", "Try again in a few moments."
        return str(error), None

    if isinstance(error, (httpx.TimeoutException, TimeoutError)):
        return "The request timed out.", "Increase PERPLEXITY_TIMEOUT or try again."

    if isinstance(error, socket.gaierror) or isinstance(error.__cause__, socket.gaierror):
        return "Could not resolve the API host.", "Check your internet connection and DNS settings."

    if isinstance(error, httpx.ConnectError):
        return "Could not connect to the API.", "Check your internet connection."

    if isinstance(error, (httpx.NetworkError, httpx.RemoteProtocolError, ConnectionError)):
        return "The connection to the API was interrupted.", "Check your internet connection and try again."

    return str(error), None


class Spinner:
    """
    Waiting indicator drawn on stderr while a request is in flight.

    Usage:

        spinner = Spinner("Thinking...")
        spinner.start()
        # do blocking work
        spinner.stop()
    """

    _frames = "|/-\\"

    def __init__(self, message: str = "", delay: float = 0.1, enabled: Optional[bool] = None):
        self._message = message
        self._delay = delay
        self._enabled = sys.stderr.isatty() if enabled is None else enabled
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def _spin(self) -> None:
        for frame in itertools.cycle(self._frames):
            if self._stop_event.is_set():
                break
            sys.stderr.write(f"\r{frame} {self._message}")
            sys.stderr.flush()
            time.sleep(self._delay)

    def start(self) -> None:
        if not self._enabled or self._thread is not None:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._spin, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Stop the spinner and clear its line. Safe to call more than once."""
        if self._thread is None:
            return
        self._stop_event.set()
        self._thread.join()
        self._thread = None
        sys.stderr.write("\r" + " " * (len(self._message) + 2) + "\r")
        sys.stderr.flush()
