"""Command-line interface for perplexity-cli."""

import logging
import sys
import threading
from pathlib import Path
from typing import Optional

import click

from . import __version__, display
from .client import PerplexityClient
from .config import AVAILABLE_MODELS, DEFAULT_MODEL, Config
from .history import History, HistoryError
from .models import ChatResponse, PerplexityError, RequestCancelled
from .retry import RetryInfo
from .session import InteractiveSession, run_interruptible
from .validation import ValidationError, sanitize_prompt, validate_prompt

log = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format=LOG_FORMAT,
        stream=sys.stderr,
    )


def make_client(config: Config) -> PerplexityClient:
    """Create a client whose rotation and retry events are shown to the user."""
    client = PerplexityClient(config)
    client.on_key_rotation(display.show_key_rotation)

    def on_retry(info: RetryInfo) -> None:
        log.debug("Retrying after %s", info.error)
        display.show_retry(info.attempt + 1, info.max_retries, info.next_backoff)

    client.on_retry(on_retry)
    log.debug("Key ring: %s", config.keys.get_stats())
    return client


def _write_output(path: str, content: str) -> None:
    try:
        Path(path).write_text(content, encoding="utf-8")
    except OSError as e:
        raise click.ClickException(f"failed to write output file: {e}") from e
    click.echo(f"Response saved to {path}", err=True)


def run_query(client: PerplexityClient, config: Config, prompt: str) -> None:
    """Send one prompt and print the complete response."""
    spinner = display.Spinner("Thinking...")
    spinner.start()
    try:
        response = run_interruptible(lambda cancel: client.query(prompt, cancel))
    finally:
        spinner.stop()

    display.show_content(response.content, config.render)
    if config.citations and response.citations:
        click.echo()
        display.show_citations(response.citations)
    if config.usage:
        display.show_usage(response.get_usage_map())

    if config.output_file:
        _write_output(config.output_file, response.content)


def run_stream(client: PerplexityClient, config: Config, prompt: str) -> None:
    """Send one prompt and print the response as it arrives."""
    spinner = display.Spinner("Thinking...")
    parts = []
    final: Optional[ChatResponse] = None

    def on_chunk(text: str) -> None:
        spinner.stop()
        parts.append(text)
        click.echo(text, nl=False)

    def on_done(response: ChatResponse) -> None:
        nonlocal final
        final = response

    def stream(cancel: threading.Event) -> None:
        client.query_stream(prompt, on_chunk, on_done, cancel)

    spinner.start()
    try:
        run_interruptible(stream)
    finally:
        spinner.stop()
    click.echo()
    if config.render and parts:
        display.show_rendered_stream("".join(parts))

    if final is not None:
        if config.citations and final.citations:
            click.echo()
            display.show_citations(final.citations)
        if config.usage:
            display.show_usage(final.get_usage_map())

    if config.output_file:
        _write_output(config.output_file, "".join(parts))


def run_interactive(client: PerplexityClient, config: Config) -> None:
    history: Optional[History] = History()
    try:
        history.load()
    except HistoryError as e:
        click.echo(f"Warning: Could not load history: {e}", err=True)
        history = None

    InteractiveSession(config, client, history).run()


def _read_piped_query() -> Optional[str]:
    stdin = click.get_text_stream("stdin")
    if stdin.isatty():
        return None
    data = stdin.read().strip()
    return data or None


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(version=__version__, prog_name="perplexity")
@click.argument("query", required=False)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.option("--usage", "-u", is_flag=True, help="Show token usage statistics")
@click.option("--citations", "-c", is_flag=True, help="Show citations")
@click.option("--stream", "-s", is_flag=True, help="Stream the response as it arrives")
@click.option("--render", "-r", is_flag=True, help="Render markdown with colors and formatting")
@click.option("--interactive", "-i", is_flag=True, help="Start an interactive chat session")
@click.option("--api-key", "-a", help="API key (default: PERPLEXITY_API_KEYS or PERPLEXITY_API_KEY)")
@click.option("--model", "-m", default=DEFAULT_MODEL, show_default=True, help="Model to use")
@click.option("--output", "-o", "output_file", type=click.Path(dir_okay=False),
              help="Save the response to a file")
@click.option("--rate-limit", type=float, default=None,
              help="Maximum requests per minute (0 = unlimited)")
@click.option("--list-models", is_flag=True, help="List available models and exit")
@click.option("--no-color", is_flag=True, help="Disable colored output")
@click.pass_context
def cli(ctx: click.Context, query: Optional[str], verbose: bool, usage: bool, citations: bool,
        stream: bool, render: bool, interactive: bool, api_key: Optional[str], model: str,
        output_file: Optional[str], rate_limit: Optional[float], list_models: bool,
        no_color: bool) -> None:
    """Query the Perplexity API from the command line.

    Example:
        perplexity "What is the capital of France?"
        perplexity -s -c "Latest Python release"
        perplexity -r "Explain Python decorators with examples"
        echo "Summarize HTTP/3" | perplexity
        perplexity -i
    """
    setup_logging(verbose)
    display.set_color(display.use_color(no_color))

    if list_models:
        display.show_models(AVAILABLE_MODELS, DEFAULT_MODEL)
        return

    if query is None and not interactive:
        query = _read_piped_query()

    if query is None and not interactive:
        click.echo(ctx.get_help())
        ctx.exit(1)

    options = dict(
        model=model,
        api_key=api_key,
        usage=usage,
        citations=citations,
        stream=stream,
        render=render,
        interactive=interactive,
        output_file=output_file,
        rate_limit=rate_limit,
    )

    try:
        config = Config.from_env(**options)
    except PerplexityError as e:
        display.show_error(f"Error: {e}")
        sys.exit(1)

    with make_client(config) as client:
        if interactive:
            run_interactive(client, config)
            return

        try:
            prompt = validate_prompt(sanitize_prompt(query))
            if config.stream:
                run_stream(client, config, prompt)
            else:
                run_query(client, config, prompt)
        except RequestCancelled:
            click.echo("\nInterrupted", err=True)
            sys.exit(1)
        except ValidationError as e:
            display.show_error(f"Error: {e}")
            sys.exit(1)
        except click.ClickException:
            raise
        except Exception as e:
            if verbose:
                log.exception("Query failed")
            message, hint = display.format_network_error(e)
            display.show_friendly_error(message, hint)
            sys.exit(1)


def main() -> None:
    """Entry point for CLI."""
    cli()


if __name__ == "__main__":
    main()
