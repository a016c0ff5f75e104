"""Interactive chat session with slash commands."""

import logging
import os
import threading
import uuid
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional, Tuple, TypeVar

try:
    import readline
except ImportError:  # not shipped on Windows
    readline = None

import click

from . import display
from .clipboard import ClipboardError, copy_to_clipboard
from .client import PerplexityClient
from .config import (
    AVAILABLE_MODELS,
    Config,
    DEFAULT_SYSTEM_MESSAGE,
    FAILED_RESPONSE_PLACEHOLDER,
    available_models_string,
    validate_model,
)
from .history import History, HistoryError, ConversationEntry
from .models import ChatResponse, Message, RequestCancelled, ROLE_ASSISTANT, ROLE_SYSTEM, ROLE_USER
from .validation import ValidationError, sanitize_prompt, validate_prompt

log = logging.getLogger(__name__)

T = TypeVar("T")

HELP_ENTRIES = [
    ("/exit, /quit, /q", "Exit interactive mode"),
    ("/clear, /c", "Clear conversation history"),
    ("/retry, /r", "Retry last message"),
    ("/copy", "Copy last response to clipboard"),
    ("/export [filename]", "Export conversation to markdown file"),
    ("/system [prompt|reset]", "Show/set system prompt"),
    ("/citations [on|off]", "Toggle or set citations display"),
    ("/history", "Show recent conversations"),
    ("/search <keyword>", "Search conversations by keyword"),
    ("/resume [n]", "Resume conversation (n=index from /history)"),
    ("/delete <n>", "Delete conversation (n=index from /history)"),
    ("/model <name>, /m <name>", "Switch model"),
    ("/model, /m", "Show current model"),
    ("/help, /h", "Show this help"),
]

COMMAND_NAMES = [
    "/model", "/m", "/system", "/citations", "/clear", "/c", "/retry", "/r", "/copy",
    "/export", "/help", "/h", "/exit", "/quit", "/q", "/history", "/search", "/resume", "/delete",
]

# Second-word completions for commands that take a fixed set of values
ARGUMENT_CHOICES = {
    "/model": AVAILABLE_MODELS,
    "/m": AVAILABLE_MODELS,
    "/citations": ["on", "off"],
    "/system": ["reset"],
}


def run_interruptible(func: Callable[[threading.Event], T]) -> T:
    """
    Run ``func`` with a fresh cancellation token.

    Ctrl+C while it runs sets the token and raises RequestCancelled, so the
    request unwinds instead of ending the process.
    """
    cancel = threading.Event()
    try:
        return func(cancel)
    except KeyboardInterrupt as e:
        cancel.set()
        raise RequestCancelled() from e


def _format_entry(index: int, entry: ConversationEntry) -> str:
    return f"  {index}. [{entry.updated_at:%Y-%m-%d %H:%M}] {entry.model} ({entry.turn_count} messages)"


class InteractiveSession:
    """
    State of an interactive chat.

    The message list always starts with the system message. After a failed
    request the user message is kept and a placeholder assistant reply is
    appended, so roles keep alternating for later turns.
    """

    def __init__(self, config: Config, client: PerplexityClient, history: Optional[History] = None):
        self.config = config
        self.client = client
        self.history = history
        self.messages: List[Message] = [Message.system(config.system_message)]
        self.conversation_id = str(uuid.uuid4())
        self.last_user_input = ""
        self.last_response = ""
        self.exit_requested = False
        self._input_buffer: List[str] = []
        self._matches: List[str] = []

    # Main loop

    def run(self) -> None:
        """Read lines until the user exits."""
        self._enable_completion()
        click.echo(click.style("Perplexity CLI", bold=True, fg="cyan"))
        click.echo("Type /help for commands, Ctrl+D to quit. End a line with \\ for multiline input.")
        click.echo(f"Model: {self.config.model}\n")

        while not self.exit_requested:
            prompt = "..." if self._input_buffer else ">"
            try:
                line = click.prompt(prompt, default="", show_default=False, prompt_suffix=" ")
            except (click.Abort, EOFError):
                click.echo("\nGoodbye!")
                self.save_history()
                break

            if self.handle_line(line):
                self.exit_requested = True

    def handle_line(self, line: str) -> bool:
        """Process one input line. Returns True when the session should end."""
        if line.endswith("\\"):
            self._input_buffer.append(line[:-1])
            return False

        if self._input_buffer:
            self._input_buffer.append(line)
            line = "\n".join(self._input_buffer)
            self._input_buffer = []

        line = line.strip()
        if not line:
            return False

        if line.startswith("/"):
            return self.handle_command(line)

        try:
            text = validate_prompt(sanitize_prompt(line))
        except ValidationError as e:
            display.show_error(str(e))
            return False

        self.last_user_input = text
        self.messages.append(Message.user(text))
        click.echo()
        self._respond(keep_failed_turn=True)
        return False

    # Requests

    def _respond(self, keep_failed_turn: bool) -> None:
        try:
            response, citations = run_interruptible(self._send)
        except RequestCancelled:
            click.echo("\nOperation cancelled", err=True)
            self._pop_last(ROLE_USER)
            return
        except Exception as e:
            log.debug("Request failed", exc_info=True)
            message, hint = display.format_network_error(e)
            display.show_friendly_error(message, hint)
            if keep_failed_turn:
                self.last_response = FAILED_RESPONSE_PLACEHOLDER
                self.messages.append(Message.assistant(FAILED_RESPONSE_PLACEHOLDER))
            else:
                self._pop_last(ROLE_USER)
            return

        if not response:
            response = FAILED_RESPONSE_PLACEHOLDER
        self.last_response = response
        self.messages.append(Message.assistant(response))

        if self.config.citations and citations:
            click.echo()
            display.show_citations(citations)
        click.echo()

    def _send(self, cancel: threading.Event) -> Tuple[str, List[str]]:
        """Send the conversation and print the reply. Returns (content, citations)."""
        messages = list(self.messages)
        spinner = display.Spinner("Thinking...")
        spinner.start()

        try:
            if self.config.stream:
                parts: List[str] = []
                citations: List[str] = []

                def on_chunk(text: str) -> None:
                    spinner.stop()
                    parts.append(text)
                    click.echo(text, nl=False)

                def on_done(final: ChatResponse) -> None:
                    citations.extend(final.citations)

                self.client.query_stream_with_history(messages, on_chunk, on_done, cancel)
                click.echo()
                if self.config.render and parts:
                    display.show_rendered_stream("".join(parts))
                return "".join(parts), citations

            response = self.client.query_with_history(messages, cancel)
            spinner.stop()
            display.show_content(response.content, self.config.render)
            return response.content, response.citations
        finally:
            spinner.stop()

    def _pop_last(self, role: str) -> None:
        if len(self.messages) > 1 and self.messages[-1].role == role:
            self.messages.pop()

    # Tab completion

    def _enable_completion(self) -> None:
        if readline is None:
            return
        readline.set_completer(self.complete)
        readline.set_completer_delims(" \t\n")
        if "libedit" in (readline.__doc__ or ""):
            readline.parse_and_bind("bind ^I rl_complete")
        else:
            readline.parse_and_bind("tab: complete")

    def completions(self, line: str, text: str) -> List[str]:
        """
        Candidates for the word being typed.

        Args:
            line: Input typed so far
            text: The word under the cursor
        """
        line = line.lstrip()
        if not line.startswith("/"):
            return []

        command, sep, rest = line.partition(" ")
        if not sep:
            return [name for name in COMMAND_NAMES if name.startswith(text)]

        choices = ARGUMENT_CHOICES.get(command.lower(), [])
        if " " in rest.lstrip():
            return []
        return [choice for choice in choices if choice.startswith(text)]

    def complete(self, text: str, state: int) -> Optional[str]:
        """readline completer: return the ``state``-th candidate for ``text``."""
        if state == 0:
            self._matches = self.completions(readline.get_line_buffer(), text)
        if state < len(self._matches):
            return self._matches[state]
        return None

    # History

    def save_history(self) -> None:
        """Persist the current conversation, if it has any turns."""
        if self.history is None or len(self.messages) <= 1:
            return

        if not self.history.update_conversation(self.conversation_id, self.messages):
            self.history.add_conversation(self.conversation_id, self.config.model, self.messages)

        try:
            self.history.save()
        except HistoryError as e:
            click.echo(f"Warning: Could not save history: {e}", err=True)

    # Commands

    def handle_command(self, line: str) -> bool:
        """Dispatch a slash command. Returns True when the session should end."""
        parts = line.split(" ", 1)
        command = parts[0].lower()
        arg = parts[1].strip() if len(parts) > 1 else ""

        handlers = {
            "/exit": self.cmd_exit,
            "/quit": self.cmd_exit,
            "/q": self.cmd_exit,
            "/clear": self.cmd_clear,
            "/c": self.cmd_clear,
            "/retry": self.cmd_retry,
            "/r": self.cmd_retry,
            "/copy": self.cmd_copy,
            "/export": self.cmd_export,
            "/help": self.cmd_help,
            "/h": self.cmd_help,
            "/citations": self.cmd_citations,
            "/history": self.cmd_history,
            "/search": self.cmd_search,
            "/delete": self.cmd_delete,
            "/system": self.cmd_system,
            "/resume": self.cmd_resume,
            "/model": self.cmd_model,
            "/m": self.cmd_model,
        }

        handler = handlers.get(command)
        if handler is None:
            click.echo(f"Unknown command: {command}")
            click.echo("Type /help for available commands")
            return False
        return handler(arg)

    def cmd_exit(self, arg: str = "") -> bool:
        click.echo("Goodbye!")
        self.save_history()
        return True

    def cmd_clear(self, arg: str = "") -> bool:
        self.messages = [Message.system(self.config.system_message)]
        self.conversation_id = str(uuid.uuid4())
        self.last_user_input = ""
        self.last_response = ""
        click.echo("Conversation cleared.")
        return False

    def cmd_retry(self, arg: str = "") -> bool:
        if not self.last_user_input:
            click.echo("No previous message to retry.")
            return False

        self._pop_last(ROLE_ASSISTANT)
        self._pop_last(ROLE_USER)

        click.echo(f"Retrying: {self.last_user_input}")
        self.messages.append(Message.user(self.last_user_input))
        click.echo()
        self._respond(keep_failed_turn=False)
        return False

    def cmd_copy(self, arg: str = "") -> bool:
        if not self.last_response:
            click.echo("No response to copy.")
            return False

        try:
            copy_to_clipboard(self.last_response)
        except ClipboardError as e:
            display.show_friendly_error(e.message, e.hint)
        else:
            click.echo("Response copied to clipboard.")
        return False

    def cmd_export(self, arg: str = "") -> bool:
        turns = [m for m in self.messages if m.role != ROLE_SYSTEM]
        if not turns:
            click.echo("No conversation to export.")
            return False

        now = datetime.now()
        filename = arg or f"conversation-{now:%Y-%m-%d-%H%M%S}.md"
        if not filename.endswith(".md"):
            filename += ".md"

        lines = [
            "# Conversation Export",
            "",
            f"**Date:** {now:%Y-%m-%d %H:%M:%S}",
            f"**Model:** {self.config.model}",
            "",
            "---",
            "",
        ]
        for message in turns:
            title = "You" if message.role == ROLE_USER else "Assistant"
            lines.extend([f"## {title}", "", message.content, ""])

        path = Path(filename)
        try:
            path.write_text("\n".join(lines) + "\n", encoding="utf-8")
            os.chmod(path, 0o600)
        except OSError as e:
            display.show_error(f"Failed to export conversation: {e}")
        else:
            click.echo(f"Conversation exported to {filename}")
        return False

    def cmd_help(self, arg: str = "") -> bool:
        click.echo("\nCommands:")
        for usage, description in HELP_ENTRIES:
            click.echo(f"  {usage:<24} {description}")
        click.echo()
        return False

    def cmd_citations(self, arg: str = "") -> bool:
        value = arg.lower()
        if not value:
            self.config.citations = not self.config.citations
        elif value in ("on", "true", "1"):
            self.config.citations = True
        elif value in ("off", "false", "0"):
            self.config.citations = False
        else:
            click.echo(f"Invalid argument: {value}. Use 'on' or 'off'.")
            return False

        state = "enabled" if self.config.citations else "disabled"
        click.echo(f"Citations display {state}.")
        return False

    def cmd_history(self, arg: str = "") -> bool:
        if self.history is None:
            click.echo("History not available.")
            return False

        entries = self.history.recent()
        if not entries:
            click.echo("No conversation history.")
            return False

        click.echo("\nRecent conversations:")
        for i, entry in enumerate(entries, start=1):
            click.echo(_format_entry(i, entry))
        click.echo()
        return False

    def cmd_search(self, arg: str = "") -> bool:
        if self.history is None:
            click.echo("History not available.")
            return False

        if not arg:
            click.echo("Usage: /search <keyword>")
            return False

        results = self.history.search(arg)
        if not results:
            click.echo(f"No conversations found containing '{arg}'.")
            return False

        click.echo(f"\nConversations containing '{arg}':")
        for i, entry in enumerate(results, start=1):
            click.echo(_format_entry(i, entry))
        click.echo()
        return False

    def cmd_delete(self, arg: str = "") -> bool:
        if self.history is None:
            click.echo("History not available.")
            return False

        if not arg:
            click.echo("Usage: /delete <n> (n=index from /history)")
            return False

        try:
            index = int(arg)
        except ValueError:
            display.show_error(f"Invalid index: {arg}")
            return False

        if not self.history.delete(index):
            display.show_error(f"Invalid conversation index: {index}")
            return False

        try:
            self.history.save()
        except HistoryError as e:
            display.show_error(f"Failed to save history: {e}")
        else:
            click.echo(f"Conversation {index} deleted.")
        return False

    def cmd_system(self, arg: str = "") -> bool:
        has_system = bool(self.messages) and self.messages[0].role == ROLE_SYSTEM

        if not arg:
            if has_system:
                click.echo(f"Current system prompt: {self.messages[0].content}")
            else:
                click.echo("No system prompt set.")
            return False

        new_prompt = DEFAULT_SYSTEM_MESSAGE if arg == "reset" else arg
        self.config.system_message = new_prompt
        if has_system:
            self.messages[0] = Message.system(new_prompt)
        else:
            self.messages.insert(0, Message.system(new_prompt))

        click.echo("System prompt reset to default." if arg == "reset" else "System prompt updated.")
        return False

    def cmd_resume(self, arg: str = "") -> bool:
        if self.history is None:
            click.echo("History not available.")
            return False

        entries = self.history.recent()
        if not entries:
            click.echo("No conversation to resume.")
            return False

        if arg:
            try:
                index = int(arg)
            except ValueError:
                index = 0
            if not 1 <= index <= len(entries):
                click.echo(f"Invalid conversation index: {arg} (use 1-{len(entries)})")
                return False
            entry = entries[index - 1]
        else:
            entry = self.history.get_last_conversation()

        # Failed turns are dropped together with the user message that caused them
        messages: List[Message] = []
        for message in entry.messages:
            if message.role == ROLE_ASSISTANT and message.content == FAILED_RESPONSE_PLACEHOLDER:
                if messages and messages[-1].role == ROLE_USER:
                    messages.pop()
                continue
            messages.append(Message(role=message.role, content=message.content))

        self.messages = messages
        self.conversation_id = entry.id
        click.echo(f"Resumed conversation from {entry.updated_at:%Y-%m-%d %H:%M} ({entry.turn_count} messages)\n")

        for message in self.messages:
            if message.role == ROLE_USER:
                click.echo(f"You:\n{message.content}\n")
            elif message.role == ROLE_ASSISTANT and message.content:
                click.echo("Assistant:")
                display.show_content(message.content, self.config.render)
                click.echo()

        click.echo("--- End of conversation history ---\n")
        return False

    def cmd_model(self, arg: str = "") -> bool:
        if arg and not validate_model(arg):
            click.echo(f"Invalid model: {arg}")
        elif arg:
            self.config.model = arg
            click.echo(f"Switched to model: {arg}")
            return False
        else:
            click.echo(f"Current model: {self.config.model}")
        click.echo(f"Available: {available_models_string()}")
        return False
