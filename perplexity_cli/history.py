"""Conversation history persisted as JSON for interactive sessions."""

import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional, List, Dict, Any

from .models import Message

log = logging.getLogger(__name__)

HISTORY_FILE_NAME = "conversation-history.json"
MAX_HISTORY_ENTRIES = 50
RECENT_LIMIT = 10
ENV_HISTORY_PATH = "PERPLEXITY_HISTORY_PATH"


class HistoryError(Exception):
    """Raised when the history file cannot be read or written."""

    pass


def default_history_path() -> Path:
    custom = os.environ.get(ENV_HISTORY_PATH)
    if custom:
        return Path(custom)
    return Path.home() / ".local" / "share" / "perplexity-cli" / HISTORY_FILE_NAME


@dataclass
class ConversationEntry:
    """A saved conversation."""

    id: str
    model: str
    messages: List[Message] = field(default_factory=list)
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    @property
    def turn_count(self) -> int:
        """Number of messages excluding the system prompt."""
        return max(0, len(self.messages) - 1)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "model": self.model,
            "messages": [m.to_dict() for m in self.messages],
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConversationEntry":
        return cls(
            id=data["id"],
            model=data.get("model", ""),
            messages=[Message.from_dict(m) for m in data.get("messages") or []],
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
        )


class History:
    """Manages the list of saved conversations, oldest first."""

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path is not None else default_history_path()
        self.conversations: List[ConversationEntry] = []

    def load(self) -> None:
        """
        Read history from disk. A missing file means an empty history.

        Raises:
            HistoryError: If the file cannot be read or parsed
        """
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return
        except OSError as e:
            raise HistoryError(f"failed to read history: {e}") from e

        try:
            data = json.loads(raw)
            self.conversations = [
                ConversationEntry.from_dict(entry) for entry in data.get("conversations") or []
            ]
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise HistoryError(f"failed to parse history: {e}") from e

        log.debug("Loaded %d conversations from %s", len(self.conversations), self.path)

    def save(self) -> None:
        """
        Write history to disk, keeping only the newest entries.

        Raises:
            HistoryError: If the file cannot be written
        """
        if len(self.conversations) > MAX_HISTORY_ENTRIES:
            self.conversations = self.conversations[-MAX_HISTORY_ENTRIES:]

        data = {"conversations": [entry.to_dict() for entry in self.conversations]}
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
            self.path.write_text(json.dumps(data, indent=2), encoding="utf-8")
            os.chmod(self.path, 0o600)
        except OSError as e:
            raise HistoryError(f"failed to write history: {e}") from e

        log.debug("Saved %d conversations to %s", len(self.conversations), self.path)

    def add_conversation(self, conversation_id: str, model: str, messages: List[Message]) -> ConversationEntry:
        entry = ConversationEntry(id=conversation_id, model=model, messages=list(messages))
        self.conversations.append(entry)
        return entry

    def update_conversation(self, conversation_id: str, messages: List[Message]) -> bool:
        """Replace the messages of an existing conversation. Returns False if not found."""
        entry = self.get_conversation(conversation_id)
        if entry is None:
            return False
        entry.messages = list(messages)
        entry.updated_at = datetime.now()
        return True

    def get_conversation(self, conversation_id: str) -> Optional[ConversationEntry]:
        for entry in self.conversations:
            if entry.id == conversation_id:
                return entry
        return None

    def get_last_conversation(self) -> Optional[ConversationEntry]:
        return self.conversations[-1] if self.conversations else None

    def recent(self, n: int = RECENT_LIMIT) -> List[ConversationEntry]:
        """The ``n`` most recent conversations, oldest first."""
        if n <= 0:
            return []
        return self.conversations[-n:]

    def search(self, keyword: str) -> List[ConversationEntry]:
        """Conversations with a message containing ``keyword`` (case-insensitive)."""
        if not keyword:
            return []
        keyword = keyword.lower()
        return [
            entry for entry in self.conversations
            if any(keyword in m.content.lower() for m in entry.messages)
        ]

    def delete(self, index: int) -> bool:
        """Delete by 1-based position in the recent list."""
        recent = self.recent()
        if not 1 <= index <= len(recent):
            return False
        target = recent[index - 1]
        self.conversations = [entry for entry in self.conversations if entry.id != target.id]
        return True

    def clear(self) -> None:
        self.conversations = []
