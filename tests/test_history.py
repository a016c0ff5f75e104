"""Tests for saved conversation history."""

import os
import stat

import pytest

from perplexity_cli.history import (
    MAX_HISTORY_ENTRIES,
    History,
    HistoryError,
    default_history_path,
)
from perplexity_cli.models import Message


def conversation(question, answer="answer"):
    return [Message.system("sys"), Message.user(question), Message.assistant(answer)]


class TestHistoryFile:
    def test_missing_file_is_empty(self, tmp_path):
        history = History(tmp_path / "none.json")
        history.load()
        assert history.conversations == []

    def test_save_and_load(self, tmp_path):
        path = tmp_path / "nested" / "history.json"
        history = History(path)
        history.add_conversation("c1", "sonar", conversation("What is DNS?"))
        history.save()

        loaded = History(path)
        loaded.load()
        entry = loaded.get_conversation("c1")
        assert entry.model == "sonar"
        assert entry.turn_count == 2
        assert entry.messages[1] == Message.user("What is DNS?")

    def test_file_is_private(self, tmp_path):
        path = tmp_path / "history.json"
        history = History(path)
        history.add_conversation("c1", "sonar", conversation("q"))
        history.save()
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600

    def test_corrupt_file(self, tmp_path):
        path = tmp_path / "history.json"
        path.write_text("{not json")
        with pytest.raises(HistoryError, match="parse"):
            History(path).load()

    def test_keeps_newest_entries(self, tmp_path):
        history = History(tmp_path / "history.json")
        for i in range(MAX_HISTORY_ENTRIES + 5):
            history.add_conversation(f"c{i}", "sonar", conversation(f"q{i}"))
        history.save()

        assert len(history.conversations) == MAX_HISTORY_ENTRIES
        assert history.conversations[0].id == "c5"

    def test_default_path_override(self, monkeypatch, tmp_path):
        monkeypatch.setenv("PERPLEXITY_HISTORY_PATH", str(tmp_path / "custom.json"))
        assert default_history_path() == tmp_path / "custom.json"

    def test_default_path(self, monkeypatch):
        monkeypatch.delenv("PERPLEXITY_HISTORY_PATH")
        path = default_history_path()
        assert path.name == "conversation-history.json"
        assert path.parent.name == "perplexity-cli"


class TestHistoryQueries:
    @pytest.fixture
    def history(self, tmp_path):
        history = History(tmp_path / "history.json")
        for i in range(12):
            history.add_conversation(f"c{i}", "sonar", conversation(f"question {i}"))
        history.get_conversation("c3").messages[2] = Message.assistant("All about Kubernetes")
        return history

    def test_recent(self, history):
        recent = history.recent()
        assert [e.id for e in recent] == [f"c{i}" for i in range(2, 12)]
        assert history.recent(0) == []

    def test_last(self, history):
        assert history.get_last_conversation().id == "c11"
        assert History().get_last_conversation() is None

    def test_search_is_case_insensitive(self, history):
        assert [e.id for e in history.search("kubernetes")] == ["c3"]
        assert history.search("") == []

    def test_update(self, history):
        before = history.get_conversation("c1").updated_at
        assert history.update_conversation("c1", conversation("new"))
        entry = history.get_conversation("c1")
        assert entry.messages[1].content == "new"
        assert entry.updated_at >= before
        assert not history.update_conversation("missing", [])

    def test_delete_by_recent_index(self, history):
        assert history.delete(1)  # oldest of the recent ten
        assert history.get_conversation("c2") is None
        assert len(history.conversations) == 11
        assert not history.delete(0)
        assert not history.delete(11)

    def test_clear(self, history):
        history.clear()
        assert history.conversations == []
