"""Tests for the history sinks."""

import json

import pytest

from story_engine.history import HistoryError, JsonHistory, MemoryHistory
from story_engine.models import ConversationEntry, NarratorSegment


def test_memory_history_keeps_order():
    history = MemoryHistory()
    history.append(ConversationEntry.user_input("one"))
    history.append(ConversationEntry.user_input("two"))
    assert [e.content for e in history.entries()] == ["one", "two"]
    history.clear()
    assert history.entries() == []


def test_json_history_missing_file_is_empty(tmp_path):
    assert JsonHistory(tmp_path / "history.json").entries() == []


def test_json_history_persists_entries(tmp_path):
    path = tmp_path / "saves" / "history.json"
    history = JsonHistory(path)
    history.append(ConversationEntry.user_input("Hello"))
    history.append(ConversationEntry.story_segment(NarratorSegment(text="Dusk.")))

    reloaded = JsonHistory(path).entries()
    assert [e.type for e in reloaded] == ["user_input", "story_segment"]
    assert reloaded[1].segment == NarratorSegment(text="Dusk.")

    raw = json.loads(path.read_text())
    assert raw[0]["content"] == "Hello"


def test_json_history_drops_oldest_past_cap(tmp_path):
    history = JsonHistory(tmp_path / "history.json", max_entries=3)
    for i in range(5):
        history.append(ConversationEntry.user_input(f"line {i}"))
    assert [e.content for e in history.entries()] == ["line 2", "line 3", "line 4"]


def test_json_history_clear(tmp_path):
    history = JsonHistory(tmp_path / "history.json")
    history.append(ConversationEntry.user_input("Hello"))
    history.clear()
    assert history.entries() == []
    history.clear()


def test_corrupt_file_raises_history_error(tmp_path):
    path = tmp_path / "history.json"
    path.write_text("{not json")
    with pytest.raises(HistoryError, match="Cannot read"):
        JsonHistory(path).entries()


def test_unwritable_path_raises_history_error(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("")
    history = JsonHistory(blocker / "history.json")
    with pytest.raises(HistoryError, match="Cannot write"):
        history.append(ConversationEntry.user_input("Hello"))
