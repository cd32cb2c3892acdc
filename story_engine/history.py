"""Conversation history sinks.

The engine only needs something with an `append(entry)` method:

    class HistorySink(Protocol):
        def append(self, entry: ConversationEntry) -> None: ...

Two implementations are provided:

    MemoryHistory  — keeps entries in a list. Used by the terminal player
                     when no history file is configured.
    JsonHistory    — append-only JSON file, capped at max_entries (oldest
                     entries are dropped first).

Write failures raise HistoryError; callers decide whether that is fatal.
The playback sequencer treats history as best-effort and only logs it.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Protocol

from pydantic import TypeAdapter, ValidationError

from story_engine.models import ConversationEntry

logger = logging.getLogger(__name__)

_entries_adapter = TypeAdapter(list[ConversationEntry])


class HistoryError(RuntimeError):
    """Raised when a history entry cannot be stored or read back."""


class HistorySink(Protocol):
    def append(self, entry: ConversationEntry) -> None: ...


class MemoryHistory:
    def __init__(self) -> None:
        self._entries: list[ConversationEntry] = []

    def append(self, entry: ConversationEntry) -> None:
        self._entries.append(entry)

    def entries(self) -> list[ConversationEntry]:
        return list(self._entries)

    def clear(self) -> None:
        self._entries.clear()


class JsonHistory:
    """Append-only conversation log stored as a JSON array on disk."""

    def __init__(self, path: Path, max_entries: int = 1000) -> None:
        self._path = path
        self._max_entries = max_entries

    @property
    def path(self) -> Path:
        return self._path

    def entries(self) -> list[ConversationEntry]:
        if not self._path.is_file():
            return []
        try:
            return _entries_adapter.validate_json(self._path.read_bytes())
        except (OSError, ValidationError) as e:
            raise HistoryError(f"Cannot read history from {self._path}: {e}") from e

    def append(self, entry: ConversationEntry) -> None:
        entries = self.entries()
        entries.append(entry)
        if len(entries) > self._max_entries:
            entries = entries[-self._max_entries:]
        data = [e.model_dump(mode="json") for e in entries]
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(json.dumps(data, indent=2, ensure_ascii=False))
        except OSError as e:
            raise HistoryError(f"Cannot write history to {self._path}: {e}") from e
        logger.debug("history append type=%s total=%d", entry.type, len(entries))

    def clear(self) -> None:
        try:
            self._path.unlink(missing_ok=True)
        except OSError as e:
            raise HistoryError(f"Cannot clear history at {self._path}: {e}") from e
