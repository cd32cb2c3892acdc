"""Playback sequencer: shows one active segment at a time.

State machine per round:

    IDLE ──load_round──▶ REVEALING(0) ──tick/skip──▶ REVEALED(0)
    REVEALED(i) ──advance──▶ REVEALING(i+1)          (commits segment i)
    REVEALED(last) ──▶ AWAITING_CHOICE | COMPLETE    (commits segment last)
    AWAITING_CHOICE ──choose──▶ IDLE                 (commits the choice)

Loading an empty round goes straight to COMPLETE. Segments are committed to
the history sink exactly once, when playback moves past them, never at load
time. History failures are logged and do not stop playback.

Whenever a round reaches AWAITING_CHOICE or COMPLETE the optional
`on_round_end` callback is called with that state, after the renderer.

The reveal timer is an asyncio task that discloses one character per
`reveal_delay` seconds; with reveal_delay=0 segments are revealed at once and
no event loop is needed.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, replace
from enum import Enum
from typing import Literal, Protocol

from story_engine.history import HistorySink
from story_engine.models import (
    END_CHOICE_ID,
    CharacterSegment,
    Choice,
    ConversationEntry,
    NarratorSegment,
)

logger = logging.getLogger(__name__)

AnySegment = NarratorSegment | CharacterSegment


class PlaybackState(str, Enum):
    IDLE = "idle"
    REVEALING = "revealing"
    REVEALED = "revealed"
    AWAITING_CHOICE = "awaiting_choice"
    COMPLETE = "complete"


class SequencerError(RuntimeError):
    """Raised on an operation that is not valid in the current playback state."""


class RenderSink(Protocol):
    def on_segment_active(self, segment: AnySegment) -> None: ...
    def on_choices(self, choices: list[Choice]) -> None: ...
    def on_round_complete(self) -> None: ...


@dataclass(frozen=True)
class PlaybackCursor:
    segments: tuple[AnySegment, ...] = ()
    index: int = 0
    revealed: Literal["full", "partial"] = "partial"

    @property
    def current(self) -> AnySegment | None:
        if not self.segments:
            return None
        return self.segments[self.index]

    @property
    def is_last(self) -> bool:
        return self.index == len(self.segments) - 1


class PlaybackSequencer:
    def __init__(
        self,
        history: HistorySink,
        renderer: RenderSink,
        reveal_delay: float = 0.05,
        on_round_end: Callable[[PlaybackState], None] | None = None,
    ) -> None:
        self._history = history
        self._renderer = renderer
        self._reveal_delay = reveal_delay
        self._on_round_end = on_round_end
        self._cursor = PlaybackCursor()
        self._choices: list[Choice] = []
        self._state = PlaybackState.IDLE
        self._revealed_chars = 0
        self._reveal_task: asyncio.Task | None = None

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> PlaybackState:
        return self._state

    @property
    def cursor(self) -> PlaybackCursor:
        return self._cursor

    @property
    def choices(self) -> list[Choice]:
        return list(self._choices)

    @property
    def current(self) -> AnySegment | None:
        return self._cursor.current

    @property
    def revealed_text(self) -> str:
        """The part of the active segment disclosed so far."""
        segment = self.current
        if segment is None:
            return ""
        return segment.text[:self._revealed_chars]

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def load_round(self, segments: Sequence[AnySegment], choices: Sequence[Choice]) -> None:
        """Replace the cursor with a new round and start revealing its first segment."""
        if self._state is not PlaybackState.IDLE:
            raise SequencerError(f"Cannot load a round while {self._state.value}")

        self._cursor = PlaybackCursor(segments=tuple(segments))
        self._choices = list(choices)
        logger.debug("round loaded segments=%d choices=%d", len(segments), len(choices))

        if not segments:
            logger.info("Round has no segments; story complete")
            self._state = PlaybackState.COMPLETE
            self._renderer.on_round_complete()
            self._notify_round_end()
            return
        self._begin_reveal()

    def skip(self) -> bool:
        """Reveal the active segment fully right now. Returns False if nothing to skip."""
        if self._state is not PlaybackState.REVEALING:
            return False
        self._cancel_reveal()
        self._finish_reveal()
        return True

    def advance(self) -> None:
        """Move past a fully revealed segment to the next one."""
        if self._state is not PlaybackState.REVEALED:
            raise SequencerError(f"Cannot advance while {self._state.value}")
        self._commit(self._cursor.current)
        self._cursor = PlaybackCursor(
            segments=self._cursor.segments, index=self._cursor.index + 1,
        )
        self._begin_reveal()

    def proceed(self) -> None:
        """The 'continue' input: finish the reveal first, advance on the next press."""
        if self._state is PlaybackState.REVEALING:
            self.skip()
        elif self._state is PlaybackState.REVEALED:
            self.advance()

    def choose(self, choice_id: str) -> Choice:
        """Take a choice at the choice point and return to IDLE.

        The end-of-story id resets playback instead and is not recorded.
        """
        if self._state is not PlaybackState.AWAITING_CHOICE:
            raise SequencerError(f"No choice pending while {self._state.value}")

        if choice_id == END_CHOICE_ID:
            choice = next(
                (c for c in self._choices if c.id == END_CHOICE_ID),
                Choice(id=END_CHOICE_ID, text=""),
            )
            self.reset()
            return choice

        choice = next((c for c in self._choices if c.id == choice_id), None)
        if choice is None:
            raise SequencerError(f"Unknown choice id {choice_id!r}")

        self._record(ConversationEntry.user_choice(choice))
        self._cursor = PlaybackCursor()
        self._choices = []
        self._state = PlaybackState.IDLE
        return choice

    def reset(self) -> None:
        """Drop the current round and go back to IDLE."""
        self._cancel_reveal()
        self._cursor = PlaybackCursor()
        self._choices = []
        self._revealed_chars = 0
        self._state = PlaybackState.IDLE

    async def wait_revealed(self) -> None:
        """Wait for the running reveal timer, if any, to finish."""
        task = self._reveal_task
        if task is None:
            return
        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            # skip() cancelled the timer; only propagate our own cancellation
            if not task.cancelled():
                raise

    # ------------------------------------------------------------------
    # Reveal timer
    # ------------------------------------------------------------------

    def _begin_reveal(self) -> None:
        self._state = PlaybackState.REVEALING
        self._revealed_chars = 0
        self._renderer.on_segment_active(self._cursor.current)
        if self._reveal_delay <= 0:
            self._finish_reveal()
            return
        self._reveal_task = asyncio.get_running_loop().create_task(
            self._run_reveal(self._cursor.index)
        )

    async def _run_reveal(self, index: int) -> None:
        text = self._cursor.segments[index].text
        for count in range(1, len(text) + 1):
            await asyncio.sleep(self._reveal_delay)
            self._revealed_chars = count
        self._reveal_task = None
        if self._state is PlaybackState.REVEALING and self._cursor.index == index:
            self._finish_reveal()

    def _cancel_reveal(self) -> None:
        if self._reveal_task is not None:
            self._reveal_task.cancel()
            self._reveal_task = None

    def _finish_reveal(self) -> None:
        self._cursor = replace(self._cursor, revealed="full")
        self._revealed_chars = len(self._cursor.current.text)
        self._state = PlaybackState.REVEALED
        if self._cursor.is_last:
            self._end_of_round()

    def _end_of_round(self) -> None:
        self._commit(self._cursor.current)
        if self._choices:
            self._state = PlaybackState.AWAITING_CHOICE
            self._renderer.on_choices(list(self._choices))
        else:
            self._state = PlaybackState.COMPLETE
            self._renderer.on_round_complete()
        self._notify_round_end()

    def _notify_round_end(self) -> None:
        if self._on_round_end is not None:
            self._on_round_end(self._state)

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def _commit(self, segment: AnySegment) -> None:
        self._record(ConversationEntry.story_segment(segment))

    def _record(self, entry: ConversationEntry) -> None:
        try:
            self._history.append(entry)
        except Exception as e:
            logger.warning("History append failed (%s): %s", entry.type, e)
