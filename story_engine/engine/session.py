"""Story session: wires transport, assembler and sequencer for a whole story.

Session flow:
  1. start(prompt): record the player's opening text, fetch the first round.
  2. Each round: frames are fed to a fresh SegmentAssembler as they arrive;
     the complete frame finalises the segment list and the choices.
  3. The finished round is parked as pending_round and handed to the
     sequencer once it is idle, or as soon as the previous round reaches
     its choice point or its end (the sequencer reports that through its
     on_round_end callback). A round never replaces one still playing.
  4. choose(choice_id): the sequencer records the choice and goes idle; the
     session fetches the next round. The end-of-story id resets everything.

Any failure while fetching or loading a round marks the session FAILED and
re-raises. Nothing from an unfinished round reaches the sequencer or the
history.
"""

from __future__ import annotations

import logging
from enum import Enum

from story_engine.history import HistorySink
from story_engine.models import (
    END_CHOICE_ID,
    CharacterSegment,
    Choice,
    CompleteFrame,
    ContentFrame,
    ConversationEntry,
    NarratorSegment,
    RoundRequest,
)

from .assembler import SegmentAssembler
from .sequencer import PlaybackSequencer, PlaybackState, RenderSink
from .transport import FrameSource, TransportError

logger = logging.getLogger(__name__)


class SessionStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    PLAYING = "playing"
    FAILED = "failed"


PendingRound = tuple[list[NarratorSegment | CharacterSegment], list[Choice]]


class StorySession:
    def __init__(
        self,
        transport: FrameSource,
        history: HistorySink,
        renderer: RenderSink,
        reveal_delay: float = 0.05,
        fast_mode: bool = False,
    ) -> None:
        self._transport = transport
        self._history = history
        self._fast_mode = fast_mode
        self.sequencer = PlaybackSequencer(
            history, renderer, reveal_delay, on_round_end=self._on_round_end,
        )
        self.story_history: list[str] = []
        self.status = SessionStatus.IDLE
        self.error: str | None = None
        self.pending_round: PendingRound | None = None

    @property
    def started(self) -> bool:
        return bool(self.story_history)

    async def start(self, prompt: str) -> None:
        """Begin a new story from the player's opening text."""
        prompt = prompt.strip()
        if not prompt:
            raise ValueError("Opening prompt must not be empty")
        if self.started:
            raise ValueError("Session already started; reset() first")

        self._record(ConversationEntry.user_input(prompt))
        self.story_history = [prompt]
        await self.fetch_round(RoundRequest(
            prompt=prompt, story_history=list(self.story_history), fast_mode=self._fast_mode,
        ))

    async def choose(self, choice_id: str) -> Choice:
        """Take a choice and play the round it leads to."""
        choice = self.sequencer.choose(choice_id)
        if choice.id == END_CHOICE_ID:
            logger.info("Story ended by player")
            self.reset()
            return choice

        self.story_history.append(choice.text)
        await self.fetch_round(RoundRequest(
            choice=choice.id, story_history=list(self.story_history), fast_mode=self._fast_mode,
        ))
        return choice

    def reset(self) -> None:
        """Discard the story and return to the state before start()."""
        self.sequencer.reset()
        self.story_history = []
        self.pending_round = None
        self.status = SessionStatus.IDLE
        self.error = None

    async def fetch_round(self, request: RoundRequest) -> None:
        """Stream one round from the transport and queue it for playback."""
        self.status = SessionStatus.LOADING
        self.error = None
        assembler = SegmentAssembler()
        choices: list[Choice] | None = None

        try:
            async for frame in self._transport.stream(request):
                match frame:
                    case ContentFrame(data=data) if choices is None:
                        ready = assembler.feed(data)
                        if ready:
                            logger.debug("segments ready=%d total=%d", len(ready), len(assembler.segments))
                    case CompleteFrame(choices=frame_choices) if choices is None:
                        assembler.finish()
                        choices = list(frame_choices)
                    case _:
                        logger.warning("Ignoring %s frame after complete", frame.type)
            if choices is None:
                raise TransportError("Round ended without a complete frame")

            logger.info("round ready segments=%d choices=%d", len(assembler.segments), len(choices))
            if self.pending_round is not None:
                logger.warning("Replacing a pending round that was never played")
            self.pending_round = (assembler.segments, choices)
            self.status = SessionStatus.PLAYING
            self.swap_pending()
        except TransportError as e:
            self._fail(e)
            logger.error("Round failed: %s", e)
            raise
        except Exception as e:
            self._fail(e)
            logger.exception("Round could not be loaded")
            raise

    def swap_pending(self) -> bool:
        """Hand the pending round to the sequencer if it is free. Returns True if loaded.

        The sequencer is free when idle or when the current round has reached
        its choice point or its end; a round that is still revealing is never
        replaced.
        """
        if self.pending_round is None:
            return False
        state = self.sequencer.state
        if state in (PlaybackState.AWAITING_CHOICE, PlaybackState.COMPLETE):
            self.sequencer.reset()
        elif state is not PlaybackState.IDLE:
            logger.debug("Round pending until playback of the current one finishes (%s)", state.value)
            return False

        segments, choices = self.pending_round
        self.pending_round = None
        self.sequencer.load_round(segments, choices)
        return True

    def _on_round_end(self, state: PlaybackState) -> None:
        if self.pending_round is not None:
            logger.debug("Round ended (%s); loading the pending round", state.value)
            self.swap_pending()

    def _fail(self, error: Exception) -> None:
        self.status = SessionStatus.FAILED
        self.error = str(error)

    def _record(self, entry: ConversationEntry) -> None:
        try:
            self._history.append(entry)
        except Exception as e:
            logger.warning("History append failed (%s): %s", entry.type, e)
