"""Tests for the terminal player."""

import asyncio
import io

import pytest

from story_engine.cli import TerminalRenderer, play
from story_engine.engine.sequencer import PlaybackState
from story_engine.engine.session import StorySession
from story_engine.engine.transport import LocalTransport
from story_engine.generators import Scene, ScriptedGenerator
from story_engine.history import MemoryHistory
from story_engine.models import CharacterSegment, NarratorSegment


def _reader(answers: list[str]):
    queue = list(answers)

    async def read_line(prompt: str) -> str:
        if not queue:
            raise EOFError
        return queue.pop(0)

    return read_line


async def _slow_reader(prompt: str) -> str:
    await asyncio.sleep(0.5)
    return ""


def _session(renderer: TerminalRenderer, no_sleep, generator=None, reveal_delay: float = 0) -> StorySession:
    transport = LocalTransport(generator or ScriptedGenerator(), sleep=no_sleep)
    return StorySession(transport, MemoryHistory(), renderer, reveal_delay=reveal_delay)


def test_header_for_character_with_action():
    segment = CharacterSegment(name="Venti", expression="happy", text="Ehe~", action="strums")
    assert TerminalRenderer().header(segment) == "Venti (happy) — strums"


def test_header_for_narration_is_empty():
    assert TerminalRenderer().header(NarratorSegment(text="Dusk.")) == ""


async def test_play_until_player_leaves(no_sleep):
    renderer = TerminalRenderer()
    session = _session(renderer, no_sleep)
    out = io.StringIO()
    answers = ["", "9", "1"] + [""] * 7 + ["5"]

    await play(session, renderer, "I enter.", read_line=_reader(answers), out=out, tick=0)

    text = out.getvalue()
    assert "chili oil" in text
    assert "[1] Greet everyone warmly" in text
    assert "Pick a number from 1 to 3." in text
    assert "Lumine (surprised) — Nearly dropping her chopsticks" in text
    assert "[5] Slip out of the restaurant" in text
    assert text.rstrip().endswith("You close the book.")
    assert not session.started


async def test_play_to_the_end(no_sleep):
    renderer = TerminalRenderer()
    session = _session(renderer, no_sleep)
    out = io.StringIO()
    answers = ["", "1"] + [""] * 7 + ["3", "", ""]

    await play(session, renderer, "I enter.", read_line=_reader(answers), out=out, tick=0)

    text = out.getvalue()
    assert "Your journey in Liyue Harbor has come to an end" in text
    assert text.rstrip().endswith("— The End —")


async def test_typed_reveal_prints_whole_line(no_sleep):
    renderer = TerminalRenderer()
    generator = ScriptedGenerator([Scene(id="only", markup="<Narrator>Hi there.</Narrator>")])
    session = _session(renderer, no_sleep, generator=generator, reveal_delay=0.001)
    out = io.StringIO()

    await play(session, renderer, "Hello", read_line=_slow_reader, out=out, tick=0.001)

    text = out.getvalue()
    assert text.count("Hi there.") == 1
    assert "— The End —" in text
    assert text.endswith("Press Enter to close.")


async def test_eof_stops_play(no_sleep):
    renderer = TerminalRenderer()
    session = _session(renderer, no_sleep)
    with pytest.raises(EOFError):
        await play(session, renderer, "I enter.", read_line=_reader([]), out=io.StringIO(), tick=0)


async def test_enter_during_reveal_shows_whole_line(no_sleep):
    renderer = TerminalRenderer()
    generator = ScriptedGenerator([Scene(
        id="only",
        markup="<Narrator>The lanterns flicker.</Narrator><Narrator>Silence.</Narrator>",
    )])
    session = _session(renderer, no_sleep, generator=generator, reveal_delay=10)
    out = io.StringIO()

    await play(session, renderer, "Hello", read_line=_reader(["", "", ""]), out=out, tick=0.001)

    text = out.getvalue()
    assert "The lanterns flicker.\n" in text
    assert "Silence.\n" in text
    assert text.rstrip().endswith("— The End —")
    assert session.sequencer.state is PlaybackState.COMPLETE
