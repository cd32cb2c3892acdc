"""Terminal player: renders a StorySession to stdout and reads choices from stdin.

The renderer only queues what the sequencer reports; the play loop prints it
in reading order (header, typed text, then choices or the ending), because
the sequencer may report the choices before the last line has been typed.

While a line is being typed the player's input is already being read:
pressing Enter shows the rest of the line at once, the next Enter moves on.
"""

from __future__ import annotations

import asyncio
import sys
from collections.abc import Awaitable, Callable
from typing import TextIO

from story_engine.engine.sequencer import PlaybackSequencer, PlaybackState
from story_engine.engine.session import StorySession
from story_engine.models import CharacterSegment, Choice, NarratorSegment

ReadLine = Callable[[str], Awaitable[str]]


async def _read_line(prompt: str) -> str:
    return await asyncio.to_thread(input, prompt)


class TerminalRenderer:
    def __init__(self) -> None:
        # segments to type, or finished lines to print as they are
        self.queue: list[NarratorSegment | CharacterSegment | str] = []

    def on_segment_active(self, segment: NarratorSegment | CharacterSegment) -> None:
        self.queue.append(segment)

    def on_choices(self, choices: list[Choice]) -> None:
        self.queue.append("\n" + "\n".join(
            f"  [{i}] {c.text}" for i, c in enumerate(choices, start=1)
        ))

    def on_round_complete(self) -> None:
        self.queue.append("\n— The End —")

    def header(self, segment: NarratorSegment | CharacterSegment) -> str:
        match segment:
            case CharacterSegment(name=name, expression=expression, action=action):
                return f"{name} ({expression}) — {action}" if action else f"{name} ({expression})"
            case _:
                return ""


async def _show(
    seq: PlaybackSequencer,
    renderer: TerminalRenderer,
    out: TextIO,
    tick: float,
    interrupt: asyncio.Future | None = None,
) -> bool:
    """Print everything queued. Returns True if `interrupt` cut a reveal short."""
    skipped = False
    while renderer.queue:
        item = renderer.queue.pop(0)
        if isinstance(item, str):
            out.write(item + "\n")
            continue

        header = renderer.header(item)
        out.write(f"\n{header}\n" if header else "\n")
        shown = 0
        while item is seq.current and seq.state is PlaybackState.REVEALING:
            if interrupt is not None and interrupt.done() and not skipped:
                skipped = seq.skip()
                break
            text = seq.revealed_text
            out.write(text[shown:])
            out.flush()
            shown = len(text)
            await asyncio.sleep(tick)
        out.write(item.text[shown:] + "\n")
    out.flush()
    return skipped


async def play(
    session: StorySession,
    renderer: TerminalRenderer,
    prompt: str,
    read_line: ReadLine = _read_line,
    out: TextIO = sys.stdout,
    tick: float = 0.02,
) -> None:
    """Run a story until it completes or the player ends it."""
    seq = session.sequencer
    pending: asyncio.Future | None = None

    async def take(label: str) -> str:
        nonlocal pending
        if pending is None:
            return await read_line(label)
        # the read started while typing; show the prompt it never printed
        out.write(label)
        out.flush()
        read, pending = pending, None
        return await read

    await session.start(prompt)
    try:
        while True:
            if seq.state is PlaybackState.REVEALING and pending is None:
                pending = asyncio.ensure_future(read_line(""))
            if await _show(seq, renderer, out, tick, pending):
                read, pending = pending, None
                read.result()
                continue

            if seq.state is PlaybackState.REVEALED:
                await take("")
                seq.advance()
            elif seq.state is PlaybackState.AWAITING_CHOICE:
                choices = seq.choices
                line = (await take("> ")).strip()
                if not line.isdigit() or not 1 <= int(line) <= len(choices):
                    out.write(f"Pick a number from 1 to {len(choices)}.\n")
                    continue
                await session.choose(choices[int(line) - 1].id)
                if not session.started:
                    out.write("\nYou close the book.\n")
                    return
            else:
                if pending is not None:
                    await take("Press Enter to close.")
                return
    finally:
        if pending is not None:
            pending.cancel()
