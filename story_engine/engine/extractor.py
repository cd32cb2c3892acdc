"""Incremental markup extraction.

Consumes the round's markup fragment by fragment and emits narrative units
as soon as they are unambiguously complete:

    <Narrator>...</Narrator>                         → NarrationUnit
    <character name="X">
      <action expression="E">...</action> <say>...</say>   (repeated)
    </character>                                     → CharacterBlock

An optional <story> root wraps the round; its close marks the end of the
round. Anything else is best-effort: unknown tags are inert text once their
close is seen and pending until then, or literal text if the round ends
first. Misplaced known tags are closed or skipped. Nothing here raises on
malformed input.

Chunk boundaries never change the result: feeding "abc" in one piece or in
three produces the same units, because a tag is only acted on once its '>'
(and, for unknown tags, its matching close) is in the buffer.
"""

from __future__ import annotations

import html
import logging
import re
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)

NARRATOR = "narrator"
CHARACTER = "character"
ACTION = "action"
SAY = "say"
STORY = "story"

KNOWN_TAGS = frozenset({NARRATOR, CHARACTER, ACTION, SAY, STORY})

_TAG_NAME_RE = re.compile(r"[A-Za-z_][\w\-.:]*")
_ATTR_RE = re.compile(r"""([A-Za-z_][\w\-]*)\s*=\s*(?:"([^"]*)"|'([^']*)')""")
_ANY_TAG_RE = re.compile(r"<[^<>]*>")


class ExtractorState(str, Enum):
    OUTSIDE = "outside"
    IN_NARRATOR = "in_narrator"
    IN_CHARACTER_BLOCK = "in_character_block"
    IN_ACTION = "in_action"
    IN_SAY = "in_say"


_STATE_BY_TAG = {
    NARRATOR: ExtractorState.IN_NARRATOR,
    CHARACTER: ExtractorState.IN_CHARACTER_BLOCK,
    ACTION: ExtractorState.IN_ACTION,
    SAY: ExtractorState.IN_SAY,
}


# ---------------------------------------------------------------------------
# Units
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class NarrationUnit:
    text: str


@dataclass(frozen=True)
class ActionEntry:
    expression: str
    text: str


@dataclass(frozen=True)
class CharacterBlock:
    """A closed <character> block with its positional action and say lists.

    `lines` keeps empty <say> entries so positions still line up with
    `actions`; the assembler drops them.
    """

    name: str
    actions: tuple[ActionEntry, ...] = ()
    lines: tuple[str, ...] = ()


Unit = NarrationUnit | CharacterBlock


@dataclass
class _OpenUnit:
    tag: str
    attrs: dict[str, str]
    text: list[str] = field(default_factory=list)
    actions: list[ActionEntry] = field(default_factory=list)
    lines: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class _Tag:
    name: str
    closing: bool
    self_closing: bool
    attrs: dict[str, str]


def _parse_tag(content: str) -> _Tag | None:
    """Parse the text between '<' and '>'. Returns None if it is not a tag."""
    body = content.strip()
    closing = body.startswith("/")
    if closing:
        body = body[1:].lstrip()
    self_closing = body.endswith("/")
    if self_closing:
        body = body[:-1].rstrip()
    m = _TAG_NAME_RE.match(body)
    if not m:
        return None
    attrs = {
        key.lower(): dq or sq
        for key, dq, sq in _ATTR_RE.findall(body[m.end():])
    }
    return _Tag(m.group(0).lower(), closing, self_closing, attrs)


# ---------------------------------------------------------------------------
# Extractor
# ---------------------------------------------------------------------------

class MarkupExtractor:
    """Streaming state machine over one round's markup.

    The buffer is kept as the list of fed chunks plus the unscanned suffix,
    so each feed() only scans data that has not been consumed yet.
    """

    def __init__(self) -> None:
        self.reset()

    def reset(self) -> None:
        """Discard all state and start a new round."""
        self._chunks: list[str] = []
        self._pending = ""
        self._stack: list[_OpenUnit] = []
        self._ended = False
        self._complete = False

    # -- inspection ---------------------------------------------------------

    @property
    def markup(self) -> str:
        """The full markup fed so far this round."""
        return "".join(self._chunks)

    @property
    def pending(self) -> str:
        """Buffered suffix that could not be consumed yet."""
        return self._pending

    @property
    def state(self) -> ExtractorState:
        if not self._stack:
            return ExtractorState.OUTSIDE
        return _STATE_BY_TAG[self._stack[-1].tag]

    @property
    def round_complete(self) -> bool:
        """True after finish() or once the closing </story> tag was seen."""
        return self._complete or self._ended

    # -- input --------------------------------------------------------------

    def feed(self, chunk: str) -> list[Unit]:
        """Append a fragment and return the units it completed."""
        if self._complete:
            raise RuntimeError("Round already finished; call reset() first")
        self._chunks.append(chunk)
        self._pending += chunk
        return self._scan(final=False)

    def finish(self) -> list[Unit]:
        """Mark the round complete and flush whatever is still buffered.

        An unknown tag that never closed is kept as literal text and units
        left open are closed, so
        the caller gets every unit that carries text.
        """
        if self._complete:
            return []
        units = self._scan(final=True)
        if self._stack:
            logger.warning(
                "Round ended with %d unclosed tag(s): %s",
                len(self._stack), ", ".join(u.tag for u in self._stack),
            )
            self._close_all(units)
        self._complete = True
        return units

    # -- scanning -----------------------------------------------------------

    def _scan(self, final: bool) -> list[Unit]:
        units: list[Unit] = []
        text = self._pending
        pos = 0
        end = len(text)

        while pos < end:
            if self._ended:
                if text[pos:].strip():
                    logger.debug("Ignoring content after </story>: %r", text[pos:pos + 40])
                pos = end
                break

            lt = text.find("<", pos)
            if lt == -1:
                self._append_text(text[pos:])
                pos = end
                break
            if lt > pos:
                self._append_text(text[pos:lt])
                pos = lt

            gt = text.find(">", lt + 1)
            if gt == -1:
                if not final:
                    break
                # No tag can follow; the '<' was literal.
                self._append_text("<")
                pos = lt + 1
                continue

            tag = None if "<" in text[lt + 1:gt] else _parse_tag(text[lt + 1:gt])
            if tag is None:
                self._append_text("<")
                pos = lt + 1
                continue

            next_pos = self._handle_tag(tag, text, lt, gt + 1, final, units)
            if next_pos is None:
                break
            pos = next_pos

        self._pending = text[pos:]
        return units

    def _handle_tag(
        self, tag: _Tag, text: str, start: int, after: int, final: bool, units: list[Unit]
    ) -> int | None:
        """Apply one tag. Returns the scan position after it, or None to wait."""
        if tag.name not in KNOWN_TAGS:
            return self._handle_unknown(tag, text, start, after, final)
        if tag.closing:
            self._close(tag.name, units)
        elif tag.self_closing:
            logger.debug("Ignoring empty <%s/>", tag.name)
        else:
            self._open(tag, units)
        return after

    def _handle_unknown(
        self, tag: _Tag, text: str, start: int, after: int, final: bool
    ) -> int | None:
        if tag.closing or tag.self_closing:
            logger.debug("Skipping stray tag %s<%s>", "/" if tag.closing else "", tag.name)
            return after
        close_re = re.compile(rf"<\s*/\s*{re.escape(tag.name)}\s*>", re.IGNORECASE)
        close = close_re.search(text, after)
        if close is None:
            if not final:
                return None
            # Never closed, so it was not a tag: keep its source and rescan after the '<'.
            logger.warning("Unknown tag <%s> never closed; keeping it as text", tag.name)
            self._append_text("<")
            return start + 1
        self._append_text(_ANY_TAG_RE.sub("", text[after:close.start()]))
        return close.end()

    # -- unit stack ---------------------------------------------------------

    def _open(self, tag: _Tag, units: list[Unit]) -> None:
        name = tag.name
        if name == STORY:
            if self._stack:
                logger.debug("Ignoring <story> inside <%s>", self._stack[-1].tag)
            return

        if name in (NARRATOR, CHARACTER):
            if self._stack:
                logger.warning(
                    "<%s> opened inside <%s>; closing the open block", name, self._stack[-1].tag
                )
                self._close_all(units)
            self._stack.append(_OpenUnit(name, tag.attrs))
            return

        # action / say
        if self._stack and self._stack[-1].tag in (ACTION, SAY):
            logger.warning("<%s> opened inside <%s>; closing it", name, self._stack[-1].tag)
            self._pop(units)
        if not self._stack or self._stack[-1].tag != CHARACTER:
            logger.debug("Ignoring <%s> outside a character block", name)
            return
        self._stack.append(_OpenUnit(name, tag.attrs))

    def _close(self, name: str, units: list[Unit]) -> None:
        if name == STORY:
            if self._stack:
                logger.warning("</story> with %d open tag(s); closing them", len(self._stack))
                self._close_all(units)
            self._ended = True
            return

        for depth in range(len(self._stack) - 1, -1, -1):
            if self._stack[depth].tag == name:
                break
        else:
            logger.debug("Skipping unmatched </%s>", name)
            return

        while len(self._stack) > depth + 1:
            logger.warning("</%s> closes unclosed <%s>", name, self._stack[-1].tag)
            self._pop(units)
        self._pop(units)

    def _close_all(self, units: list[Unit]) -> None:
        while self._stack:
            self._pop(units)

    def _pop(self, units: list[Unit]) -> None:
        unit = self._stack.pop()
        text = html.unescape("".join(unit.text)).strip()

        if unit.tag == NARRATOR:
            if text:
                units.append(NarrationUnit(text))
            else:
                logger.debug("Dropping empty narration")
        elif unit.tag == CHARACTER:
            units.append(CharacterBlock(
                name=unit.attrs.get("name", "").strip(),
                actions=tuple(unit.actions),
                lines=tuple(unit.lines),
            ))
        elif unit.tag == ACTION:
            self._stack[-1].actions.append(
                ActionEntry(expression=unit.attrs.get("expression", ""), text=text)
            )
        elif unit.tag == SAY:
            self._stack[-1].lines.append(text)

    def _append_text(self, text: str) -> None:
        if not text:
            return
        if not self._stack:
            if text.strip():
                logger.debug("Dropping text outside markup: %r", text[:40])
            return
        top = self._stack[-1]
        if top.tag == CHARACTER:
            if text.strip():
                logger.debug("Dropping loose text in <character>: %r", text[:40])
            return
        top.text.append(text)
