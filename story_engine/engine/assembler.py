"""Turn extracted units into the ordered segment list of one round."""

from __future__ import annotations

import logging

from story_engine.models import NEUTRAL_EXPRESSION, CharacterSegment, NarratorSegment

from .extractor import CharacterBlock, MarkupExtractor, NarrationUnit, Unit

logger = logging.getLogger(__name__)

SegmentList = list[NarratorSegment | CharacterSegment]


def assemble_block(block: CharacterBlock) -> list[CharacterSegment]:
    """Pair each <say> with the <action> at the same position.

    Lines past the last action get the neutral expression and no action.
    Actions past the last line are dropped. Empty lines produce nothing.
    """
    segments: list[CharacterSegment] = []
    for i, line in enumerate(block.lines):
        expression = NEUTRAL_EXPRESSION
        action: str | None = None
        if i < len(block.actions):
            entry = block.actions[i]
            expression = entry.expression.strip().lower() or NEUTRAL_EXPRESSION
            action = entry.text.strip() or None
        if not line.strip():
            continue
        segments.append(CharacterSegment(
            name=block.name, expression=expression, text=line, action=action,
        ))

    extra = len(block.actions) - len(block.lines)
    if extra > 0:
        logger.debug("Dropping %d action(s) without dialogue for %s", extra, block.name)
    return segments


def assemble_units(units: list[Unit]) -> SegmentList:
    segments: SegmentList = []
    for unit in units:
        match unit:
            case NarrationUnit(text=text):
                segments.append(NarratorSegment(text=text))
            case CharacterBlock():
                segments.extend(assemble_block(unit))
    return segments


class SegmentAssembler:
    """Owns the working state of one round.

    Usage:
        assembler = SegmentAssembler()
        for frame in frames:
            new = assembler.feed(frame.data)   # segments ready so far
        new = assembler.finish()              # on the complete frame
        assembler.segments                    # full ordered list
    """

    def __init__(self) -> None:
        self._extractor = MarkupExtractor()
        self._segments: SegmentList = []

    @property
    def segments(self) -> SegmentList:
        return list(self._segments)

    @property
    def markup(self) -> str:
        return self._extractor.markup

    @property
    def round_complete(self) -> bool:
        return self._extractor.round_complete

    def feed(self, chunk: str) -> SegmentList:
        return self._collect(self._extractor.feed(chunk))

    def finish(self) -> SegmentList:
        return self._collect(self._extractor.finish())

    def reparse(self) -> SegmentList:
        """Re-run extraction over the whole buffer; same result as the streamed pass."""
        return parse_markup(self.markup)

    def _collect(self, units: list[Unit]) -> SegmentList:
        new = assemble_units(units)
        self._segments.extend(new)
        return new


def parse_markup(markup: str) -> SegmentList:
    """Extract all segments from a complete markup string in one pass."""
    extractor = MarkupExtractor()
    units = extractor.feed(markup)
    units.extend(extractor.finish())
    return assemble_units(units)
