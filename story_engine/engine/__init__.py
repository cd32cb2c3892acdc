"""Streaming story engine.

Data flows one way, one round at a time:
  1. Transport — generator output is delivered as content frames followed
     by exactly one complete frame carrying the next choices.
  2. Extractor — a state machine over the growing buffer emits narration
     units and character blocks as soon as their closing tag arrives.
  3. Assembler — character blocks are split into one segment per <say>,
     paired positionally with their <action> expression; segment order is
     source order whatever the chunking.
  4. Sequencer — a single cursor reveals segments one at a time, commits
     each to history as playback moves past it, then offers the choices or
     ends the story.

Markup (parsed by MarkupExtractor):
  <Narrator>text</Narrator>
  <character name="X"><action expression="E">text</action><say>text</say></character>

Segments: {"type": "narrator", "text"} | {"type": "character", "name",
"expression", "text", "action"?}
"""

from .assembler import SegmentAssembler, assemble_block, parse_markup  # noqa: F401
from .extractor import (  # noqa: F401
    ActionEntry,
    CharacterBlock,
    ExtractorState,
    MarkupExtractor,
    NarrationUnit,
)
from .sequencer import (  # noqa: F401
    PlaybackCursor,
    PlaybackSequencer,
    PlaybackState,
    RenderSink,
    SequencerError,
)
from .session import SessionStatus, StorySession  # noqa: F401
from .transport import (  # noqa: F401
    FramePolicy,
    HttpTransport,
    LocalTransport,
    TransportError,
    encode_frame,
    read_frames,
    split_markup,
)
