"""Core domain models.

Every stage of the story engine exchanges these types: the transport emits
frames, the assembler produces segments, the sequencer and the history sink
consume them. Pydantic is used for validation and serialisation at every
data boundary.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Choosing this id ends the session instead of requesting another round.
END_CHOICE_ID = "end_story"

NEUTRAL_EXPRESSION = "neutral"


class Choice(BaseModel):
    """One option offered at a choice point. `id` is opaque to the engine."""

    model_config = ConfigDict(frozen=True)

    id: str
    text: str


# ---------------------------------------------------------------------------
# Segments
# ---------------------------------------------------------------------------

class _SegmentBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str

    @field_validator("text")
    @classmethod
    def _trimmed_non_empty(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("segment text must not be empty")
        return value


class NarratorSegment(_SegmentBase):
    type: Literal["narrator"] = "narrator"


class CharacterSegment(_SegmentBase):
    type: Literal["character"] = "character"
    name: str
    expression: str = NEUTRAL_EXPRESSION
    action: str | None = None


Segment = Annotated[
    Union[NarratorSegment, CharacterSegment],
    Field(discriminator="type"),
]


# ---------------------------------------------------------------------------
# Wire frames
# ---------------------------------------------------------------------------

class ContentFrame(BaseModel):
    """A fragment of the round's markup. Fragments concatenate to the full string."""

    model_config = ConfigDict(frozen=True)

    type: Literal["content"] = "content"
    data: str


class CompleteFrame(BaseModel):
    """Terminal frame of a round; carries the choices for the next choice point."""

    model_config = ConfigDict(frozen=True)

    type: Literal["complete"] = "complete"
    choices: list[Choice] = Field(default_factory=list)


Frame = Annotated[
    Union[ContentFrame, CompleteFrame],
    Field(discriminator="type"),
]


class RoundRequest(BaseModel):
    """What a round is generated from: the opening prompt or the chosen id."""

    prompt: str | None = None
    choice: str | None = None
    story_history: list[str] = Field(default_factory=list)
    fast_mode: bool = False

    @property
    def utterance(self) -> str | None:
        return self.choice or self.prompt


class RoundScript(BaseModel):
    """What a generator returns for one round."""

    markup: str
    choices: list[Choice] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Conversation history
# ---------------------------------------------------------------------------

EntryType = Literal["user_input", "user_choice", "story_segment"]


class ConversationEntry(BaseModel):
    """A single record in the append-only conversation log."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    type: EntryType
    content: str
    character: str | None = None
    emotion: str | None = None
    segment: Segment | None = None

    @classmethod
    def user_input(cls, text: str) -> ConversationEntry:
        return cls(type="user_input", content=text)

    @classmethod
    def user_choice(cls, choice: Choice) -> ConversationEntry:
        return cls(type="user_choice", content=choice.text)

    @classmethod
    def story_segment(cls, segment: NarratorSegment | CharacterSegment) -> ConversationEntry:
        match segment:
            case CharacterSegment(name=name, expression=expression):
                return cls(
                    type="story_segment", content=segment.text,
                    character=name, emotion=expression, segment=segment,
                )
            case NarratorSegment():
                return cls(type="story_segment", content=segment.text, segment=segment)
