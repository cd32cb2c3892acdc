"""Tests for story_engine.models — segments, frames and history entries."""

import pytest
from pydantic import TypeAdapter, ValidationError

from story_engine.models import (
    CharacterSegment,
    Choice,
    ConversationEntry,
    NarratorSegment,
    RoundRequest,
    Segment,
)

_segment = TypeAdapter(Segment)


def test_segment_text_trimmed():
    assert NarratorSegment(text="  Rain.  ").text == "Rain."


def test_segment_text_must_not_be_empty():
    with pytest.raises(ValidationError):
        NarratorSegment(text="   ")


def test_character_defaults():
    seg = CharacterSegment(name="Venti", text="Ehe~")
    assert seg.expression == "neutral"
    assert seg.action is None


def test_segment_discriminated_by_type():
    seg = _segment.validate_python(
        {"type": "character", "name": "Zhongli", "expression": "thinking", "text": "Indeed."}
    )
    assert isinstance(seg, CharacterSegment)
    assert isinstance(_segment.validate_python({"type": "narrator", "text": "Dusk."}), NarratorSegment)


def test_segments_are_immutable():
    seg = NarratorSegment(text="Dusk.")
    with pytest.raises(ValidationError):
        seg.text = "Dawn."


def test_request_utterance_prefers_choice():
    assert RoundRequest(prompt="Hello").utterance == "Hello"
    assert RoundRequest(prompt="Hello", choice="greet").utterance == "greet"
    assert RoundRequest().utterance is None


def test_entry_for_character_segment():
    seg = CharacterSegment(name="Lumine", expression="surprised", text="Another traveler?", action="gasps")
    entry = ConversationEntry.story_segment(seg)
    assert entry.type == "story_segment"
    assert entry.content == "Another traveler?"
    assert entry.character == "Lumine"
    assert entry.emotion == "surprised"
    assert entry.segment == seg


def test_entry_for_narration_has_no_character():
    entry = ConversationEntry.story_segment(NarratorSegment(text="Dusk."))
    assert entry.character is None
    assert entry.emotion is None


def test_entry_ids_unique_and_timestamps_aware():
    a = ConversationEntry.user_input("Hello")
    b = ConversationEntry.user_choice(Choice(id="greet", text="Greet"))
    assert a.id != b.id
    assert a.timestamp.tzinfo is not None
    assert b.content == "Greet"


def test_entry_json_keeps_segment_variant():
    seg = CharacterSegment(name="Venti", text="Ehe~", action="strums")
    entry = ConversationEntry.story_segment(seg)
    restored = ConversationEntry.model_validate_json(entry.model_dump_json())
    assert restored == entry
    assert isinstance(restored.segment, CharacterSegment)
