"""Tests for Handlebars prompt rendering: helpers, context building and the
built-in story templates."""

import pytest

from story_engine.prompts import (
    CHOICES_TEMPLATE,
    DEFAULT_CHARACTERS,
    STORY_TEMPLATE,
    SYSTEM_PROMPT,
    PromptError,
    build_context,
    render_prompt,
)


# ── render_prompt ────────────────────────────────────────────


def test_render_simple_variable():
    assert render_prompt("Hello {{name}}!", {"name": "World"}) == "Hello World!"


def test_render_triple_stash_keeps_markup():
    result = render_prompt("{{{story}}}", {"story": '<character name="Venti">'})
    assert result == '<character name="Venti">'


def test_render_last_helper():
    tpl = "{{#last items 2}}{{this}};{{/last}}"
    assert render_prompt(tpl, {"items": ["a", "b", "c"]}) == "b;c;"


def test_render_invalid_template():
    with pytest.raises(PromptError):
        render_prompt("{{> missing_partial}}", {})


# ── build_context ────────────────────────────────────────────


def test_build_context_defaults():
    ctx = build_context("I enter", ["Hello"])
    assert ctx["input"] == "I enter"
    assert ctx["history"] == ["Hello"]
    assert ctx["characters"] == DEFAULT_CHARACTERS
    assert ctx["characters_list"] == "Lumine, Tartaglia, Venti, Zhongli"
    assert "very happy" in ctx["emotions_list"]
    assert ctx["max_choices"] == 3
    assert "story" not in ctx


def test_build_context_custom_cast_and_story():
    ctx = build_context("x", [], characters=["Paimon"], emotions=["happy"], story="<Narrator>Hi</Narrator>")
    assert ctx["characters_list"] == "Paimon"
    assert ctx["emotions_list"] == "happy"
    assert ctx["story"] == "<Narrator>Hi</Narrator>"


def test_build_context_copies_history():
    history = ["a"]
    ctx = build_context("x", history)
    ctx["history"].append("b")
    assert history == ["a"]


# ── Built-in templates ───────────────────────────────────────


def test_system_prompt_lists_characters():
    result = render_prompt(SYSTEM_PROMPT, build_context("", [], characters=["Lumine", "Venti"]))
    assert "- Lumine\n- Venti\n" in result


def test_story_template_includes_input_and_recent_history():
    history = [f"step {i}" for i in range(12)]
    result = render_prompt(STORY_TEMPLATE, build_context('Say "hi"', history))
    assert 'player\'s input: "Say "hi""' in result
    assert "Previous story context:" in result
    assert "step 11" in result
    assert "step 1\n" not in result
    assert "<Narrator>text</Narrator>" in result


def test_story_template_without_history():
    result = render_prompt(STORY_TEMPLATE, build_context("Hello", []))
    assert "Previous story context" not in result


def test_choices_template():
    ctx = build_context("x", [], story="<Narrator>Dusk.</Narrator>", max_choices=4)
    result = render_prompt(CHOICES_TEMPLATE, ctx)
    assert "<Narrator>Dusk.</Narrator>" in result
    assert "Offer the player 4 short choices" in result
