"""Handlebars prompt rendering for story generation."""

from collections.abc import Callable
from typing import Any

import pybars


_compiler = pybars.Compiler()
_cache: dict[str, Callable] = {}

DEFAULT_CHARACTERS = ["Lumine", "Tartaglia", "Venti", "Zhongli"]

EMOTIONS = [
    "neutral", "happy", "sad", "angry", "surprised", "thinking", "confident",
    "concern", "annoyed", "blushing", "crying", "disgusted", "fear",
    "deeply in love", "very happy",
]

SYSTEM_PROMPT = """\
You are a creative writer for an interactive visual novel. You write engaging, \
character-driven scenes with natural dialogue that lead up to meaningful player choices.

You may ONLY use these characters:
{{#each characters}}- {{{this}}}
{{/each}}
Never create new characters, NPCs or background characters. If the story needs \
more context, use the Narrator instead.

Always answer in the markup format you are given and keep the content suitable \
for all audiences."""

STORY_TEMPLATE = """\
Continue the interactive story based on the player's input: "{{{input}}}"

Only use these characters, with their names spelled exactly: {{{characters_list}}}

Write the scene in this markup and nothing else:
- <Narrator>text</Narrator> for narration
- <character name="Name"><action expression="emotion">action</action><say>dialogue</say></character> for dialogue; a character block may repeat action/say pairs
- Available emotions: {{{emotions_list}}}

Include 2-3 characters when possible and stop at a natural point that leads to a choice.
{{#if history}}

Previous story context:
{{#last history 10}}{{{this}}}
{{/last}}{{/if}}
Write about 200-400 words."""

CHOICES_TEMPLATE = """\
The latest scene of an interactive story:

{{{story}}}

Offer the player {{max_choices}} short choices for what happens next.
Return only a JSON array: [{"id": "<snake_case_id>", "text": "<choice>"}]"""


class PromptError(Exception):
    """Raised when a Handlebars template fails to compile or render."""


# ── Custom Handlebars helpers ────────────────────────────


def _helper_last(this, options, items, count):
    """{{#last array N}}...{{/last}} — iterate over the last N items."""
    result = []
    for item in list(items)[-int(count):]:
        result.extend(options["fn"](item))
    return result


_HELPERS: dict[str, Callable] = {
    "last": _helper_last,
}


def render_prompt(template_str: str, context: dict[str, Any]) -> str:
    """Compile and render a Handlebars template with the given context.

    Templates are cached by source string to avoid recompilation.
    """
    try:
        compiled = _cache.get(template_str)
        if compiled is None:
            compiled = _compiler.compile(template_str)
            _cache[template_str] = compiled
        return str(compiled(context, helpers=_HELPERS))
    except Exception as e:
        raise PromptError(f"Template error: {e}") from e


def build_context(
    user_input: str,
    history: list[str],
    characters: list[str] | None = None,
    emotions: list[str] | None = None,
    story: str | None = None,
    max_choices: int = 3,
) -> dict[str, Any]:
    """Assemble template variables for the story and choices prompts."""
    chars = list(characters) if characters else list(DEFAULT_CHARACTERS)
    emos = list(emotions) if emotions else list(EMOTIONS)
    ctx: dict[str, Any] = {
        "input": user_input,
        "history": list(history),
        "characters": chars,
        "characters_list": ", ".join(chars),
        "emotions": emos,
        "emotions_list": ", ".join(emos),
        "max_choices": max_choices,
    }
    if story is not None:
        ctx["story"] = story
    return ctx
