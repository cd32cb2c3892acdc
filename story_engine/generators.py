"""Round generators — where a round's markup and choices come from.

A generator is any async callable matching:

    async def __call__(self, request: RoundRequest) -> RoundScript: ...

    ScriptedGenerator — fixed scene table routed by choice id. Ships with
                        DEMO_SCENES so the engine runs without a model.
    LLMGenerator      — renders the story prompt, asks the LLM for the scene
                        markup, then for the follow-up choices as JSON.

Generator failures propagate; the transport turns them into TransportError.
"""

from __future__ import annotations

import json
import logging
from typing import Protocol

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from story_engine.llm import LLM
from story_engine.models import END_CHOICE_ID, Choice, RoundRequest, RoundScript
from story_engine.prompts import STORY_TEMPLATE, CHOICES_TEMPLATE, build_context, render_prompt

logger = logging.getLogger(__name__)

_choices_adapter = TypeAdapter(list[Choice])


class Generator(Protocol):
    async def __call__(self, request: RoundRequest) -> RoundScript: ...


# ---------------------------------------------------------------------------
# ScriptedGenerator
# ---------------------------------------------------------------------------

class Scene(BaseModel):
    id: str
    markup: str
    choices: list[Choice] = Field(default_factory=list)


DEMO_SCENES: list[Scene] = [
    Scene(
        id="intro",
        markup=(
            "<Narrator>The warm scent of chili oil and sizzling meat wraps around me "
            "as I step inside Wanmin Restaurant.</Narrator> "
            "<Narrator>The cheerful chatter dies instantly, and I freeze as every head "
            "turns toward the door.</Narrator>"
        ),
        choices=[
            Choice(id="greet_friendly", text="Greet everyone warmly"),
            Choice(id="stay_silent", text="Stay silent and watch"),
            Choice(id="ask_about_harbor", text="Ask about Liyue Harbor"),
        ],
    ),
    Scene(
        id="character_responses",
        markup=(
            '<character name="Lumine"> '
            '<action expression="Surprised">Nearly dropping her chopsticks, golden eyes widening</action> '
            "<say>Another traveler? Here in Liyue Harbor?</say> "
            '<action expression="Happy">Standing gracefully, her white dress swaying with the movement</action> '
            "<say>It's rare to meet someone else who journeys between worlds.</say> "
            "</character> "
            '<character name="Zhongli"> '
            '<action expression="Neutral">Looking up from his tea with measured interest</action> '
            "<say>Indeed. Your arrival was... anticipated.</say> "
            '<action expression="Thinking">Setting down his cup with deliberate care</action> '
            "<say>The contracts speak of one who would arrive when the harbor moon reaches its zenith.</say> "
            "</character> "
            '<character name="Tartaglia"> '
            '<action expression="Confident">Leaning back in his chair with a sharp grin</action> '
            "<say>Ha! Another fighter walks through that door - I can smell it.</say> "
            '<action expression="Very Happy">Standing up, cracking his knuckles</action> '
            "<say>The way you carry yourself, the weight of your steps... You're no ordinary wanderer!</say> "
            "</character> "
            '<character name="Venti"> '
            '<action expression="Happy">Strumming a cheerful note on his lyre</action> '
            "<say>Ehe~ What an auspicious wind blows you our way!</say> "
            '<action expression="Confident">Hopping down from his perch on the windowsill</action> '
            "<say>I was just composing a ballad about mysterious strangers. "
            "Care to inspire the next verse?</say> "
            "</character>"
        ),
        choices=[
            Choice(id="ask_lumine", text="Ask Lumine about her travels"),
            Choice(id="challenge_tartaglia", text="Accept Tartaglia's challenge"),
            Choice(id="listen_venti", text="Ask Venti to play his new song"),
            Choice(id="talk_zhongli", text="Discuss the mysterious contracts with Zhongli"),
            Choice(id=END_CHOICE_ID, text="Slip out of the restaurant"),
        ],
    ),
    Scene(
        id="farewell",
        markup=(
            "<Narrator>The evening stretches on in laughter and song until the lanterns "
            "of the harbor burn low.</Narrator> "
            '<character name="Venti"> '
            '<action expression="Happy">Raising his cup one last time</action> '
            "<say>To new friends, and to the winds that brought them!</say> "
            "</character> "
            "<Narrator>Your journey in Liyue Harbor has come to an end... for now.</Narrator>"
        ),
    ),
]

DEMO_ROUTES: dict[str, str] = {
    "greet_friendly": "character_responses",
    "stay_silent": "character_responses",
    "ask_about_harbor": "character_responses",
    "ask_lumine": "farewell",
    "challenge_tartaglia": "farewell",
    "listen_venti": "farewell",
    "talk_zhongli": "farewell",
}


class ScriptedGenerator:
    """Serves scenes from a fixed table.

    A request without a choice starts at the first scene. A choice id is
    looked up in `routes`, then as a scene id, then falls back to `default`
    (the second scene when not given).
    """

    def __init__(
        self,
        scenes: list[Scene] | None = None,
        routes: dict[str, str] | None = None,
        default: str | None = None,
    ) -> None:
        scenes = scenes if scenes is not None else DEMO_SCENES
        if not scenes:
            raise ValueError("ScriptedGenerator needs at least one scene")
        self._scenes = {s.id: s for s in scenes}
        self._start = scenes[0].id
        self._routes = dict(routes if routes is not None else DEMO_ROUTES)
        self._default = default or (scenes[1].id if len(scenes) > 1 else self._start)

    def scene_for(self, request: RoundRequest) -> Scene:
        if request.choice is None:
            return self._scenes[self._start]
        scene_id = self._routes.get(request.choice)
        if scene_id is None and request.choice in self._scenes:
            scene_id = request.choice
        return self._scenes[scene_id or self._default]

    async def __call__(self, request: RoundRequest) -> RoundScript:
        scene = self.scene_for(request)
        logger.debug("scripted scene=%s for %r", scene.id, request.utterance)
        return RoundScript(markup=scene.markup, choices=list(scene.choices))


# ---------------------------------------------------------------------------
# LLMGenerator
# ---------------------------------------------------------------------------

FALLBACK_CHOICES = [
    Choice(id="continue", text="Continue the story"),
    Choice(id=END_CHOICE_ID, text="End the story"),
]


def _strip_fences(text: str) -> str:
    """Remove a surrounding markdown code fence, if any."""
    cleaned = text.strip()
    if cleaned.startswith("```"):
        lines = cleaned.split("\n")
        lines = [l for l in lines[1:] if not l.strip().startswith("```")]
        cleaned = "\n".join(lines)
    return cleaned.strip()


def parse_choices(text: str, max_choices: int = 3) -> list[Choice]:
    """Parse the choices stage output; falls back to continue/end on bad JSON.

    The end-of-story choice is always offered last.
    """
    try:
        choices = _choices_adapter.validate_python(json.loads(_strip_fences(text)))
    except (json.JSONDecodeError, ValidationError) as e:
        logger.warning("Choices output is not a valid choice list: %s", e)
        return list(FALLBACK_CHOICES)

    choices = [c for c in choices if c.id and c.text.strip() and c.id != END_CHOICE_ID]
    if not choices:
        return list(FALLBACK_CHOICES)
    return choices[:max_choices] + [FALLBACK_CHOICES[-1]]


class LLMGenerator:
    """Generates each round with two LLM calls: "story", then "choices"."""

    def __init__(
        self,
        llm: LLM,
        characters: list[str] | None = None,
        story_template: str = STORY_TEMPLATE,
        choices_template: str = CHOICES_TEMPLATE,
        max_choices: int = 3,
    ) -> None:
        self._llm = llm
        self._characters = characters
        self._story_template = story_template
        self._choices_template = choices_template
        self._max_choices = max_choices

    async def __call__(self, request: RoundRequest) -> RoundScript:
        # The choice id is opaque; the model sees the choice text from history.
        if request.prompt:
            user_input = request.prompt
        elif request.story_history:
            user_input = request.story_history[-1]
        else:
            user_input = request.choice or ""

        ctx = build_context(
            user_input, request.story_history,
            characters=self._characters, max_choices=self._max_choices,
        )
        markup = _strip_fences(await self._llm("story", render_prompt(self._story_template, ctx)))

        ctx["story"] = markup
        choices_text = await self._llm("choices", render_prompt(self._choices_template, ctx))
        return RoundScript(markup=markup, choices=parse_choices(choices_text, self._max_choices))
