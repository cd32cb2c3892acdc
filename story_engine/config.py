"""Application settings and the services built from them.

Settings are resolved in three layers, later ones winning:

    1. Defaults declared on Settings.
    2. A JSON config file (path from --config or STORY_CONFIG).
    3. STORY_<FIELD> environment variables, e.g. STORY_GENERATOR=llm.
       `characters` is a comma-separated list. A .env file at the repo root
       is loaded into the environment by the entry points.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field

from story_engine.engine.transport import FramePolicy
from story_engine.generators import Generator, LLMGenerator, ScriptedGenerator
from story_engine.history import HistorySink, JsonHistory, MemoryHistory
from story_engine.llm import HttpLLM, ProviderFormat
from story_engine.prompts import DEFAULT_CHARACTERS, SYSTEM_PROMPT, build_context, render_prompt

logger = logging.getLogger(__name__)

ENV_PREFIX = "STORY_"


class Settings(BaseModel):
    # Generator
    generator: Literal["mock", "llm"] = "mock"
    provider_url: str = "https://api.openai.com"
    api_key: str = ""
    provider_format: ProviderFormat = "openai_chat"
    model: str = "gpt-3.5-turbo"
    temperature: float = Field(0.8, ge=0, le=2)
    max_tokens: int = Field(1000, ge=1)
    llm_timeout: float = Field(120.0, gt=0)
    characters: list[str] = Field(default_factory=lambda: list(DEFAULT_CHARACTERS))

    # Transport
    min_chunk: int = Field(1, ge=1)
    max_chunk: int = Field(3, ge=1)
    min_delay: float = Field(0.02, ge=0)
    max_delay: float = Field(0.1, ge=0)
    initial_delay: float = Field(0.5, ge=0)
    fast_mode: bool = False

    # Playback and history
    reveal_delay: float = Field(0.05, ge=0)
    history_path: Path | None = None
    max_history_entries: int = Field(1000, ge=1)

    log_level: str = "WARNING"

    def frame_policy(self) -> FramePolicy:
        return FramePolicy(
            min_chunk=self.min_chunk,
            max_chunk=self.max_chunk,
            min_delay=self.min_delay,
            max_delay=self.max_delay,
            initial_delay=self.initial_delay,
            fast=self.fast_mode,
        )


def load_settings(path: Path | None = None, environ: Mapping[str, str] | None = None) -> Settings:
    """Merge defaults, the JSON config file and STORY_* variables.

    Raises pydantic.ValidationError on invalid values.
    """
    env = os.environ if environ is None else environ
    if path is None and env.get(f"{ENV_PREFIX}CONFIG"):
        path = Path(env[f"{ENV_PREFIX}CONFIG"])

    data: dict = {}
    if path is not None and path.is_file():
        data.update(json.loads(path.read_text()))
        logger.debug("loaded config file %s", path)

    for name in Settings.model_fields:
        key = f"{ENV_PREFIX}{name.upper()}"
        if key not in env:
            continue
        value: str | list[str] = env[key]
        if name == "characters":
            value = [c.strip() for c in env[key].split(",") if c.strip()]
        data[name] = value

    return Settings.model_validate(data)


def build_generator(settings: Settings) -> Generator:
    if settings.generator == "mock":
        return ScriptedGenerator()

    system_prompt = render_prompt(
        SYSTEM_PROMPT, build_context("", [], characters=settings.characters)
    )
    llm = HttpLLM(
        provider_url=settings.provider_url,
        api_key=settings.api_key,
        provider_format=settings.provider_format,
        model=settings.model,
        system_prompt=system_prompt,
        temperature=settings.temperature,
        max_tokens=settings.max_tokens,
        timeout=settings.llm_timeout,
    )
    return LLMGenerator(llm, characters=settings.characters)


def build_history(settings: Settings) -> HistorySink:
    if settings.history_path is None:
        return MemoryHistory()
    return JsonHistory(settings.history_path, max_entries=settings.max_history_entries)
