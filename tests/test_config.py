"""Tests for settings loading and the services built from them."""

import json

import pytest
from pydantic import ValidationError

from story_engine.config import Settings, build_generator, build_history, load_settings
from story_engine.generators import LLMGenerator, ScriptedGenerator
from story_engine.history import JsonHistory, MemoryHistory


def test_defaults_without_file_or_env():
    settings = load_settings(environ={})
    assert settings.generator == "mock"
    assert settings.min_chunk == 1
    assert settings.max_chunk == 3
    assert settings.initial_delay == 0.5
    assert settings.characters == ["Lumine", "Tartaglia", "Venti", "Zhongli"]


def test_file_values_override_defaults(tmp_path):
    path = tmp_path / "story.json"
    path.write_text(json.dumps({"generator": "llm", "model": "gpt-4o", "max_chunk": 5}))
    settings = load_settings(path, environ={})
    assert settings.generator == "llm"
    assert settings.model == "gpt-4o"
    assert settings.max_chunk == 5


def test_env_overrides_file(tmp_path):
    path = tmp_path / "story.json"
    path.write_text(json.dumps({"model": "gpt-4o", "fast_mode": False}))
    settings = load_settings(path, environ={
        "STORY_MODEL": "local-model",
        "STORY_FAST_MODE": "true",
        "STORY_CHARACTERS": "Venti, Zhongli,",
    })
    assert settings.model == "local-model"
    assert settings.fast_mode is True
    assert settings.characters == ["Venti", "Zhongli"]


def test_config_path_from_env(tmp_path):
    path = tmp_path / "story.json"
    path.write_text(json.dumps({"reveal_delay": 0}))
    settings = load_settings(environ={"STORY_CONFIG": str(path)})
    assert settings.reveal_delay == 0


def test_missing_file_uses_defaults(tmp_path):
    settings = load_settings(tmp_path / "absent.json", environ={})
    assert settings == Settings()


def test_invalid_value_rejected():
    with pytest.raises(ValidationError):
        load_settings(environ={"STORY_GENERATOR": "oracle"})


def test_frame_policy_from_settings():
    policy = Settings(min_chunk=2, max_chunk=4, fast_mode=True).frame_policy()
    assert (policy.min_chunk, policy.max_chunk, policy.fast) == (2, 4, True)


def test_build_generator_kinds():
    assert isinstance(build_generator(Settings()), ScriptedGenerator)
    assert isinstance(build_generator(Settings(generator="llm", api_key="sk-test")), LLMGenerator)


def test_build_history_kinds(tmp_path):
    assert isinstance(build_history(Settings()), MemoryHistory)
    history = build_history(Settings(history_path=tmp_path / "h.json", max_history_entries=5))
    assert isinstance(history, JsonHistory)
    assert history.path == tmp_path / "h.json"
