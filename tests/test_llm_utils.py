"""
Unit tests for LLM output parsing (parse-or-reject).
"""
import json

import pytest

from conftest import story_world_payload
from schemas import StoryWorld
from utils.errors import SchemaParseError
from utils.llm_utils import parse_llm_json, parse_model_output


class TestParseLlmJson:
    """Markdown-fenced and plain JSON are both accepted."""

    def test_plain_json(self):
        assert parse_llm_json('{"a": 1}') == {"a": 1}

    def test_json_fence(self):
        assert parse_llm_json('```json\n{"a": [1, 2]}\n```') == {"a": [1, 2]}

    def test_bare_fence(self):
        assert parse_llm_json('```\n[1, 2]\n```') == [1, 2]

    def test_unclosed_fence(self):
        assert parse_llm_json('```json\n{"a": 1}') == {"a": 1}

    def test_invalid_json_raises(self):
        with pytest.raises(json.JSONDecodeError):
            parse_llm_json("not json")


class TestParseModelOutput:
    """Anything that does not validate becomes SchemaParseError, never a partial object."""

    def test_dict_input(self):
        world = parse_model_output(story_world_payload(), StoryWorld)
        assert world.structure.attractors[0] == "I.I"

    def test_string_input(self):
        world = parse_model_output(json.dumps(story_world_payload()), StoryWorld)
        assert world.boundaries.visual.startswith("Painterly")

    def test_missing_field_rejected(self):
        payload = story_world_payload()
        del payload["coreConflict"]
        with pytest.raises(SchemaParseError) as exc_info:
            parse_model_output(payload, StoryWorld, what="Story-World")
        assert "coreConflict" in str(exc_info.value)
        assert exc_info.value.category == "malformed_output"

    def test_invalid_json_rejected(self):
        with pytest.raises(SchemaParseError):
            parse_model_output("{broken", StoryWorld)

    def test_none_rejected(self):
        with pytest.raises(SchemaParseError):
            parse_model_output(None, StoryWorld)
