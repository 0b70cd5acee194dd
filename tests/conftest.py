"""
Shared fixtures: scriptable fake Gemini client, sample story world / scenes, noise images.

테스트는 네트워크에 접근하지 않습니다.
"""
import base64
import copy
import io
import os
import sys
from dataclasses import dataclass, field
from typing import Any, List

import pytest
from PIL import Image

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from config import GenerationConfig, RetryConfig
from schemas import Base64Asset
from utils.error_manager import ErrorManager
from utils.gemini_client import GeneratedImage


# ==========================================================================
# Images
# ==========================================================================

def noise_png(size=(64, 64)) -> bytes:
    """Random-noise PNG (incompressible, well above the minimum image size)."""
    img = Image.frombytes("RGB", size, os.urandom(size[0] * size[1] * 3))
    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    return buffer.getvalue()


def make_asset(size=(16, 16)) -> Base64Asset:
    return Base64Asset(mime_type="image/png", data=base64.b64encode(noise_png(size)).decode("ascii"))


# ==========================================================================
# Sample model outputs (camelCase, as the model returns them)
# ==========================================================================

def story_world_payload(attractors: int = 6) -> dict:
    return {
        "premise": "A young fox must find her way home through an enchanted forest before winter.",
        "theme": "Home is something we carry with us.",
        "structure": {
            "act1": "The fox is separated from her family during a storm.",
            "act2": "She crosses the enchanted forest and befriends an old owl.",
            "act3": "She returns home as the first snow falls.",
            "attractors": ["I.I", "PP1", "MP", "PP2", "Climax", "Resolution", "Epilogue", "Coda"][:attractors],
        },
        "characterBlueprint": (
            "Young red fox, small and slender, bright amber eyes, white-tipped tail, "
            "black socks, cream chest fur, alert triangular ears"
        ),
        "coreConflict": {
            "internal": "Belonging: she fears she is too small to matter",
            "external": "Storms, a wide river and a hungry lynx",
        },
        "boundaries": {
            "spatial": "An enchanted northern forest",
            "temporal": "Three days before the first snow",
            "historical": "Timeless fairy tale",
            "visual": "Painterly realism with warm autumn light",
        },
    }


def scene_payload(scene_id: int = 1, **overrides) -> dict:
    payload = {
        "id": scene_id,
        "title": f"Scene {scene_id} title",
        "scriptLine": f"The fox moves deeper into the forest ({scene_id}).",
        "emotion": "hopeful",
        "intent": "Show the journey continuing",
        "cinematographyFormat": "ARRI Alexa Mini LF, 35mm T1.5, 16:9",
        "subjectIdentity": "The main character, the exact same young red fox",
        "sceneContext": "A misty clearing at dawn",
        "action": "The fox steps onto a mossy log",
        "cameraComposition": "Low-angle medium shot (thats where the camera is)",
        "styleAmbiance": "Warm golden grading",
        "audioDialogue": "Birdsong and rustling leaves",
        "technicalNegative": "no blur",
        "veoPrompt": f"Cinematic shot of a young red fox in a misty clearing, scene {scene_id}",
    }
    payload.update(overrides)
    return payload


def profile_payload(description: str = "A petite red fox with amber eyes and a white-tipped tail") -> dict:
    return {
        "facialFeatures": "Narrow muzzle, amber eyes",
        "hairDescription": "Russet fur, cream chest",
        "bodyType": "Small and slender",
        "distinctiveFeatures": "White-tipped tail, black socks",
        "clothingStyle": "Green knitted scarf",
        "skinTone": "N/A",
        "ageEstimate": "Young adult",
        "ethnicity": "N/A",
        "completeDescription": description,
    }


def scripted_scenes(contents, schema, model=None) -> dict:
    """Return exactly as many scenes as the schema asks for."""
    count = schema["properties"]["scenes"].get("minItems", 1)
    return {"scenes": [scene_payload(i + 1) for i in range(count)]}


# ==========================================================================
# Fake LLM client
# ==========================================================================

@dataclass
class RecordedCall:
    kind: str
    contents: Any
    schema: Any = None
    model: Any = None
    aspect_ratio: Any = None


def _schema_kind(schema: dict) -> str:
    properties = schema.get("properties", {})
    if "premise" in properties:
        return "story_world"
    if "completeDescription" in properties:
        return "profile"
    if "scenes" in properties:
        return "script"
    raise AssertionError(f"unexpected schema: {sorted(properties)}")


def _resolve(responder, *args):
    if isinstance(responder, list):
        if not responder:
            raise AssertionError("fake LLM ran out of scripted responses")
        return _resolve(responder.pop(0), *args)
    if isinstance(responder, BaseException):
        raise responder
    if callable(responder):
        return _resolve(responder(*args), *args)
    return copy.deepcopy(responder)


@dataclass
class FakeLLM:
    """
    Scriptable stand-in for GeminiClient.

    각 응답자는 값 / 예외 / callable / 그 리스트(순서대로 소비) 중 하나입니다.
    """
    story_world: Any = field(default_factory=story_world_payload)
    profile: Any = field(default_factory=profile_payload)
    script: Any = scripted_scenes
    image: Any = None
    calls: List[RecordedCall] = field(default_factory=list)
    image_calls: List[RecordedCall] = field(default_factory=list)

    async def generate_structured(self, contents, schema, model=None):
        kind = _schema_kind(schema)
        self.calls.append(RecordedCall(kind, contents, schema, model))
        return _resolve(getattr(self, kind), contents, schema, model)

    async def generate_image(self, parts, aspect_ratio, model=None):
        self.image_calls.append(RecordedCall("image", parts, model=model, aspect_ratio=aspect_ratio))
        if self.image is None:
            return GeneratedImage(mime_type="image/png", data=noise_png())
        return _resolve(self.image, parts, aspect_ratio, model)

    def calls_of(self, kind: str) -> List[RecordedCall]:
        return [c for c in self.calls if c.kind == kind]


class RecordingSleep:
    """Injected backoff sleep that records delays instead of waiting."""

    def __init__(self):
        self.delays = []

    async def __call__(self, delay: float):
        self.delays.append(delay)


# ==========================================================================
# Fixtures
# ==========================================================================

@pytest.fixture(autouse=True)
def error_log(tmp_path, monkeypatch):
    """Redirect the ErrorManager log into the test's tmp dir."""
    path = tmp_path / "generation_errors.log"
    monkeypatch.setattr(ErrorManager, "LOG_FILE", str(path))
    return path


@pytest.fixture
def config():
    return GenerationConfig(
        retry=RetryConfig(frame_max_attempts=3, story_world_max_attempts=2, base_delay_sec=1.0),
        progress_tick_sec=0,
    )


@pytest.fixture
def fake_llm():
    return FakeLLM()


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def story_world():
    from schemas import StoryWorld
    return StoryWorld.model_validate(story_world_payload())


@pytest.fixture
def scene_script():
    from schemas import SceneScript
    return SceneScript.model_validate(scene_payload(1))


@pytest.fixture
def png_bytes():
    return noise_png()
