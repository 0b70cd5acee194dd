"""
Unit tests for FrameSynthesizer.

Tests cover:
1. Retry with exponential backoff, then simplified fallback
2. Image acceptance (size, decodability)
3. Error sentinel substitution (a scene always gets two frames)
4. Frame metadata defaults
"""
import pytest

from agents.frame_agent import FrameSynthesizer, build_frame_metadata
from conftest import FakeLLM, RecordingSleep, make_asset, noise_png, scene_payload
from schemas import (
    AspectRatio,
    CharacterBlueprints,
    FrameVariant,
    ReferenceAssets,
    SceneScript,
)
from utils.error_manager import ErrorManager
from utils.errors import ConfigurationError, FrameGenerationError, LLMCallError
from utils.gemini_client import GeneratedImage
from utils.retry import RetryPolicy


def _synthesizer(config, llm, sleep=None):
    policy = RetryPolicy(
        max_attempts=config.retry.frame_max_attempts,
        base_delay=config.retry.base_delay_sec,
        give_up_on=(ConfigurationError,),
        sleep=sleep or RecordingSleep(),
        name="frame",
    )
    return FrameSynthesizer(llm, config, retry_policy=policy)


def _good_image():
    return GeneratedImage(mime_type="image/png", data=noise_png())


PARTS = [{"text": "[REFERENCE IMAGE 3: MAIN CHARACTER]"}, {"inline_data": {"mime_type": "image/png", "data": "AAAA"}},
         {"text": "[SCENE GENERATION INSTRUCTION]\nlong instruction"}]


# ==========================================================================
# Test 1: Retry and fallback
# ==========================================================================

class TestSynthesizeFrame:
    """Three attempts with 1s / 2s backoff, then one simplified fallback."""

    @pytest.mark.asyncio
    async def test_first_attempt_success(self, config, scene_script):
        llm = FakeLLM()
        url = await _synthesizer(config, llm).synthesize_frame(scene_script, PARTS, AspectRatio.LANDSCAPE)
        assert url.startswith("data:image/png;base64,")
        assert len(llm.image_calls) == 1
        assert llm.image_calls[0].aspect_ratio == "16:9"
        assert llm.image_calls[0].model == config.models.image

    @pytest.mark.asyncio
    async def test_fallback_after_three_failures(self, config, scene_script):
        sleep = RecordingSleep()
        llm = FakeLLM(image=[LLMCallError("a"), LLMCallError("b"), LLMCallError("c"), _good_image()])
        url = await _synthesizer(config, llm, sleep).synthesize_frame(scene_script, PARTS, AspectRatio.LANDSCAPE)

        assert url.startswith("data:image/png;base64,")
        assert len(llm.image_calls) == 4
        assert sleep.delays == [1.0, 2.0]
        fallback_parts = llm.image_calls[-1].contents
        assert fallback_parts[-1]["text"].startswith("Generate a professional cinematic image for:")
        assert llm.image_calls[0].contents == PARTS

    @pytest.mark.asyncio
    async def test_all_failures_raise(self, config, scene_script):
        llm = FakeLLM(image=lambda *args: LLMCallError("down"))
        with pytest.raises(FrameGenerationError) as exc_info:
            await _synthesizer(config, llm).synthesize_frame(
                scene_script, PARTS, AspectRatio.LANDSCAPE, frame_id="1A"
            )
        assert exc_info.value.frame_id == "1A"
        assert len(llm.image_calls) == 4

    @pytest.mark.asyncio
    async def test_configuration_error_not_retried(self, config, scene_script):
        llm = FakeLLM(image=lambda *args: ConfigurationError("bad key"))
        with pytest.raises(ConfigurationError):
            await _synthesizer(config, llm).synthesize_frame(scene_script, PARTS, AspectRatio.LANDSCAPE)
        assert len(llm.image_calls) == 1


# ==========================================================================
# Test 2: Image acceptance
# ==========================================================================

class TestImageAcceptance:
    """Small, undecodable or placeholder images count as retry-eligible failures."""

    @pytest.mark.asyncio
    async def test_tiny_image_retried(self, config, scene_script):
        llm = FakeLLM(image=[GeneratedImage("image/png", b"tiny"), _good_image()])
        url = await _synthesizer(config, llm).synthesize_frame(scene_script, PARTS, AspectRatio.LANDSCAPE)
        assert url.startswith("data:image/png;base64,")
        assert len(llm.image_calls) == 2

    @pytest.mark.asyncio
    async def test_undecodable_image_retried(self, config, scene_script):
        llm = FakeLLM(image=[GeneratedImage("image/png", b"\x01" * 5000), _good_image()])
        await _synthesizer(config, llm).synthesize_frame(scene_script, PARTS, AspectRatio.LANDSCAPE)
        assert len(llm.image_calls) == 2


# ==========================================================================
# Test 3: Scene frames
# ==========================================================================

class TestSceneFrames:
    """A scene always ends up with exactly one A and one B frame."""

    @pytest.mark.asyncio
    async def test_two_frames_generated(self, config, scene_script, story_world):
        llm = FakeLLM()
        seen = []

        async def on_frame(frame):
            seen.append(frame.id)

        frames = await _synthesizer(config, llm).synthesize_scene_frames(
            scene_script,
            ReferenceAssets(main_character=make_asset()),
            CharacterBlueprints(main_character_blueprint="MAIN-BP"),
            story_world,
            AspectRatio.LANDSCAPE,
            on_frame=on_frame,
        )

        assert [f.variant for f in frames] == [FrameVariant.A, FrameVariant.B]
        assert [f.id for f in frames] == ["1A", "1B"]
        assert sorted(seen) == ["1A", "1B"]
        assert not any(f.is_error_sentinel for f in frames)
        assert len(llm.image_calls) == 2
        assert "MAIN-BP" in llm.image_calls[0].contents[-1]["text"]

    @pytest.mark.asyncio
    async def test_failed_frames_become_sentinels(self, config, scene_script, story_world):
        llm = FakeLLM(image=lambda *args: LLMCallError("quota"))
        frames = await _synthesizer(config, llm).synthesize_scene_frames(
            scene_script, ReferenceAssets(), CharacterBlueprints(main_character_blueprint="bp"),
            story_world, AspectRatio.PORTRAIT,
        )

        assert len(frames) == 2
        assert all(f.is_error_sentinel for f in frames)
        errors = ErrorManager.get_recent_errors(service="FrameSynthesizer")
        assert len(errors) == 2
        assert {e["severity"] for e in errors} == {"error"}

    @pytest.mark.asyncio
    async def test_configuration_error_aborts_scene(self, config, scene_script, story_world):
        llm = FakeLLM(image=lambda *args: ConfigurationError("bad key"))
        with pytest.raises(ConfigurationError):
            await _synthesizer(config, llm).synthesize_scene_frames(
                scene_script, ReferenceAssets(), CharacterBlueprints(main_character_blueprint="bp"),
                story_world, AspectRatio.LANDSCAPE,
            )


# ==========================================================================
# Test 4: Metadata
# ==========================================================================

class TestFrameMetadata:

    def test_defaults_from_scene(self, scene_script):
        metadata = build_frame_metadata(scene_script)
        assert metadata.composition == "Professional hopeful composition"
        assert metadata.lighting == "Cinematic lighting for hopeful tone"
        assert metadata.palette == ["#1a1a1a", "#f5f5f5", "#4a90e2"]
        assert metadata.camera == scene_script.camera_composition

    def test_default_camera(self):
        scene = SceneScript.model_validate(scene_payload(1, cameraComposition=""))
        assert build_frame_metadata(scene).camera == (
            "Professional cinematography based on screenplay architecture"
        )
