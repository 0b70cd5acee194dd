"""
Script Agent: Story World + enhanced blueprint → 정확히 N개의 8-tier 씬 스크립트.

- scene_count를 프롬프트 텍스트와 스키마(minItems == maxItems) 양쪽에 선언
- 모델이 어겨도: 초과 → 앞쪽 N개로 truncate, 부족 → 경고 후 그대로 진행
- main character가 있으면 subjectIdentity에 enhanced blueprint를 verbatim 포함
- continuation: 마지막 씬 다음의 씬 1개 생성 (id = last.id + 1)
"""

import json
from typing import Any, List, Optional

from pydantic import Field

from config import GenerationConfig
from schemas import AspectRatio, ReferenceFlags, SceneScript, StoryWorld
from schemas.models import CamelModel
from schemas.response_schemas import script_schema
from utils.constants import CAMERA_POSITION_SYNTAX, FRAMES_PER_SCENE, UNIVERSAL_NEGATIVES
from utils.error_manager import ErrorManager
from utils.errors import CardinalityMismatch, SchemaParseError
from utils.llm_utils import parse_model_output
from utils.logger import get_logger

logger = get_logger("script")


class ScriptResponse(CamelModel):
    scenes: List[SceneScript] = Field(default_factory=list)


# ============================================================================
# Prompt sections
# ============================================================================

TIER_GUIDE = """ATTENTION HIERARCHY (front-loaded, most important first):

TIER 1 (ARCHITECTURE): Cinematography & Format -> cinematographyFormat
- Camera system (ARRI Alexa Mini LF / Sony Venice), lens (35mm T1.5)
- Aspect ratio: {aspect_ratio} ({orientation} format), resolution 1080p / 4K

TIER 2 (CORE SUBJECT): Subject Identity -> subjectIdentity
- Use this ENHANCED VERBATIM character description, copied word-for-word in every scene:
  "{main_blueprint}"
- Add the current emotional state
- The character MUST look EXACTLY the same in every scene

TIER 3 (SCENE ANCHORS): Scene & Context -> sceneContext
- Forensic location description, props, primary light source, weather and time of day

TIER 4 (MOTION): Action & Camera Composition -> action, cameraComposition
- action: body action and facial action described separately (single-action principle)
- cameraComposition: shot type, movement, angle; MUST include "{camera_syntax}"

TIER 5 (AESTHETICS): Style & Ambiance -> styleAmbiance
- Color grading, lighting ratio, mood, visual genre

TIER 6 (AUDIO): Audio & Dialogue -> audioDialogue
- Ambient sound, foley, music; dialogue formatted as Character: "Line"

TIER 7 (QUALITY CONTROL): Technical & Negative -> technicalNegative
- Always include: "{negatives}"

TIER 8: veoPrompt
- One comprehensive prompt that integrates ALL tiers above, including "{camera_syntax}"."""


def build_reference_instructions(flags: ReferenceFlags) -> str:
    """참조 이미지가 있을 때 스크립트 프롬프트 뒤에 붙는 지시 블록."""
    instructions = []
    if flags.has_art_style:
        instructions.append(
            "ART STYLE REFERENCE PROVIDED: every character, environment and object must be "
            "described to match the art style reference exactly."
        )
    if flags.has_background:
        instructions.append(
            "BACKGROUND REFERENCE PROVIDED: scene descriptions must reuse the elements, colors, "
            "textures and atmosphere of the background reference."
        )
    if flags.has_main_character:
        instructions.append(
            "MAIN CHARACTER REFERENCE PROVIDED (CRITICAL): the protagonist from the reference image "
            "is the PRIMARY SUBJECT of EVERY scene, and the blueprint must match that image exactly."
        )
    if flags.secondary_count:
        instructions.append(
            f"ADDITIONAL CHARACTER REFERENCES PROVIDED: {flags.secondary_count} secondary character "
            "reference image(s); their descriptions must match those references exactly."
        )
    if not instructions:
        return ""

    rule = "=" * 60
    return "\n\n" + "\n".join([
        rule,
        "VISUAL REFERENCE INSTRUCTIONS:",
        rule,
        "\n\n".join(instructions),
        "",
        "Scene descriptions, environments and visual style must align with these references.",
    ])


def _story_world_json(story_world: StoryWorld) -> str:
    return json.dumps(story_world.to_json_dict(), indent=2, ensure_ascii=False)


def _tier_guide(aspect_ratio: AspectRatio, main_blueprint: str) -> str:
    return TIER_GUIDE.format(
        aspect_ratio=aspect_ratio.value,
        orientation=aspect_ratio.orientation,
        main_blueprint=main_blueprint,
        camera_syntax=CAMERA_POSITION_SYNTAX,
        negatives=UNIVERSAL_NEGATIVES,
    )


def build_script_prompt(
    story_world: StoryWorld,
    main_blueprint: str,
    secondary_blueprints: List[str],
    aspect_ratio: AspectRatio,
    scene_count: int,
) -> str:
    structure = story_world.structure
    lines = [
        "You are a MASTER SCREENPLAY ARCHITECT working at broadcast quality.",
        "",
        f"CRITICAL REQUIREMENT: generate EXACTLY {scene_count} scene(s). No more, no less.",
        f"Each scene gets {FRAMES_PER_SCENE} frames (A and B variants), "
        f"so the storyboard will have {scene_count * FRAMES_PER_SCENE} frames.",
    ]
    if scene_count == 1:
        lines += [
            "",
            "SINGLE SCENE: make it the decisive moment of the story, visually self-contained.",
        ]
    lines += [
        "",
        "STORY-WORLD PARAMETERIZATION:",
        _story_world_json(story_world),
        "",
        "PLOT ALGORITHM:",
        f"- Map the scenes onto the structural attractors in order: {', '.join(structure.attractors)}",
        "- Every scene reduces the gap between the protagonist's current state and their goal",
        "",
        _tier_guide(aspect_ratio, main_blueprint),
    ]
    if secondary_blueprints:
        lines += ["", "SECONDARY CHARACTERS (verbatim when they appear):"]
        lines += secondary_blueprints
    lines += [
        "",
        "NARRATIVE CONSISTENCY:",
        f"- Three acts: {structure.act1} -> {structure.act2} -> {structure.act3}",
        f"- Internal conflict: {story_world.core_conflict.internal}",
        f"- External obstacles: {story_world.core_conflict.external}",
        f"- Boundaries: {story_world.boundaries.spatial}, {story_world.boundaries.temporal}, "
        f"{story_world.boundaries.visual}",
        "",
        "Number scenes from 1. Respond ONLY with a JSON object matching the schema.",
    ]
    return "\n".join(lines)


def build_continuation_prompt(
    story_world: StoryWorld,
    last_scene: SceneScript,
    total_scenes: int,
    main_blueprint: str,
    aspect_ratio: AspectRatio,
    next_id: int,
    custom_instruction: Optional[str] = None,
) -> str:
    if custom_instruction:
        instruction = (
            f'CUSTOM CONTINUATION INSTRUCTION: "{custom_instruction}"\n'
            "You MUST incorporate this instruction into the new scene."
        )
    else:
        instruction = "Continue the narrative naturally from the last scene."

    return "\n".join([
        "You are a MASTER SCREENPLAY ARCHITECT working at broadcast quality.",
        "",
        "MISSION: generate exactly ONE new scene that continues the existing storyboard.",
        "",
        "EXISTING STORYBOARD:",
        f"- Scenes so far: {total_scenes}",
        f'- Last scene: "{last_scene.title}"',
        f'- Last scene script: "{last_scene.script_line}"',
        f"- Last scene emotion: {last_scene.emotion}",
        f"- Last scene intent: {last_scene.intent}",
        "",
        instruction,
        "",
        "STORY-WORLD PARAMETERIZATION:",
        _story_world_json(story_world),
        "",
        f"The new scene id is {next_id}. Keep the same visual style and technical specifications.",
        "",
        _tier_guide(aspect_ratio, main_blueprint),
        "",
        f"- Internal conflict: {story_world.core_conflict.internal}",
        f"- External obstacles: {story_world.core_conflict.external}",
        "",
        "Respond ONLY with a JSON object matching the schema.",
    ])


# ============================================================================
# Cardinality
# ============================================================================

def enforce_scene_count(scenes: List[SceneScript], scene_count: int) -> List[SceneScript]:
    """
    씬 개수 정책 적용.

    - 초과: 앞쪽 scene_count개만 유지 (원래 순서)
    - 부족: 그대로 수용 (degraded) + 경고
    """
    if len(scenes) == scene_count:
        return scenes

    mismatch = CardinalityMismatch(requested=scene_count, received=len(scenes))
    if len(scenes) > scene_count:
        action = f"truncated to first {scene_count}"
        scenes = scenes[:scene_count]
    else:
        action = "accepted with fewer scenes"

    ErrorManager.log_error(
        "ScriptGenerator",
        f"{mismatch.message}, {action}",
        {"requested": mismatch.requested, "received": mismatch.received},
        severity="warning",
    )
    return scenes


# ============================================================================
# Generator
# ============================================================================

class ScriptGenerator:
    """
    8-tier 씬 스크립트 생성기.
    """

    def __init__(self, llm, config: Optional[GenerationConfig] = None):
        """
        Initialize Script Generator.

        Args:
            llm: generate_structured(contents, schema, model) 를 제공하는 클라이언트
            config: 생성 설정 (텍스트 모델명)
        """
        self.llm = llm
        self.config = config or GenerationConfig()

    async def generate(
        self,
        story_world: StoryWorld,
        main_blueprint: str,
        secondary_blueprints: List[str],
        aspect_ratio: AspectRatio,
        scene_count: int,
        reference_flags: ReferenceFlags,
    ) -> List[SceneScript]:
        """
        Generate ``scene_count`` scenes (frames not yet attached).

        Returns:
            1..N 연속 id를 가진 SceneScript 리스트

        Raises:
            SchemaParseError: 응답 파싱 실패 또는 씬 0개
        """
        prompt = build_script_prompt(
            story_world, main_blueprint, secondary_blueprints, aspect_ratio, scene_count
        ) + build_reference_instructions(reference_flags)

        logger.info(f"[Script] Generating {scene_count} scene(s)")
        raw = await self.llm.generate_structured(
            prompt, script_schema(scene_count), model=self.config.models.text
        )
        scenes = self._parse_scenes(raw, first_id=1)
        scenes = enforce_scene_count(scenes, scene_count)

        finalized = [
            self._finalize(scene, main_blueprint, reference_flags) for scene in scenes
        ]
        logger.info(f"[Script] {len(finalized)} scene(s) ready")
        return finalized

    async def generate_continuation(
        self,
        story_world: StoryWorld,
        last_scene: SceneScript,
        total_scenes: int,
        main_blueprint: str,
        aspect_ratio: AspectRatio,
        reference_flags: ReferenceFlags,
        custom_instruction: Optional[str] = None,
    ) -> SceneScript:
        """
        마지막 씬에 이어지는 씬 1개 생성. id는 항상 last_scene.id + 1.
        """
        next_id = last_scene.id + 1
        prompt = build_continuation_prompt(
            story_world,
            last_scene,
            total_scenes,
            main_blueprint,
            aspect_ratio,
            next_id,
            custom_instruction,
        ) + build_reference_instructions(reference_flags)

        logger.info(f"[Script] Generating continuation scene {next_id}")
        raw = await self.llm.generate_structured(
            prompt, script_schema(1), model=self.config.models.text
        )
        scenes = self._parse_scenes(raw, first_id=next_id)
        if len(scenes) > 1:
            logger.warning(f"[Script] Continuation returned {len(scenes)} scenes, keeping the first")

        return self._finalize(scenes[0], main_blueprint, reference_flags)

    # ========================================================================
    # Internals
    # ========================================================================

    @staticmethod
    def _parse_scenes(raw: Any, first_id: int) -> List[SceneScript]:
        if isinstance(raw, list):
            raw = {"scenes": raw}
        if not isinstance(raw, dict) or not isinstance(raw.get("scenes"), list):
            raise SchemaParseError("Script response has no 'scenes' array", raw=str(raw)[:500])

        # id는 모델 값을 신뢰하지 않고 순서대로 재부여
        renumbered = dict(raw)
        renumbered["scenes"] = [
            dict(item, id=first_id + i) if isinstance(item, dict) else item
            for i, item in enumerate(raw["scenes"])
        ]
        scenes = parse_model_output(renumbered, ScriptResponse, what="Script").scenes
        if not scenes:
            raise SchemaParseError("Script response contains no scenes")
        return scenes

    @staticmethod
    def _finalize(
        scene: SceneScript,
        main_blueprint: str,
        reference_flags: ReferenceFlags,
    ) -> SceneScript:
        updates = {}

        if reference_flags.has_main_character and main_blueprint not in scene.subject_identity:
            updates["subject_identity"] = (
                f"{main_blueprint}\n\nSCENE-SPECIFIC STATE: {scene.subject_identity}"
            )

        if UNIVERSAL_NEGATIVES not in scene.technical_negative:
            negative = scene.technical_negative.strip().rstrip(",")
            updates["technical_negative"] = (
                f"{negative}, {UNIVERSAL_NEGATIVES}" if negative else UNIVERSAL_NEGATIVES
            )

        return scene.model_copy(update=updates) if updates else scene
