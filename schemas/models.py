"""
StoryFrame Data Models

공통 데이터 모델 정의 (Pydantic 기반)
- StoryWorld: 서사 아키텍처 (premise, 3막 구조, 갈등, 경계)
- CharacterProfile: 참조 이미지 분석 결과
- Scene / Frame: 8-tier 씬 스크립트 + A/B 프레임
- Storyboard: 최종 산출물
- GenerationRequest / ContinuationRequest: 입력 검증

JSON 직렬화는 camelCase alias를 사용합니다 (scriptLine, imageUrl, storyWorld ...).
"""

import base64
import binascii
import hashlib
from enum import Enum
from typing import Annotated, Optional, List

from pydantic import BaseModel, Field, StringConstraints, field_validator, model_validator
from pydantic.alias_generators import to_camel

from utils.constants import (
    ALLOWED_FRAME_COUNTS,
    DEFAULT_CAMERA,
    DEFAULT_PALETTE,
    FRAMES_PER_SCENE,
    KNOWN_ERROR_URL_TOKENS,
    MAX_CUSTOM_INSTRUCTION_LENGTH,
    MAX_SECONDARY_CHARACTERS,
    MAX_STORY_LENGTH,
)


NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class CamelModel(BaseModel):
    """camelCase alias 지원 베이스 모델"""
    model_config = {"alias_generator": to_camel, "populate_by_name": True}

    def to_json_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ============================================================================
# Enums
# ============================================================================

class AspectRatio(str, Enum):
    """출력 화면비"""
    LANDSCAPE = "16:9"
    PORTRAIT = "9:16"

    @property
    def orientation(self) -> str:
        return "Landscape" if self is AspectRatio.LANDSCAPE else "Portrait"


class GenerationPhase(str, Enum):
    """진행률 이벤트의 단계"""
    STORY_WORLD = "story-world"
    SCRIPT = "script"
    IMAGES = "images"
    COMPLETE = "complete"


class FrameVariant(str, Enum):
    A = "A"
    B = "B"


class CharacterRole(str, Enum):
    MAIN = "main"
    SECONDARY = "secondary"


# ============================================================================
# Story World
# ============================================================================

class StoryStructure(CamelModel):
    """3막 구조 + structural attractors (I.I, PP1, MP, PP2, Climax, Resolution ...)"""
    act1: NonEmptyStr
    act2: NonEmptyStr
    act3: NonEmptyStr
    # 6..8 범위는 StoryWorldSynthesizer에서 강제 (continuation placeholder는 1개)
    attractors: List[NonEmptyStr] = Field(..., min_length=1)


class CoreConflict(CamelModel):
    internal: NonEmptyStr
    external: NonEmptyStr


class StoryBoundaries(CamelModel):
    """Spatial / Temporal / Historical / Visual logic"""
    spatial: NonEmptyStr
    temporal: NonEmptyStr
    historical: NonEmptyStr
    visual: NonEmptyStr


class StoryWorld(CamelModel):
    """
    Story-World parameterization.

    한 번의 생성 run 동안 불변. 모든 씬 프롬프트의 근거가 됩니다.
    """
    model_config = {"alias_generator": to_camel, "populate_by_name": True, "frozen": True}

    premise: NonEmptyStr
    theme: NonEmptyStr
    structure: StoryStructure
    character_blueprint: NonEmptyStr = Field(
        ..., description="Verbatim character template with 15+ distinguishing attributes"
    )
    core_conflict: CoreConflict
    boundaries: StoryBoundaries


# ============================================================================
# Character Consistency
# ============================================================================

class CharacterProfile(CamelModel):
    """참조 이미지 1장에 대한 구조화된 외형 분석"""
    model_config = {"alias_generator": to_camel, "populate_by_name": True, "frozen": True}

    facial_features: str
    hair_description: str
    body_type: str
    distinctive_features: str
    clothing_style: str
    skin_tone: str
    age_estimate: str
    ethnicity: str
    complete_description: NonEmptyStr

    @classmethod
    def fallback(cls) -> "CharacterProfile":
        """Vision 분석 실패 시 사용하는 결정적 fallback 프로필"""
        return cls(
            facial_features="See reference image for exact facial features",
            hair_description="See reference image for exact hair",
            body_type="See reference image for exact body type",
            distinctive_features="See reference image for all distinctive features",
            clothing_style="See reference image for clothing style",
            skin_tone="See reference image for exact skin tone",
            age_estimate="See reference image",
            ethnicity="See reference image",
            complete_description=(
                "Use the provided reference image EXACTLY as shown - "
                "maintain all visual features identically across all scenes"
            ),
        )


class CharacterBlueprints(CamelModel):
    """Enhanced blueprint 결과 (main + secondary)"""
    main_character_blueprint: str
    additional_character_blueprints: List[str] = Field(default_factory=list)
    main_profile: Optional[CharacterProfile] = None
    secondary_profiles: List[CharacterProfile] = Field(default_factory=list)


# ============================================================================
# Scenes & Frames
# ============================================================================

class FrameMetadata(CamelModel):
    composition: str
    palette: List[str] = Field(default_factory=lambda: list(DEFAULT_PALETTE))
    lighting: str
    camera: str = DEFAULT_CAMERA


class Frame(CamelModel):
    """씬당 2개 (A/B variant) 생성되는 이미지 프레임"""
    id: str
    variant: FrameVariant
    image_url: str = Field(..., description="data: URL of the image, or an error sentinel")
    metadata: FrameMetadata

    @property
    def is_error_sentinel(self) -> bool:
        return any(token in self.image_url for token in KNOWN_ERROR_URL_TOKENS)


class SceneScript(CamelModel):
    """
    8-tier hierarchy scene (frames 생성 전 단계)

    TIER 1: cinematography_format
    TIER 2: subject_identity (verbatim blueprint)
    TIER 3: scene_context
    TIER 4: action + camera_composition
    TIER 5: style_ambiance
    TIER 6: audio_dialogue
    TIER 7: technical_negative
    TIER 8: veo_prompt (all tiers combined)
    """
    id: int = Field(..., ge=1)
    title: str
    script_line: str
    emotion: str
    intent: str

    cinematography_format: str
    subject_identity: str
    scene_context: str
    action: str
    camera_composition: str
    style_ambiance: str
    audio_dialogue: str
    technical_negative: str
    veo_prompt: NonEmptyStr

    # Optional three-layer architecture
    deep_structure: Optional[str] = None
    intermediate_structure: Optional[str] = None
    surface_structure: Optional[str] = None


class Scene(SceneScript):
    frames: List[Frame] = Field(..., min_length=FRAMES_PER_SCENE, max_length=FRAMES_PER_SCENE)

    @field_validator("frames")
    @classmethod
    def _variants_distinct(cls, frames: List[Frame]) -> List[Frame]:
        if {f.variant for f in frames} != {FrameVariant.A, FrameVariant.B}:
            raise ValueError("a scene needs exactly one 'A' and one 'B' frame")
        return sorted(frames, key=lambda f: f.variant.value)

    @classmethod
    def from_script(cls, script: SceneScript, frames: List[Frame]) -> "Scene":
        return cls(**script.model_dump(exclude={"frames"}), frames=frames)

    def to_script(self) -> SceneScript:
        return SceneScript(**self.model_dump(exclude={"frames"}))


class Storyboard(CamelModel):
    """최종 산출물"""
    scenes: List[Scene] = Field(default_factory=list)
    story_world: Optional[StoryWorld] = None
    aspect_ratio: AspectRatio = AspectRatio.LANDSCAPE

    @field_validator("scenes")
    @classmethod
    def _ids_contiguous(cls, scenes: List[Scene]) -> List[Scene]:
        ids = [s.id for s in scenes]
        if ids != list(range(1, len(ids) + 1)):
            raise ValueError(f"scene ids must be 1..{len(ids)} in order with no gaps, got {ids}")
        return scenes

    @property
    def last_scene(self) -> Optional[Scene]:
        return self.scenes[-1] if self.scenes else None


# ============================================================================
# Progress
# ============================================================================

class GenerationProgress(CamelModel):
    """진행률 이벤트 (UI progress bar / ETA 표시용, 저장하지 않음)"""
    phase: GenerationPhase
    progress: float = Field(..., ge=0, le=100)
    message: str
    current_scene: Optional[int] = None
    total_scenes: Optional[int] = None
    current_frame: Optional[int] = None
    estimated_time_remaining: Optional[float] = None
    elapsed_time: float = 0.0


# ============================================================================
# Inputs
# ============================================================================

class Base64Asset(CamelModel):
    """{mimeType, data} 형태의 base64 이미지"""
    mime_type: str
    data: str

    @field_validator("mime_type")
    @classmethod
    def _image_mime(cls, v: str) -> str:
        v = v.strip().lower()
        if not v.startswith("image/"):
            raise ValueError(f"unsupported mime type: {v or '<empty>'}")
        return v

    @field_validator("data")
    @classmethod
    def _valid_base64(cls, v: str) -> str:
        v = v.strip()
        if v.startswith("data:") and "," in v:
            v = v.split(",", 1)[1]
        try:
            base64.b64decode(v, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValueError(f"invalid base64 data: {e}")
        if not v:
            raise ValueError("empty image data")
        return v

    @property
    def raw_bytes(self) -> bytes:
        return base64.b64decode(self.data)

    @property
    def cache_key(self) -> str:
        return hashlib.sha1(f"{self.mime_type}:{self.data}".encode("utf-8")).hexdigest()


class ReferenceFlags(BaseModel):
    """어떤 참조 이미지가 제공되었는지 (프롬프트 분기용)"""
    has_art_style: bool = False
    has_background: bool = False
    has_main_character: bool = False
    secondary_count: int = 0
    has_logo: bool = False


class ReferenceAssets(CamelModel):
    logo: Optional[Base64Asset] = None
    main_character: Optional[Base64Asset] = None
    secondary_characters: List[Base64Asset] = Field(
        default_factory=list, max_length=MAX_SECONDARY_CHARACTERS
    )
    background: Optional[Base64Asset] = None
    art_style: Optional[Base64Asset] = None

    @property
    def flags(self) -> ReferenceFlags:
        return ReferenceFlags(
            has_art_style=self.art_style is not None,
            has_background=self.background is not None,
            has_main_character=self.main_character is not None,
            secondary_count=len(self.secondary_characters),
            has_logo=self.logo is not None,
        )


class GenerationRequest(CamelModel):
    """신규 storyboard 생성 요청"""
    story: str = Field(..., max_length=MAX_STORY_LENGTH)
    assets: ReferenceAssets = Field(default_factory=ReferenceAssets)
    aspect_ratio: AspectRatio = AspectRatio.LANDSCAPE
    frame_count: int = 4

    @field_validator("story")
    @classmethod
    def _story_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("story text is required")
        return v

    @field_validator("frame_count")
    @classmethod
    def _allowed_frame_count(cls, v: int) -> int:
        if v not in ALLOWED_FRAME_COUNTS:
            raise ValueError(f"frame_count must be one of {ALLOWED_FRAME_COUNTS}")
        return v

    @property
    def scene_count(self) -> int:
        return self.frame_count // FRAMES_PER_SCENE


class ContinuationRequest(CamelModel):
    """기존 storyboard에 씬 1개 추가 요청"""
    storyboard: Storyboard
    assets: ReferenceAssets = Field(default_factory=ReferenceAssets)
    custom_instruction: Optional[str] = Field(None, max_length=MAX_CUSTOM_INSTRUCTION_LENGTH)
    aspect_ratio: Optional[AspectRatio] = None

    @model_validator(mode="after")
    def _default_aspect_ratio(self) -> "ContinuationRequest":
        if self.aspect_ratio is None:
            self.aspect_ratio = self.storyboard.aspect_ratio
        if self.custom_instruction is not None and not self.custom_instruction.strip():
            self.custom_instruction = None
        return self


class ValidationReport(BaseModel):
    """일관성 휴리스틱 검증 결과 (텔레메트리 전용)"""
    is_valid: bool
    issues: List[str] = Field(default_factory=list)
