"""
StoryFrame Data Models (Pydantic Schemas)
"""

from .models import (
    AspectRatio,
    GenerationPhase,
    FrameVariant,
    CharacterRole,
    StoryStructure,
    CoreConflict,
    StoryBoundaries,
    StoryWorld,
    CharacterProfile,
    CharacterBlueprints,
    FrameMetadata,
    Frame,
    SceneScript,
    Scene,
    Storyboard,
    GenerationProgress,
    Base64Asset,
    ReferenceFlags,
    ReferenceAssets,
    GenerationRequest,
    ContinuationRequest,
    ValidationReport,
)

__all__ = [
    "AspectRatio",
    "GenerationPhase",
    "FrameVariant",
    "CharacterRole",
    "StoryStructure",
    "CoreConflict",
    "StoryBoundaries",
    "StoryWorld",
    "CharacterProfile",
    "CharacterBlueprints",
    "FrameMetadata",
    "Frame",
    "SceneScript",
    "Scene",
    "Storyboard",
    "GenerationProgress",
    "Base64Asset",
    "ReferenceFlags",
    "ReferenceAssets",
    "GenerationRequest",
    "ContinuationRequest",
    "ValidationReport",
]
