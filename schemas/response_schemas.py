"""
Gemini structured-output 스키마 (OpenAPI subset, camelCase 필드명).

모델 출력은 이 스키마로 제약하고, 수신 후 pydantic 모델로 다시 검증합니다.
"""

from typing import Dict, Any

from utils.constants import MAX_ATTRACTORS, MIN_ATTRACTORS

_STRING = {"type": "STRING"}

SCENE_TIER_FIELDS = [
    "cinematographyFormat",
    "subjectIdentity",
    "sceneContext",
    "action",
    "cameraComposition",
    "styleAmbiance",
    "audioDialogue",
    "technicalNegative",
]

SCENE_REQUIRED_FIELDS = ["id", "title", "scriptLine", "emotion", "intent"] + SCENE_TIER_FIELDS + ["veoPrompt"]

PROFILE_FIELDS = [
    "facialFeatures",
    "hairDescription",
    "bodyType",
    "distinctiveFeatures",
    "clothingStyle",
    "skinTone",
    "ageEstimate",
    "ethnicity",
    "completeDescription",
]


def _object(properties: Dict[str, Any], required=None) -> Dict[str, Any]:
    return {
        "type": "OBJECT",
        "properties": properties,
        "required": list(required if required is not None else properties.keys()),
    }


def story_world_schema() -> Dict[str, Any]:
    return _object({
        "premise": _STRING,
        "theme": _STRING,
        "structure": _object({
            "act1": _STRING,
            "act2": _STRING,
            "act3": _STRING,
            "attractors": {
                "type": "ARRAY",
                "items": _STRING,
                "minItems": MIN_ATTRACTORS,
                "maxItems": MAX_ATTRACTORS,
            },
        }),
        "characterBlueprint": _STRING,
        "coreConflict": _object({"internal": _STRING, "external": _STRING}),
        "boundaries": _object({
            "spatial": _STRING,
            "temporal": _STRING,
            "historical": _STRING,
            "visual": _STRING,
        }),
    })


def character_profile_schema() -> Dict[str, Any]:
    return _object({name: _STRING for name in PROFILE_FIELDS})


def script_schema(scene_count: int = None) -> Dict[str, Any]:
    """
    씬 배열 스키마.

    Args:
        scene_count: 지정 시 minItems == maxItems == scene_count 로 배열 길이 고정

    Returns:
        {"scenes": [...]} 스키마 딕셔너리
    """
    scene_properties = {"id": {"type": "INTEGER"}}
    for name in SCENE_REQUIRED_FIELDS[1:]:
        scene_properties[name] = _STRING
    for name in ("deepStructure", "intermediateStructure", "surfaceStructure"):
        scene_properties[name] = _STRING

    scenes = {
        "type": "ARRAY",
        "items": _object(scene_properties, required=SCENE_REQUIRED_FIELDS),
    }
    if scene_count is not None:
        scenes["minItems"] = scene_count
        scenes["maxItems"] = scene_count

    return _object({"scenes": scenes})
