"""
StoryFrame Agents Package

에이전트 기반 아키텍처:
- StoryWorldSynthesizer: 서사 아키텍처 (premise, 3막, attractors, blueprint)
- CharacterConsistencyAgent: 참조 이미지 분석 + enhanced verbatim blueprint
- ScriptGenerator: 8-tier 씬 스크립트 (신규 / continuation)
- ConsistencyValidator: 스크립트 일관성 휴리스틱 (텔레메트리 전용)
- FrameSynthesizer: 씬당 A/B 프레임 이미지 생성 (재시도 + fallback + error sentinel)
"""

from .story_world_agent import StoryWorldSynthesizer, build_placeholder_story_world
from .character_agent import CharacterConsistencyAgent
from .script_agent import ScriptGenerator
from .consistency_validator import ConsistencyValidator
from .frame_agent import FrameSynthesizer

__all__ = [
    "StoryWorldSynthesizer",
    "build_placeholder_story_world",
    "CharacterConsistencyAgent",
    "ScriptGenerator",
    "ConsistencyValidator",
    "FrameSynthesizer",
]
