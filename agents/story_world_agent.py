"""
Story World Agent: 원본 스토리 텍스트로부터 서사 아키텍처(Story World)를 생성.

- premise / theme / 3막 구조 + 6~8개 structural attractors
- 15+ 속성의 verbatim character blueprint
- core conflict (internal / external), boundaries (spatial / temporal / historical / visual)

재시도는 이 레이어에서 하지 않습니다 (파이프라인의 RetryPolicy가 담당).
"""

from typing import Optional

from config import GenerationConfig
from schemas import (
    CoreConflict,
    SceneScript,
    StoryBoundaries,
    StoryStructure,
    StoryWorld,
)
from schemas.response_schemas import story_world_schema
from utils.constants import MAX_ATTRACTORS, MIN_ATTRACTORS
from utils.errors import SchemaParseError
from utils.llm_utils import parse_model_output
from utils.logger import get_logger

logger = get_logger("story_world")


STORY_WORLD_PROMPT = """You are a MASTER SCREENPLAY ARCHITECT.

MISSION: Build the complete Story-World parameterization for the story concept below.

STORY CONCEPT: "{story}"

REQUIREMENTS:

1. PREMISE / LOGLINE
   - A logline that hooks the audience immediately
   - Name the protagonist, the goal and the obstacle

2. THEME
   - The story's philosophical stance on its central conflict

3. STRUCTURE
   - Three acts: act1 (Setup), act2 (Confrontation), act3 (Resolution)
   - 6 to 8 structural attractors (key plot points):
     I.I (Inciting Incident), PP1 (Plot Point 1), MP (Midpoint), PP2 (Plot Point 2),
     Climax, Resolution, plus 1-2 more if needed

4. CHARACTER BLUEPRINT
   - A verbatim description template with 15+ specific attributes:
     age, ethnicity, body type, facial features, hair, clothing style,
     posture, mannerisms, micro-expressions, distinctive physical traits
   - Include the emotional baseline and psychological profile
   - This text will be copied VERBATIM into every scene

5. CORE CONFLICT
   - internal: psychological motive (survival / security / belonging / esteem / self-actualization)
   - external: physical obstacles, antagonists, environmental challenges

6. BOUNDARIES
   - spatial: where the story happens and its spatial rules
   - temporal: when it happens and its time constraints
   - historical: historical context
   - visual: visual aesthetic (realistic / fantasy / sci-fi / noir ...)

Respond ONLY with a JSON object matching the StoryWorld schema."""


class StoryWorldSynthesizer:
    """
    Story-World 합성기.

    LLM structured output → StoryWorld 검증. 부분적으로 채워진 객체는 절대 반환하지 않습니다.
    """

    def __init__(self, llm, config: Optional[GenerationConfig] = None):
        """
        Initialize Story World Synthesizer.

        Args:
            llm: generate_structured(contents, schema, model) 를 제공하는 클라이언트
            config: 생성 설정 (모델명)
        """
        self.llm = llm
        self.config = config or GenerationConfig()

    async def synthesize(self, story_text: str) -> StoryWorld:
        """
        Generate the story world for ``story_text``.

        Raises:
            SchemaParseError: 응답이 스키마와 불일치하거나 attractors 개수가 6~8 범위 밖
            LLMCallError: 호출 자체 실패
        """
        logger.info(f"[StoryWorld] Synthesizing story world ({len(story_text)} chars)")

        raw = await self.llm.generate_structured(
            STORY_WORLD_PROMPT.format(story=story_text),
            story_world_schema(),
            model=self.config.models.text,
        )
        story_world = parse_model_output(raw, StoryWorld, what="Story-World")

        attractor_count = len(story_world.structure.attractors)
        if not MIN_ATTRACTORS <= attractor_count <= MAX_ATTRACTORS:
            raise SchemaParseError(
                f"Story-World has {attractor_count} attractors, "
                f"expected {MIN_ATTRACTORS}-{MAX_ATTRACTORS}"
            )

        logger.info(f"[StoryWorld] Premise: {story_world.premise[:100]}")
        return story_world


def build_placeholder_story_world(last_scene: SceneScript) -> StoryWorld:
    """
    Storyboard에 story world가 없을 때 (구버전 프로젝트) 마지막 씬으로부터 최소 world 구성.

    attractors는 1개뿐이라 synthesize()의 6~8 검증을 거치지 않습니다.
    """
    return StoryWorld(
        premise=last_scene.script_line or "Continuing narrative",
        theme="Narrative continuation",
        structure=StoryStructure(
            act1="Setup",
            act2="Confrontation",
            act3="Resolution",
            attractors=["Continuation"],
        ),
        character_blueprint=last_scene.subject_identity or "Same character as previous scenes",
        core_conflict=CoreConflict(
            internal=last_scene.emotion or "Continuing emotional arc",
            external=last_scene.action or "Continuing external conflict",
        ),
        boundaries=StoryBoundaries(
            spatial=last_scene.scene_context or "Same setting as previous scenes",
            temporal="Continuing timeline",
            historical="Same period",
            visual="Consistent style",
        ),
    )
