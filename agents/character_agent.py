"""
Character Consistency Agent: 참조 이미지 분석 → enhanced verbatim blueprint.

핵심 기능:
- 참조 이미지 1장당 CharacterProfile 1개 (vision 모델 + JSON schema)
- 분석 실패 시 예외 대신 결정적 fallback 프로필 반환
- 원본 blueprint + 프로필 + 일관성 지시문을 하나의 blueprint 텍스트로 병합
- run 범위 프로필 캐시 (동일 이미지 중복 분석 방지, 요청 간 공유 없음)

이미지 모델은 호출 간 기억이 없으므로, 일관성은 매 프롬프트에 이 blueprint를
그대로 다시 넣는 방식으로만 보장됩니다.
"""

import asyncio
from typing import Dict, List, Optional, Tuple

from config import GenerationConfig
from schemas import Base64Asset, CharacterBlueprints, CharacterProfile, CharacterRole
from schemas.response_schemas import character_profile_schema
from utils.error_manager import ErrorManager
from utils.llm_utils import parse_model_output
from utils.logger import get_logger

logger = get_logger("character")


ANALYSIS_PROMPT = """You are a CHARACTER CONSISTENCY ANALYZER responsible for keeping one character visually identical across every scene of a storyboard.

CHARACTER TYPE: {character_type}

Analyze the attached reference image and document, with extreme precision:

1. FACIAL FEATURES: face shape; eye color, shape, size and spacing; nose; mouth; eyebrows; cheekbones; jawline; marks or scars
2. HAIR: exact color shade; length, texture and cut; parting; highlights; hairline
3. BODY TYPE: height estimate; build; proportions; posture
4. SKIN TONE: exact tone and complexion details
5. CLOTHING STYLE: current outfit, visible style preferences, color palette
6. DISTINCTIVE FEATURES: unique identifiers, visible mannerisms, accessories
7. AGE & ETHNICITY: approximate age range and visible background

Finally write completeDescription: one self-contained paragraph that would let an artist redraw this exact person without seeing the image.

Respond ONLY with a JSON object matching the schema."""


class CharacterConsistencyAgent:
    """
    참조 이미지 기반 캐릭터 일관성 에이전트.

    Pipeline run마다 새로 생성됩니다 (프로필 캐시가 run 범위).
    """

    def __init__(self, llm, config: Optional[GenerationConfig] = None):
        """
        Initialize Character Consistency Agent.

        Args:
            llm: generate_structured(contents, schema, model) 를 제공하는 클라이언트
            config: 생성 설정 (vision 모델명)
        """
        self.llm = llm
        self.config = config or GenerationConfig()
        self._profile_cache: Dict[str, CharacterProfile] = {}

    # ========================================================================
    # Analysis
    # ========================================================================

    async def analyze(
        self,
        reference: Base64Asset,
        role: CharacterRole = CharacterRole.MAIN,
        index: Optional[int] = None,
    ) -> CharacterProfile:
        """
        참조 이미지 1장 분석. 어떤 실패에도 예외를 던지지 않습니다.

        Args:
            reference: 캐릭터 참조 이미지
            role: main / secondary
            index: secondary 캐릭터 번호 (프롬프트 라벨용)

        Returns:
            CharacterProfile (실패 시 CharacterProfile.fallback())
        """
        cached = self._profile_cache.get(reference.cache_key)
        if cached is not None:
            logger.debug(f"[Character] Profile cache hit ({role.value} {index or ''})")
            return cached

        if role == CharacterRole.MAIN:
            character_type = "MAIN CHARACTER (PROTAGONIST)"
        else:
            character_type = f"SECONDARY CHARACTER {index or ''}".strip()

        parts = [
            {"text": ANALYSIS_PROMPT.format(character_type=character_type)},
            {"inline_data": {"mime_type": reference.mime_type, "data": reference.data}},
        ]

        try:
            raw = await self.llm.generate_structured(
                parts,
                character_profile_schema(),
                model=self.config.models.vision,
            )
            profile = parse_model_output(raw, CharacterProfile, what="Character profile")
        except Exception as e:
            ErrorManager.log_error(
                "CharacterConsistencyAgent",
                f"Reference analysis failed for {character_type}, using fallback profile",
                f"{type(e).__name__}: {e}",
                severity="warning",
            )
            return CharacterProfile.fallback()

        self._profile_cache[reference.cache_key] = profile
        logger.info(f"[Character] Analyzed {character_type}: {profile.complete_description[:80]}")
        return profile

    async def analyze_references(
        self,
        main_reference: Optional[Base64Asset],
        secondary_references: List[Base64Asset],
    ) -> Tuple[Optional[CharacterProfile], List[CharacterProfile]]:
        """main + secondary 참조 이미지를 동시에 분석."""
        tasks = [
            self.analyze(ref, CharacterRole.SECONDARY, index=i + 2)
            for i, ref in enumerate(secondary_references)
        ]
        if main_reference is not None:
            tasks.insert(0, self.analyze(main_reference, CharacterRole.MAIN))

        profiles = list(await asyncio.gather(*tasks))
        main_profile = profiles.pop(0) if main_reference is not None else None
        return main_profile, profiles

    # ========================================================================
    # Blueprint composition
    # ========================================================================

    @staticmethod
    def compose_blueprints(
        original_blueprint: str,
        main_profile: Optional[CharacterProfile],
        secondary_profiles: List[CharacterProfile],
    ) -> CharacterBlueprints:
        """
        프로필을 verbatim blueprint 텍스트로 병합.

        main 프로필이 없으면 원본 blueprint를 그대로 유지합니다.
        """
        if main_profile is None:
            main_blueprint = original_blueprint
        else:
            main_blueprint = "\n".join([
                "[ENHANCED CHARACTER BLUEPRINT - VERBATIM COPY ACROSS ALL SCENES]",
                "",
                f"ORIGINAL BLUEPRINT: {original_blueprint}",
                "",
                "REFERENCE IMAGE ANALYSIS (MANDATORY - USE EXACTLY):",
                _profile_lines(main_profile),
                "",
                "COMPLETE VERBATIM DESCRIPTION (COPY THIS EXACTLY IN ALL SCENES):",
                main_profile.complete_description,
                "",
                "CRITICAL CONSISTENCY RULE: This character MUST appear EXACTLY as described above "
                "in EVERY scene. Face, hair, body type, skin tone and distinctive features stay IDENTICAL. "
                "Only pose, expression, and context may vary - the character's physical appearance "
                "MUST remain IDENTICAL.",
            ])

        additional = []
        for i, profile in enumerate(secondary_profiles):
            additional.append("\n".join([
                f"[SECONDARY CHARACTER {i + 1} BLUEPRINT - VERBATIM COPY]",
                _profile_lines(profile),
                "",
                f"COMPLETE DESCRIPTION: {profile.complete_description}",
                "",
                "CONSISTENCY RULE: This character MUST look EXACTLY the same whenever they appear.",
            ]))

        return CharacterBlueprints(
            main_character_blueprint=main_blueprint,
            additional_character_blueprints=additional,
            main_profile=main_profile,
            secondary_profiles=secondary_profiles,
        )

    async def enhance_blueprint(
        self,
        original_blueprint: str,
        main_reference: Optional[Base64Asset] = None,
        secondary_references: Optional[List[Base64Asset]] = None,
    ) -> CharacterBlueprints:
        """
        Analyze the references and return the enhanced blueprints.

        Args:
            original_blueprint: StoryWorld.character_blueprint
            main_reference: main character 참조 이미지
            secondary_references: secondary character 참조 이미지들

        Returns:
            CharacterBlueprints
        """
        secondary_references = secondary_references or []
        if main_reference is None and not secondary_references:
            return CharacterBlueprints(main_character_blueprint=original_blueprint)

        main_profile, secondary_profiles = await self.analyze_references(
            main_reference, secondary_references
        )
        return self.compose_blueprints(original_blueprint, main_profile, secondary_profiles)


def _profile_lines(profile: CharacterProfile) -> str:
    return "\n".join([
        f"- FACIAL FEATURES: {profile.facial_features}",
        f"- HAIR: {profile.hair_description}",
        f"- BODY TYPE: {profile.body_type}",
        f"- SKIN TONE: {profile.skin_tone}",
        f"- DISTINCTIVE FEATURES: {profile.distinctive_features}",
        f"- CLOTHING STYLE: {profile.clothing_style}",
        f"- AGE ESTIMATE: {profile.age_estimate}",
        f"- ETHNICITY: {profile.ethnicity}",
    ])
