"""
Multimodal Prompt Builder for Gemini 2.5 Flash Image.

핵심 기능:
- 매 프레임마다 캐릭터 blueprint를 다시 주입 (모델은 호출 간 기억이 없음)
- 참조 이미지 → 텍스트 지시 순서 고정 (REFERENCE ORDER)
- 이전 씬 요약 기반 cross-scene context 생성
- 재시도 실패 시 사용하는 단순화된 fallback parts

REFERENCE ORDER:
1. Art style 참조 이미지 + 지시
2. Background 참조 이미지 + 지시
3. Main character 참조 이미지 + 지시 + 확인
4. Secondary character 참조 이미지들 + 지시
5. Logo 참조 이미지 + 지시
6. 최종 텍스트 프롬프트 (8 tier 재기술, 참조 사용 리마인더, 화면비, 네거티브)
"""

from typing import Dict, List

from schemas import (
    AspectRatio,
    Base64Asset,
    CharacterBlueprints,
    ReferenceAssets,
    SceneScript,
    StoryWorld,
)

SECTION_RULE = "=" * 60

REFERENCE_PART_PREFIX = "[REFERENCE IMAGE"


class MultimodalPromptBuilder:
    """
    Gemini 이미지 생성용 멀티모달 parts 빌더 (순수 함수 모음)

    반환 형식은 Gemini API parts 리스트:
    ``[{"text": ...}, {"inline_data": {"mime_type": ..., "data": <base64>}}, ...]``
    """

    @staticmethod
    def build_prompt_context(
        scene: SceneScript,
        blueprints: CharacterBlueprints,
        assets: ReferenceAssets,
        story_world: StoryWorld,
        aspect_ratio: AspectRatio,
        continuity_context: str = "",
    ) -> List[Dict]:
        """
        씬 1개의 프레임 생성을 위한 parts 구성.

        Args:
            scene: 8-tier 씬 스크립트
            blueprints: enhanced character blueprints
            assets: 참조 이미지
            story_world: 현재 run의 story world
            aspect_ratio: 출력 화면비
            continuity_context: cross-scene context 블록 (첫 씬은 빈 문자열)

        Returns:
            Gemini API parts 리스트
        """
        # ========================================
        # REFERENCE ORDER (STRICTLY ENFORCED)
        # ========================================
        # The model reads every reference before the instruction text.

        parts = []

        # ──────────────────────────────────────────────────────────
        # STEP 1: Art style
        # ──────────────────────────────────────────────────────────
        if assets.art_style:
            parts.append({"text": (
                "[REFERENCE IMAGE 1: ART STYLE]\n\n"
                "The following image defines the art style of the whole storyboard. "
                "Render characters, environments, objects, lighting and textures in exactly this style. "
                "If it is pixel art, everything is pixel art; if it is anime, everything is anime. "
                "Do not deviate from it in any scene."
            )})
            parts.append(MultimodalPromptBuilder._image_part(assets.art_style))

        # ──────────────────────────────────────────────────────────
        # STEP 2: Background
        # ──────────────────────────────────────────────────────────
        if assets.background:
            parts.append({"text": (
                "[REFERENCE IMAGE 2: BACKGROUND ENVIRONMENT]\n\n"
                "The following image is the base environment of this world. "
                "Take its color palette, lighting mood, architecture, textures and atmosphere "
                "as the foundation for every scene location, so all scenes feel like the same world."
            )})
            parts.append(MultimodalPromptBuilder._image_part(assets.background))

        # ──────────────────────────────────────────────────────────
        # STEP 3: Main character
        # ──────────────────────────────────────────────────────────
        if assets.main_character:
            parts.append({"text": (
                "[REFERENCE IMAGE 3: MAIN CHARACTER - ABSOLUTE PRIORITY]\n\n"
                "This is the MAIN CHARACTER, the protagonist of the entire story.\n"
                "1. Study the face shape, eye color, hair style and color, body type, clothing and distinctive features\n"
                "2. Reproduce this EXACT person as the main subject of the scene\n"
                "3. Only pose, expression and context may change; appearance stays IDENTICAL\n\n"
                "Do not create a different character. Do not ignore this reference."
            )})
            parts.append(MultimodalPromptBuilder._image_part(assets.main_character))
            parts.append({"text": (
                "[CONFIRMATION] You have now seen the MAIN CHARACTER reference above. "
                "This character is the primary subject of the scene. Keep face, hair, body and clothing identical."
            )})

        # ──────────────────────────────────────────────────────────
        # STEP 4: Secondary characters
        # ──────────────────────────────────────────────────────────
        for index, asset in enumerate(assets.secondary_characters):
            parts.append({"text": (
                f"[REFERENCE IMAGE {4 + index}: ADDITIONAL CHARACTER {index + 2}]\n\n"
                "This is a SECONDARY CHARACTER. Whenever they appear, they must look exactly "
                "as in this reference."
            )})
            parts.append(MultimodalPromptBuilder._image_part(asset))

        # ──────────────────────────────────────────────────────────
        # STEP 5: Logo
        # ──────────────────────────────────────────────────────────
        if assets.logo:
            logo_index = 4 + len(assets.secondary_characters)
            parts.append({"text": (
                f"[REFERENCE IMAGE {logo_index}: BRAND LOGO]\n\n"
                "This is the brand logo. Place it naturally in the scene (clothing, screens, "
                "products or background). It should feel organic, not forced."
            )})
            parts.append(MultimodalPromptBuilder._image_part(assets.logo))

        # ──────────────────────────────────────────────────────────
        # STEP 6: Final instruction text (always last)
        # ──────────────────────────────────────────────────────────
        parts.append({"text": MultimodalPromptBuilder._build_instruction_text(
            scene, blueprints, assets, story_world, aspect_ratio, continuity_context
        )})

        MultimodalPromptBuilder.validate_parts(parts)
        return parts

    @staticmethod
    def build_cross_scene_context(
        scene: SceneScript,
        previous_scenes: List[SceneScript],
        story_world: StoryWorld,
        total_scenes: int,
    ) -> str:
        """이전 씬 제목 + 3막 진행 요약. 첫 씬이면 빈 문자열."""
        if not previous_scenes:
            return ""

        previous = ", ".join(f'Scene {s.id}: "{s.title}"' for s in previous_scenes)
        structure = story_world.structure
        arc = " -> ".join(
            f"{act[:100]}..." for act in (structure.act1, structure.act2, structure.act3)
        )
        return "\n".join([
            SECTION_RULE,
            "CROSS-SCENE CONSISTENCY REQUIREMENTS:",
            SECTION_RULE,
            f"- This is Scene {scene.id} of {total_scenes} total scenes",
            f"- Previous scenes: {previous}",
            "- Character must keep EXACT visual consistency with previous scenes",
            "- Color palette evolves naturally but stays coherent",
            "- Lighting follows the temporal progression (time of day, weather)",
            "- Environment feels connected to previous scenes",
            f"- Narrative arc progression: {arc}",
        ])

    @staticmethod
    def build_fallback_parts(parts: List[Dict], scene: SceneScript) -> List[Dict]:
        """
        재시도 소진 후 사용하는 단순화 프롬프트.

        참조 이미지와 그 라벨은 유지하고, 긴 지시문은 씬 라인 + veo prompt 앞 500자로 축소합니다.
        """
        simplified = [
            part for part in parts
            if "inline_data" in part or part.get("text", "").startswith(REFERENCE_PART_PREFIX)
        ]
        simplified.append({"text": (
            f'Generate a professional cinematic image for: "{scene.script_line}". '
            f"{scene.veo_prompt[:500]}"
        )})
        return simplified

    @staticmethod
    def validate_parts(parts: List[Dict]) -> None:
        """parts 형식 검증. 마지막 part는 반드시 텍스트 지시문."""
        if not parts or "text" not in parts[-1]:
            raise ValueError("Prompt parts must end with the instruction text")
        for part in parts:
            if "text" not in part and "inline_data" not in part:
                raise ValueError(f"Invalid prompt part: {sorted(part)}")

    # ========================================================================
    # Internals
    # ========================================================================

    @staticmethod
    def _image_part(asset: Base64Asset) -> Dict:
        return {"inline_data": {"mime_type": asset.mime_type, "data": asset.data}}

    @staticmethod
    def _reference_reminders(assets: ReferenceAssets) -> List[str]:
        reminders = []
        if assets.art_style:
            reminders.append("- ART STYLE: every element must match the art style reference exactly.")
        if assets.background:
            reminders.append("- BACKGROUND: build the environment on the background reference's palette, lighting and atmosphere.")
        if assets.main_character:
            reminders.append(
                "- MAIN CHARACTER (CRITICAL): the protagonist from REFERENCE IMAGE 3 is the primary subject "
                "and must look EXACTLY like the reference. Only pose, expression and context may vary."
            )
        if assets.secondary_characters:
            reminders.append(
                f"- ADDITIONAL CHARACTERS: {len(assets.secondary_characters)} secondary character reference(s) "
                "must be matched exactly."
            )
        if assets.logo:
            reminders.append("- LOGO: integrate the brand logo subtly and naturally.")
        return reminders

    @staticmethod
    def _build_instruction_text(
        scene: SceneScript,
        blueprints: CharacterBlueprints,
        assets: ReferenceAssets,
        story_world: StoryWorld,
        aspect_ratio: AspectRatio,
        continuity_context: str,
    ) -> str:
        reminders = MultimodalPromptBuilder._reference_reminders(assets)
        lines = [
            "[SCENE GENERATION INSTRUCTION]",
            "",
            f'SCENE: "{scene.script_line}"',
        ]
        if continuity_context:
            lines += ["", continuity_context]

        lines += [
            "",
            SECTION_RULE,
            "REFERENCE IMAGES - MANDATORY USAGE",
            SECTION_RULE,
        ]
        lines += reminders or ["No reference images provided - use a photorealistic broadcast style."]

        lines += [
            "",
            SECTION_RULE,
            "8-COMPONENT TIER HIERARCHY:",
            SECTION_RULE,
            f"TIER 1 (Cinematography & Format): {scene.cinematography_format}",
            f"TIER 2 (Subject Identity): {scene.subject_identity}",
        ]
        if assets.main_character:
            lines += [
                "",
                "ENHANCED CHARACTER BLUEPRINT (from reference image analysis):",
                blueprints.main_character_blueprint,
                "The subject identity above MUST match both this blueprint and REFERENCE IMAGE 3.",
                "",
            ]
        for index, blueprint in enumerate(blueprints.additional_character_blueprints):
            lines += [f"SECONDARY CHARACTER {index + 1} BLUEPRINT:", blueprint]
        lines += [
            f"TIER 3 (Scene Context): {scene.scene_context}",
            f"TIER 4 (Action & Camera): {scene.action} | {scene.camera_composition}",
            f"TIER 5 (Style & Ambiance): {scene.style_ambiance}",
            f"TIER 6 (Audio & Dialogue): {scene.audio_dialogue}",
            f"TIER 7 (Technical Negative): {scene.technical_negative}",
            "",
            "COMPREHENSIVE VEO 3.1 PROMPT:",
            scene.veo_prompt,
            "",
            SECTION_RULE,
            "CRITICAL REQUIREMENTS:",
            SECTION_RULE,
            "- STYLE: match the art style reference EXACTLY" if assets.art_style
            else "- STYLE: photorealistic, broadcast-quality imagery (1080p/4K)",
            f"- Aspect Ratio: {aspect_ratio.value} ({aspect_ratio.orientation} format), generate in exactly this ratio",
            "- Professional cinematography with deliberate composition, lighting and depth",
            f"- Emotional tone: {scene.emotion}",
            f"- Respect Story-World visual boundary: {story_world.boundaries.visual}",
            "",
            f"NEGATIVE CONSTRAINTS: {scene.technical_negative}",
            "",
            "FINAL REMINDER: apply ALL reference images provided above and generate the image now.",
        ]
        if assets.main_character:
            lines.append("The main character from REFERENCE IMAGE 3 MUST be the primary subject.")
        return "\n".join(lines)
