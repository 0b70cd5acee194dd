"""
Consistency Validator: subjectIdentity 텍스트 기반 일관성 휴리스틱.

- 캐릭터 참조 토큰 ("character" / "protagonist" / "main") 포함 여부
- 명시적 일관성 마커 ("exact" / "verbatim" / "identical" / "same") 포함 여부

파이프라인을 막거나 씬을 수정하지 않습니다. 결과는 텔레메트리 용도입니다.
"""

from typing import List, Optional

from schemas import SceneScript, ValidationReport
from utils.constants import CHARACTER_REFERENCE_TOKENS, CONSISTENCY_MARKERS
from utils.error_manager import ErrorManager
from utils.errors import ConsistencyWarning


class ConsistencyValidator:
    """
    씬 스크립트 일관성 검증기 (순수 휴리스틱)
    """

    def __init__(
        self,
        reference_tokens=CHARACTER_REFERENCE_TOKENS,
        consistency_markers=CONSISTENCY_MARKERS,
    ):
        self.reference_tokens = tuple(t.lower() for t in reference_tokens)
        self.consistency_markers = tuple(m.lower() for m in consistency_markers)

    def validate(
        self,
        scenes: List[SceneScript],
        main_blueprint: Optional[str],
        secondary_blueprints: Optional[List[str]] = None,
    ) -> ValidationReport:
        """
        Validate subject identity text of each scene.

        Args:
            scenes: 검증할 씬 스크립트
            main_blueprint: enhanced main blueprint (없으면 마커 검사 생략)
            secondary_blueprints: secondary blueprints

        Returns:
            ValidationReport(is_valid, issues)
        """
        issues = []

        for scene in scenes:
            identity = scene.subject_identity.lower()

            if not any(token in identity for token in self.reference_tokens):
                issues.append(
                    f"Scene {scene.id}: subjectIdentity may not reference the main character properly"
                )

            if main_blueprint and not any(marker in identity for marker in self.consistency_markers):
                issues.append(
                    f"Scene {scene.id}: Missing explicit consistency markers in subjectIdentity"
                )

        for index, blueprint in enumerate(secondary_blueprints or []):
            if not blueprint.strip():
                issues.append(f"Secondary character {index + 1}: empty blueprint")

        return ValidationReport(is_valid=not issues, issues=issues)

    def report(self, result: ValidationReport) -> None:
        """경고를 ConsistencyWarning으로 기록 (예외는 던지지 않음)."""
        for issue in result.issues:
            warning = ConsistencyWarning(issue)
            ErrorManager.log_error(
                "ConsistencyValidator", warning.message, severity="warning"
            )
