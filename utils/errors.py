"""
Storyboard 생성 파이프라인 에러 분류.

- ConfigurationError: 자격증명/설정 누락 (즉시 실패, 재시도 없음)
- LLMCallError: 네트워크/타임아웃 등 호출 실패 (재시도 대상)
- SchemaParseError: 모델 출력이 스키마와 불일치 (story-world/script 단계 치명적)
- CardinalityMismatch: 씬 개수 불일치 (로컬 복구, 로그만)
- FrameGenerationError: 재시도 + fallback 후에도 이미지 실패 (sentinel로 대체)
- ConsistencyWarning: 일관성 휴리스틱 경고 (로그만)
"""

from typing import Optional


class GenerationError(Exception):
    """Base error for every failure surfaced by the storyboard pipeline."""

    category = "generation"
    remediation = "Generation failed. Please try again in a moment."

    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def user_message(self) -> str:
        return f"{self.message} ({self.remediation})"


class ConfigurationError(GenerationError):
    category = "configuration"
    remediation = "Check your API key and configuration, then restart."


class LLMCallError(GenerationError):
    """Transport-level failure of a model call (network, quota, timeout)."""

    category = "generation"

    def __init__(self, message: str, model: Optional[str] = None, details: Optional[str] = None):
        super().__init__(message, details)
        self.model = model


class SchemaParseError(GenerationError):
    category = "malformed_output"
    remediation = "The model returned malformed output. Retry, and report it if it keeps happening."

    def __init__(self, message: str, raw: Optional[str] = None):
        super().__init__(message, details=(raw or "")[:500] or None)
        self.raw = raw


class CardinalityMismatch(GenerationError):
    category = "warning"
    remediation = "Scene count was adjusted automatically."

    def __init__(self, requested: int, received: int):
        super().__init__(f"Requested {requested} scenes, model returned {received}")
        self.requested = requested
        self.received = received


class FrameGenerationError(GenerationError):
    remediation = "The frame was replaced with an error image. Regenerate it to try again."

    def __init__(self, frame_id: str, message: str, attempts: int = 0):
        super().__init__(f"Frame {frame_id}: {message}")
        self.frame_id = frame_id
        self.attempts = attempts


class ConsistencyWarning(GenerationError):
    category = "warning"
    remediation = "Character consistency may be reduced for some scenes."


class GenerationCancelled(GenerationError):
    category = "cancelled"
    remediation = "Generation was cancelled."


def describe_error(exc: BaseException) -> str:
    """Return a user-facing message that tells which remediation applies."""
    if isinstance(exc, ConfigurationError):
        return f"Missing configuration: {exc.user_message()}"
    if isinstance(exc, SchemaParseError):
        return f"Malformed model output: {exc.user_message()}"
    if isinstance(exc, GenerationCancelled):
        return exc.user_message()
    if isinstance(exc, GenerationError):
        return f"Generation failed: {exc.user_message()}"
    return f"Generation failed: {exc} ({GenerationError.remediation})"
