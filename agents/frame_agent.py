"""
Frame Agent: 씬 1개당 A/B 두 장의 프레임 이미지 생성.

- 참조 이미지 순서가 고정된 멀티모달 프롬프트 (MultimodalPromptBuilder)
- 프레임당 최대 3회 시도 + 지수 backoff (1s / 2s / 4s)
- 재시도 소진 시 단순화 프롬프트로 fallback 1회
- fallback까지 실패하면 FrameGenerationError → 씬 단위에서 error sentinel 이미지로 대체
- A/B 두 프레임은 동시에 생성
"""

import asyncio
from typing import Awaitable, Callable, List, Optional

from config import GenerationConfig
from schemas import (
    AspectRatio,
    CharacterBlueprints,
    Frame,
    FrameMetadata,
    FrameVariant,
    ReferenceAssets,
    SceneScript,
    StoryWorld,
)
from utils.constants import DEFAULT_CAMERA, DEFAULT_PALETTE
from utils.error_manager import ErrorManager
from utils.errors import ConfigurationError, FrameGenerationError, LLMCallError
from utils.image_utils import (
    is_error_sentinel,
    render_error_sentinel,
    to_data_url,
    validate_image_bytes,
)
from utils.logger import get_logger
from utils.prompt_builder import MultimodalPromptBuilder
from utils.retry import RetryPolicy

logger = get_logger("frame")


def build_frame_metadata(scene: SceneScript) -> FrameMetadata:
    return FrameMetadata(
        composition=f"Professional {scene.emotion} composition",
        palette=list(DEFAULT_PALETTE),
        lighting=f"Cinematic lighting for {scene.emotion} tone",
        camera=scene.camera_composition or DEFAULT_CAMERA,
    )


class FrameSynthesizer:
    """
    프레임 이미지 합성기.
    """

    def __init__(
        self,
        llm,
        config: Optional[GenerationConfig] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        """
        Initialize Frame Synthesizer.

        Args:
            llm: generate_image(parts, aspect_ratio, model) 를 제공하는 클라이언트
            config: 생성 설정 (이미지 모델, 재시도, 최소 이미지 크기)
            retry_policy: 재시도 정책 (기본: config.retry 기반)
        """
        self.llm = llm
        self.config = config or GenerationConfig()
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=self.config.retry.frame_max_attempts,
            base_delay=self.config.retry.base_delay_sec,
            give_up_on=(ConfigurationError,),
            name="frame",
        )

    async def synthesize_frame(
        self,
        scene: SceneScript,
        parts: List[dict],
        aspect_ratio: AspectRatio,
        frame_id: Optional[str] = None,
        checkpoint: Optional[Callable[[], None]] = None,
    ) -> str:
        """
        Generate one frame image with retry and fallback.

        Args:
            scene: 대상 씬 (fallback 프롬프트용)
            parts: build_prompt_context() 결과
            aspect_ratio: 출력 화면비
            frame_id: 로그 라벨 (예: "3A")
            checkpoint: 각 호출 직전 취소 확인

        Returns:
            data URL

        Raises:
            FrameGenerationError: 모든 시도 + fallback 실패
        """
        frame_id = frame_id or str(scene.id)

        async def primary():
            return await self._generate_checked(parts, aspect_ratio)

        async def fallback():
            logger.warning(f"[Frame] {frame_id}: using simplified fallback prompt")
            simplified = MultimodalPromptBuilder.build_fallback_parts(parts, scene)
            return await self._generate_checked(simplified, aspect_ratio)

        try:
            return await self.retry_policy.run(primary, fallback=fallback, checkpoint=checkpoint)
        except self.retry_policy.give_up_on:
            raise
        except Exception as e:
            raise FrameGenerationError(
                frame_id, str(e), attempts=self.retry_policy.max_attempts + 1
            ) from e

    async def synthesize_scene_frames(
        self,
        scene: SceneScript,
        assets: ReferenceAssets,
        blueprints: CharacterBlueprints,
        story_world: StoryWorld,
        aspect_ratio: AspectRatio,
        continuity_context: str = "",
        checkpoint: Optional[Callable[[], None]] = None,
        on_frame: Optional[Callable[[Frame], Awaitable[None]]] = None,
    ) -> List[Frame]:
        """
        A/B 프레임 동시 생성. 실패한 프레임은 error sentinel로 대체되므로 항상 2개를 반환합니다.

        Args:
            on_frame: 프레임 1장이 끝날 때마다 호출 (진행률 갱신용)
        """
        parts = MultimodalPromptBuilder.build_prompt_context(
            scene, blueprints, assets, story_world, aspect_ratio, continuity_context
        )

        tasks = [
            asyncio.ensure_future(
                self._build_frame(scene, parts, aspect_ratio, variant, checkpoint, on_frame)
            )
            for variant in (FrameVariant.A, FrameVariant.B)
        ]
        try:
            frames = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            raise

        return list(frames)

    # ========================================================================
    # Internals
    # ========================================================================

    async def _build_frame(
        self,
        scene: SceneScript,
        parts: List[dict],
        aspect_ratio: AspectRatio,
        variant: FrameVariant,
        checkpoint: Optional[Callable[[], None]],
        on_frame: Optional[Callable[[Frame], Awaitable[None]]] = None,
    ) -> Frame:
        frame_id = f"{scene.id}{variant.value}"
        try:
            image_url = await self.synthesize_frame(
                scene, parts, aspect_ratio, frame_id=frame_id, checkpoint=checkpoint
            )
            logger.info(f"[Frame] {frame_id} generated")
        except FrameGenerationError as e:
            ErrorManager.log_error(
                "FrameSynthesizer",
                f"Frame {frame_id} failed after retries and fallback, substituting error image",
                str(e.__cause__ or e),
                severity="error",
            )
            image_url = render_error_sentinel(frame_id, str(e.__cause__ or e), aspect_ratio.value)

        frame = Frame(
            id=frame_id,
            variant=variant,
            image_url=image_url,
            metadata=build_frame_metadata(scene),
        )
        if on_frame:
            await on_frame(frame)
        return frame

    async def _generate_checked(self, parts: List[dict], aspect_ratio: AspectRatio) -> str:
        image = await self.llm.generate_image(
            parts, aspect_ratio.value, model=self.config.models.image
        )
        try:
            validate_image_bytes(image.data, self.config.min_image_bytes)
        except ValueError as e:
            raise LLMCallError(f"Rejected image: {e}", model=self.config.models.image)

        image_url = to_data_url(image.mime_type, image.data)
        if is_error_sentinel(image_url):
            raise LLMCallError("Model returned an error placeholder", model=self.config.models.image)
        return image_url
