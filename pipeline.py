"""
StoryFrame 통합 파이프라인

스토리 텍스트 → Storyboard 생성 전체 흐름을 관리하는 오케스트레이터.

실행 플로우:
1. StoryWorldSynthesizer - 서사 아키텍처 (character 분석과 동시 시작)
2. CharacterConsistencyAgent - 참조 이미지 분석 + enhanced blueprint
3. ScriptGenerator - 정확히 N개의 8-tier 씬 스크립트
4. ConsistencyValidator - 일관성 휴리스틱 (텔레메트리 전용)
5. FrameSynthesizer - 씬 순차 / 씬 내 A·B 병렬 프레임 생성

Continuation: 기존 storyboard의 story world를 재사용해 씬 1개(프레임 2장)를 추가 생성.
"""

import asyncio
import inspect
import time
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Union

from agents import (
    CharacterConsistencyAgent,
    ConsistencyValidator,
    FrameSynthesizer,
    ScriptGenerator,
    StoryWorldSynthesizer,
    build_placeholder_story_world,
)
from config import GenerationConfig, load_generation_config
from schemas import (
    AspectRatio,
    CharacterBlueprints,
    ContinuationRequest,
    Frame,
    GenerationPhase,
    GenerationProgress,
    GenerationRequest,
    ReferenceAssets,
    Scene,
    SceneScript,
    Storyboard,
    StoryWorld,
)
from utils.constants import ETA_BASELINE_WEIGHT, ETA_PACE_WEIGHT, FRAMES_PER_SCENE
from utils.constants import IMAGES_PROGRESS_SPAN, IMAGES_PROGRESS_START
from utils.error_manager import ErrorManager
from utils.errors import ConfigurationError, GenerationCancelled, GenerationError, LLMCallError
from utils.logger import get_logger
from utils.prompt_builder import MultimodalPromptBuilder
from utils.retry import RetryPolicy

logger = get_logger("pipeline")

ProgressCallback = Callable[[GenerationProgress], Union[None, Awaitable[None]]]


class PipelineState(str, Enum):
    IDLE = "idle"
    STORY_WORLD = "story_world"
    CHARACTER_ANALYSIS = "character_analysis"
    SCRIPT = "script"
    VALIDATE = "validate"
    IMAGES = "images"
    COMPLETE = "complete"
    FAILED = "failed"


# ============================================================================
# Progress / ETA
# ============================================================================

def baseline_estimate(scene_count: int, config: GenerationConfig) -> float:
    """단계별 cost table 기반 사전 예상 소요 시간 (초)"""
    costs = config.cost_table
    return (
        costs.story_world_sec
        + costs.script_sec_per_scene * scene_count
        + costs.frame_sec * scene_count * FRAMES_PER_SCENE
    )


def continuation_baseline(config: GenerationConfig) -> float:
    costs = config.cost_table
    return costs.continuation_script_sec + costs.frame_sec * FRAMES_PER_SCENE


def estimate_remaining(elapsed: float, progress: float, baseline: float) -> float:
    """
    Blend pace-based extrapolation (70%) with the static baseline (30%).

    Never negative.
    """
    if progress <= 0:
        return baseline
    if progress >= 100:
        return 0.0
    pace_total = elapsed / (progress / 100.0)
    blended_total = ETA_PACE_WEIGHT * pace_total + ETA_BASELINE_WEIGHT * baseline
    return max(0.0, blended_total - elapsed)


class ProgressTracker:
    """
    진행상황 추적 헬퍼

    - progress 값은 단조 증가 (작은 값이 들어오면 이전 값 유지)
    - tick_interval 간격으로 elapsed/ETA만 갱신된 이벤트 재전송
    - complete 이후에는 이벤트를 보내지 않음
    """

    def __init__(
        self,
        baseline_sec: float,
        on_progress: Optional[ProgressCallback] = None,
        tick_interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.baseline_sec = baseline_sec
        self.on_progress = on_progress
        self.tick_interval = tick_interval
        self.clock = clock
        self.started_at: Optional[float] = None
        self.last_event: Optional[GenerationProgress] = None
        self._ticker: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def elapsed(self) -> float:
        if self.started_at is None:
            return 0.0
        return max(0.0, self.clock() - self.started_at)

    def start(self):
        self.started_at = self.clock()
        if self.on_progress and self.tick_interval > 0:
            self._ticker = asyncio.ensure_future(self._tick())

    async def update(
        self,
        phase: GenerationPhase,
        progress: float,
        message: str,
        current_scene: Optional[int] = None,
        total_scenes: Optional[int] = None,
        current_frame: Optional[int] = None,
    ):
        """진행상황 업데이트"""
        if self._closed:
            return
        floor = self.last_event.progress if self.last_event else 0.0
        progress = max(floor, min(100.0, float(progress)))
        elapsed = self.elapsed

        self.last_event = GenerationProgress(
            phase=phase,
            progress=round(progress, 2),
            message=message,
            current_scene=current_scene,
            total_scenes=total_scenes,
            current_frame=current_frame,
            estimated_time_remaining=round(estimate_remaining(elapsed, progress, self.baseline_sec), 1),
            elapsed_time=round(elapsed, 1),
        )
        logger.debug(f"[Progress] {phase.value} {progress:.0f}% {message}")
        await self._emit(self.last_event)

    async def complete(self, message: str):
        await self._stop_ticker()
        await self.update(GenerationPhase.COMPLETE, 100, message)
        self._closed = True

    async def stop(self):
        self._closed = True
        await self._stop_ticker()

    async def _stop_ticker(self):
        if self._ticker is not None:
            self._ticker.cancel()
            try:
                await self._ticker
            except asyncio.CancelledError:
                pass
            self._ticker = None

    async def _tick(self):
        while True:
            await asyncio.sleep(self.tick_interval)
            if self._closed or self.last_event is None:
                continue
            elapsed = self.elapsed
            await self._emit(self.last_event.model_copy(update={
                "elapsed_time": round(elapsed, 1),
                "estimated_time_remaining": round(
                    estimate_remaining(elapsed, self.last_event.progress, self.baseline_sec), 1
                ),
            }))

    async def _emit(self, event: GenerationProgress):
        if not self.on_progress:
            return
        try:
            result = self.on_progress(event)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            # progress 채널은 단방향 알림. 소비자 오류로 생성이 중단되지 않음
            logger.warning(f"[Progress] callback failed: {e}")


# ============================================================================
# Single run
# ============================================================================

class GenerationRun:
    """
    생성 요청 1건의 실행 상태.

    요청마다 새로 만들어지며 (캐릭터 프로필 캐시 포함) 요청 간에 공유되지 않습니다.
    """

    def __init__(
        self,
        llm,
        config: GenerationConfig,
        tracker: ProgressTracker,
        cancel_event: Optional[asyncio.Event] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.llm = llm
        self.config = config
        self.tracker = tracker
        self.cancel_event = cancel_event
        self.sleep = sleep
        self.state = PipelineState.IDLE

        self.story_world_agent = StoryWorldSynthesizer(llm, config)
        self.character_agent = CharacterConsistencyAgent(llm, config)
        self.script_generator = ScriptGenerator(llm, config)
        self.validator = ConsistencyValidator()
        self.frame_synthesizer = FrameSynthesizer(
            llm,
            config,
            retry_policy=RetryPolicy(
                max_attempts=config.retry.frame_max_attempts,
                base_delay=config.retry.base_delay_sec,
                give_up_on=(ConfigurationError,),
                sleep=sleep,
                name="frame",
            ),
        )

    def checkpoint(self):
        """다음 LLM 호출 전 취소 여부 확인"""
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise GenerationCancelled(f"Generation cancelled during {self.state.value}")

    def _set_state(self, state: PipelineState):
        logger.info(f"[Pipeline] {self.state.value} -> {state.value}")
        self.state = state

    # ========================================================================
    # Fresh storyboard
    # ========================================================================

    async def generate(self, request: GenerationRequest) -> Storyboard:
        assets = request.assets
        scene_count = request.scene_count
        self.tracker.start()

        try:
            # ──────────────────────────────────────────────────────────
            # STEP 1: Story World (+ character analysis in parallel)
            # ──────────────────────────────────────────────────────────
            self._set_state(PipelineState.STORY_WORLD)
            await self.tracker.update(GenerationPhase.STORY_WORLD, 5, "Building story architecture...")

            analysis_task = None
            if assets.main_character or assets.secondary_characters:
                analysis_task = asyncio.ensure_future(self.character_agent.analyze_references(
                    assets.main_character, assets.secondary_characters
                ))

            try:
                story_world = await self._synthesize_story_world(request.story)
            except BaseException:
                if analysis_task is not None:
                    analysis_task.cancel()
                raise
            await self.tracker.update(GenerationPhase.STORY_WORLD, 15, "Story architecture complete")

            # ──────────────────────────────────────────────────────────
            # STEP 2: Character consistency
            # ──────────────────────────────────────────────────────────
            self._set_state(PipelineState.CHARACTER_ANALYSIS)
            await self.tracker.update(GenerationPhase.STORY_WORLD, 18, "Analyzing character references...")
            if analysis_task is not None:
                main_profile, secondary_profiles = await analysis_task
                blueprints = self.character_agent.compose_blueprints(
                    story_world.character_blueprint, main_profile, secondary_profiles
                )
            else:
                blueprints = CharacterBlueprints(main_character_blueprint=story_world.character_blueprint)
            await self.tracker.update(GenerationPhase.STORY_WORLD, 20, "Character consistency analysis complete")

            # ──────────────────────────────────────────────────────────
            # STEP 3: Script
            # ──────────────────────────────────────────────────────────
            self._set_state(PipelineState.SCRIPT)
            await self.tracker.update(
                GenerationPhase.SCRIPT, 25, f"Writing {scene_count} scene(s)...", total_scenes=scene_count
            )
            self.checkpoint()
            scripts = await self.script_generator.generate(
                story_world,
                blueprints.main_character_blueprint,
                blueprints.additional_character_blueprints,
                request.aspect_ratio,
                scene_count,
                assets.flags,
            )
            await self.tracker.update(
                GenerationPhase.SCRIPT, 30, f"{len(scripts)} scene(s) written", total_scenes=len(scripts)
            )

            # ──────────────────────────────────────────────────────────
            # STEP 4: Consistency heuristics (never blocks)
            # ──────────────────────────────────────────────────────────
            self._validate(scripts, blueprints)

            # ──────────────────────────────────────────────────────────
            # STEP 5: Frames (sequential across scenes)
            # ──────────────────────────────────────────────────────────
            self._set_state(PipelineState.IMAGES)
            scenes = await self._synthesize_scenes(
                scripts, assets, blueprints, story_world, request.aspect_ratio
            )

            storyboard = Storyboard(
                scenes=scenes,
                story_world=story_world,
                aspect_ratio=request.aspect_ratio,
            )
            self._set_state(PipelineState.COMPLETE)
            await self.tracker.complete("Storyboard complete")
            return storyboard

        except BaseException as e:
            await self._fail(e)
            raise

    # ========================================================================
    # Continuation
    # ========================================================================

    async def continue_storyboard(self, request: ContinuationRequest) -> Scene:
        storyboard = request.storyboard
        assets = request.assets
        aspect_ratio = request.aspect_ratio or storyboard.aspect_ratio
        self.tracker.start()

        try:
            last_scene = storyboard.last_scene
            if last_scene is None:
                raise GenerationError("Existing storyboard must contain at least one scene")

            self._set_state(PipelineState.STORY_WORLD)
            await self.tracker.update(GenerationPhase.STORY_WORLD, 5, "Preparing continuation...")
            story_world = storyboard.story_world
            if story_world is None:
                logger.warning("[Pipeline] Storyboard has no story world, deriving one from the last scene")
                story_world = build_placeholder_story_world(last_scene)

            self._set_state(PipelineState.CHARACTER_ANALYSIS)
            await self.tracker.update(GenerationPhase.STORY_WORLD, 10, "Analyzing character references...")
            self.checkpoint()
            blueprints = await self.character_agent.enhance_blueprint(
                story_world.character_blueprint,
                assets.main_character,
                assets.secondary_characters,
            )

            self._set_state(PipelineState.SCRIPT)
            await self.tracker.update(
                GenerationPhase.SCRIPT, 20, "Writing continuation scene...", current_scene=1, total_scenes=1
            )
            self.checkpoint()
            script = await self.script_generator.generate_continuation(
                story_world,
                last_scene,
                len(storyboard.scenes),
                blueprints.main_character_blueprint,
                aspect_ratio,
                assets.flags,
                request.custom_instruction,
            )

            self._validate([script], blueprints)

            self._set_state(PipelineState.IMAGES)
            await self.tracker.update(
                GenerationPhase.IMAGES, 40, f"Generating frames for scene {script.id}...",
                current_scene=1, total_scenes=1, current_frame=1,
            )
            continuity = MultimodalPromptBuilder.build_cross_scene_context(
                script, storyboard.scenes, story_world, len(storyboard.scenes) + 1
            )
            completed = []

            async def on_frame(frame: Frame):
                completed.append(frame)
                await self.tracker.update(
                    GenerationPhase.IMAGES, 50 if len(completed) == 1 else 75,
                    f"Frame {frame.id} ready", current_scene=1, total_scenes=1,
                    current_frame=len(completed),
                )

            self.checkpoint()
            frames = await self.frame_synthesizer.synthesize_scene_frames(
                script, assets, blueprints, story_world, aspect_ratio,
                continuity_context=continuity, checkpoint=self.checkpoint, on_frame=on_frame,
            )
            scene = Scene.from_script(script, frames)
            self._report_scene_failure(scene)

            self._set_state(PipelineState.COMPLETE)
            await self.tracker.complete(f"Scene {scene.id} added")
            return scene

        except BaseException as e:
            await self._fail(e)
            raise

    # ========================================================================
    # Internals
    # ========================================================================

    async def _synthesize_story_world(self, story_text: str) -> StoryWorld:
        policy = RetryPolicy(
            max_attempts=self.config.retry.story_world_max_attempts,
            base_delay=self.config.retry.base_delay_sec,
            retry_on=(LLMCallError,),
            sleep=self.sleep,
            name="story-world",
        )
        return await policy.run(
            lambda: self.story_world_agent.synthesize(story_text),
            checkpoint=self.checkpoint,
        )

    def _validate(self, scripts: List[SceneScript], blueprints: CharacterBlueprints):
        self._set_state(PipelineState.VALIDATE)
        report = self.validator.validate(
            scripts,
            blueprints.main_character_blueprint,
            blueprints.additional_character_blueprints,
        )
        if not report.is_valid:
            self.validator.report(report)

    async def _synthesize_scenes(
        self,
        scripts: List[SceneScript],
        assets: ReferenceAssets,
        blueprints: CharacterBlueprints,
        story_world: StoryWorld,
        aspect_ratio: AspectRatio,
    ) -> List[Scene]:
        total = len(scripts)
        step = IMAGES_PROGRESS_SPAN / total
        scenes = []

        for index, script in enumerate(scripts):
            self.checkpoint()
            base = IMAGES_PROGRESS_START + step * index
            await self.tracker.update(
                GenerationPhase.IMAGES, base, f"Generating frames for scene {index + 1}/{total}...",
                current_scene=index + 1, total_scenes=total, current_frame=index * FRAMES_PER_SCENE + 1,
            )

            continuity = MultimodalPromptBuilder.build_cross_scene_context(
                script, scripts[:index], story_world, total
            )
            completed = []

            async def on_frame(frame: Frame, base=base, index=index, completed=completed):
                completed.append(frame)
                offset = 0.3 if len(completed) == 1 else 0.7
                await self.tracker.update(
                    GenerationPhase.IMAGES, base + step * offset, f"Frame {frame.id} ready",
                    current_scene=index + 1, total_scenes=total,
                    current_frame=index * FRAMES_PER_SCENE + len(completed),
                )

            frames = await self.frame_synthesizer.synthesize_scene_frames(
                script, assets, blueprints, story_world, aspect_ratio,
                continuity_context=continuity, checkpoint=self.checkpoint, on_frame=on_frame,
            )
            scene = Scene.from_script(script, frames)
            self._report_scene_failure(scene)
            scenes.append(scene)

            await self.tracker.update(
                GenerationPhase.IMAGES, IMAGES_PROGRESS_START + step * (index + 1),
                f"Scene {index + 1}/{total} complete", current_scene=index + 1, total_scenes=total,
            )

        return scenes

    def _report_scene_failure(self, scene: Scene):
        if all(frame.is_error_sentinel for frame in scene.frames):
            ErrorManager.log_error(
                "GenerationOrchestrator",
                f"Scene {scene.id}: both frames failed, scene kept with error images",
                severity="error",
            )

    async def _fail(self, error: BaseException):
        self._set_state(PipelineState.FAILED)
        await self.tracker.stop()
        if isinstance(error, GenerationCancelled) or isinstance(error, asyncio.CancelledError):
            logger.warning(f"[Pipeline] Run cancelled: {error}")
            return
        ErrorManager.log_error(
            "GenerationOrchestrator",
            f"Run failed during {self._failed_phase()}",
            f"{type(error).__name__}: {error}",
            severity="critical",
        )

    def _failed_phase(self) -> str:
        return self.tracker.last_event.phase.value if self.tracker.last_event else "startup"


# ============================================================================
# Pipeline
# ============================================================================

class StoryboardPipeline:
    """
    StoryFrame 통합 파이프라인

    설정과 LLM 클라이언트를 생성자에서 주입받습니다. 각 요청은 독립된 GenerationRun으로 실행되므로
    하나의 파이프라인 인스턴스를 여러 동시 요청에서 공유해도 됩니다.
    """

    def __init__(
        self,
        llm=None,
        config: Optional[GenerationConfig] = None,
        api_key: Optional[str] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        """
        Initialize pipeline.

        Args:
            llm: generate_structured / generate_image 제공 클라이언트 (기본: GeminiClient)
            config: 생성 설정 (기본: config/generation.yaml)
            api_key: Gemini API key (llm 미지정 시 사용)
            sleep: 재시도 대기 함수 (테스트용)

        Raises:
            ConfigurationError: llm 미지정 + API key 없음
        """
        self.config = config or load_generation_config()
        if llm is None:
            from utils.gemini_client import GeminiClient
            llm = GeminiClient(api_key=api_key, config=self.config)
        self.llm = llm
        self.sleep = sleep

    def _new_run(
        self,
        baseline_sec: float,
        on_progress: Optional[ProgressCallback],
        cancel_event: Optional[asyncio.Event],
    ) -> GenerationRun:
        tracker = ProgressTracker(
            baseline_sec, on_progress=on_progress, tick_interval=self.config.progress_tick_sec
        )
        return GenerationRun(self.llm, self.config, tracker, cancel_event=cancel_event, sleep=self.sleep)

    async def generate(
        self,
        request: GenerationRequest,
        on_progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Storyboard:
        """
        Generate a complete storyboard.

        Args:
            request: 검증된 생성 요청
            on_progress: GenerationProgress 콜백 (sync/async 모두 가능)
            cancel_event: set 되면 다음 LLM 호출 전에 GenerationCancelled

        Returns:
            Storyboard
        """
        logger.info(
            f"[Pipeline] New storyboard: {request.scene_count} scene(s), {request.aspect_ratio.value}"
        )
        run = self._new_run(baseline_estimate(request.scene_count, self.config), on_progress, cancel_event)
        return await run.generate(request)

    async def continue_storyboard(
        self,
        request: ContinuationRequest,
        on_progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Scene:
        """
        기존 storyboard에 이어지는 씬 1개 생성.

        호출자의 storyboard는 수정하지 않습니다. 반환된 씬을 붙이는 것은 호출자 책임입니다.
        """
        run = self._new_run(continuation_baseline(self.config), on_progress, cancel_event)
        return await run.continue_storyboard(request)


def run_pipeline(
    story: str,
    frame_count: int = 4,
    aspect_ratio: str = "16:9",
    assets: Optional[ReferenceAssets] = None,
    api_key: Optional[str] = None,
    on_progress: Optional[ProgressCallback] = None,
) -> Storyboard:
    """
    파이프라인 실행 헬퍼 함수 (동기 호출용)

    Args:
        story: 스토리 텍스트
        frame_count: 2 / 4 / 6 / 8
        aspect_ratio: "16:9" 또는 "9:16"
        assets: 참조 이미지
        api_key: Gemini API key
        on_progress: 진행률 콜백

    Returns:
        Storyboard
    """
    request = GenerationRequest(
        story=story,
        frame_count=frame_count,
        aspect_ratio=AspectRatio(aspect_ratio),
        assets=assets or ReferenceAssets(),
    )
    pipeline = StoryboardPipeline(api_key=api_key)
    return asyncio.run(pipeline.generate(request, on_progress=on_progress))
