"""Pipeline Orchestrator Service: one-click script to video generation.

This module implements the outer orchestration layer. A pipeline run moves
through the named stages of PipelineStage and reports a single weighted
progress figure across all of them.

Key Responsibilities:
- Execute stages in sequence (parsing → storyboard → images → videos)
- Enforce the stage state machine (VALID_TRANSITIONS in shotforge.models)
- Delegate the images stage to BatchOrchestrator
- Animate generated images through the same TaskSubmissionPort (videos stage)
- Record per-stage durations and convert stage failures into an error result
- Optionally snapshot each finished run through SessionRecoveryService

Stage Contract:
    parsing     Only when script_text is given; script parsing itself is
                done by the caller, the stage only reports 0% then 100%
    storyboard  Requires a non-empty storyboard_project (MissingStoryboardError)
    images      One image task per storyboard item; failed items are counted
    videos      Only with auto_generate_video and at least one image;
                failed videos are counted and never stop the stage

Error Handling:
- Any exception escaping a stage body ends the run in the error stage,
  with result.error set and on_error(stage, error) fired
- Cancellation ends the run in the error stage with cancelled=True; partial
  results are returned and on_error is not fired

Usage:
    from shotforge.services.pipeline_orchestrator import PipelineOrchestrator

    pipeline = PipelineOrchestrator(port=generation_queue_service)
    result = await pipeline.start_pipeline(
        PipelineConfig(project_id="proj_1", storyboard_project=project, auto_generate_video=True),
        PipelineCallbacks(on_progress=print),
    )
"""

import asyncio
import math
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from functools import partial
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from shotforge.config import get_item_timeout_seconds, get_pause_poll_interval
from shotforge.exceptions import ConfigurationError, MissingStoryboardError, OrchestratorBusyError
from shotforge.models import PipelineStage, validate_stage_transition
from shotforge.schemas.generation import (
    GeneratedAsset,
    TaskResult,
    TaskType,
    VideoTaskDescriptor,
    new_asset_id,
)
from shotforge.schemas.storyboard import (
    ArtStyle,
    AspectRatio,
    Character,
    ImageSize,
    Location,
    StoryboardItem,
    StoryboardProject,
    VideoMotionConfig,
)
from shotforge.services.batch_generation import (
    BatchCallbacks,
    BatchGenerationConfig,
    BatchOrchestrator,
    BatchProgress,
    percentage_of,
    wait_for_task,
)
from shotforge.services.generation_queue import TaskSubmissionPort
from shotforge.services.session_recovery import SessionRecoveryService
from shotforge.utils.callbacks import fire
from shotforge.utils.logging import get_logger

log = get_logger(__name__)

CANCELLED_ERROR_MESSAGE = "Pipeline cancelled"

# Stages that carry progress weight, in execution order
WEIGHTED_STAGES = (
    PipelineStage.PARSING,
    PipelineStage.STORYBOARD,
    PipelineStage.IMAGES,
    PipelineStage.VIDEOS,
)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


@dataclass(frozen=True)
class StageWeights:
    """Share of the overall progress bar owned by each weighted stage.

    Raises:
        ConfigurationError: If a weight is negative or the weights sum above 100
    """

    parsing: float = 5
    storyboard: float = 10
    images: float = 70
    videos: float = 15

    def __post_init__(self):
        for stage in WEIGHTED_STAGES:
            if self.weight_of(stage) < 0:
                raise ConfigurationError(
                    f"Stage weight for {stage.value} must be >= 0, got {self.weight_of(stage)}"
                )
        if self.total > 100:
            raise ConfigurationError(f"Stage weights must sum to at most 100, got {self.total}")

    @property
    def total(self) -> float:
        return self.parsing + self.storyboard + self.images + self.videos

    def weight_of(self, stage: PipelineStage) -> float:
        return {
            PipelineStage.PARSING: self.parsing,
            PipelineStage.STORYBOARD: self.storyboard,
            PipelineStage.IMAGES: self.images,
            PipelineStage.VIDEOS: self.videos,
        }.get(stage, 0)

    def overall_progress(self, stage: PipelineStage, stage_progress: float) -> int:
        """Map a stage-local percentage onto the overall progress bar.

        Args:
            stage: Current stage
            stage_progress: Percentage within the stage (0-100)

        Returns:
            Rounded overall percentage. COMPLETED always maps to the sum of
            all weights; IDLE and ERROR map to 0.

        Example:
            >>> StageWeights().overall_progress(PipelineStage.IMAGES, 50)
            50
        """
        if stage is PipelineStage.COMPLETED:
            return _round_half_up(self.total)
        if stage not in WEIGHTED_STAGES:
            return 0

        completed_before = sum(self.weight_of(s) for s in WEIGHTED_STAGES[: WEIGHTED_STAGES.index(stage)])
        clamped = min(max(stage_progress, 0), 100)
        return _round_half_up(completed_before + clamped / 100 * self.weight_of(stage))


class PipelineConfig(BaseModel):
    """Input of one pipeline run.

    Attributes:
        project_id: Owning project
        script_text: Raw script; enables the parsing stage
        storyboard_project: Pre-built storyboard (required)
        characters / locations: Libraries used for prompt enrichment
        aspect_ratio / image_size / art_style: Rendering settings
        grid_rows / grid_cols: Multi-view grid layout per render
        auto_generate_video: Enables the videos stage
        video_config: Motion settings for the videos stage
    """

    model_config = ConfigDict(frozen=True)

    project_id: str
    script_text: str | None = None
    storyboard_project: StoryboardProject | None = None
    characters: tuple[Character, ...] = ()
    locations: tuple[Location, ...] = ()
    aspect_ratio: AspectRatio = AspectRatio.WIDE
    image_size: ImageSize = ImageSize.HD
    art_style: ArtStyle = ArtStyle.MODERN_SHONEN
    grid_rows: int = Field(default=1, ge=1)
    grid_cols: int = Field(default=1, ge=1)
    auto_generate_video: bool = False
    video_config: VideoMotionConfig = Field(default_factory=VideoMotionConfig)


@dataclass(frozen=True)
class PipelineProgress:
    stage: PipelineStage
    stage_name: str
    overall_progress: int
    stage_progress: int
    completed_items: int
    total_items: int
    failed_items: int = 0
    current_item: str | None = None


@dataclass
class PipelineCallbacks:
    """Optional event sinks for a pipeline run (all fire-and-forget).

    Attributes:
        on_progress: on_progress(progress: PipelineProgress)
        on_stage_change: on_stage_change(stage: PipelineStage, stage_name: str)
        on_image_generated: on_image_generated(index, asset: GeneratedAsset)
        on_video_generated: on_video_generated(index, asset: GeneratedAsset)
        on_error: on_error(stage: PipelineStage, error: Exception)
    """

    on_progress: Callable[[PipelineProgress], Any] | None = None
    on_stage_change: Callable[[PipelineStage, str], Any] | None = None
    on_image_generated: Callable[[int, GeneratedAsset], Any] | None = None
    on_video_generated: Callable[[int, GeneratedAsset], Any] | None = None
    on_error: Callable[[PipelineStage, Exception], Any] | None = None


@dataclass
class PipelineResult:
    """Outcome of one pipeline run.

    Results accumulated before an error or cancellation are kept.
    stage_durations maps stage values (and "total") to seconds.
    """

    success: bool = False
    storyboard_project: StoryboardProject | None = None
    generated_images: list[GeneratedAsset] = field(default_factory=list)
    generated_videos: list[GeneratedAsset] = field(default_factory=list)
    image_results: list[TaskResult] = field(default_factory=list)
    video_results: list[TaskResult] = field(default_factory=list)
    error: str | None = None
    cancelled: bool = False
    stage_durations: dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class PipelineStatus:
    is_running: bool
    is_paused: bool
    current_stage: PipelineStage
    stage_name: str


class PipelineCancelledError(Exception):
    """Raised internally at a stage boundary once cancel() was requested."""

    pass


class PipelineOrchestrator:
    """Drives one storyboard through images and (optionally) videos.

    Args:
        port: Task submission layer, shared with the owned BatchOrchestrator
        batch: Batch orchestrator for the images stage (built from port if omitted)
        weights: Stage weights for overall progress
        session_recovery: Saves a snapshot after every run when given
        item_timeout: Hard per-video ceiling in seconds (default from config)
        poll_interval: Longest single wait while paused (default from config)
    """

    def __init__(
        self,
        port: TaskSubmissionPort,
        batch: BatchOrchestrator | None = None,
        weights: StageWeights | None = None,
        session_recovery: SessionRecoveryService | None = None,
        item_timeout: float | None = None,
        poll_interval: float | None = None,
    ):
        self.port = port
        self.item_timeout = item_timeout if item_timeout is not None else get_item_timeout_seconds()
        self.poll_interval = poll_interval if poll_interval is not None else get_pause_poll_interval()
        self.batch = batch or BatchOrchestrator(
            port, item_timeout=self.item_timeout, poll_interval=self.poll_interval
        )
        self.weights = weights or StageWeights()
        self.session_recovery = session_recovery
        self.log = get_logger(__name__)

        self._is_running = False
        self._is_paused = False
        self._active = False
        self._cancel_requested = False
        self._port_paused = False
        self._stage = PipelineStage.IDLE
        self._resume_signal = asyncio.Event()
        self._resume_signal.set()

    async def start_pipeline(
        self,
        config: PipelineConfig,
        callbacks: PipelineCallbacks | None = None,
    ) -> PipelineResult:
        """Run every applicable stage.

        Args:
            config: Run input
            callbacks: Optional event sinks

        Returns:
            PipelineResult; stage failures and cancellation are reported in
            it rather than raised

        Raises:
            OrchestratorBusyError: If a run is already in progress on this instance
        """
        if self._is_running or self._active:
            raise OrchestratorBusyError("A pipeline run is already in progress")

        self._active = True
        self._is_running = True
        self._is_paused = False
        self._cancel_requested = False
        self._resume_signal.set()
        self._stage = PipelineStage.IDLE

        callbacks = callbacks or PipelineCallbacks()
        result = PipelineResult()
        started = time.monotonic()

        self.log.info(
            "pipeline_started",
            project_id=config.project_id,
            has_script=bool(config.script_text),
            auto_generate_video=config.auto_generate_video,
        )

        try:
            if config.script_text:
                await self._run_stage(
                    PipelineStage.PARSING, result, callbacks, partial(self._parsing_stage, callbacks)
                )

            await self._run_stage(
                PipelineStage.STORYBOARD,
                result,
                callbacks,
                partial(self._storyboard_stage, config, result, callbacks),
            )
            await self._run_stage(
                PipelineStage.IMAGES,
                result,
                callbacks,
                partial(self._images_stage, config, result, callbacks),
            )

            if config.auto_generate_video and result.generated_images:
                await self._run_stage(
                    PipelineStage.VIDEOS,
                    result,
                    callbacks,
                    partial(self._videos_stage, config, result, callbacks),
                )

            self._raise_if_cancelled()

            self._transition(PipelineStage.COMPLETED)
            processed = len(result.image_results)
            self._report(callbacks, PipelineStage.COMPLETED, 100, processed, processed)
            self._announce(callbacks, PipelineStage.COMPLETED)
            result.success = True

        except PipelineCancelledError:
            failed_stage = self._stage
            self._stage = PipelineStage.ERROR
            result.cancelled = True
            result.error = CANCELLED_ERROR_MESSAGE
            self.log.info(
                "pipeline_cancelled",
                stage=failed_stage.value,
                images=len(result.generated_images),
            )
            self._announce(callbacks, PipelineStage.ERROR)

        except Exception as e:
            failed_stage = self._stage
            self._stage = PipelineStage.ERROR
            result.error = str(e) or type(e).__name__
            self.log.error(
                "pipeline_failed",
                stage=failed_stage.value,
                error_type=type(e).__name__,
                error_message=str(e),
            )
            fire(callbacks.on_error, failed_stage, e, event="on_error")
            self._announce(callbacks, PipelineStage.ERROR)

        finally:
            result.stage_durations["total"] = time.monotonic() - started
            self._is_running = False
            self._is_paused = False
            self._resume_signal.set()
            self._release_port()

            try:
                await self._save_snapshot(config, result)
            finally:
                self._active = False

        self.log.info(
            "pipeline_finished",
            success=result.success,
            cancelled=result.cancelled,
            images=len(result.generated_images),
            videos=len(result.generated_videos),
            total_duration_seconds=round(result.stage_durations["total"], 3),
        )
        return result

    def pause(self) -> None:
        if not self._is_running:
            return
        self._is_paused = True
        self._resume_signal.clear()
        if self.batch.get_status().is_running:
            self.batch.pause()
        else:
            # No batch in flight: videos stage or a stage boundary
            self._port_paused = True
            self.port.pause_all()
        self.log.info("pipeline_paused", stage=self._stage.value)

    def resume(self) -> None:
        if not (self._is_running and self._is_paused):
            return
        self._is_paused = False
        self._resume_signal.set()
        self.batch.resume()
        self._release_port()
        self.log.info("pipeline_resumed", stage=self._stage.value)

    def cancel(self) -> None:
        """Request cancellation; the run stops at the next item or stage boundary."""
        was_running = self._is_running
        self._is_running = False
        self._is_paused = False
        self._resume_signal.set()
        if not was_running:
            return
        self._cancel_requested = True
        self.batch.cancel()
        if self._stage is PipelineStage.VIDEOS:
            self.port.cancel_all()
        self.log.info("pipeline_cancel_requested", stage=self._stage.value)

    def get_status(self) -> PipelineStatus:
        return PipelineStatus(
            is_running=self._is_running,
            is_paused=self._is_paused,
            current_stage=self._stage,
            stage_name=self._stage.display_name,
        )

    def _release_port(self) -> None:
        if self._port_paused:
            self._port_paused = False
            self.port.resume_all()

    def _transition(self, stage: PipelineStage) -> None:
        self._stage = validate_stage_transition(self._stage, stage)

    @staticmethod
    def _announce(callbacks: PipelineCallbacks, stage: PipelineStage) -> None:
        fire(callbacks.on_stage_change, stage, stage.display_name, event="on_stage_change")

    def _raise_if_cancelled(self) -> None:
        if self._cancel_requested:
            raise PipelineCancelledError(CANCELLED_ERROR_MESSAGE)

    async def _wait_while_paused(self) -> None:
        while self._is_paused and self._is_running:
            try:
                await asyncio.wait_for(self._resume_signal.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                continue

    async def _run_stage(
        self,
        stage: PipelineStage,
        result: PipelineResult,
        callbacks: PipelineCallbacks,
        body: Callable[[], Awaitable[None]],
    ) -> None:
        """Enter a stage, run its body and record its duration."""
        await self._wait_while_paused()
        self._raise_if_cancelled()

        self._transition(stage)
        self._announce(callbacks, stage)
        self.log.info("stage_started", stage=stage.value)

        started = time.monotonic()
        try:
            await body()
        finally:
            result.stage_durations[stage.value] = time.monotonic() - started

        self.log.info(
            "stage_completed",
            stage=stage.value,
            duration_seconds=round(result.stage_durations[stage.value], 3),
        )

    def _report(
        self,
        callbacks: PipelineCallbacks,
        stage: PipelineStage,
        stage_progress: int,
        completed_items: int,
        total_items: int,
        failed_items: int = 0,
        current_item: str | None = None,
    ) -> None:
        fire(
            callbacks.on_progress,
            PipelineProgress(
                stage=stage,
                stage_name=stage.display_name,
                overall_progress=self.weights.overall_progress(stage, stage_progress),
                stage_progress=stage_progress,
                completed_items=completed_items,
                total_items=total_items,
                failed_items=failed_items,
                current_item=current_item,
            ),
            event="on_progress",
        )

    async def _parsing_stage(self, callbacks: PipelineCallbacks) -> None:
        self._report(callbacks, PipelineStage.PARSING, 0, 0, 0)
        self._report(callbacks, PipelineStage.PARSING, 100, 0, 0)

    async def _storyboard_stage(
        self, config: PipelineConfig, result: PipelineResult, callbacks: PipelineCallbacks
    ) -> None:
        project = config.storyboard_project
        if project is None:
            raise MissingStoryboardError("Missing storyboard data: generate a storyboard first")

        result.storyboard_project = project
        if not project.items:
            raise MissingStoryboardError("Storyboard is empty")

        total = len(project.items)
        self._report(callbacks, PipelineStage.STORYBOARD, 100, total, total)

    async def _images_stage(
        self, config: PipelineConfig, result: PipelineResult, callbacks: PipelineCallbacks
    ) -> None:
        items = result.storyboard_project.items if result.storyboard_project else ()
        batch_config = BatchGenerationConfig(
            items=items,
            project_id=config.project_id,
            aspect_ratio=config.aspect_ratio,
            image_size=config.image_size,
            art_style=config.art_style,
            grid_rows=config.grid_rows,
            grid_cols=config.grid_cols,
            characters=config.characters,
            locations=config.locations,
        )

        def on_progress(progress: BatchProgress) -> None:
            current = items[progress.current_index].shot_number if progress.current_index < len(items) else None
            self._report(
                callbacks,
                PipelineStage.IMAGES,
                progress.percentage,
                progress.completed,
                progress.total,
                progress.failed,
                current,
            )

        def on_item_complete(index: int, task_result: TaskResult, item: StoryboardItem) -> None:
            asset = self._image_asset(config, task_result, item)
            if asset is None:
                return
            result.generated_images.append(asset)
            fire(callbacks.on_image_generated, index, asset, event="on_image_generated")

        image_results = await self.batch.start(
            batch_config,
            BatchCallbacks(on_progress=on_progress, on_item_complete=on_item_complete),
        )
        result.image_results.extend(image_results)

    async def _videos_stage(
        self, config: PipelineConfig, result: PipelineResult, callbacks: PipelineCallbacks
    ) -> None:
        images = list(result.generated_images)
        total = len(images)
        completed = 0
        failed = 0

        for index, image in enumerate(images):
            await self._wait_while_paused()
            if self._cancel_requested or not self._is_running:
                self.log.info("videos_stopped", processed=index, total=total)
                break

            self._report(
                callbacks,
                PipelineStage.VIDEOS,
                percentage_of(index, total),
                completed,
                total,
                failed,
                image.label or None,
            )

            descriptor = VideoTaskDescriptor(
                source_image=image,
                project_id=config.project_id,
                motion_config=config.video_config,
                art_style=config.art_style,
            )
            try:
                task_id = await self.port.submit(descriptor)
                task_result = await wait_for_task(self.port, task_id, self.item_timeout, TaskType.VIDEO)
            except Exception as e:
                self.log.error(
                    "video_processing_error",
                    index=index,
                    image_id=image.id,
                    error_type=type(e).__name__,
                    error_message=str(e),
                )
                task_result = TaskResult.failure(f"error_{index}", str(e) or type(e).__name__, TaskType.VIDEO)

            result.video_results.append(task_result)
            asset = self._video_asset(image, task_result)
            if asset is None:
                failed += 1
                self.log.warning(
                    "video_failed",
                    index=index,
                    image_id=image.id,
                    error_message=task_result.error_message,
                )
                continue

            completed += 1
            result.generated_videos.append(asset)
            fire(callbacks.on_video_generated, index, asset, event="on_video_generated")

        self._report(
            callbacks,
            PipelineStage.VIDEOS,
            percentage_of(completed + failed, total),
            completed,
            total,
            failed,
        )

    def _image_asset(
        self, config: PipelineConfig, task_result: TaskResult, item: StoryboardItem
    ) -> GeneratedAsset | None:
        if not task_result.success:
            return None
        payload = task_result.payload or {}
        url = payload.get("full_image") or payload.get("url")
        if not url:
            self.log.warning("image_result_missing_url", task_id=task_result.task_id, item_id=item.id)
            return None
        return GeneratedAsset(
            id=new_asset_id("img"),
            project_id=config.project_id,
            url=url,
            prompt=item.ai_prompt or item.description,
            aspect_ratio=config.aspect_ratio,
            node_type="render",
            source_shot_id=item.id,
            label=item.shot_number,
            dialogue=item.dialogue,
            slices=tuple(payload.get("slices") or ()),
        )

    @staticmethod
    def _video_asset(image: GeneratedAsset, task_result: TaskResult) -> GeneratedAsset | None:
        if not task_result.success:
            return None
        video_url = (task_result.payload or {}).get("video_url")
        if not video_url:
            return None
        return GeneratedAsset(
            id=new_asset_id("vid"),
            project_id=image.project_id,
            url=video_url,
            prompt=image.prompt,
            aspect_ratio=image.aspect_ratio,
            node_type="video",
            source_shot_id=image.source_shot_id,
            parent_id=image.id,
            label=image.label,
            dialogue=image.dialogue,
            video_url=video_url,
        )

    async def _save_snapshot(self, config: PipelineConfig, result: PipelineResult) -> None:
        if self.session_recovery is None:
            return
        data = {
            "success": result.success,
            "cancelled": result.cancelled,
            "error": result.error,
            "storyboard_project": (
                result.storyboard_project.model_dump(mode="json") if result.storyboard_project else None
            ),
            "images": [asset.model_dump(mode="json") for asset in result.generated_images],
            "videos": [asset.model_dump(mode="json") for asset in result.generated_videos],
            "stage_durations": dict(result.stage_durations),
        }
        try:
            await self.session_recovery.save_snapshot(config.project_id, data)
        except Exception as e:
            self.log.error(
                "snapshot_save_failed",
                project_id=config.project_id,
                error_type=type(e).__name__,
                error_message=str(e),
            )
