"""Batch Generation Service: drives storyboard shots through image generation.

This module implements BatchOrchestrator, which submits one generation task
per storyboard item through a TaskSubmissionPort and collects exactly one
TaskResult per processed item.

Key Responsibilities:
- Process items sequentially, one task in flight per orchestrator
- Enrich each prompt with location/character context and reference images
- Enforce a hard per-item ceiling independent of the submission layer's retries
- Tolerate per-item failures: one item's failure never stops the batch
- Expose pause/resume/cancel and progress snapshots

Run-State Guarantees:
- At most one run per orchestrator instance (OrchestratorBusyError otherwise)
- Results are index-aligned with the input items
- Cancellation is cooperative and observed at item boundaries; items never
  reached have no result entry
- Running/paused flags are always cleared when start() returns or raises

Usage:
    from shotforge.services.batch_generation import BatchOrchestrator

    orchestrator = BatchOrchestrator(port=generation_queue_service)
    results = await orchestrator.start(
        BatchGenerationConfig(items=storyboard.items, project_id="proj_1"),
        BatchCallbacks(on_progress=render_progress_bar),
    )
"""

import asyncio
import enum
import time
from collections.abc import Callable
from dataclasses import dataclass, replace
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from shotforge.config import get_item_timeout_seconds, get_pause_poll_interval
from shotforge.exceptions import GenerationError, OrchestratorBusyError
from shotforge.schemas.generation import ImageTaskDescriptor, TaskResult, TaskType
from shotforge.schemas.storyboard import (
    ArtStyle,
    AspectRatio,
    Character,
    ImageSize,
    Location,
    StoryboardItem,
)
from shotforge.services.generation_queue import TaskSubmissionPort
from shotforge.services.prompt_builder import build_enhanced_prompt, collect_reference_images
from shotforge.utils.callbacks import fire
from shotforge.utils.logging import get_logger

log = get_logger(__name__)

TIMEOUT_ERROR_MESSAGE = "Generation timed out"


class ItemStatus(str, enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class BatchGenerationConfig(BaseModel):
    """Flattened configuration for one batch run.

    Attributes:
        items: Storyboard shots, processed in order
        project_id: Owning project
        aspect_ratio / image_size / art_style: Rendering settings
        grid_rows / grid_cols: Multi-view grid layout per render
        characters / locations: Libraries used for prompt enrichment
    """

    model_config = ConfigDict(frozen=True)

    items: tuple[StoryboardItem, ...]
    project_id: str
    aspect_ratio: AspectRatio = AspectRatio.WIDE
    image_size: ImageSize = ImageSize.HD
    art_style: ArtStyle = ArtStyle.MODERN_SHONEN
    grid_rows: int = Field(default=1, ge=1)
    grid_cols: int = Field(default=1, ge=1)
    characters: tuple[Character, ...] = ()
    locations: tuple[Location, ...] = ()


@dataclass
class BatchProgress:
    """Progress of a batch run.

    Mutated in place by the orchestrator; observers only ever receive
    snapshot() copies.
    """

    total: int
    completed: int = 0
    failed: int = 0
    current_index: int = 0
    current_status: ItemStatus = ItemStatus.PENDING
    percentage: int = 0

    def snapshot(self) -> "BatchProgress":
        return replace(self)


@dataclass
class BatchCallbacks:
    """Optional event sinks for a batch run (all fire-and-forget).

    Attributes:
        on_progress: on_progress(snapshot: BatchProgress)
        on_item_complete: on_item_complete(index, result: TaskResult, item)
        on_batch_complete: on_batch_complete(results: list[TaskResult])
        on_error: on_error(index, error: Exception, item)
    """

    on_progress: Callable[[BatchProgress], Any] | None = None
    on_item_complete: Callable[[int, TaskResult, StoryboardItem], Any] | None = None
    on_batch_complete: Callable[[list[TaskResult]], Any] | None = None
    on_error: Callable[[int, Exception, StoryboardItem], Any] | None = None


@dataclass(frozen=True)
class BatchStatus:
    is_running: bool
    is_paused: bool
    batch_id: str | None


def percentage_of(done: int, total: int) -> int:
    """Round done/total to a whole percentage, halves rounding up."""
    if total <= 0:
        return 100
    return (done * 100 + total // 2) // total


async def wait_for_task(
    port: TaskSubmissionPort,
    task_id: str,
    timeout: float,
    task_type: TaskType = TaskType.IMAGE,
) -> TaskResult:
    """Await the result of a submitted task, bounded by a hard timeout.

    A result that does not arrive in time becomes a failed TaskResult with
    TIMEOUT_ERROR_MESSAGE; no exception is raised for the timeout.

    Args:
        port: Submission layer the task was submitted to
        task_id: Id returned by port.submit()
        timeout: Ceiling in seconds
        task_type: Type recorded on a synthesized timeout result

    Returns:
        The task's TaskResult
    """
    loop = asyncio.get_running_loop()
    arrived: asyncio.Future[TaskResult] = loop.create_future()

    def on_result(result: TaskResult) -> None:
        if not arrived.done():
            arrived.set_result(result)

    unsubscribe = port.subscribe(task_id, on_result)
    try:
        return await asyncio.wait_for(arrived, timeout=timeout)
    except asyncio.TimeoutError:
        log.warning("task_result_timeout", task_id=task_id, timeout_seconds=timeout)
        return TaskResult.failure(task_id, TIMEOUT_ERROR_MESSAGE, task_type)
    finally:
        unsubscribe()


class BatchOrchestrator:
    """Sequentially generates one image per storyboard item.

    Construct one instance per caller/session. The instance owns its run
    state; callers only express intents through pause/resume/cancel, which
    the main loop observes at item boundaries.

    Args:
        port: Task submission layer
        item_timeout: Hard per-item ceiling in seconds (default from config)
        poll_interval: Longest single wait while paused (default from config)
    """

    def __init__(
        self,
        port: TaskSubmissionPort,
        item_timeout: float | None = None,
        poll_interval: float | None = None,
    ):
        self.port = port
        self.item_timeout = item_timeout if item_timeout is not None else get_item_timeout_seconds()
        self.poll_interval = poll_interval if poll_interval is not None else get_pause_poll_interval()
        self.log = get_logger(__name__)

        self._is_running = False
        self._is_paused = False
        # Held from start() until its cleanup, even after cancel() clears _is_running
        self._active = False
        self._port_paused = False
        self._batch_id: str | None = None
        self._resume_signal = asyncio.Event()
        self._resume_signal.set()

    async def start(
        self,
        config: BatchGenerationConfig,
        callbacks: BatchCallbacks | None = None,
    ) -> list[TaskResult]:
        """Run the batch to completion or cancellation.

        Args:
            config: Items and rendering settings
            callbacks: Optional event sinks

        Returns:
            One TaskResult per processed item, in item order. After a
            cancellation the list only covers the items that were reached.

        Raises:
            OrchestratorBusyError: If a run is already in progress on this instance
        """
        if self._is_running or self._active:
            raise OrchestratorBusyError("A batch generation run is already in progress")

        # Claimed synchronously, before the first await
        self._active = True
        self._is_running = True
        self._is_paused = False
        self._resume_signal.set()
        self._batch_id = f"batch_{int(time.time() * 1000)}"

        callbacks = callbacks or BatchCallbacks()
        items = config.items
        total = len(items)
        results: list[TaskResult] = []
        progress = BatchProgress(total=total)
        batch_id = self._batch_id

        self.log.info("batch_started", batch_id=batch_id, total=total, project_id=config.project_id)

        try:
            for index, item in enumerate(items):
                await self._wait_while_paused()

                if not self._is_running:
                    self.log.info("batch_cancelled", batch_id=batch_id, processed=index, total=total)
                    break

                progress.current_index = index
                progress.current_status = ItemStatus.RUNNING
                fire(callbacks.on_progress, progress.snapshot(), event="on_progress")

                error: Exception | None = None
                try:
                    result = await self._process_item(index, item, config)
                    if not result.success:
                        error = GenerationError(result.error_message or "Generation failed")
                except Exception as e:
                    self.log.error(
                        "item_processing_error",
                        batch_id=batch_id,
                        index=index,
                        item_id=item.id,
                        error_type=type(e).__name__,
                        error_message=str(e),
                    )
                    result = TaskResult.failure(f"error_{index}", str(e) or type(e).__name__)
                    error = e

                results.append(result)

                if result.success:
                    progress.completed += 1
                    progress.current_status = ItemStatus.COMPLETED
                else:
                    progress.failed += 1
                    progress.current_status = ItemStatus.FAILED
                    self.log.warning(
                        "item_failed",
                        batch_id=batch_id,
                        index=index,
                        item_id=item.id,
                        error_message=result.error_message,
                    )
                    fire(callbacks.on_error, index, error, item, event="on_error")

                progress.percentage = percentage_of(index + 1, total)
                fire(callbacks.on_progress, progress.snapshot(), event="on_progress")
                fire(callbacks.on_item_complete, index, result, item, event="on_item_complete")

            self.log.info(
                "batch_completed",
                batch_id=batch_id,
                total=total,
                processed=len(results),
                completed=progress.completed,
                failed=progress.failed,
            )
            fire(callbacks.on_batch_complete, list(results), event="on_batch_complete")
            return results

        finally:
            self._is_running = False
            self._is_paused = False
            self._batch_id = None
            self._resume_signal.set()
            if self._port_paused:
                # A run must not leave the shared port paused
                self._port_paused = False
                self.port.resume_all()
            self._active = False

    def pause(self) -> None:
        """Suspend scheduling after the current item. In-flight tasks are not aborted."""
        if not self._is_running:
            return
        self._is_paused = True
        self._resume_signal.clear()
        self._port_paused = True
        self.port.pause_all()
        self.log.info("batch_paused", batch_id=self._batch_id)

    def resume(self) -> None:
        """Resume a paused run; no-op unless running and paused."""
        if not (self._is_running and self._is_paused):
            return
        self._is_paused = False
        self._resume_signal.set()
        self._port_paused = False
        self.port.resume_all()
        self.log.info("batch_resumed", batch_id=self._batch_id)

    def cancel(self) -> None:
        """Stop submitting further items and abort pending submissions."""
        was_running = self._is_running
        self._is_running = False
        self._is_paused = False
        self._resume_signal.set()
        if was_running:
            self.port.cancel_all()
            self.log.info("batch_cancel_requested", batch_id=self._batch_id)

    def get_status(self) -> BatchStatus:
        return BatchStatus(
            is_running=self._is_running,
            is_paused=self._is_paused,
            batch_id=self._batch_id,
        )

    async def _wait_while_paused(self) -> None:
        while self._is_paused and self._is_running:
            try:
                await asyncio.wait_for(self._resume_signal.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                continue

    def build_descriptor(self, item: StoryboardItem, config: BatchGenerationConfig) -> ImageTaskDescriptor:
        """Build the image task for one item from the run configuration."""
        return ImageTaskDescriptor(
            prompt=build_enhanced_prompt(item, config.locations, config.characters),
            grid_rows=config.grid_rows,
            grid_cols=config.grid_cols,
            aspect_ratio=config.aspect_ratio,
            image_size=config.image_size,
            art_style=config.art_style,
            reference_images=tuple(collect_reference_images(item, config.locations, config.characters)),
        )

    async def _process_item(
        self, index: int, item: StoryboardItem, config: BatchGenerationConfig
    ) -> TaskResult:
        descriptor = self.build_descriptor(item, config)
        task_id = await self.port.submit(descriptor)
        self.log.info(
            "item_submitted",
            batch_id=self._batch_id,
            index=index,
            item_id=item.id,
            task_id=task_id,
            reference_count=len(descriptor.reference_images),
        )
        return await wait_for_task(self.port, task_id, self.item_timeout, TaskType.IMAGE)
