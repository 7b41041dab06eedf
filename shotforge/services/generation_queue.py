"""Generation Queue Service: the task submission layer.

This module defines the TaskSubmissionPort contract the orchestrators depend
on, plus GenerationQueueService, the in-process implementation that feeds
generation requests into concurrency-limited queues with retry.

Architecture Pattern:
    Orchestrator (sequential) → TaskSubmissionPort.submit() → task id
        → ConcurrencyLimitedQueue (bounded parallelism)
        → RetryExecutor (transient failure recovery)
        → ImageGenerator / VideoGenerator (external backend)
    The settled outcome is delivered once to subscribers of the task id.

The generators are the external generation backend. They receive a frozen
descriptor and return a payload dict, raising (ideally a GenerationError
tagged with an ErrorKind) on failure.

Usage:
    queue_service = GenerationQueueService(image_generator=backend.render)

    task_id = await queue_service.submit(ImageTaskDescriptor(prompt="..."))
    unsubscribe = queue_service.subscribe(task_id, on_result)
"""

import asyncio
import uuid
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from functools import partial
from typing import Any, Protocol, runtime_checkable

from shotforge.config import get_video_retry_max_attempts
from shotforge.exceptions import ConfigurationError
from shotforge.queue import ConcurrencyLimitedQueue, create_image_queue, create_video_queue
from shotforge.schemas.generation import (
    ImageTaskDescriptor,
    TaskDescriptor,
    TaskResult,
    TaskType,
    VideoTaskDescriptor,
)
from shotforge.services.retry_executor import RetryConfig, RetryExecutor
from shotforge.utils.logging import get_logger

log = get_logger(__name__)

ImageGenerator = Callable[[ImageTaskDescriptor], Awaitable[dict[str, Any]]]
VideoGenerator = Callable[[VideoTaskDescriptor], Awaitable[dict[str, Any]]]
ResultCallback = Callable[[TaskResult], None]
Unsubscribe = Callable[[], None]

# Results that settled before anyone subscribed are kept this long (by count)
_MAX_UNCLAIMED_RESULTS = 256


@runtime_checkable
class TaskSubmissionPort(Protocol):
    """Contract between the orchestrators and the generation backend.

    submit() returns an opaque task id; the eventual TaskResult is delivered
    to callbacks registered with subscribe(). pause_all/resume_all/cancel_all
    are best-effort signals with no meaningful return value.
    """

    async def submit(self, descriptor: TaskDescriptor) -> str: ...

    def subscribe(self, task_id: str, callback: ResultCallback) -> Unsubscribe: ...

    def pause_all(self) -> None: ...

    def resume_all(self) -> None: ...

    def cancel_all(self) -> None: ...


class GenerationQueueService:
    """In-process TaskSubmissionPort backed by image and video queues.

    Responsibilities:
    - Route image descriptors to the image queue, video descriptors to the video queue
    - Wrap every backend call with RetryExecutor (videos retry less)
    - Emit exactly one TaskResult per submitted descriptor
    - Deliver results that settled before subscription on subscribe()
    - Convert queue cancellation into failed "cancelled" results
    """

    def __init__(
        self,
        image_generator: ImageGenerator,
        video_generator: VideoGenerator | None = None,
        *,
        image_queue: ConcurrencyLimitedQueue | None = None,
        video_queue: ConcurrencyLimitedQueue | None = None,
        retry_executor: RetryExecutor | None = None,
        image_retry: RetryConfig | None = None,
        video_retry: RetryConfig | None = None,
    ):
        self._image_generator = image_generator
        self._video_generator = video_generator
        self.image_queue = image_queue or create_image_queue()
        self.video_queue = video_queue or create_video_queue()
        self._retry = retry_executor or RetryExecutor()
        self._image_retry = image_retry or RetryConfig()
        self._video_retry = video_retry or RetryConfig(max_retries=get_video_retry_max_attempts())
        self._listeners: dict[str, list[ResultCallback]] = {}
        self._unclaimed: OrderedDict[str, TaskResult] = OrderedDict()

    async def submit(self, descriptor: TaskDescriptor) -> str:
        """Queue a descriptor for generation.

        Args:
            descriptor: ImageTaskDescriptor or VideoTaskDescriptor

        Returns:
            Task id ("img_..." or "vid_...")

        Raises:
            ConfigurationError: If a video is submitted without a video generator
            TypeError: If the descriptor type is unknown
        """
        if isinstance(descriptor, ImageTaskDescriptor):
            task_id = f"img_{uuid.uuid4().hex[:12]}"
            queue = self.image_queue
            call = partial(self._image_generator, descriptor)
            retry_config = self._image_retry
        elif isinstance(descriptor, VideoTaskDescriptor):
            if self._video_generator is None:
                raise ConfigurationError("No video generator configured for video tasks")
            task_id = f"vid_{uuid.uuid4().hex[:12]}"
            queue = self.video_queue
            call = partial(self._video_generator, descriptor)
            retry_config = self._video_retry
        else:
            raise TypeError(f"Unsupported descriptor type: {type(descriptor).__name__}")

        future = queue.add(
            lambda: self._retry.execute(call, retry_config),
            priority=descriptor.priority,
        )
        future.add_done_callback(partial(self._on_settled, task_id, descriptor.task_type))

        log.info(
            "task_submitted",
            task_id=task_id,
            task_type=descriptor.task_type.value,
            queue=queue.name,
            pending=queue.pending,
            active=queue.active,
        )
        return task_id

    def subscribe(self, task_id: str, callback: ResultCallback) -> Unsubscribe:
        """Register a callback for a task's result.

        If the task already settled, the callback is invoked immediately.

        Returns:
            Function removing the callback (safe to call more than once)
        """
        if task_id in self._unclaimed:
            result = self._unclaimed.pop(task_id)
            self._invoke(callback, result)
            return lambda: None

        self._listeners.setdefault(task_id, []).append(callback)

        def unsubscribe() -> None:
            callbacks = self._listeners.get(task_id)
            if callbacks and callback in callbacks:
                callbacks.remove(callback)
                if not callbacks:
                    del self._listeners[task_id]

        return unsubscribe

    def pause_all(self) -> None:
        """Stop dispatching queued work on both queues."""
        self.image_queue.pause()
        self.video_queue.pause()

    def resume_all(self) -> None:
        self.image_queue.resume()
        self.video_queue.resume()

    def cancel_all(self) -> dict[str, int]:
        """Cancel every pending task on both queues.

        Running tasks finish normally. Each cancelled task settles as a
        failed TaskResult.

        Returns:
            Cancelled counts per queue, e.g. {"image": 3, "video": 0}
        """
        counts = {"image": self.image_queue.clear(), "video": self.video_queue.clear()}
        log.info("tasks_cancelled", **counts)
        return counts

    def get_stats(self) -> dict[str, dict[str, int]]:
        """Return pending/active counts per queue plus totals."""
        image = {"pending": self.image_queue.pending, "active": self.image_queue.active}
        video = {"pending": self.video_queue.pending, "active": self.video_queue.active}
        return {
            "image": image,
            "video": video,
            "total": {
                "pending": image["pending"] + video["pending"],
                "active": image["active"] + video["active"],
            },
        }

    def _on_settled(self, task_id: str, task_type: TaskType, future: "asyncio.Future[Any]") -> None:
        if future.cancelled():
            result = TaskResult.failure(task_id, "Task cancelled", task_type)
        elif future.exception() is not None:
            error = future.exception()
            result = TaskResult.failure(task_id, str(error) or type(error).__name__, task_type)
            log.error(
                "task_failed",
                task_id=task_id,
                task_type=task_type.value,
                error_type=type(error).__name__,
                error_message=str(error),
            )
        else:
            payload = future.result()
            result = TaskResult(
                task_id=task_id,
                success=True,
                payload=dict(payload) if payload else {},
                task_type=task_type,
            )
            log.info("task_completed", task_id=task_id, task_type=task_type.value)

        self._emit(task_id, result)

    def _emit(self, task_id: str, result: TaskResult) -> None:
        listeners = self._listeners.pop(task_id, None)
        if not listeners:
            self._unclaimed[task_id] = result
            while len(self._unclaimed) > _MAX_UNCLAIMED_RESULTS:
                self._unclaimed.popitem(last=False)
            return
        for callback in listeners:
            self._invoke(callback, result)

    @staticmethod
    def _invoke(callback: ResultCallback, result: TaskResult) -> None:
        try:
            callback(result)
        except Exception as e:
            log.error("result_callback_failed", task_id=result.task_id, error=str(e))
