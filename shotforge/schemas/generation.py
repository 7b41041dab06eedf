"""Schemas for generation tasks, their results and the produced assets.

Task Lifecycle:
    StoryboardItem → ImageTaskDescriptor → submit() → TaskResult → GeneratedAsset
    GeneratedAsset → VideoTaskDescriptor → submit() → TaskResult → GeneratedAsset (video)

Descriptors are built freshly per item and never mutated after submission.
Exactly one TaskResult exists per submitted descriptor.
"""

import enum
import time
import uuid
from dataclasses import dataclass
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from shotforge.schemas.storyboard import (
    ArtStyle,
    AspectRatio,
    ImageSize,
    VideoMotionConfig,
)


class TaskType(str, enum.Enum):
    IMAGE = "image"
    VIDEO = "video"


class ReferenceImage(BaseModel):
    """Reference picture passed to the backend to keep characters/locations consistent."""

    model_config = ConfigDict(frozen=True)

    type: Literal["location", "character"]
    url: str
    label: str


class ImageTaskDescriptor(BaseModel):
    """Request to render one storyboard shot."""

    model_config = ConfigDict(frozen=True)

    prompt: str
    grid_rows: int = Field(default=1, ge=1)
    grid_cols: int = Field(default=1, ge=1)
    aspect_ratio: AspectRatio = AspectRatio.WIDE
    image_size: ImageSize = ImageSize.HD
    art_style: ArtStyle = ArtStyle.MODERN_SHONEN
    reference_images: tuple[ReferenceImage, ...] = ()
    priority: int = 0

    @property
    def task_type(self) -> TaskType:
        return TaskType.IMAGE


class VideoTaskDescriptor(BaseModel):
    """Request to animate one generated image."""

    model_config = ConfigDict(frozen=True)

    source_image: "GeneratedAsset"
    project_id: str
    motion_config: VideoMotionConfig = Field(default_factory=VideoMotionConfig)
    art_style: ArtStyle = ArtStyle.MODERN_SHONEN
    reference_images: tuple[ReferenceImage, ...] = ()
    priority: int = 0

    @property
    def task_type(self) -> TaskType:
        return TaskType.VIDEO


TaskDescriptor = ImageTaskDescriptor | VideoTaskDescriptor


@dataclass(frozen=True)
class TaskResult:
    """Outcome of one submitted task.

    Attributes:
        task_id: Identifier returned by submit() (or a synthetic "error_<i>" id)
        success: Whether the backend produced an asset
        payload: Backend output, e.g. {"full_image": url, "slices": [...]}
            for images or {"video_url": url} for videos
        error_message: Failure reason when success is False
        task_type: Image or video

    Example:
        >>> TaskResult(task_id="img_1a2b", success=False, error_message="Generation timed out")
    """

    task_id: str
    success: bool
    payload: dict[str, Any] | None = None
    error_message: str | None = None
    task_type: TaskType = TaskType.IMAGE

    @classmethod
    def failure(
        cls, task_id: str, error_message: str, task_type: TaskType = TaskType.IMAGE
    ) -> "TaskResult":
        return cls(task_id=task_id, success=False, error_message=error_message, task_type=task_type)


def new_asset_id(prefix: str) -> str:
    return f"{prefix}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:6]}"


class GeneratedAsset(BaseModel):
    """Image or video produced by the pipeline for one storyboard shot."""

    model_config = ConfigDict(frozen=True)

    id: str
    project_id: str
    url: str
    prompt: str = ""
    aspect_ratio: AspectRatio = AspectRatio.WIDE
    created_at: float = Field(default_factory=time.time)
    node_type: Literal["render", "video"] = "render"
    source_shot_id: str | None = None
    parent_id: str | None = None
    label: str = ""
    dialogue: str = ""
    slices: tuple[str, ...] = ()
    video_url: str | None = None


VideoTaskDescriptor.model_rebuild()
