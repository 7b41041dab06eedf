"""Pydantic schemas for storyboard inputs and generation tasks."""

from shotforge.schemas.generation import (
    GeneratedAsset,
    ImageTaskDescriptor,
    ReferenceImage,
    TaskDescriptor,
    TaskResult,
    TaskType,
    VideoTaskDescriptor,
)
from shotforge.schemas.storyboard import (
    ArtStyle,
    AspectRatio,
    Character,
    CharacterForm,
    ImageSize,
    Location,
    LocationForm,
    MotionType,
    StoryboardItem,
    StoryboardProject,
    VideoMotionConfig,
)

__all__ = [
    "ArtStyle",
    "AspectRatio",
    "Character",
    "CharacterForm",
    "GeneratedAsset",
    "ImageSize",
    "ImageTaskDescriptor",
    "Location",
    "LocationForm",
    "MotionType",
    "ReferenceImage",
    "StoryboardItem",
    "StoryboardProject",
    "TaskDescriptor",
    "TaskResult",
    "TaskType",
    "VideoMotionConfig",
]
