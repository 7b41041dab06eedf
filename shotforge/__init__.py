"""Shotforge orchestration layer.

This package drives storyboard shots through image and video generation:
a pipeline of named stages on top of a sequential batch runner, a
concurrency-limited submission queue and a retry executor. The generation
backend itself is injected by the caller.
"""

from shotforge.models import Base, PipelineStage, StoredRecord

__all__ = [
    "Base",
    "PipelineStage",
    "StoredRecord",
]
