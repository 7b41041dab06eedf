"""Cross-cutting utilities for the orchestration layer.

Modules:
    logging: Structured JSON logging with keyword context.
    callbacks: Fire-and-forget invocation of caller-supplied event sinks.
"""

from shotforge.utils.logging import StructuredLogger, get_logger

__all__ = [
    "StructuredLogger",
    "get_logger",
]
