"""Orchestration services: retry, submission queue, batch and pipeline runners."""

from shotforge.exceptions import ConfigurationError
from shotforge.services.batch_generation import (
    BatchCallbacks,
    BatchGenerationConfig,
    BatchOrchestrator,
    BatchProgress,
    BatchStatus,
)
from shotforge.services.generation_queue import GenerationQueueService, TaskSubmissionPort
from shotforge.services.pipeline_orchestrator import (
    PipelineCallbacks,
    PipelineConfig,
    PipelineOrchestrator,
    PipelineProgress,
    PipelineResult,
    PipelineStatus,
    StageWeights,
)
from shotforge.services.retry_executor import RetryConfig, RetryExecutor
from shotforge.services.session_recovery import SessionRecoveryService, SessionSnapshot
from shotforge.services.storage import StorageService

__all__ = [
    "BatchCallbacks",
    "BatchGenerationConfig",
    "BatchOrchestrator",
    "BatchProgress",
    "BatchStatus",
    "ConfigurationError",
    "GenerationQueueService",
    "PipelineCallbacks",
    "PipelineConfig",
    "PipelineOrchestrator",
    "PipelineProgress",
    "PipelineResult",
    "PipelineStatus",
    "RetryConfig",
    "RetryExecutor",
    "SessionRecoveryService",
    "SessionSnapshot",
    "StageWeights",
    "StorageService",
    "TaskSubmissionPort",
]
