"""Shared exceptions for the orchestration layer.

This module contains exception classes used across the queue, retry,
batch and pipeline services to avoid cross-module dependencies.

Error Taxonomy:
    - Fatal setup errors: OrchestratorBusyError, ConfigurationError
    - Stage-fatal errors: MissingStoryboardError (and anything escaping a stage body)
    - Per-item errors: GenerationError and subclasses, recorded as failed TaskResults
    - Timeouts: GenerationTimeoutError, always carried as a retryable failure
"""

import enum


class ErrorKind(enum.Enum):
    """Structured classification attached to errors at their point of origin.

    The submission layer and generator adapters tag their own failures with
    a kind so retry decisions never depend on message wording. Message
    matching is only a fallback for errors raised by code outside this
    package (see services.retry_executor.classify_error).
    """

    NETWORK = "network"
    TIMEOUT = "timeout"
    SERVER = "server"
    RATE_LIMIT = "rate_limit"
    TEMPORARY = "temporary"
    VALIDATION = "validation"
    UNKNOWN = "unknown"

    @property
    def is_transient(self) -> bool:
        return self in TRANSIENT_ERROR_KINDS


TRANSIENT_ERROR_KINDS = frozenset(
    {
        ErrorKind.NETWORK,
        ErrorKind.TIMEOUT,
        ErrorKind.SERVER,
        ErrorKind.RATE_LIMIT,
        ErrorKind.TEMPORARY,
    }
)


class ConfigurationError(Exception):
    """Raised when orchestrator configuration is invalid.

    Examples: stage weights summing above 100, a negative weight, or a
    queue ceiling below 1.
    """

    pass


class OrchestratorBusyError(Exception):
    """Raised when start() is called while a run is already in progress.

    Each orchestrator instance allows at most one active run. The error is
    raised before any asynchronous work begins, so the in-flight run is
    left untouched.
    """

    pass


class MissingStoryboardError(Exception):
    """Raised by the storyboard stage when no usable storyboard was supplied."""

    pass


class GenerationError(Exception):
    """Failure reported by a generation backend or the submission layer.

    Attributes:
        kind: ErrorKind used by the retry executor to decide retryability.

    Example:
        >>> raise GenerationError("HTTP 503: Service Unavailable", kind=ErrorKind.SERVER)
    """

    def __init__(self, message: str = "", kind: ErrorKind = ErrorKind.UNKNOWN):
        self.kind = kind
        super().__init__(message)


class GenerationTimeoutError(GenerationError):
    """Raised when a single attempt exceeds its timeout."""

    def __init__(self, message: str = "Operation timed out"):
        super().__init__(message, kind=ErrorKind.TIMEOUT)


class InvalidStageTransitionError(Exception):
    """Raised when the pipeline attempts a transition its state machine forbids.

    Attributes:
        from_stage: The PipelineStage before the attempted transition.
        to_stage: The PipelineStage that was attempted.

    Example:
        >>> machine.transition(PipelineStage.COMPLETED)  # from IDLE
        InvalidStageTransitionError: Invalid transition: idle → completed (from=idle, to=completed)
    """

    def __init__(self, message: str, from_stage: "PipelineStage", to_stage: "PipelineStage"):  # noqa: F821
        """Initialize InvalidStageTransitionError with transition details.

        Args:
            message: Human-readable error message.
            from_stage: Current stage before transition attempt.
            to_stage: Target stage that was attempted.
        """
        self.from_stage = from_stage
        self.to_stage = to_stage
        super().__init__(message)

    def __str__(self) -> str:
        base_message = super().__str__()
        return f"{base_message} (from={self.from_stage.value}, to={self.to_stage.value})"
