"""
Exception hierarchy for the orchestration engine.

Every error carries a machine-readable ``code`` so per-item failures can be
recorded on jobs and batch status records without inspecting exception types.
"""

from shared.enums import ErrorCode


class OrchestrationError(Exception):
    """Base class for orchestration failures."""

    code: ErrorCode = ErrorCode.UNEXPECTED_ERROR
    retryable: bool = False

    def __init__(self, message: str = "", *, code: ErrorCode | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class ProviderError(OrchestrationError):
    """Raised when an external provider call does not succeed."""

    def __init__(self, message: str = "", *, status_code: int | None = None, code: ErrorCode | None = None) -> None:
        super().__init__(message, code=code)
        self.status_code = status_code


class TransientProviderError(ProviderError):
    """Network failure, 5xx or throttling; the call may be retried."""

    code = ErrorCode.PROVIDER_UNAVAILABLE
    retryable = True


class TerminalProviderError(ProviderError):
    """The provider rejected the request or reported the job as failed."""

    code = ErrorCode.PROVIDER_FAILED


class JobTimeoutError(OrchestrationError):
    """A job or batch item exceeded its time budget."""

    code = ErrorCode.TIMEOUT


class JobCancelledError(OrchestrationError):
    """The provider job ended in the CANCELLED state."""

    code = ErrorCode.CANCELLED


class MalformedEventError(OrchestrationError):
    """A webhook payload could not be parsed."""

    code = ErrorCode.MALFORMED_EVENT


class InvalidRequestError(OrchestrationError):
    """A caller supplied an unusable subject id, kind or handle."""

    code = ErrorCode.INVALID_REQUEST


class InvalidTransitionError(OrchestrationError):
    """A status update would move a job backwards or out of a terminal state."""

    code = ErrorCode.INVALID_TRANSITION


class JobHandleError(OrchestrationError):
    """A job handle's external job id was assigned twice."""

    code = ErrorCode.INVALID_HANDLE
