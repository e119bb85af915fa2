"""
Error taxonomy for the adaptive research workflow.

Three families matter to the orchestrator:
- Step errors: raised by steps or their collaborators. Some are retryable
  (timeouts, connection failures, rate limits), the rest are fatal.
- Routing errors: controller-level conditions. They end a run and are
  never retried.
- Cancellation: a run stopped through ``ResearchWorkflow.cancel``.
"""

import asyncio
import re

RETRYABLE_MESSAGE_MARKERS = (
    "timeout",
    "timed out",
    "connection refused",
    "connection reset",
    "connection aborted",
    "rate limit",
    "too many requests",
    "service unavailable",
    "resource_exhausted",
)

# HTTP status codes as whole numbers, never as part of a longer id
RETRYABLE_STATUS_PATTERN = re.compile(r"(?<![\w.])(429|503)(?![\w.])")

# Local filesystem failures are OSErrors too, but retrying never helps
LOCAL_OS_ERRORS = (
    FileNotFoundError,
    FileExistsError,
    IsADirectoryError,
    NotADirectoryError,
    PermissionError,
)


class WorkflowError(Exception):
    """Base class for every error raised by the workflow package."""

    retryable: bool = False

    def __init__(self, message: str = "", *, retryable: bool | None = None):
        super().__init__(message)
        self.message = message
        # An explicit flag from the collaborator overrides message sniffing
        self.retryable_explicit = retryable is not None or type(self).retryable
        if retryable is not None:
            self.retryable = retryable


# =============================================================================
# STEP ERRORS
# =============================================================================


class StepError(WorkflowError):
    """A step failed while processing a WorkItem."""

    def __init__(self, step_name: str, message: str = "", *, retryable: bool | None = None):
        super().__init__(message or f"Step '{step_name}' failed", retryable=retryable)
        self.step_name = step_name


class StepTimeoutError(StepError):
    """A step exceeded its execution timeout."""

    retryable = True

    def __init__(self, step_name: str, timeout_s: float):
        super().__init__(step_name, f"Step '{step_name}' timed out after {timeout_s:.1f}s")
        self.timeout_s = timeout_s


class StepNotFoundError(StepError):
    """The router named a step that is not in the registry."""

    def __init__(self, step_name: str):
        super().__init__(step_name, f"Step not found: {step_name}", retryable=False)


class ProviderError(WorkflowError):
    """QueryAnalyzer transport or parsing failure."""


class CitationError(WorkflowError):
    """CitationSource failure.

    ``retryable=True`` for timeouts, connection failures and rate limits;
    ``retryable=False`` for authentication or configuration problems.
    """


class CompletionError(WorkflowError):
    """ReasoningProvider failure."""


class RateLimitError(WorkflowError):
    """Explicit rate-limit signal from a collaborator."""

    retryable = True

    def __init__(self, message: str = "rate limit exceeded", retry_after: float | None = None):
        super().__init__(message)
        self.retry_after = retry_after


# =============================================================================
# CONTROLLER ERRORS
# =============================================================================


class RoutingError(WorkflowError):
    """Controller-level termination condition (never retried)."""


class NoNextStepError(RoutingError):
    def __init__(self, step_name: str):
        super().__init__(f"No next step found for: {step_name}")
        self.step_name = step_name


class UnknownStepError(RoutingError):
    def __init__(self, step_name: str):
        super().__init__(f"Unknown step: {step_name}")
        self.step_name = step_name


class MaxIterationsError(RoutingError):
    def __init__(self, max_iterations: int):
        super().__init__(f"Maximum iterations reached ({max_iterations})")
        self.max_iterations = max_iterations


class RegistryFrozenError(WorkflowError):
    """A step was registered after execution began."""


class WorkflowCancelledError(WorkflowError):
    """The run was cancelled before it reached a terminal step."""

    def __init__(self, session_id: str):
        super().__init__(f"Workflow cancelled: {session_id}")
        self.session_id = session_id


# =============================================================================
# CLASSIFICATION
# =============================================================================


def is_retryable_error(error: BaseException) -> bool:
    """
    Classify an exception raised by a step.

    Timeouts, connection failures and explicit rate-limit or
    service-unavailable signals are retryable. Everything else is fatal.
    """
    if isinstance(error, (RoutingError, WorkflowCancelledError, asyncio.CancelledError)):
        return False

    if isinstance(error, WorkflowError):
        if error.retryable_explicit:
            return error.retryable
    elif isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return True
    elif isinstance(error, OSError) and not isinstance(error, LOCAL_OS_ERRORS):
        # Transport failures: unreachable network or host, DNS lookups
        return True

    message = str(error).lower()
    if RETRYABLE_STATUS_PATTERN.search(message):
        return True
    return any(marker in message for marker in RETRYABLE_MESSAGE_MARKERS)
