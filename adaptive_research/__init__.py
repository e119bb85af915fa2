"""
Adaptive research - Workflow orchestrator for multi-step research runs.

Analyze a query, gather sources, choose a reasoning method and produce an
answer, deciding at runtime which step runs next, when to retry and when to
stop.

Applications call ``setup_logging_from_config()`` once at startup to apply the
``logging`` settings section, then drive runs through ``ResearchWorkflow``.
"""

__version__ = "0.1.0"

from .errors import WorkflowError
from .utils.logging import setup_logging_from_config
from .workflow import (
    ResearchWorkflow,
    Router,
    RunOutcome,
    StepRegistry,
    WorkItem,
    build_default_registry,
)

__all__ = [
    "ResearchWorkflow",
    "Router",
    "RunOutcome",
    "StepRegistry",
    "WorkItem",
    "WorkflowError",
    "build_default_registry",
    "setup_logging_from_config",
    "__version__",
]
