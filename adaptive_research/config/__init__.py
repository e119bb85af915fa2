"""
Adaptive research - Configuration package.
"""

from .settings import (
    ExecutionConfig,
    QualityConfig,
    RetryConfig,
    Settings,
    WorkflowConfig,
    get_settings,
    load_config,
    reset_settings,
)

__all__ = [
    "ExecutionConfig",
    "QualityConfig",
    "RetryConfig",
    "Settings",
    "WorkflowConfig",
    "get_settings",
    "load_config",
    "reset_settings",
]
