"""
Utilities Module - Helper functions and classes.

Rate limiting, retry backoff and coloured logging for the adaptive
research workflow.
"""

from .logging import setup_colored_logging
from .rate_limiter import RateLimiter, calculate_backoff, extract_retry_delay

__all__ = [
    "RateLimiter",
    "calculate_backoff",
    "extract_retry_delay",
    "setup_colored_logging",
]
