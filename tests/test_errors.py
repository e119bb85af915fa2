import asyncio
import errno
import socket

import pytest

from adaptive_research.errors import (
    CitationError,
    MaxIterationsError,
    RateLimitError,
    StepNotFoundError,
    StepTimeoutError,
    WorkflowCancelledError,
    is_retryable_error,
)


@pytest.mark.parametrize(
    "error",
    [
        TimeoutError(),
        asyncio.TimeoutError(),
        ConnectionResetError("reset"),
        StepTimeoutError("citation_fetch", 5.0),
        RateLimitError(),
        CitationError("HTTP 429 Too Many Requests"),
        RuntimeError("503 Service Unavailable"),
        RuntimeError("upstream returned 429"),
        OSError(errno.ENETUNREACH, "Network is unreachable"),
        OSError(errno.EHOSTUNREACH, "No route to host"),
        socket.gaierror(-2, "Name or service not known"),
    ],
)
def test_transient_errors_are_retryable(error):
    assert is_retryable_error(error)


@pytest.mark.parametrize(
    "error",
    [
        ValueError("bad input"),
        CitationError("401 unauthorized"),
        StepNotFoundError("translate"),
        MaxIterationsError(15),
        WorkflowCancelledError("s1"),
        asyncio.CancelledError(),
        FileNotFoundError(errno.ENOENT, "No such file or directory"),
        PermissionError("invalid api key"),
        ValueError("bad value in row 1429"),
        KeyError("order-5031"),
    ],
)
def test_other_errors_are_fatal(error):
    assert not is_retryable_error(error)


def test_explicit_flag_beats_the_message():
    assert not is_retryable_error(CitationError("request timed out", retryable=False))
    assert is_retryable_error(CitationError("upstream failure", retryable=True))


def test_error_details_are_kept():
    timeout = StepTimeoutError("citation_fetch", 2.5)
    assert timeout.step_name == "citation_fetch"
    assert "2.5s" in str(timeout)
    assert RateLimitError(retry_after=3.0).retry_after == 3.0
    assert WorkflowCancelledError("abc").session_id == "abc"
