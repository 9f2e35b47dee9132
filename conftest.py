"""Project-wide pytest configuration hooks."""

from __future__ import annotations

import pytest

from utils import logger as trace_logger


@pytest.fixture(autouse=True)
def _disable_call_trace(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep ``log_calls`` tracing off so tests never write session files."""

    monkeypatch.setattr(trace_logger, "LOG_LEVEL", trace_logger.LOG_LEVELS["NONE"])
