"""Timing utilities for relay flow and outbound delivery logging."""
from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Awaitable, Callable, Optional, TypeVar

from relay.config import TIMING_LOGGER

T = TypeVar("T")


class FlowTimer:
    """Track timing for one relay flow."""

    def __init__(self, flow: str, chat_id: Optional[str], logger: logging.Logger) -> None:
        self.flow = flow
        self.chat_id = chat_id
        self.logger = logger
        self.started_at = datetime.now(timezone.utc)
        self._started_perf = time.perf_counter()
        self.status = "success"
        self.detail: Optional[str] = None

    def log_started(self) -> None:
        self.logger.info(
            "event=flow_started flow=%s chat_id=%s started_at=%s",
            self.flow,
            self.chat_id,
            self.started_at.isoformat(),
        )

    def mark_status(self, status: str, *, detail: Optional[str] = None) -> None:
        self.status = status
        if detail is not None:
            self.detail = detail

    def log_completed(self) -> None:
        duration = time.perf_counter() - self._started_perf
        self.logger.info(
            "event=flow_completed flow=%s chat_id=%s duration_s=%.3f status=%s detail=%s",
            self.flow,
            self.chat_id,
            duration,
            self.status,
            self.detail or "",
        )


@asynccontextmanager
async def flow_timing(flow: str, chat_id: Optional[str] = None) -> AsyncIterator[FlowTimer]:
    """Async context manager to log flow start/end times."""

    timer = FlowTimer(flow=flow, chat_id=chat_id, logger=TIMING_LOGGER)
    timer.log_started()
    try:
        yield timer
    except Exception:
        timer.mark_status("error")
        raise
    finally:
        timer.log_completed()


async def log_outbound_timing(chat_id: str, call: Callable[[], Awaitable[T]]) -> T:
    """Measure and log timing for an outbound Telegram send."""

    started_perf = time.perf_counter()
    status = "success"
    try:
        return await call()
    except Exception:
        status = "error"
        raise
    finally:
        TIMING_LOGGER.info(
            "event=outbound_send chat_id=%s duration_s=%.3f status=%s",
            chat_id,
            time.perf_counter() - started_perf,
            status,
        )
