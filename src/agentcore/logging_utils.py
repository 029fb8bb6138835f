"""Runtime logging helpers."""

from __future__ import annotations

import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from logging import Handler
from typing import Literal

import loguru
from loguru import logger
from rich import get_console
from rich.logging import RichHandler

LogProfile = Literal["default", "pretty"]

_PROFILE_FORMATS: dict[LogProfile, str] = {
    "pretty": "{extra[trace]} | {message}",
    "default": "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<6} | {name}:{function}:{line} | {extra[trace]} | {message}",
}
_CONFIGURED_PROFILE: LogProfile | None = None
_NO_TRACE = "-"

_current_trace: ContextVar[str] = ContextVar("agentcore_trace", default=_NO_TRACE)


def current_trace() -> str:
    """Trace id of the session being handled in this context, or '-'."""

    return _current_trace.get()


@contextmanager
def trace_context(trace_id: str | None) -> Iterator[None]:
    """Tag log records emitted inside the block with one trace id."""

    token = _current_trace.set(trace_id or _NO_TRACE)
    try:
        yield
    finally:
        _current_trace.reset(token)


def _inject_context(record: loguru.Record) -> None:
    record["extra"].setdefault("trace", current_trace())


def _build_pretty_handler() -> Handler:
    return RichHandler(
        console=get_console(),
        show_level=True,
        show_time=False,
        show_path=False,
        markup=False,
        rich_tracebacks=False,
    )


def configure_logging(*, profile: LogProfile = "default", level: str | None = None) -> None:
    """Configure process-level logging once per profile."""

    global _CONFIGURED_PROFILE
    if profile == _CONFIGURED_PROFILE:
        return

    level = (level or os.getenv("AGENT_CORE_LOG_LEVEL", "INFO")).upper()
    logger.remove()
    if profile == "pretty":
        logger.add(
            _build_pretty_handler(),
            level=level,
            format=_PROFILE_FORMATS[profile],
            backtrace=False,
            diagnose=False,
        )
    else:
        logger.add(
            sys.stderr,
            level=level,
            format=_PROFILE_FORMATS[profile],
            backtrace=False,
            diagnose=False,
        )
    logger.configure(patcher=_inject_context)
    _CONFIGURED_PROFILE = profile
