from __future__ import annotations

from loguru import logger

from agentcore import logging_utils
from agentcore.logging_utils import current_trace, trace_context


def test_trace_context_nests_and_resets() -> None:
    assert current_trace() == "-"

    with trace_context("trace-a"):
        assert current_trace() == "trace-a"
        with trace_context(None):
            assert current_trace() == "-"
        assert current_trace() == "trace-a"

    assert current_trace() == "-"


def test_log_records_carry_current_trace() -> None:
    seen: list[str] = []
    handler_id = logger.add(lambda message: seen.append(message.record["extra"]["trace"]), format="{message}")
    patched = logger.patch(logging_utils._inject_context)
    try:
        with trace_context("trace-b"):
            patched.info("inside")
        patched.info("outside")
    finally:
        logger.remove(handler_id)

    assert seen == ["trace-b", "-"]
