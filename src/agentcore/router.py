"""Correlation-based session routing for the agent core node.

Every inbound message either starts a session, resumes one that is waiting on a
correlated model/tool response, or is acknowledged and dropped. Side effects of the
REACT loop come back as `NextStep` values and are dispatched here onto five
positional output channels.
"""

from __future__ import annotations

import time
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from loguru import logger

from agentcore.envelope import Envelope, EnvelopeManager, field_of
from agentcore.errors import (
    ExecutionError,
    SessionTimeoutError,
    UpstreamError,
    ValidationError,
    error_payload,
)
from agentcore.hook_runtime import HookRuntime
from agentcore.logging_utils import trace_context
from agentcore.sessions import ActiveExecution, ActiveExecutionTable, Awaiting
from agentcore.strategy import Complete, Fail, NextStep, ReactStrategy, SendToMemory, SendToModel, SendToTool
from agentcore.types import (
    Channel,
    Clock,
    CompletionSink,
    CompletionStatus,
    CorrelationType,
    Message,
    OutputSink,
    Outputs,
    route_to,
)
from agentcore.validator import Action, FinalAnswer, ModelValidator

CORRELATION_KEY = "_correlation"
LEGACY_CORRELATION_KEY = "_agentCore"
_RESERVED_KEYS = frozenset(
    {"payload", CORRELATION_KEY, LEGACY_CORRELATION_KEY, "envelope", "agentResult", "traceId", "tool", "input", "iteration"}
)


class RouteKind(StrEnum):
    STARTED = "started"
    RESUMED = "resumed"
    TOOL_RESULT = "tool_result"
    UPSTREAM_ERROR = "upstream_error"
    STALE = "stale"
    IGNORED = "ignored"
    FAILED = "failed"


@dataclass(frozen=True)
class RouteResult:
    kind: RouteKind
    trace_id: str | None = None


@dataclass(frozen=True)
class Correlation:
    type: CorrelationType
    trace_id: str
    iteration: int | None = None


def correlation_marker(message: Any) -> Any:
    """Return the raw resume marker of a message, or None when it has none."""

    marker = field_of(message, CORRELATION_KEY)
    if marker is not None:
        return marker
    return field_of(message, LEGACY_CORRELATION_KEY)


def parse_correlation(marker: Any) -> Correlation | None:
    """Validate a resume marker; None means it is malformed or not a resume."""

    if not isinstance(marker, Mapping):
        return None
    trace_id = marker.get("traceId")
    if not isinstance(trace_id, str) or not trace_id.strip():
        return None
    raw_type = marker.get("type") or CorrelationType.MODEL_RESPONSE
    try:
        correlation_type = CorrelationType(raw_type)
    except ValueError:
        return None
    iteration = marker.get("iteration")
    if iteration is not None and (isinstance(iteration, bool) or not isinstance(iteration, int)):
        return None
    return Correlation(type=correlation_type, trace_id=trace_id, iteration=iteration)


def upstream_error_of(payload: Any) -> UpstreamError | None:
    """Detect an in-band `{error: {code, message}}` failure from a collaborator."""

    if not isinstance(payload, Mapping) or not payload.get("error"):
        return None
    if "kind" in payload or "action" in payload:
        return None
    error = payload["error"]
    if isinstance(error, Mapping):
        return UpstreamError(str(error.get("code") or "UNKNOWN"), str(error.get("message") or "Unknown error"))
    return UpstreamError("UNKNOWN", str(error))


class SessionRouter:
    """Owns the active execution table and dispatches loop steps to channels."""

    def __init__(
        self,
        *,
        strategy: ReactStrategy,
        envelopes: EnvelopeManager,
        table: ActiveExecutionTable | None = None,
        allowed_tools: Iterable[str] = (),
        strict_confidence: bool = False,
        session_timeout_seconds: float | None = None,
        clock: Clock = time.time,
        hooks: HookRuntime | None = None,
        output_sink: OutputSink | None = None,
        debug: bool = False,
    ) -> None:
        self._strategy = strategy
        self._envelopes = envelopes
        self._table = table if table is not None else ActiveExecutionTable()
        self._allowed_tools = tuple(allowed_tools)
        self._strict_confidence = strict_confidence
        self._session_timeout = session_timeout_seconds
        self._clock = clock
        self._hooks = hooks
        self._default_sink = output_sink
        self._debug = debug

    @property
    def table(self) -> ActiveExecutionTable:
        return self._table

    @property
    def active_sessions(self) -> list[str]:
        return self._table.trace_ids()

    def session(self, trace_id: str) -> Envelope | None:
        record = self._table.lookup(trace_id)
        return None if record is None else record.envelope

    def handle(self, message: Any, send: OutputSink | None = None, done: CompletionSink | None = None) -> RouteResult:
        """Handle one inbound message to completion. Never raises."""

        sink = send or self._default_sink
        marker = correlation_marker(message)
        if marker is None:
            return self._start(message, sink, done)

        correlation = parse_correlation(marker)
        if correlation is None:
            logger.warning("router.malformed_correlation marker={!r}", marker)
            _acknowledge(done)
            return RouteResult(RouteKind.IGNORED)

        with trace_context(correlation.trace_id):
            result = self._resume(correlation, message, sink)
        _acknowledge(done)
        return result

    def abandon(self, trace_id: str) -> bool:
        """Drop a live session without output; later resumes for it are stale."""

        record = self._table.remove_once(trace_id)
        if record is None:
            return False
        with trace_context(trace_id):
            logger.info("router.session_abandoned iteration={}", record.envelope.state.iteration)
        _acknowledge(record.completion_sink)
        return True

    def expire(self, now: float | None = None) -> list[str]:
        """Fail every session idle longer than the configured timeout."""

        ttl = self._session_timeout
        if ttl is None:
            return []
        now = self._clock() if now is None else now
        expired: list[str] = []
        for record in self._table.expired(now, ttl):
            with record.lock, trace_context(record.trace_id):
                if self._table.lookup(record.trace_id) is not record or now - record.last_activity < ttl:
                    continue
                logger.warning("router.session_expired idle_seconds={:.1f}", now - record.last_activity)
                error = SessionTimeoutError(f"no correlated response within {ttl:g}s")
                record.envelope.finish(CompletionStatus.TIMEOUT, completed=False)
                self._finish(record, Fail(error, CompletionStatus.TIMEOUT), None, record.output_sink)
                expired.append(record.trace_id)
        return expired

    def close(self) -> int:
        """Abandon every live session, e.g. when the host node shuts down."""

        records = self._table.drain()
        for record in records:
            _acknowledge(record.completion_sink)
        if records:
            logger.info("router.closed abandoned={}", len(records))
        return len(records)

    def _start(self, message: Any, sink: OutputSink | None, done: CompletionSink | None) -> RouteResult:
        try:
            envelope = self._envelopes.create_envelope(field_of(message, "payload"), self._allowed_tools)
        except Exception as exc:
            logger.opt(exception=exc).error("router.envelope_failed")
            error = ExecutionError(f"{type(exc).__name__}: {exc}")
            error.__cause__ = exc
            self._notify_error("start", error, message)
            _acknowledge(done, error)
            return RouteResult(RouteKind.FAILED)

        now = self._clock()
        record = ActiveExecution(
            envelope=envelope,
            validator=ModelValidator(envelope.allowed_tools, strict=self._strict_confidence),
            output_sink=sink,
            completion_sink=done,
            started_at=now,
            last_activity=now,
        )
        with record.lock, trace_context(envelope.trace_id):
            try:
                self._table.insert(record)
                self._trace("router.session_started tools={} active={}", list(envelope.allowed_tools), len(self._table))
                self._call_hooks("on_session_start", envelope=envelope)
                self._dispatch(record, self._strategy.execute(envelope), message, sink)
            except Exception as exc:
                self._fail_at_boundary(record, exc, message, sink)
                return RouteResult(RouteKind.FAILED, envelope.trace_id)
        return RouteResult(RouteKind.STARTED, envelope.trace_id)

    def _resume(self, correlation: Correlation, message: Any, sink: OutputSink | None) -> RouteResult:
        trace_id = correlation.trace_id
        record = self._table.lookup(trace_id)
        if record is None:
            self._trace("router.correlation_miss type={} active={}", correlation.type, self._table.trace_ids())
            return RouteResult(RouteKind.STALE, trace_id)

        with record.lock:
            if self._table.lookup(trace_id) is not record:
                self._trace("router.correlation_miss type={} reason=completed_concurrently", correlation.type)
                return RouteResult(RouteKind.STALE, trace_id)
            if correlation.iteration is not None and correlation.iteration != record.awaiting_iteration:
                self._trace(
                    "router.correlation_stale type={} iteration={} awaiting_iteration={}",
                    correlation.type,
                    correlation.iteration,
                    record.awaiting_iteration,
                )
                return RouteResult(RouteKind.STALE, trace_id)
            try:
                payload = field_of(message, "payload")
                upstream = upstream_error_of(payload)
                if upstream is not None:
                    record.envelope.finish(CompletionStatus.UPSTREAM_ERROR, completed=False)
                    self._finish(record, Fail(upstream, CompletionStatus.UPSTREAM_ERROR), message, sink)
                    return RouteResult(RouteKind.UPSTREAM_ERROR, trace_id)

                if correlation.type is CorrelationType.TOOL_RESPONSE:
                    if record.awaiting is not Awaiting.TOOL:
                        self._trace("router.unexpected_tool_response awaiting={}", record.awaiting)
                        return RouteResult(RouteKind.STALE, trace_id)
                    record.last_activity = self._clock()
                    step = self._strategy.handle_tool_result(record.envelope, payload, duration_ms=self._elapsed_ms(record))
                    self._dispatch(record, step, message, sink)
                    return RouteResult(RouteKind.TOOL_RESULT, trace_id)

                record.last_activity = self._clock()
                self._model_turn(record, payload, message, sink)
                return RouteResult(RouteKind.RESUMED, trace_id)
            except Exception as exc:
                self._fail_at_boundary(record, exc, message, sink)
                return RouteResult(RouteKind.FAILED, trace_id)

    def _model_turn(self, record: ActiveExecution, payload: Any, inbound: Any, sink: OutputSink | None) -> None:
        envelope = record.envelope
        try:
            action = record.validator.parse_and_validate(payload)
        except ValidationError as error:
            logger.warning("router.validation_failed kind={} message={}", error.kind, error.message)
            self._dispatch(record, self._strategy.reject(envelope, error), inbound, sink)
            return

        self._emit(sink, Channel.RAW_MODEL_RESPONSE, self._raw_response_message(inbound, envelope, action), envelope)
        self._dispatch(record, self._strategy.continue_loop(envelope, action), inbound, sink)

    def _dispatch(self, record: ActiveExecution, step: NextStep, inbound: Any, sink: OutputSink | None) -> None:
        envelope = record.envelope
        if isinstance(step, SendToModel):
            record.awaiting = Awaiting.MODEL
            record.awaiting_iteration = envelope.state.iteration
            record.dispatched_at = self._clock()
            self._emit(sink, Channel.MODEL, step.message, envelope)
        elif isinstance(step, SendToTool | SendToMemory):
            record.awaiting = Awaiting.TOOL
            record.awaiting_iteration = envelope.state.iteration
            record.dispatched_at = self._clock()
            channel = Channel.MEMORY if isinstance(step, SendToMemory) else Channel.TOOL
            self._emit(sink, channel, step.message, envelope)
        else:
            self._finish(record, step, inbound, sink)

    def _finish(self, record: ActiveExecution, step: Complete | Fail, inbound: Any, sink: OutputSink | None) -> None:
        if self._table.remove_once(record.trace_id, record) is None:
            self._trace("router.terminal_duplicate status={}", getattr(step, "status", None))
            return

        envelope = record.envelope
        error: Exception | None = None
        if isinstance(step, Complete):
            self._trace(
                "router.session_completed status={} completed={} iterations={}",
                step.status,
                envelope.state.completed,
                envelope.state.iteration,
            )
            self._emit(sink, Channel.RESULT, self._result_message(inbound, envelope, step), envelope)
        else:
            error = step.error
            logger.error("router.session_failed status={} error={}", step.status, error)
            self._notify_error("session", error, inbound)
            message = self._error_message(inbound, envelope, error, step.status)
            self._emit(sink, Channel.RESULT, message, envelope)
            self._emit(sink, Channel.RAW_MODEL_RESPONSE, message, envelope)

        self._call_hooks("on_session_end", envelope=envelope, status=envelope.state.completion_reason or step.status)
        _acknowledge(record.completion_sink, error)

    def _fail_at_boundary(self, record: ActiveExecution, exc: Exception, inbound: Any, sink: OutputSink | None) -> None:
        logger.opt(exception=exc).error("router.unexpected_error")
        error = ExecutionError(f"{type(exc).__name__}: {exc}")
        error.__cause__ = exc
        record.envelope.finish(CompletionStatus.EXECUTION_ERROR, completed=False)
        try:
            self._finish(record, Fail(error), inbound, sink)
        except Exception:
            logger.opt(exception=True).error("router.terminal_dispatch_failed")
            if self._table.remove_once(record.trace_id, record) is not None:
                _acknowledge(record.completion_sink, error)

    def _emit(self, sink: OutputSink | None, channel: Channel, message: Message, envelope: Envelope) -> None:
        self._trace("router.dispatch channel={}", channel.label)
        self._deliver(sink, route_to(channel, message))
        self._call_hooks("dispatch_output", channel=channel, message=message, trace_id=envelope.trace_id)

    def _deliver(self, sink: OutputSink | None, outputs: Outputs) -> None:
        if sink is None:
            return
        try:
            sink(outputs)
        except Exception as exc:
            logger.opt(exception=exc).error("router.send_failed")
            self._notify_error("send", exc, None)

    def _result_message(self, inbound: Any, envelope: Envelope, step: Complete) -> Message:
        last = envelope.model.last_response
        message_text = last.message if last is not None else None
        if isinstance(last, FinalAnswer):
            payload: Any = last.message if last.message else last.result
        else:
            payload = envelope.to_dict()
        return {
            **_carried_fields(inbound),
            "payload": payload,
            "envelope": envelope.to_dict(),
            "agentResult": {
                "completed": envelope.state.completed,
                "iterations": envelope.state.iteration,
                "traceId": envelope.trace_id,
                "finalAction": envelope.state.last_action,
                "status": str(step.status),
                "reason": step.reason,
                "message": message_text,
            },
        }

    def _error_message(self, inbound: Any, envelope: Envelope, error: Exception, status: CompletionStatus) -> Message:
        details = error_payload(error)
        return {
            **_carried_fields(inbound),
            "payload": {"error": details, "envelope": envelope.to_dict()},
            "agentResult": {
                "completed": False,
                "iterations": envelope.state.iteration,
                "traceId": envelope.trace_id,
                "finalAction": envelope.state.last_action,
                "status": str(status),
                "error": details,
            },
        }

    @staticmethod
    def _raw_response_message(inbound: Any, envelope: Envelope, action: Action) -> Message:
        return {
            **_carried_fields(inbound),
            "payload": action.to_payload(),
            "envelope": envelope.to_dict(),
            "agentResult": {
                "iteration": envelope.state.iteration + 1,
                "traceId": envelope.trace_id,
                "action": action.kind,
                "tool": action.tool,
                "confidence": action.confidence,
                "message": action.message,
            },
        }

    def _elapsed_ms(self, record: ActiveExecution) -> int | None:
        if record.dispatched_at is None:
            return None
        return max(0, int((self._clock() - record.dispatched_at) * 1000))

    def _call_hooks(self, hook_name: str, **kwargs: Any) -> None:
        if self._hooks is not None:
            self._hooks.call_many(hook_name, **kwargs)

    def _notify_error(self, stage: str, error: Exception, inbound: Any) -> None:
        if self._hooks is not None:
            self._hooks.notify_error(stage=stage, error=error, message=inbound if isinstance(inbound, dict) else None)

    def _trace(self, template: str, *args: Any) -> None:
        logger.opt(depth=1).log("INFO" if self._debug else "DEBUG", template, *args)


def _carried_fields(inbound: Any) -> dict[str, Any]:
    if not isinstance(inbound, Mapping):
        return {}
    return {key: value for key, value in inbound.items() if key not in _RESERVED_KEYS}


def _acknowledge(done: CompletionSink | None, error: Exception | None = None) -> None:
    if done is None:
        return
    try:
        if error is None:
            done()
        else:
            done(error)
    except Exception:
        logger.opt(exception=True).warning("router.done_callback_failed")
