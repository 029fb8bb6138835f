"""In-flight session table keyed by trace id."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import StrEnum

from agentcore.envelope import Envelope
from agentcore.types import CompletionSink, OutputSink
from agentcore.validator import ModelValidator


class Awaiting(StrEnum):
    MODEL = "model"
    TOOL = "tool"


@dataclass(eq=False)
class ActiveExecution:
    """One suspended agent session waiting for a correlated message."""

    envelope: Envelope
    validator: ModelValidator
    output_sink: OutputSink | None
    completion_sink: CompletionSink | None
    started_at: float
    last_activity: float
    awaiting: Awaiting = Awaiting.MODEL
    awaiting_iteration: int = 0
    dispatched_at: float | None = None
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False)

    @property
    def trace_id(self) -> str:
        return self.envelope.trace_id


class DuplicateTraceError(KeyError):
    """Raised when inserting a trace id that is already live."""


class ActiveExecutionTable:
    """Mutex-guarded map of live sessions.

    `remove_once` hands the record to exactly one caller; every later call for the
    same trace id gets None, so terminal output can only be produced once.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._records: dict[str, ActiveExecution] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, trace_id: object) -> bool:
        with self._lock:
            return trace_id in self._records

    def insert(self, record: ActiveExecution) -> None:
        with self._lock:
            if record.trace_id in self._records:
                raise DuplicateTraceError(record.trace_id)
            self._records[record.trace_id] = record

    def lookup(self, trace_id: str) -> ActiveExecution | None:
        with self._lock:
            return self._records.get(trace_id)

    def remove_once(self, trace_id: str, record: ActiveExecution | None = None) -> ActiveExecution | None:
        """Remove and return the live record, or None when it is already gone.

        When `record` is given, only that exact record is removed; a newer record that
        happens to reuse the id is left alone.
        """

        with self._lock:
            current = self._records.get(trace_id)
            if current is None or (record is not None and current is not record):
                return None
            del self._records[trace_id]
            return current

    def trace_ids(self) -> list[str]:
        with self._lock:
            return list(self._records)

    def expired(self, now: float, ttl_seconds: float) -> list[ActiveExecution]:
        """Records idle for at least `ttl_seconds`; they stay in the table."""

        with self._lock:
            return [record for record in self._records.values() if now - record.last_activity >= ttl_seconds]

    def drain(self) -> list[ActiveExecution]:
        with self._lock:
            records = list(self._records.values())
            self._records.clear()
            return records
