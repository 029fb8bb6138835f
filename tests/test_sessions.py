from __future__ import annotations

import threading

import pytest

from agentcore.envelope import EnvelopeManager
from agentcore.sessions import ActiveExecution, ActiveExecutionTable, DuplicateTraceError
from agentcore.validator import ModelValidator


def _record(last_activity: float = 0.0) -> ActiveExecution:
    envelope = EnvelopeManager(lambda: last_activity).create_envelope({})
    return ActiveExecution(
        envelope=envelope,
        validator=ModelValidator(),
        output_sink=None,
        completion_sink=None,
        started_at=last_activity,
        last_activity=last_activity,
    )


def test_insert_and_lookup() -> None:
    table = ActiveExecutionTable()
    record = _record()

    table.insert(record)

    assert len(table) == 1
    assert record.trace_id in table
    assert table.lookup(record.trace_id) is record
    assert table.lookup("missing") is None


def test_insert_rejects_live_trace_id() -> None:
    table = ActiveExecutionTable()
    record = _record()
    table.insert(record)

    with pytest.raises(DuplicateTraceError):
        table.insert(record)


def test_remove_once_hands_record_to_single_caller() -> None:
    table = ActiveExecutionTable()
    record = _record()
    table.insert(record)
    winners: list[ActiveExecution] = []
    barrier = threading.Barrier(8)

    def race() -> None:
        barrier.wait()
        removed = table.remove_once(record.trace_id)
        if removed is not None:
            winners.append(removed)

    threads = [threading.Thread(target=race) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert winners == [record]
    assert len(table) == 0


def test_remove_once_ignores_other_record_with_same_id() -> None:
    table = ActiveExecutionTable()
    record = _record()
    table.insert(record)

    assert table.remove_once(record.trace_id, _record()) is None
    assert table.lookup(record.trace_id) is record


def test_expired_leaves_records_in_place() -> None:
    table = ActiveExecutionTable()
    idle = _record(last_activity=0.0)
    fresh = _record(last_activity=90.0)
    table.insert(idle)
    table.insert(fresh)

    assert table.expired(100.0, 60.0) == [idle]
    assert len(table) == 2


def test_drain_empties_table() -> None:
    table = ActiveExecutionTable()
    records = [_record(), _record()]
    for record in records:
        table.insert(record)

    assert table.drain() == records
    assert table.trace_ids() == []
