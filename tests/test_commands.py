from datetime import datetime
from decimal import Decimal

import pytest
import pytz

from shift_tracker.errors import PersistenceFailure
from shift_tracker.schemas.time_blocks import BlockKind, TimeBlockDraft
from shift_tracker.services.commands import (
    CommandExecutor,
    InsertCommand,
    MarkJobCompletedCommand,
    UpdateEndCommand,
)


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=pytz.UTC)


def _closed_draft(worker_id, start, end):
    return TimeBlockDraft(
        worker_id=worker_id, kind=BlockKind.regular_shift, start=start, end=end, coefficient=Decimal("1.25"),
    )


def _plan(gateway, worker_id, job_id):
    opened = gateway.seed(
        worker_id=worker_id, kind=BlockKind.job_shift, job_id=job_id,
        start=utc(2024, 1, 10, 20), coefficient=Decimal("1"),
    )
    return [
        UpdateEndCommand(block_id=opened.id, worker_id=worker_id, new_end=utc(2024, 1, 11, 0)),
        InsertCommand(draft=_closed_draft(worker_id, utc(2024, 1, 11, 0), utc(2024, 1, 11, 2))),
        MarkJobCompletedCommand(job_id=job_id),
        InsertCommand(draft=TimeBlockDraft(
            worker_id=worker_id, kind=BlockKind.regular_shift, start=utc(2024, 1, 11, 2), coefficient="1",
        )),
    ]


def test_commands_apply_in_order(gateway, worker_id, job_id):
    commands = _plan(gateway, worker_id, job_id)

    result = CommandExecutor(gateway).execute(commands)

    assert [call[0] for call in gateway.calls] == ["update_end", "insert", "mark_job_completed", "insert"]
    assert result.applied == commands
    assert len(result.inserted) == 2
    assert result.opened == result.inserted[-1]
    assert gateway.completed_jobs == [job_id]


def test_opened_is_none_when_nothing_is_left_open(gateway, worker_id):
    result = CommandExecutor(gateway).execute([
        InsertCommand(draft=_closed_draft(worker_id, utc(2024, 1, 11, 0), utc(2024, 1, 11, 2))),
    ])

    assert result.opened is None


def test_executor_stops_at_first_failure(gateway, worker_id, job_id):
    commands = _plan(gateway, worker_id, job_id)
    gateway.fail_on = ("mark_job_completed", 1)

    with pytest.raises(PersistenceFailure) as exc_info:
        CommandExecutor(gateway).execute(commands)

    assert exc_info.value.step == 2
    assert exc_info.value.applied == commands[:2]
    # The open regular block was never inserted and nothing was rolled back
    assert [call[0] for call in gateway.calls] == ["update_end", "insert", "mark_job_completed"]
    assert len(gateway.worker_blocks(worker_id)) == 2
    assert all(not block.is_open for block in gateway.worker_blocks(worker_id))


def test_unexpected_errors_become_persistence_failures(gateway, worker_id, job_id, monkeypatch):
    commands = _plan(gateway, worker_id, job_id)

    def broken_insert(draft):
        raise RuntimeError("connection reset")

    monkeypatch.setattr(gateway, "insert", broken_insert)

    with pytest.raises(PersistenceFailure) as exc_info:
        CommandExecutor(gateway).execute(commands)

    assert exc_info.value.step == 1
    assert exc_info.value.applied == commands[:1]
    assert isinstance(exc_info.value.__cause__, RuntimeError)


def test_empty_plan_does_nothing(gateway):
    result = CommandExecutor(gateway).execute([])

    assert result.applied == []
    assert result.inserted == []
    assert gateway.calls == []
