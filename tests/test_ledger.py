import uuid
from datetime import datetime, timedelta
from decimal import Decimal

import pytest
import pytz

from shift_tracker.schemas.time_blocks import BlockKind, TimeBlock
from shift_tracker.services.ledger import ShiftLedger, ShiftState, state_for


def _block(kind, worker_id=None, end=None, job_id=None):
    start = datetime(2024, 1, 10, 8, tzinfo=pytz.UTC)
    return TimeBlock(
        id=uuid.uuid4(),
        worker_id=worker_id or uuid.uuid4(),
        kind=kind,
        job_id=job_id,
        start=start,
        end=end,
        coefficient=Decimal("1"),
    )


@pytest.mark.parametrize("kind,state", [
    (BlockKind.regular_shift, ShiftState.on_regular_shift),
    (BlockKind.job_shift, ShiftState.on_job_shift),
    (BlockKind.regular_overtime, ShiftState.on_overtime),
    (BlockKind.job_overtime, ShiftState.on_overtime),
    (BlockKind.break_, ShiftState.on_break),
])
def test_state_follows_open_block_kind(kind, state):
    job_id = uuid.uuid4() if kind in (BlockKind.job_shift, BlockKind.job_overtime) else None

    assert state_for(_block(kind, job_id=job_id)) == state


def test_no_open_block_means_no_active_shift():
    assert state_for(None) == ShiftState.no_active_shift


def test_ledger_starts_unsynchronized():
    ledger = ShiftLedger(uuid.uuid4())

    assert not ledger.synchronized
    assert ledger.state == ShiftState.no_active_shift


def test_load_and_invalidate():
    worker_id = uuid.uuid4()
    ledger = ShiftLedger(worker_id)
    block = _block(BlockKind.regular_shift, worker_id=worker_id)

    ledger.load(block)
    assert ledger.synchronized
    assert ledger.open_block == block

    ledger.invalidate()
    assert not ledger.synchronized
    assert ledger.open_block is None


def test_load_rejects_closed_block():
    worker_id = uuid.uuid4()
    ledger = ShiftLedger(worker_id)
    closed = _block(BlockKind.regular_shift, worker_id=worker_id,
                    end=datetime(2024, 1, 10, 9, tzinfo=pytz.UTC))

    with pytest.raises(ValueError):
        ledger.load(closed)
    assert not ledger.synchronized


def test_job_break_is_unrepresentable():
    with pytest.raises(ValueError):
        BlockKind.from_parts("break", "job")


def test_job_kind_requires_job_id():
    with pytest.raises(ValueError):
        _block(BlockKind.job_shift)


def test_regular_kind_rejects_job_id():
    with pytest.raises(ValueError):
        _block(BlockKind.regular_shift, job_id=uuid.uuid4())


def test_kind_parts_round_trip_for_every_kind():
    for kind in BlockKind:
        assert BlockKind.from_parts(kind.category, kind.type) == kind


def test_block_end_must_follow_start():
    with pytest.raises(ValueError):
        _block(BlockKind.regular_shift, end=datetime(2024, 1, 10, 8, tzinfo=pytz.UTC) - timedelta(minutes=1))
