import uuid
from datetime import datetime
from decimal import Decimal

import pytest
import pytz
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from shift_tracker.db import Base
from shift_tracker.errors import PersistenceFailure
from shift_tracker.models import models  # noqa: F401
from shift_tracker.schemas.time_blocks import BlockKind, BlockStatus, TimeBlock
from shift_tracker.services.clock import FixedClock
from shift_tracker.services.gateway import PersistenceGateway
from shift_tracker.services.segmentation import PremiumWindow
from shift_tracker.services.state_machine import ShiftStateMachine


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=pytz.UTC)


class RecordingGateway(PersistenceGateway):
    """In-memory gateway that records every call and can fail on a chosen one."""

    def __init__(self):
        self.blocks = {}
        self.calls = []
        self.jobs = set()
        self.completed_jobs = []
        self.fail_on = None  # (operation, nth call of that operation)
        self._counts = {}

    def reset_calls(self):
        self.calls = []
        self._counts = {}

    def calls_of(self, operation):
        return [call for call in self.calls if call[0] == operation]

    def _record(self, operation, *args):
        self.calls.append((operation,) + args)
        count = self._counts[operation] = self._counts.get(operation, 0) + 1
        if self.fail_on == (operation, count):
            raise PersistenceFailure(f"injected {operation} failure")

    def _open_for(self, worker_id):
        for block in self.blocks.values():
            if block.worker_id == worker_id and block.is_open:
                return block
        return None

    def seed(self, **fields) -> TimeBlock:
        block = TimeBlock(id=uuid.uuid4(), **fields)
        self.blocks[block.id] = block
        return block

    def worker_blocks(self, worker_id):
        return sorted(
            (block for block in self.blocks.values() if block.worker_id == worker_id),
            key=lambda block: block.start,
        )

    def insert(self, draft):
        self._record("insert", draft)
        if draft.end is None and self._open_for(draft.worker_id) is not None:
            raise PersistenceFailure("worker already has an open block")
        block = TimeBlock(id=uuid.uuid4(), status=BlockStatus.pending, **draft.model_dump())
        self.blocks[block.id] = block
        return block

    def update_end(self, block_id, new_end, *, worker_id):
        self._record("update_end", block_id, new_end)
        block = self.blocks.get(block_id)
        if block is None or not block.is_open or block.worker_id != worker_id:
            raise PersistenceFailure(f"{block_id} is not an open block of {worker_id}")
        self.blocks[block_id] = block.model_copy(update={"end": new_end})

    def find_open_block(self, worker_id):
        self._record("find_open_block", worker_id)
        return self._open_for(worker_id)

    def job_exists(self, job_id):
        self._record("job_exists", job_id)
        return job_id in self.jobs

    def mark_job_completed(self, job_id):
        self._record("mark_job_completed", job_id)
        self.completed_jobs.append(job_id)


@pytest.fixture
def night_window():
    return PremiumWindow(name="Night Shift", start="22:00", end="06:00", coefficient=Decimal("1.25"))


@pytest.fixture
def worker_id():
    return uuid.uuid4()


@pytest.fixture
def job_id():
    return uuid.uuid4()


@pytest.fixture
def clock():
    return FixedClock(utc(2024, 1, 10, 8, 0))


@pytest.fixture
def gateway(job_id):
    gateway = RecordingGateway()
    gateway.jobs.add(job_id)
    return gateway


@pytest.fixture
def machine(worker_id, gateway, clock, night_window):
    """State machine in UTC with the night window, synchronized and with a clean call log."""
    machine = ShiftStateMachine(worker_id, gateway, clock=clock, premium_windows=[night_window], timezone_str="UTC")
    machine.resync()
    gateway.reset_calls()
    return machine


@pytest.fixture
def seed_open(gateway, worker_id, clock):
    """Put an open block of the given kind into the gateway, started at the clock's time."""

    def _seed(kind=BlockKind.regular_shift, coefficient=Decimal("1.00"), job_id=None, notes=None, start=None):
        return gateway.seed(
            worker_id=worker_id,
            kind=kind,
            start=start or clock.now(),
            coefficient=coefficient,
            job_id=job_id,
            notes=notes,
        )

    return _seed


@pytest.fixture
def db_session():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    Session = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    session = Session()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()
