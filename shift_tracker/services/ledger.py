"""
Shift ledger: the in-memory view of a worker's single open time block.

The ledger is a cache of the gateway, never the source of truth. It starts
unsynchronized and must be loaded from the gateway before any action runs;
it is invalidated again whenever an action sequence fails part-way.
"""
import uuid
from enum import Enum
from typing import Optional

from ..schemas.time_blocks import BlockCategory, BlockKind, TimeBlock


class ShiftState(str, Enum):
    no_active_shift = "no_active_shift"
    on_regular_shift = "on_regular_shift"
    on_break = "on_break"
    on_overtime = "on_overtime"
    on_job_shift = "on_job_shift"


def state_for(block: Optional[TimeBlock]) -> ShiftState:
    """Derive the shift state from the worker's open block (or its absence)."""
    if block is None:
        return ShiftState.no_active_shift
    if block.category == BlockCategory.break_:
        return ShiftState.on_break
    if block.category == BlockCategory.overtime:
        return ShiftState.on_overtime
    if block.kind == BlockKind.job_shift:
        return ShiftState.on_job_shift
    return ShiftState.on_regular_shift


class ShiftLedger:
    def __init__(self, worker_id: uuid.UUID):
        self.worker_id = worker_id
        self._open_block: Optional[TimeBlock] = None
        self._synchronized = False

    @property
    def synchronized(self) -> bool:
        return self._synchronized

    @property
    def open_block(self) -> Optional[TimeBlock]:
        return self._open_block

    @property
    def state(self) -> ShiftState:
        return state_for(self._open_block)

    def load(self, block: Optional[TimeBlock]) -> None:
        """Replace the cached view with what the gateway reported."""
        if block is not None:
            if block.worker_id != self.worker_id:
                raise ValueError(f"Time block {block.id} belongs to worker {block.worker_id}, not {self.worker_id}")
            if not block.is_open:
                raise ValueError(f"Time block {block.id} is closed and cannot be the open block")
        self._open_block = block
        self._synchronized = True

    def invalidate(self) -> None:
        self._open_block = None
        self._synchronized = False
