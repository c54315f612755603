"""
Shift lifecycle state machine.

Each worker action is validated against the current state, planned as an
explicit ordered list of persistence commands (close-and-split of the open
block, then whatever the action opens), and handed to the executor. The
open block lives in the machine's ledger and is re-read from the gateway
on cold start and after every failed sequence.
"""
import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

import structlog
from pydantic import BaseModel

from ..config import settings
from ..errors import PersistenceFailure, PreconditionViolation, UnknownJob
from ..schemas.time_blocks import (
    BlockCategory,
    BlockKind,
    TimeBlock,
    TimeBlockDraft,
    validate_coefficient,
)
from .clock import Clock, SystemClock
from .commands import (
    Command,
    CommandExecutor,
    InsertCommand,
    MarkJobCompletedCommand,
    UpdateEndCommand,
)
from .gateway import PersistenceGateway
from .ledger import ShiftLedger, ShiftState
from .segmentation import PremiumWindow, Segment, configured_premium_windows, segment
from .time_rules import ensure_utc, format_time_range

logger = structlog.get_logger(__name__)


class Action(str, Enum):
    clock_in = "clock_in"
    start_break = "start_break"
    end_break = "end_break"
    start_overtime = "start_overtime"
    start_job = "start_job"
    clock_out = "clock_out"
    complete_job = "complete_job"


ALLOWED_STATES: Dict[Action, frozenset] = {
    Action.clock_in: frozenset({ShiftState.no_active_shift}),
    Action.start_break: frozenset({ShiftState.on_regular_shift, ShiftState.on_overtime, ShiftState.on_job_shift}),
    Action.end_break: frozenset({ShiftState.on_break}),
    Action.start_overtime: frozenset({ShiftState.on_regular_shift, ShiftState.on_job_shift}),
    Action.start_job: frozenset({ShiftState.on_regular_shift, ShiftState.on_overtime}),
    Action.clock_out: frozenset({
        ShiftState.on_regular_shift, ShiftState.on_break, ShiftState.on_overtime, ShiftState.on_job_shift,
    }),
    Action.complete_job: frozenset({ShiftState.on_job_shift}),
}

# Caller-supplied arguments each action takes; anything else is rejected
ACTION_ARGUMENTS: Dict[Action, frozenset] = {
    Action.clock_in: frozenset({"coefficient", "notes"}),
    Action.start_overtime: frozenset({"coefficient", "notes"}),
    Action.start_job: frozenset({"job_id", "notes"}),
}

REGULAR_COEFFICIENT = Decimal("1.00")
BREAK_COEFFICIENT = Decimal("0.00")


class ActionPlan(BaseModel):
    action: Action
    commands: List[Any]
    next_state: ShiftState
    segments: List[Segment] = []


class ActionResult(BaseModel):
    action: Action
    state: ShiftState
    open_block: Optional[TimeBlock] = None
    inserted: List[TimeBlock] = []
    segments: List[Segment] = []


def segment_note(seg: Segment, original_notes: Optional[str], timezone_str: Optional[str] = None) -> str:
    """Note for a split-off block: "<label> (<HH:MM> - <HH:MM>)", then the original notes."""
    note = f"{seg.label} ({format_time_range(seg.start, seg.end, timezone_str)})"
    if original_notes:
        note = f"{note} - {original_notes}"
    return note


class ShiftStateMachine:
    """
    Drives one worker's shift lifecycle.

    Call `resync()` before the first action; after a PersistenceFailure the
    machine refuses further actions until `resync()` is called again.
    """

    def __init__(
        self,
        worker_id: uuid.UUID,
        gateway: PersistenceGateway,
        clock: Optional[Clock] = None,
        premium_windows: Optional[Sequence[PremiumWindow]] = None,
        timezone_str: Optional[str] = None,
    ):
        self.worker_id = worker_id
        self.gateway = gateway
        self.executor = CommandExecutor(gateway)
        self.clock = clock or SystemClock()
        self.premium_windows = list(premium_windows) if premium_windows is not None else configured_premium_windows()
        self.timezone_str = timezone_str or settings.tz_default
        self.ledger = ShiftLedger(worker_id)
        self._busy = False

    @property
    def state(self) -> ShiftState:
        return self.ledger.state

    @property
    def open_block(self) -> Optional[TimeBlock]:
        return self.ledger.open_block

    @property
    def synchronized(self) -> bool:
        return self.ledger.synchronized

    def resync(self) -> Optional[TimeBlock]:
        """Reload the open block from the gateway, the source of truth."""
        self.ledger.invalidate()
        try:
            block = self.gateway.find_open_block(self.worker_id)
        except PersistenceFailure:
            logger.error("resync_failed", worker_id=str(self.worker_id))
            raise
        except Exception as e:
            logger.error("resync_failed", worker_id=str(self.worker_id), error=str(e))
            raise PersistenceFailure(f"find_open_block failed: {e}") from e
        self.ledger.load(block)
        logger.info("ledger_synchronized", worker_id=str(self.worker_id), state=self.state.value)
        return block

    # Planning

    def _check(self, action: Action) -> ShiftState:
        if self._busy:
            raise PreconditionViolation(action.value, self.state.value, "Another action is still in progress")
        if not self.ledger.synchronized:
            raise PreconditionViolation(
                action.value, None, "Shift ledger is not synchronized with the gateway; resync first"
            )
        state = self.ledger.state
        if state not in ALLOWED_STATES[action]:
            raise PreconditionViolation(action.value, state.value)
        return state

    def close_and_split(self, block: TimeBlock, now: datetime) -> Tuple[List[Command], List[Segment]]:
        """
        Plan the closing of `block` at `now`.

        The first segment closes the original row; every later segment
        becomes a new, already-closed block with the same kind and job.
        """
        segments = segment(
            block.start,
            now,
            self.premium_windows,
            base_coefficient=block.coefficient,
            timezone_str=self.timezone_str,
        )

        commands: List[Command] = [
            UpdateEndCommand(block_id=block.id, worker_id=block.worker_id, new_end=segments[0].end)
        ]
        for seg in segments[1:]:
            commands.append(InsertCommand(draft=TimeBlockDraft(
                worker_id=block.worker_id,
                job_id=block.job_id,
                kind=block.kind,
                start=seg.start,
                end=seg.end,
                coefficient=seg.coefficient,
                notes=segment_note(seg, block.notes, self.timezone_str),
            )))
        return commands, segments

    def _open_draft(self, kind: BlockKind, start: datetime, coefficient: Decimal,
                    job_id: Optional[uuid.UUID] = None, notes: Optional[str] = None) -> InsertCommand:
        return InsertCommand(draft=TimeBlockDraft(
            worker_id=self.worker_id,
            job_id=job_id,
            kind=kind,
            start=start,
            end=None,
            coefficient=coefficient,
            notes=notes,
        ))

    def plan(
        self,
        action: Action,
        coefficient=None,
        job_id: Optional[uuid.UUID] = None,
        notes: Optional[str] = None,
    ) -> ActionPlan:
        """Validate `action` and build its command sequence without touching the gateway."""
        action = Action(action)
        self._check(action)

        given = {name for name, value in (("coefficient", coefficient), ("job_id", job_id), ("notes", notes))
                 if value is not None}
        unexpected = given - ACTION_ARGUMENTS.get(action, frozenset())
        if unexpected:
            raise ValueError(f"{action.value} does not take {', '.join(sorted(unexpected))}")

        if action == Action.clock_in:
            coefficient = validate_coefficient(REGULAR_COEFFICIENT if coefficient is None else coefficient)
        elif action == Action.start_overtime:
            coefficient = validate_coefficient(
                settings.default_overtime_coefficient if coefficient is None else coefficient
            )
        elif action == Action.start_job and job_id is None:
            raise ValueError("start_job needs a job_id")

        now = ensure_utc(self.clock.now())
        current = self.ledger.open_block
        commands: List[Command] = []
        segments: List[Segment] = []
        if current is not None:
            commands, segments = self.close_and_split(current, now)

        if action == Action.clock_in:
            commands.append(self._open_draft(BlockKind.regular_shift, now, coefficient, notes=notes))
            next_state = ShiftState.on_regular_shift
        elif action == Action.start_break:
            commands.append(self._open_draft(BlockKind.break_, now, BREAK_COEFFICIENT))
            next_state = ShiftState.on_break
        elif action == Action.end_break:
            commands.append(self._open_draft(BlockKind.regular_shift, now, REGULAR_COEFFICIENT))
            next_state = ShiftState.on_regular_shift
        elif action == Action.start_overtime:
            kind = BlockKind.from_parts(BlockCategory.overtime, current.type)
            commands.append(self._open_draft(kind, now, coefficient, job_id=current.job_id, notes=notes))
            next_state = ShiftState.on_overtime
        elif action == Action.start_job:
            commands.append(self._open_draft(BlockKind.job_shift, now, REGULAR_COEFFICIENT, job_id=job_id, notes=notes))
            next_state = ShiftState.on_job_shift
        elif action == Action.complete_job:
            commands.append(MarkJobCompletedCommand(job_id=current.job_id))
            commands.append(self._open_draft(BlockKind.regular_shift, now, REGULAR_COEFFICIENT))
            next_state = ShiftState.on_regular_shift
        else:
            next_state = ShiftState.no_active_shift

        return ActionPlan(action=action, commands=commands, next_state=next_state, segments=segments)

    # Execution

    def _run(self, plan: ActionPlan) -> ActionResult:
        self._busy = True
        try:
            result = self.executor.execute(plan.commands)
        except PersistenceFailure as e:
            self.ledger.invalidate()
            logger.error(
                "action_failed",
                worker_id=str(self.worker_id),
                action=plan.action.value,
                step=e.step,
                applied=len(e.applied),
                error=str(e),
            )
            raise
        finally:
            self._busy = False

        self.ledger.load(result.opened)
        if len(plan.segments) > 1:
            logger.info(
                "shift_split",
                worker_id=str(self.worker_id),
                segments=len(plan.segments),
                labels=[seg.label for seg in plan.segments],
            )
        logger.info(
            "action_completed",
            worker_id=str(self.worker_id),
            action=plan.action.value,
            state=self.state.value,
        )
        return ActionResult(
            action=plan.action,
            state=self.state,
            open_block=self.ledger.open_block,
            inserted=result.inserted,
            segments=plan.segments,
        )

    def _require_job(self, job_id: uuid.UUID) -> None:
        try:
            exists = self.gateway.job_exists(job_id)
        except PersistenceFailure:
            raise
        except Exception as e:
            raise PersistenceFailure(f"job_exists failed: {e}") from e
        if not exists:
            raise UnknownJob(job_id)

    def perform(self, action: Action, coefficient=None, job_id: Optional[uuid.UUID] = None,
                notes: Optional[str] = None) -> ActionResult:
        plan = self.plan(action, coefficient=coefficient, job_id=job_id, notes=notes)
        if plan.action == Action.start_job:
            # A job shift must name a job that complete_job can later close
            self._require_job(job_id)
        return self._run(plan)

    def clock_in(self, coefficient=REGULAR_COEFFICIENT, notes: Optional[str] = None) -> ActionResult:
        return self.perform(Action.clock_in, coefficient=coefficient, notes=notes)

    def start_break(self) -> ActionResult:
        return self.perform(Action.start_break)

    def end_break(self) -> ActionResult:
        return self.perform(Action.end_break)

    def start_overtime(self, coefficient=None, notes: Optional[str] = None) -> ActionResult:
        return self.perform(Action.start_overtime, coefficient=coefficient, notes=notes)

    def start_job(self, job_id: uuid.UUID, notes: Optional[str] = None) -> ActionResult:
        return self.perform(Action.start_job, job_id=job_id, notes=notes)

    def clock_out(self) -> ActionResult:
        return self.perform(Action.clock_out)

    def complete_job(self) -> ActionResult:
        return self.perform(Action.complete_job)
