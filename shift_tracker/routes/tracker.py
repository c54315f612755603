"""
Time tracker API routes.
Thin collaborator surface: lets a client read a worker's current shift state
and invoke lifecycle actions. Every request resynchronizes from the database.
"""
import uuid
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..db import get_db
from ..errors import CoefficientOutOfRange, InvalidInterval, PersistenceFailure, PreconditionViolation
from ..schemas.time_blocks import ActionPayload, ActionResponse, TimeBlockResponse, TrackerStateResponse
from ..services.clock import Clock, SystemClock
from ..services.gateway import SqlAlchemyGateway
from ..services.state_machine import Action, ShiftStateMachine

router = APIRouter(prefix="/tracker", tags=["tracker"])
logger = structlog.get_logger(__name__)


def get_clock() -> Clock:
    return SystemClock()


def _refresh_error(status_code: int, message: str) -> HTTPException:
    # Clients re-fetch GET /tracker/{worker_id} before trying again
    return HTTPException(status_code=status_code, detail={"error": message, "action": "refresh_state"})


def get_state_machine(
    worker_id: uuid.UUID,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> ShiftStateMachine:
    machine = ShiftStateMachine(worker_id, SqlAlchemyGateway(db), clock=clock)
    try:
        machine.resync()
    except PersistenceFailure as e:
        raise _refresh_error(503, str(e))
    return machine


def _state_response(machine: ShiftStateMachine) -> TrackerStateResponse:
    block = machine.open_block
    return TrackerStateResponse(
        worker_id=machine.worker_id,
        state=machine.state.value,
        open_block=TimeBlockResponse.from_block(block) if block else None,
    )


def _perform(machine: ShiftStateMachine, action: Action, payload: Optional[ActionPayload]) -> ActionResponse:
    payload = payload or ActionPayload()
    try:
        result = machine.perform(action, coefficient=payload.coefficient, job_id=payload.job_id, notes=payload.notes)
    except PreconditionViolation as e:
        logger.info("action_rejected", worker_id=str(machine.worker_id), action=action.value, reason=str(e))
        raise _refresh_error(409, str(e))
    except PersistenceFailure as e:
        raise _refresh_error(503, str(e))
    except (CoefficientOutOfRange, InvalidInterval, ValueError) as e:
        raise HTTPException(status_code=422, detail={"error": str(e)})

    return ActionResponse(
        worker_id=machine.worker_id,
        state=result.state.value,
        open_block=TimeBlockResponse.from_block(result.open_block) if result.open_block else None,
        action=action.value,
        inserted=[TimeBlockResponse.from_block(block) for block in result.inserted],
    )


@router.get("/{worker_id}", response_model=TrackerStateResponse)
def get_tracker_state(machine: ShiftStateMachine = Depends(get_state_machine)):
    """Current shift state and open time block, read from the database."""
    return _state_response(machine)


@router.post("/{worker_id}/clock-in", response_model=ActionResponse)
def clock_in(payload: Optional[ActionPayload] = None, machine: ShiftStateMachine = Depends(get_state_machine)):
    return _perform(machine, Action.clock_in, payload)


@router.post("/{worker_id}/break/start", response_model=ActionResponse)
def start_break(payload: Optional[ActionPayload] = None, machine: ShiftStateMachine = Depends(get_state_machine)):
    return _perform(machine, Action.start_break, payload)


@router.post("/{worker_id}/break/end", response_model=ActionResponse)
def end_break(payload: Optional[ActionPayload] = None, machine: ShiftStateMachine = Depends(get_state_machine)):
    return _perform(machine, Action.end_break, payload)


@router.post("/{worker_id}/overtime/start", response_model=ActionResponse)
def start_overtime(payload: Optional[ActionPayload] = None, machine: ShiftStateMachine = Depends(get_state_machine)):
    return _perform(machine, Action.start_overtime, payload)


@router.post("/{worker_id}/job/start", response_model=ActionResponse)
def start_job(payload: Optional[ActionPayload] = None, machine: ShiftStateMachine = Depends(get_state_machine)):
    return _perform(machine, Action.start_job, payload)


@router.post("/{worker_id}/job/complete", response_model=ActionResponse)
def complete_job(payload: Optional[ActionPayload] = None, machine: ShiftStateMachine = Depends(get_state_machine)):
    return _perform(machine, Action.complete_job, payload)


@router.post("/{worker_id}/clock-out", response_model=ActionResponse)
def clock_out(payload: Optional[ActionPayload] = None, machine: ShiftStateMachine = Depends(get_state_machine)):
    return _perform(machine, Action.clock_out, payload)
