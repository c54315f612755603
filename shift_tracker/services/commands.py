"""
Persistence commands and their executor.

The state machine plans an action as an ordered list of commands; the
executor applies them to the gateway one at a time, in order, stopping at
the first failure. Nothing already applied is rolled back.
"""
import uuid
from datetime import datetime
from typing import Any, List, Optional, Sequence, Union

import structlog
from pydantic import BaseModel, ConfigDict

from ..errors import PersistenceFailure
from ..schemas.time_blocks import TimeBlock, TimeBlockDraft
from .gateway import PersistenceGateway

logger = structlog.get_logger(__name__)


class UpdateEndCommand(BaseModel):
    """Close the open block by setting its end. The only update ever issued."""
    model_config = ConfigDict(frozen=True)

    block_id: uuid.UUID
    worker_id: uuid.UUID
    new_end: datetime

    def apply(self, gateway: PersistenceGateway) -> None:
        gateway.update_end(self.block_id, self.new_end, worker_id=self.worker_id)


class InsertCommand(BaseModel):
    model_config = ConfigDict(frozen=True)

    draft: TimeBlockDraft

    def apply(self, gateway: PersistenceGateway) -> TimeBlock:
        return gateway.insert(self.draft)


class MarkJobCompletedCommand(BaseModel):
    model_config = ConfigDict(frozen=True)

    job_id: uuid.UUID

    def apply(self, gateway: PersistenceGateway) -> None:
        gateway.mark_job_completed(self.job_id)


Command = Union[UpdateEndCommand, InsertCommand, MarkJobCompletedCommand]


class ExecutionResult(BaseModel):
    applied: List[Any] = []
    inserted: List[TimeBlock] = []

    @property
    def opened(self) -> Optional[TimeBlock]:
        """The block left open by this sequence, if it created one."""
        for block in reversed(self.inserted):
            if block.is_open:
                return block
        return None


class CommandExecutor:
    def __init__(self, gateway: PersistenceGateway):
        self.gateway = gateway

    def execute(self, commands: Sequence[Command]) -> ExecutionResult:
        applied: List[Command] = []
        inserted: List[TimeBlock] = []
        for step, command in enumerate(commands):
            try:
                outcome = command.apply(self.gateway)
            except PersistenceFailure as e:
                e.step = step
                e.applied = list(applied)
                logger.error("command_failed", step=step, command=type(command).__name__, error=str(e))
                raise
            except Exception as e:
                logger.error("command_failed", step=step, command=type(command).__name__, error=str(e))
                raise PersistenceFailure(str(e), step=step, applied=applied) from e
            applied.append(command)
            if isinstance(outcome, TimeBlock):
                inserted.append(outcome)
        return ExecutionResult(applied=applied, inserted=inserted)
