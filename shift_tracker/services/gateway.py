"""
Persistence gateway.
The narrow contract the state machine uses to read and write time blocks.
Every call stands alone: there is no transaction spanning several calls.
"""
import uuid
from datetime import datetime
from typing import Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..errors import PersistenceFailure
from ..models.models import Job, TimeBlockRecord, utcnow
from ..schemas.time_blocks import BlockStatus, TimeBlock, TimeBlockDraft
from .time_rules import ensure_utc

logger = structlog.get_logger(__name__)


class PersistenceGateway:
    def insert(self, draft: TimeBlockDraft) -> TimeBlock:
        raise NotImplementedError

    def update_end(self, block_id: uuid.UUID, new_end: datetime, *, worker_id: uuid.UUID) -> None:
        raise NotImplementedError

    def find_open_block(self, worker_id: uuid.UUID) -> Optional[TimeBlock]:
        raise NotImplementedError

    def job_exists(self, job_id: uuid.UUID) -> bool:
        raise NotImplementedError

    def mark_job_completed(self, job_id: uuid.UUID) -> None:
        raise NotImplementedError


class SqlAlchemyGateway(PersistenceGateway):
    """Gateway over the time_blocks and jobs tables. Commits after every call."""

    def __init__(self, db: Session):
        self.db = db

    def _fail(self, operation: str, error: Exception, **context) -> PersistenceFailure:
        self.db.rollback()
        logger.warning("gateway_call_failed", operation=operation, error=str(error), **context)
        return PersistenceFailure(f"{operation} failed: {error}")

    def insert(self, draft: TimeBlockDraft) -> TimeBlock:
        row = TimeBlockRecord(
            worker_id=draft.worker_id,
            job_id=draft.job_id,
            start_time=draft.start,
            end_time=draft.end,
            category=draft.category.value,
            type=draft.type.value,
            coefficient=draft.coefficient,
            status=BlockStatus.pending.value,
            notes=draft.notes,
        )
        try:
            self.db.add(row)
            self.db.commit()
            self.db.refresh(row)
        except SQLAlchemyError as e:
            raise self._fail("insert", e, worker_id=str(draft.worker_id)) from e
        return TimeBlock.from_row(row)

    def update_end(self, block_id: uuid.UUID, new_end: datetime, *, worker_id: uuid.UUID) -> None:
        try:
            row = self.db.query(TimeBlockRecord).filter(
                TimeBlockRecord.id == block_id,
                TimeBlockRecord.worker_id == worker_id,
                TimeBlockRecord.end_time.is_(None),
            ).first()
        except SQLAlchemyError as e:
            raise self._fail("update_end", e, block_id=str(block_id)) from e

        if row is None:
            raise PersistenceFailure(f"Time block {block_id} is not an open block of worker {worker_id}")
        new_end = ensure_utc(new_end)
        if new_end <= ensure_utc(row.start_time):
            raise PersistenceFailure(f"Time block {block_id} cannot end at {new_end.isoformat()}, before it started")

        try:
            row.end_time = new_end
            self.db.commit()
        except SQLAlchemyError as e:
            raise self._fail("update_end", e, block_id=str(block_id)) from e

    def find_open_block(self, worker_id: uuid.UUID) -> Optional[TimeBlock]:
        try:
            row = self.db.query(TimeBlockRecord).filter(
                TimeBlockRecord.worker_id == worker_id,
                TimeBlockRecord.end_time.is_(None),
            ).order_by(TimeBlockRecord.start_time.desc()).first()
        except SQLAlchemyError as e:
            raise self._fail("find_open_block", e, worker_id=str(worker_id)) from e
        return TimeBlock.from_row(row) if row is not None else None

    def job_exists(self, job_id: uuid.UUID) -> bool:
        try:
            return self.db.query(Job.id).filter(Job.id == job_id).first() is not None
        except SQLAlchemyError as e:
            raise self._fail("job_exists", e, job_id=str(job_id)) from e

    def mark_job_completed(self, job_id: uuid.UUID) -> None:
        try:
            job = self.db.query(Job).filter(Job.id == job_id).first()
        except SQLAlchemyError as e:
            raise self._fail("mark_job_completed", e, job_id=str(job_id)) from e

        if job is None:
            raise PersistenceFailure(f"Job {job_id} not found")

        try:
            job.job_status = "completed"
            job.completed_at = utcnow()
            self.db.commit()
        except SQLAlchemyError as e:
            raise self._fail("mark_job_completed", e, job_id=str(job_id)) from e
