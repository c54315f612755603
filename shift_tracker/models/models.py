import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Index,
    Numeric,
    String,
    Text,
    Uuid,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from ..db import Base


def uuid_pk() -> Mapped[uuid.UUID]:
    return mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TimeBlockRecord(Base):
    """Worked, break and overtime intervals with their pay coefficient"""
    __tablename__ = "time_blocks"

    id: Mapped[uuid.UUID] = uuid_pk()
    worker_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False, index=True)
    job_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), index=True)  # External work order
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)  # UTC
    end_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))  # UTC, NULL while open
    category: Mapped[str] = mapped_column(String(20), nullable=False)  # shift|break|overtime
    type: Mapped[str] = mapped_column(String(20), nullable=False, default="regular")  # regular|job
    coefficient: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False, default=Decimal("1.00"))
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")  # pending|approved|rejected
    notes: Mapped[Optional[str]] = mapped_column(Text)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text)
    reviewed_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True))
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        Index("idx_time_blocks_worker_start", "worker_id", "start_time"),
        # At most one open block per worker
        Index(
            "uq_time_blocks_open_per_worker",
            "worker_id",
            unique=True,
            postgresql_where=text("end_time IS NULL"),
            sqlite_where=text("end_time IS NULL"),
        ),
        CheckConstraint("coefficient >= 0", name="ck_time_blocks_coefficient_positive"),
        CheckConstraint("NOT (category = 'break' AND type = 'job')", name="ck_time_blocks_no_job_break"),
    )


class Job(Base):
    """Minimal view of the externally managed work order a job shift refers to"""
    __tablename__ = "jobs"

    id: Mapped[uuid.UUID] = uuid_pk()
    job_number: Mapped[Optional[str]] = mapped_column(String(50), index=True)
    job_status: Mapped[str] = mapped_column(String(30), default="booked")  # unscheduled|booked|in_progress|completed|...
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
