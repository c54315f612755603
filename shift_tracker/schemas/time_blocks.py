import uuid
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from ..config import settings
from ..errors import CoefficientOutOfRange
from ..services.time_rules import ensure_utc


# Enums
class BlockCategory(str, Enum):
    shift = "shift"
    break_ = "break"
    overtime = "overtime"


class BlockType(str, Enum):
    regular = "regular"
    job = "job"


class BlockStatus(str, Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


class BlockKind(str, Enum):
    """Legal category x type combinations. A job break does not exist."""
    regular_shift = "regular_shift"
    job_shift = "job_shift"
    regular_overtime = "regular_overtime"
    job_overtime = "job_overtime"
    break_ = "break"

    @property
    def category(self) -> BlockCategory:
        return _KIND_PARTS[self][0]

    @property
    def type(self) -> BlockType:
        return _KIND_PARTS[self][1]

    @classmethod
    def from_parts(cls, category, block_type) -> "BlockKind":
        key = (BlockCategory(category), BlockType(block_type))
        for kind, parts in _KIND_PARTS.items():
            if parts == key:
                return kind
        raise ValueError(f"Illegal time block combination: category={key[0].value}, type={key[1].value}")


_KIND_PARTS = {
    BlockKind.regular_shift: (BlockCategory.shift, BlockType.regular),
    BlockKind.job_shift: (BlockCategory.shift, BlockType.job),
    BlockKind.regular_overtime: (BlockCategory.overtime, BlockType.regular),
    BlockKind.job_overtime: (BlockCategory.overtime, BlockType.job),
    BlockKind.break_: (BlockCategory.break_, BlockType.regular),
}

COEFFICIENT_QUANTUM = Decimal("0.01")


def validate_coefficient(value) -> Decimal:
    """
    Accept a pay coefficient from a caller.

    Returns the value as a Decimal with two places; raises
    CoefficientOutOfRange for anything negative, above the configured
    maximum, or not a finite number.
    """
    maximum = settings.coefficient_max
    try:
        coefficient = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise CoefficientOutOfRange(value, Decimal("0"), maximum)
    if not coefficient.is_finite() or coefficient < 0 or coefficient > maximum:
        raise CoefficientOutOfRange(value, Decimal("0"), maximum)
    return coefficient.quantize(COEFFICIENT_QUANTUM, rounding=ROUND_HALF_UP)


# Domain records
class TimeBlockFields(BaseModel):
    model_config = ConfigDict(frozen=True)

    worker_id: uuid.UUID
    job_id: Optional[uuid.UUID] = None
    kind: BlockKind
    start: datetime
    end: Optional[datetime] = None
    coefficient: Decimal
    notes: Optional[str] = None

    @field_validator("start", "end")
    @classmethod
    def _utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value) if value is not None else None

    @field_validator("coefficient", mode="before")
    @classmethod
    def _coefficient(cls, value) -> Decimal:
        return validate_coefficient(value)

    @model_validator(mode="after")
    def _check_shape(self):
        if self.kind.type == BlockType.job and self.job_id is None:
            raise ValueError(f"{self.kind.value} blocks need a job_id")
        if self.kind.type == BlockType.regular and self.job_id is not None:
            raise ValueError(f"{self.kind.value} blocks cannot reference a job")
        if self.end is not None and self.end <= self.start:
            raise ValueError("Time block end must be after its start")
        return self

    @property
    def category(self) -> BlockCategory:
        return self.kind.category

    @property
    def type(self) -> BlockType:
        return self.kind.type

    @property
    def is_open(self) -> bool:
        return self.end is None


class TimeBlockDraft(TimeBlockFields):
    """Fields handed to the gateway for insertion (no id, status is always pending)."""


class TimeBlock(TimeBlockFields):
    id: uuid.UUID
    status: BlockStatus = BlockStatus.pending
    rejection_reason: Optional[str] = None
    reviewed_by_id: Optional[uuid.UUID] = None
    reviewed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row) -> "TimeBlock":
        return cls(
            id=row.id,
            worker_id=row.worker_id,
            job_id=row.job_id,
            kind=BlockKind.from_parts(row.category, row.type),
            start=row.start_time,
            end=row.end_time,
            coefficient=row.coefficient,
            status=BlockStatus(row.status),
            notes=row.notes,
            rejection_reason=row.rejection_reason,
            reviewed_by_id=row.reviewed_by_id,
            reviewed_at=row.reviewed_at,
            created_at=row.created_at,
        )


# API schemas
class ActionPayload(BaseModel):
    coefficient: Optional[Decimal] = None
    job_id: Optional[uuid.UUID] = None
    notes: Optional[str] = None

    @field_validator("coefficient", mode="before")
    @classmethod
    def _coefficient(cls, value):
        return validate_coefficient(value) if value is not None else None


class TimeBlockResponse(BaseModel):
    id: uuid.UUID
    worker_id: uuid.UUID
    job_id: Optional[uuid.UUID] = None
    start_time: datetime
    end_time: Optional[datetime] = None
    category: BlockCategory
    type: BlockType
    coefficient: Decimal
    status: BlockStatus
    notes: Optional[str] = None
    rejection_reason: Optional[str] = None
    reviewed_by_id: Optional[uuid.UUID] = None
    reviewed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_block(cls, block: TimeBlock) -> "TimeBlockResponse":
        return cls(
            id=block.id,
            worker_id=block.worker_id,
            job_id=block.job_id,
            start_time=block.start,
            end_time=block.end,
            category=block.category,
            type=block.type,
            coefficient=block.coefficient,
            status=block.status,
            notes=block.notes,
            rejection_reason=block.rejection_reason,
            reviewed_by_id=block.reviewed_by_id,
            reviewed_at=block.reviewed_at,
            created_at=block.created_at,
        )


class TrackerStateResponse(BaseModel):
    worker_id: uuid.UUID
    state: str
    open_block: Optional[TimeBlockResponse] = None


class ActionResponse(TrackerStateResponse):
    action: str
    inserted: List[TimeBlockResponse] = []
