"""
Shift segmentation engine.

Splits a worked interval [start, end) into billable segments: first at
every local midnight, then at the edges of each premium-pay window that
falls inside a day. Pure and deterministic; no I/O and no clock reads.
"""
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from ..config import settings
from ..errors import InvalidInterval
from ..schemas.time_blocks import validate_coefficient
from .time_rules import (
    combine_date_time,
    day_ordinal,
    ensure_utc,
    local_date,
    local_midnight,
    next_local_midnight,
    parse_wall_clock,
)

NIGHT_SHIFT_LABEL = "Night Shift"


class PremiumWindow(BaseModel):
    """
    Recurring daily wall-clock window with its own pay coefficient.
    An end earlier than the start means the window crosses midnight (22:00-06:00).
    """
    model_config = ConfigDict(frozen=True)

    name: str
    start: time
    end: time
    coefficient: Decimal

    @field_validator("start", "end", mode="before")
    @classmethod
    def _wall_clock(cls, value):
        return parse_wall_clock(value)

    @field_validator("coefficient", mode="before")
    @classmethod
    def _coefficient(cls, value) -> Decimal:
        return validate_coefficient(value)

    @model_validator(mode="after")
    def _not_degenerate(self):
        if self.start == self.end:
            raise ValueError(f"Premium window '{self.name}' starts and ends at {self.start}")
        return self

    @property
    def wraps_midnight(self) -> bool:
        return self.end < self.start


class Segment(BaseModel):
    """Half-open sub-interval [start, end) of a worked interval."""
    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime
    coefficient: Decimal
    day_ordinal: int
    label: str

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def contains(self, instant: datetime) -> bool:
        return self.start <= ensure_utc(instant) < self.end


def configured_premium_windows() -> List[PremiumWindow]:
    """Premium windows from settings (the night-shift differential)."""
    return [
        PremiumWindow(
            name=NIGHT_SHIFT_LABEL,
            start=settings.night_shift_start,
            end=settings.night_shift_end,
            coefficient=settings.night_shift_coefficient,
        )
    ]


def _checked_interval(start: datetime, end: datetime) -> Tuple[datetime, datetime]:
    start_utc = ensure_utc(start)
    end_utc = ensure_utc(end)
    if end_utc <= start_utc:
        raise InvalidInterval(start, end)
    return start_utc, end_utc


def split_at_day_boundaries(
    start: datetime,
    end: datetime,
    base_coefficient=Decimal("1"),
    timezone_str: Optional[str] = None,
) -> List[Segment]:
    """
    Cut [start, end) at every local midnight strictly inside it.

    Returns one segment per local calendar day touched, labelled "Day N"
    and carrying the base coefficient.
    """
    start, end = _checked_interval(start, end)
    coefficient = validate_coefficient(base_coefficient)

    segments = []
    cursor = start
    while cursor < end:
        boundary = min(next_local_midnight(cursor, timezone_str), end)
        ordinal = day_ordinal(start, cursor, timezone_str)
        segments.append(
            Segment(
                start=cursor,
                end=boundary,
                coefficient=coefficient,
                day_ordinal=ordinal,
                label=f"Day {ordinal}",
            )
        )
        cursor = boundary
    return segments


def premium_occurrences(
    window: PremiumWindow,
    day: date,
    timezone_str: Optional[str] = None,
) -> List[Tuple[datetime, datetime]]:
    """
    UTC intervals covered by `window` on local calendar day `day`.

    A wrapping window yields its head [00:00, end) and its tail
    [start, next midnight); a plain window yields [start, end).
    Empty occurrences are dropped.
    """
    if window.wraps_midnight:
        occurrences = [
            (local_midnight(day, timezone_str), combine_date_time(day, window.end, timezone_str)),
            (combine_date_time(day, window.start, timezone_str), local_midnight(day + timedelta(days=1), timezone_str)),
        ]
    else:
        occurrences = [
            (combine_date_time(day, window.start, timezone_str), combine_date_time(day, window.end, timezone_str)),
        ]
    return [(lo, hi) for lo, hi in occurrences if lo < hi]


def _overlay(parts, lo, hi, coefficient, label):
    # Later paint wins over whatever covered [lo, hi) before.
    painted = [(lo, hi, coefficient, label)]
    for part_start, part_end, part_coefficient, part_label in parts:
        if part_start < lo:
            painted.append((part_start, min(part_end, lo), part_coefficient, part_label))
        if part_end > hi:
            painted.append((max(part_start, hi), part_end, part_coefficient, part_label))
    return sorted(painted, key=lambda part: part[0])


def _merge(parts):
    merged = []
    for part in parts:
        if merged and merged[-1][1] == part[0] and merged[-1][2:] == part[2:]:
            merged[-1] = (merged[-1][0], part[1]) + part[2:]
        else:
            merged.append(part)
    return merged


def _split_day_segment(
    day_segment: Segment,
    premium_windows: Sequence[PremiumWindow],
    timezone_str: Optional[str],
) -> List[Segment]:
    day = local_date(day_segment.start, timezone_str)
    parts = [(day_segment.start, day_segment.end, day_segment.coefficient, day_segment.label)]

    for window in premium_windows:
        for occurrence_start, occurrence_end in premium_occurrences(window, day, timezone_str):
            lo = max(occurrence_start, day_segment.start)
            hi = min(occurrence_end, day_segment.end)
            if lo < hi:
                parts = _overlay(parts, lo, hi, window.coefficient, window.name)

    return [
        Segment(
            start=part_start,
            end=part_end,
            coefficient=coefficient,
            day_ordinal=day_segment.day_ordinal,
            label=label,
        )
        for part_start, part_end, coefficient, label in _merge(parts)
        if part_start < part_end
    ]


def segment(
    start: datetime,
    end: datetime,
    premium_windows: Sequence[PremiumWindow] = (),
    base_coefficient=Decimal("1"),
    timezone_str: Optional[str] = None,
) -> List[Segment]:
    """
    Split [start, end) into ordered, gap-free, non-overlapping segments.

    Args:
        start: Interval start (naive values are taken as UTC)
        end: Interval end; must be after start
        premium_windows: Windows in priority order; later ones win on overlap
        base_coefficient: Coefficient of the originating block
        timezone_str: Timezone for day boundaries and wall-clock windows

    Returns:
        Segments sorted by start whose union is exactly [start, end)

    Raises:
        InvalidInterval: if end <= start
    """
    timezone_str = timezone_str or settings.tz_default
    segments: List[Segment] = []
    for day_segment in split_at_day_boundaries(start, end, base_coefficient, timezone_str):
        segments.extend(_split_day_segment(day_segment, premium_windows, timezone_str))
    return segments
