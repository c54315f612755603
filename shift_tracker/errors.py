"""
Error taxonomy for the shift tracker core.

Every failure is raised to the caller; nothing in the core catches and
ignores these. The HTTP layer maps them to distinct status codes.
"""
from typing import List, Optional, Sequence


class ShiftTrackerError(Exception):
    """Base class for all shift tracker errors."""


class InvalidInterval(ShiftTrackerError, ValueError):
    """Segmentation was asked to split an interval whose end is not after its start."""

    def __init__(self, start, end):
        self.start = start
        self.end = end
        super().__init__(f"Interval end {end!s} must be after start {start!s}")


class PreconditionViolation(ShiftTrackerError):
    """
    An action was invoked in a state that does not permit it.

    Usually means the in-memory view is stale: the caller should resync
    from the gateway instead of guessing.
    """

    def __init__(self, action: str, state: Optional[str], message: Optional[str] = None):
        self.action = action
        self.state = state
        super().__init__(message or f"Action '{action}' is not allowed in state '{state}'")


class CoefficientOutOfRange(ShiftTrackerError, ValueError):
    def __init__(self, value, minimum, maximum):
        self.value = value
        self.minimum = minimum
        self.maximum = maximum
        super().__init__(f"Coefficient {value} is outside the accepted range [{minimum}, {maximum}]")


class UnknownJob(ShiftTrackerError, ValueError):
    def __init__(self, job_id):
        self.job_id = job_id
        super().__init__(f"Job {job_id} not found")


class PersistenceFailure(ShiftTrackerError):
    """
    A gateway call failed.

    `step` is the index of the failing command in the plan being executed
    (None when the failure happened outside a plan, e.g. during resync).
    `applied` lists the commands that completed before the failure; they
    are not rolled back.
    """

    def __init__(self, message: str, step: Optional[int] = None, applied: Optional[Sequence] = None):
        self.step = step
        self.applied: List = list(applied or [])
        super().__init__(message)
