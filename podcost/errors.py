"""
Deletion-cost controller error hierarchy.

Every error carries a kind, and every kind maps to one requeue policy that
the controller applies when a reconcile fails:

- DROP:      the event is stale or structurally broken; wait for a new event
- IMMEDIATE: re-run the reconcile right away with fresh state
- BACKOFF:   re-run after an exponential delay
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Dict, Optional


class ErrorKind(Enum):
    NOT_FOUND = auto()
    """Replica, node or workload missing. Usually a stale event."""

    OWNER_MISSING = auto()
    """Broken replica -> group -> workload chain."""

    CONFLICT = auto()
    """Conditional write lost against a newer version."""

    ALLOCATION_EXHAUSTED = auto()
    """Every cost value in the zone is claimed."""

    TRANSIENT_IO = auto()
    """Any other collaborator failure."""

    CANCELLED = auto()
    """The caller's cancel signal was set."""


class Requeue(Enum):
    DROP = auto()
    IMMEDIATE = auto()
    BACKOFF = auto()


REQUEUE_POLICY: Dict[ErrorKind, Requeue] = {
    ErrorKind.NOT_FOUND: Requeue.DROP,
    ErrorKind.OWNER_MISSING: Requeue.DROP,
    ErrorKind.CONFLICT: Requeue.IMMEDIATE,
    ErrorKind.ALLOCATION_EXHAUSTED: Requeue.BACKOFF,
    ErrorKind.TRANSIENT_IO: Requeue.BACKOFF,
    ErrorKind.CANCELLED: Requeue.DROP,
}


@dataclass
class PodCostError(Exception):
    """
    Base exception for the controller.

    Example:
        raise Conflict(
            "stale replica version",
            replica="web-7d9-abc",
            expected=3,
            actual=4,
        )
    """

    message: str
    kind: ErrorKind
    context: Dict[str, Any] = field(default_factory=dict)
    cause: Optional[BaseException] = None

    def __str__(self) -> str:
        ctx = f" {self.context}" if self.context else ""
        cause = f" (caused by: {self.cause})" if self.cause else ""
        return f"[{self.kind.name}] {self.message}{ctx}{cause}"

    def __hash__(self) -> int:
        return id(self)

    @property
    def requeue(self) -> Requeue:
        return REQUEUE_POLICY[self.kind]

    @property
    def retryable(self) -> bool:
        return self.requeue is not Requeue.DROP

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for structured logging."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "kind": self.kind.name,
            "requeue": self.requeue.name,
            "context": self.context,
            "cause": str(self.cause) if self.cause else None,
        }


class NotFound(PodCostError):
    def __init__(self, message: str, cause: Optional[BaseException] = None, **context: Any):
        super().__init__(message=message, kind=ErrorKind.NOT_FOUND, context=context, cause=cause)


class OwnerMissing(PodCostError):
    def __init__(self, message: str, cause: Optional[BaseException] = None, **context: Any):
        super().__init__(message=message, kind=ErrorKind.OWNER_MISSING, context=context, cause=cause)


class Conflict(PodCostError):
    def __init__(self, message: str, cause: Optional[BaseException] = None, **context: Any):
        super().__init__(message=message, kind=ErrorKind.CONFLICT, context=context, cause=cause)


class AllocationExhausted(PodCostError):
    def __init__(self, message: str = "no deletion cost slot left", cause: Optional[BaseException] = None, **context: Any):
        super().__init__(message=message, kind=ErrorKind.ALLOCATION_EXHAUSTED, context=context, cause=cause)


class TransientIO(PodCostError):
    def __init__(self, message: str, cause: Optional[BaseException] = None, **context: Any):
        super().__init__(message=message, kind=ErrorKind.TRANSIENT_IO, context=context, cause=cause)


class Cancelled(PodCostError):
    def __init__(self, message: str = "cancelled", cause: Optional[BaseException] = None, **context: Any):
        super().__init__(message=message, kind=ErrorKind.CANCELLED, context=context, cause=cause)


def as_pod_cost_error(exc: BaseException) -> PodCostError:
    """Wrap foreign exceptions as TRANSIENT_IO; pass ours through."""
    if isinstance(exc, PodCostError):
        return exc
    return TransientIO(f"unexpected {type(exc).__name__}", cause=exc)
