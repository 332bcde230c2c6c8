"""Data models for action-node orchestration.

Uses Pydantic for validated value objects. An action node is frozen except for
its status and retry counter, which live in a node-owned cell and only change
through update_status() and record_attempt().
"""

import copy
import random
import threading
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, JsonValue, PrivateAttr

from funcmodel.core.conditions import ActionCondition

# Context payloads exchanged with the context-access collaborator and executors:
# str | int | float | bool | None | list[ContextValue] | dict[str, ContextValue]
ContextValue = JsonValue


def _utc_now() -> datetime:
    """Get current UTC time (timezone-aware)."""
    return datetime.now(UTC)


class OrchestrationError(Exception):
    """Base class for errors raised by the orchestration core."""

    pass


class ExecutionMode(str, Enum):
    """How the members of an execution group are run."""

    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"
    CONDITIONAL = "conditional"


class ActionStatus(str, Enum):
    """Lifecycle status of an action node."""

    DRAFT = "draft"
    CONFIGURED = "configured"
    ACTIVE = "active"
    INACTIVE = "inactive"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"
    RETRYING = "retrying"
    ARCHIVED = "archived"
    ERROR = "error"


ACTION_STATUS_TRANSITIONS: dict[ActionStatus, frozenset[ActionStatus]] = {
    ActionStatus.DRAFT: frozenset({ActionStatus.ACTIVE, ActionStatus.ARCHIVED}),
    ActionStatus.CONFIGURED: frozenset({ActionStatus.ACTIVE, ActionStatus.ARCHIVED}),
    ActionStatus.ACTIVE: frozenset(
        {ActionStatus.EXECUTING, ActionStatus.INACTIVE, ActionStatus.ARCHIVED, ActionStatus.ERROR}
    ),
    ActionStatus.INACTIVE: frozenset({ActionStatus.ACTIVE, ActionStatus.ARCHIVED}),
    ActionStatus.EXECUTING: frozenset(
        {ActionStatus.COMPLETED, ActionStatus.FAILED, ActionStatus.RETRYING, ActionStatus.ERROR}
    ),
    ActionStatus.FAILED: frozenset(
        {ActionStatus.RETRYING, ActionStatus.ARCHIVED, ActionStatus.ACTIVE}
    ),
    ActionStatus.RETRYING: frozenset(
        {ActionStatus.EXECUTING, ActionStatus.FAILED, ActionStatus.ERROR}
    ),
    ActionStatus.COMPLETED: frozenset({ActionStatus.ARCHIVED}),
    ActionStatus.ERROR: frozenset({ActionStatus.ACTIVE, ActionStatus.ARCHIVED}),
    ActionStatus.ARCHIVED: frozenset(),
}


class InvalidStatusTransitionError(OrchestrationError):
    """Action node status change not allowed by the transition table."""

    def __init__(self, current: ActionStatus, requested: ActionStatus):
        self.current = current
        self.requested = requested
        super().__init__(
            f"Invalid status transition from {current.value} to {requested.value}"
        )


class BackoffStrategy(str, Enum):
    """Spacing between retry attempts."""

    IMMEDIATE = "immediate"
    LINEAR = "linear"
    EXPONENTIAL = "exponential"


class RetryPolicy(BaseModel):
    """Configuration for retry behavior of a single action node."""

    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(default=3, ge=0)
    current_attempts: int = Field(default=0, ge=0)
    backoff_strategy: BackoffStrategy = BackoffStrategy.EXPONENTIAL
    base_delay: float = Field(default=2.0, ge=0)
    max_delay: float = Field(default=60.0, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0)
    jitter: float = Field(default=0.1, ge=0, le=1.0)

    def get_delay(self, attempt: int) -> float:
        """Calculate delay in seconds before a given attempt (0-indexed)."""
        if self.backoff_strategy == BackoffStrategy.IMMEDIATE:
            return 0.0

        if self.backoff_strategy == BackoffStrategy.LINEAR:
            delay = self.base_delay * (attempt + 1)
        else:
            delay = self.base_delay * (self.backoff_multiplier**attempt)
        delay = min(delay, self.max_delay)

        jitter = random.uniform(-self.jitter * delay, self.jitter * delay)
        return max(0.0, delay + jitter)


@dataclass
class _StatusCell:
    """Mutable part of an otherwise frozen ActionNode."""

    status: ActionStatus
    attempts: int
    updated_at: datetime = field(default_factory=_utc_now)
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def fork(self) -> "_StatusCell":
        """Independent cell starting from this one's current values."""
        with self.lock:
            return _StatusCell(
                status=self.status, attempts=self.attempts, updated_at=self.updated_at
            )


class ActionNode(BaseModel):
    """An executable unit of work belonging to a container node.

    ``status`` and ``current_attempts`` are read through properties. Pass
    ``status=`` at construction to start from something other than ACTIVE.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    action_id: str
    parent_node_id: str
    name: str | None = None
    execution_order: int = 0
    priority: int = 5
    execution_mode: ExecutionMode = ExecutionMode.SEQUENTIAL
    estimated_duration_seconds: float = Field(default=0.0, ge=0)
    retry_policy: RetryPolicy = Field(default_factory=RetryPolicy)
    condition: ActionCondition | None = None
    initial_status: ActionStatus = Field(default=ActionStatus.ACTIVE, alias="status")

    _cell: _StatusCell = PrivateAttr()

    def model_post_init(self, __context: Any) -> None:
        self._cell = _StatusCell(
            status=self.initial_status,
            attempts=self.retry_policy.current_attempts,
        )

    # Copies (including model_copy) carry the current status and attempts in
    # a cell of their own
    def __copy__(self) -> "ActionNode":
        copied = super().__copy__()
        copied._cell = self._cell.fork()
        return copied

    def __deepcopy__(self, memo: dict[int, Any] | None = None) -> "ActionNode":
        copied = self.__copy__()
        object.__setattr__(copied, "__dict__", copy.deepcopy(self.__dict__, memo))
        return copied

    @property
    def label(self) -> str:
        return self.name or self.action_id

    @property
    def status(self) -> ActionStatus:
        return self._cell.status

    @property
    def updated_at(self) -> datetime:
        return self._cell.updated_at

    @property
    def current_attempts(self) -> int:
        return self._cell.attempts

    @property
    def retries_exhausted(self) -> bool:
        return self._cell.attempts >= self.retry_policy.max_attempts

    def update_status(self, new_status: ActionStatus) -> None:
        """Move the node to a new status.

        Raises:
            InvalidStatusTransitionError: If the transition table forbids the move
        """
        with self._cell.lock:
            current = self._cell.status
            if new_status not in ACTION_STATUS_TRANSITIONS[current]:
                raise InvalidStatusTransitionError(current, new_status)
            self._cell.status = new_status
            self._cell.updated_at = _utc_now()

    def record_attempt(self) -> int:
        """Count one retry attempt and return the new total."""
        with self._cell.lock:
            self._cell.attempts += 1
            return self._cell.attempts


class ExecutionResult(BaseModel):
    """Outcome of running one action node."""

    model_config = ConfigDict(frozen=True)

    action_id: str
    success: bool
    duration: float = Field(default=0.0, ge=0)  # seconds
    timestamp: datetime = Field(default_factory=_utc_now)
    start_time: datetime | None = None
    error: str | None = None
    output: dict[str, ContextValue] | None = None
