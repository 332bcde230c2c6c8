"""In-memory orchestration state with an append-only event log.

The store is the only shared mutable resource of the engine. It is owned by
whoever constructs it and passed to the engine explicitly; there is no global
registry. Every read returns a deep copy, so callers can never mutate the
engine's view of an orchestration.
"""

import threading
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from funcmodel.core.models import ExecutionResult, OrchestrationError


def _utc_now() -> datetime:
    """Get current UTC time (timezone-aware)."""
    return datetime.now(UTC)


class OrchestrationNotFoundError(OrchestrationError):
    """No orchestration is registered under the given identifier."""

    def __init__(self, orchestration_id: str):
        self.orchestration_id = orchestration_id
        super().__init__(f"Orchestration '{orchestration_id}' not found")


class InvalidTransitionError(OrchestrationError):
    """Orchestration status change not allowed from its current status."""

    def __init__(
        self,
        orchestration_id: str,
        current: "OrchestrationStatus",
        requested: "OrchestrationStatus",
    ):
        self.orchestration_id = orchestration_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Orchestration '{orchestration_id}' cannot move from "
            f"{current.value} to {requested.value}"
        )


class OrchestrationStatus(str, Enum):
    """Status of one orchestration run."""

    EXECUTING = "executing"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (OrchestrationStatus.COMPLETED, OrchestrationStatus.FAILED)


# A group already in flight when a pause lands can still fault, hence PAUSED -> FAILED
ORCHESTRATION_TRANSITIONS: dict[OrchestrationStatus, frozenset[OrchestrationStatus]] = {
    OrchestrationStatus.EXECUTING: frozenset(
        {OrchestrationStatus.PAUSED, OrchestrationStatus.COMPLETED, OrchestrationStatus.FAILED}
    ),
    OrchestrationStatus.PAUSED: frozenset(
        {OrchestrationStatus.EXECUTING, OrchestrationStatus.FAILED}
    ),
    OrchestrationStatus.COMPLETED: frozenset(),
    OrchestrationStatus.FAILED: frozenset(),
}


class EventType(str, Enum):
    """Types of events in the orchestration event log."""

    ORCHESTRATION_STARTED = "orchestration_started"
    ORCHESTRATION_PAUSED = "orchestration_paused"
    ORCHESTRATION_RESUMED = "orchestration_resumed"
    ORCHESTRATION_COMPLETED = "orchestration_completed"
    ORCHESTRATION_FAILED = "orchestration_failed"

    GROUP_STARTED = "group_started"
    GROUP_COMPLETED = "group_completed"
    GROUP_FAILED = "group_failed"

    ACTION_COMPLETED = "action_completed"
    ACTION_FAILED = "action_failed"
    ACTION_SKIPPED = "action_skipped"
    ACTION_RETRIED = "action_retried"


class Event(BaseModel):
    """Immutable event in the orchestration log."""

    id: int
    orchestration_id: str
    event_type: EventType
    group_id: str | None = None
    action_id: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=_utc_now)


class OrchestrationState(BaseModel):
    """Live progress of one orchestration."""

    orchestration_id: str
    container_id: str
    status: OrchestrationStatus = OrchestrationStatus.EXECUTING
    current_group: str | None = None
    completed_groups: list[str] = Field(default_factory=list)
    failed_groups: list[str] = Field(default_factory=list)
    skipped_actions: list[str] = Field(default_factory=list)
    results: list[ExecutionResult] = Field(default_factory=list)
    start_time: datetime = Field(default_factory=_utc_now)
    end_time: datetime | None = None

    @property
    def succeeded_count(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed_count(self) -> int:
        return sum(1 for r in self.results if not r.success)


class OrchestrationStateStore:
    """Thread-safe table of orchestration id -> OrchestrationState.

    Writers are expected to follow single-writer discipline per id (the
    engine driving that orchestration). The lock keeps each individual
    operation atomic; it does not serialize whole runs.
    """

    def __init__(self) -> None:
        self._states: dict[str, OrchestrationState] = {}
        self._events: dict[str, list[Event]] = {}
        self._event_seq = 0
        self._lock = threading.RLock()

    def _require(self, orchestration_id: str) -> OrchestrationState:
        """Return the live state object (call within lock)."""
        state = self._states.get(orchestration_id)
        if state is None:
            raise OrchestrationNotFoundError(orchestration_id)
        return state

    # ========== Lifecycle ==========

    def create(self, orchestration_id: str, container_id: str) -> OrchestrationState:
        """Register a new orchestration in EXECUTING status."""
        with self._lock:
            if orchestration_id in self._states:
                raise OrchestrationError(f"Orchestration '{orchestration_id}' already registered")
            state = OrchestrationState(
                orchestration_id=orchestration_id,
                container_id=container_id,
            )
            self._states[orchestration_id] = state
            self._events[orchestration_id] = []
            return state.model_copy(deep=True)

    def delete(self, orchestration_id: str) -> None:
        with self._lock:
            self._require(orchestration_id)
            del self._states[orchestration_id]
            self._events.pop(orchestration_id, None)

    def exists(self, orchestration_id: str) -> bool:
        with self._lock:
            return orchestration_id in self._states

    def ids(self) -> list[str]:
        with self._lock:
            return list(self._states)

    # ========== Reads ==========

    def get(self, orchestration_id: str) -> OrchestrationState:
        with self._lock:
            return self._require(orchestration_id).model_copy(deep=True)

    def get_status(self, orchestration_id: str) -> OrchestrationStatus:
        with self._lock:
            return self._require(orchestration_id).status

    def get_events(self, orchestration_id: str) -> list[Event]:
        with self._lock:
            self._require(orchestration_id)
            return [e.model_copy(deep=True) for e in self._events[orchestration_id]]

    # ========== Writes ==========

    def transition(
        self,
        orchestration_id: str,
        new_status: OrchestrationStatus,
        allowed_from: set[OrchestrationStatus] | None = None,
    ) -> OrchestrationState:
        """Atomically move an orchestration to a new status.

        Args:
            orchestration_id: Orchestration to update
            new_status: Target status
            allowed_from: Optional narrower set of acceptable current statuses

        Returns:
            Copy of the updated state

        Raises:
            OrchestrationNotFoundError: If the id is unknown
            InvalidTransitionError: If the move is not allowed
        """
        with self._lock:
            state = self._require(orchestration_id)
            current = state.status
            legal = new_status in ORCHESTRATION_TRANSITIONS[current]
            if not legal or (allowed_from is not None and current not in allowed_from):
                raise InvalidTransitionError(orchestration_id, current, new_status)
            state.status = new_status
            if new_status.is_terminal:
                state.end_time = _utc_now()
                state.current_group = None
            return state.model_copy(deep=True)

    def set_current_group(self, orchestration_id: str, group_id: str | None) -> None:
        with self._lock:
            self._require(orchestration_id).current_group = group_id

    def append_result(self, orchestration_id: str, result: ExecutionResult) -> None:
        with self._lock:
            self._require(orchestration_id).results.append(result)

    def mark_group_completed(self, orchestration_id: str, group_id: str) -> None:
        with self._lock:
            self._require(orchestration_id).completed_groups.append(group_id)

    def mark_group_failed(self, orchestration_id: str, group_id: str) -> None:
        with self._lock:
            self._require(orchestration_id).failed_groups.append(group_id)

    def mark_action_skipped(self, orchestration_id: str, action_id: str) -> None:
        with self._lock:
            self._require(orchestration_id).skipped_actions.append(action_id)

    def record_event(
        self,
        orchestration_id: str,
        event_type: EventType,
        group_id: str | None = None,
        action_id: str | None = None,
        **payload: Any,
    ) -> Event:
        with self._lock:
            self._require(orchestration_id)
            self._event_seq += 1
            event = Event(
                id=self._event_seq,
                orchestration_id=orchestration_id,
                event_type=event_type,
                group_id=group_id,
                action_id=action_id,
                payload=payload,
            )
            self._events[orchestration_id].append(event)
            return event
