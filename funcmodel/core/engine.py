"""Orchestration engine for action-node execution plans.

Drives a plan group by group in descending priority:

- SEQUENTIAL groups run members one after another on the calling thread
- PARALLEL groups fan members out over a thread pool and join before the
  next group starts
- CONDITIONAL groups evaluate each member's predicate against context from
  the context-access collaborator and run qualifying members sequentially

STATE MACHINE (per orchestration):
    executing -> paused | completed | failed
    paused    -> executing | failed

Pause takes effect at the next group boundary; members already in flight
finish normally. If the loop reaches a boundary while paused it stops and
keeps the remaining groups for resume_execution() to continue.

FAILURE CLASSES:
- Expected: the executor returns success=False or raises ActionExecutionError.
  The result is recorded, the group goes to failed_groups, the run continues.
- Structural: any other exception. The running group goes to failed_groups,
  the orchestration ends FAILED and OrchestrationFailedError is raised.
"""

import logging
import threading
import time
from collections.abc import Callable, Iterable
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Protocol

from funcmodel.core.conditions import evaluate_condition
from funcmodel.core.config import EngineConfig
from funcmodel.core.context import AccessLevel, ContextAccess, ContextAccessError
from funcmodel.core.models import (
    ActionNode,
    ActionStatus,
    ContextValue,
    ExecutionMode,
    ExecutionResult,
    InvalidStatusTransitionError,
    OrchestrationError,
)
from funcmodel.core.planner import ExecutionGroup, ExecutionPlan
from funcmodel.core.state import (
    Event,
    EventType,
    OrchestrationState,
    OrchestrationStateStore,
    OrchestrationStatus,
)

logger = logging.getLogger(__name__)

ConditionEvaluator = Callable[[ActionNode, dict[str, ContextValue]], bool]


class ActionExecutionError(OrchestrationError):
    """Raised by executors for an expected, recordable action failure."""

    pass


class OrchestrationFailedError(OrchestrationError):
    """A structural fault ended an orchestration."""

    def __init__(self, orchestration_id: str, cause: BaseException):
        self.orchestration_id = orchestration_id
        self.cause = cause
        super().__init__(f"Orchestration '{orchestration_id}' failed: {cause}")


class MaxAttemptsExceededError(OrchestrationError):
    """Retry requested for a node whose attempts are used up."""

    def __init__(self, action_id: str, max_attempts: int):
        self.action_id = action_id
        self.max_attempts = max_attempts
        super().__init__(
            f"Action '{action_id}' has exhausted its retry policy ({max_attempts} attempts)"
        )


class ActionExecutor(Protocol):
    """Per-action execution primitive."""

    def execute(self, node: ActionNode, context: dict[str, ContextValue]) -> ExecutionResult:
        """Run one action. Raise ActionExecutionError for an expected failure."""
        ...


@dataclass
class ActionProgress:
    """Snapshot of how far a set of action nodes has progressed."""

    completed: int
    executing: int
    failed: int
    total: int

    @property
    def percentage(self) -> float:
        if self.total == 0:
            return 100.0
        return self.completed / self.total * 100


@dataclass
class _RunHandle:
    """Where an orchestration's group loop is, so resume can pick it up."""

    groups: tuple[ExecutionGroup, ...]
    cursor: int = 0
    running: bool = False
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def remaining(self) -> tuple[ExecutionGroup, ...]:
        return self.groups[self.cursor :]


class OrchestrationEngine:
    """Runs execution plans against an executor and records progress.

    USAGE:
        store = OrchestrationStateStore()
        engine = OrchestrationEngine(store, executor, context_access=access)
        orchestration_id = engine.start_execution(plan)
        state = engine.get_orchestration_state(orchestration_id)
    """

    def __init__(
        self,
        store: OrchestrationStateStore,
        executor: ActionExecutor,
        context_access: ContextAccess | None = None,
        config: EngineConfig | None = None,
        condition_evaluator: ConditionEvaluator | None = None,
    ):
        self.store = store
        self.executor = executor
        self.context_access = context_access
        self.config = config or EngineConfig()
        self.condition_evaluator = condition_evaluator
        self._runs: dict[str, _RunHandle] = {}
        self._lock = threading.Lock()

    # ========== Public API ==========

    def start_execution(self, plan: ExecutionPlan) -> str:
        """Register an orchestration for the plan and run it.

        Returns:
            The orchestration id. The run has finished, or stopped at a
            group boundary because it was paused, when this returns.

        Raises:
            OrchestrationFailedError: If a structural fault ended the run
        """
        handle = _RunHandle(groups=plan.execution_groups)
        with self._lock:
            orchestration_id = self._new_orchestration_id(plan.container_id)
            self.store.create(orchestration_id, plan.container_id)
            self._runs[orchestration_id] = handle

        self.store.record_event(
            orchestration_id,
            EventType.ORCHESTRATION_STARTED,
            group_count=len(plan.execution_groups),
            action_count=len(plan.action_nodes),
            estimated_duration=plan.total_estimated_duration,
        )
        logger.info(
            f"Orchestration '{orchestration_id}' started: {len(plan.action_nodes)} actions "
            f"in {len(plan.execution_groups)} groups"
        )
        self._drive(orchestration_id, handle)
        return orchestration_id

    def pause_execution(self, orchestration_id: str) -> None:
        """Pause at the next group boundary.

        Raises:
            OrchestrationNotFoundError: If the id is unknown
            InvalidTransitionError: If the orchestration is not executing
        """
        handle = self._get_handle(orchestration_id)
        if handle is None:
            self.store.transition(orchestration_id, OrchestrationStatus.PAUSED)
        else:
            with handle.lock:
                self.store.transition(orchestration_id, OrchestrationStatus.PAUSED)
        self.store.record_event(orchestration_id, EventType.ORCHESTRATION_PAUSED)
        logger.warning(f"Orchestration '{orchestration_id}' paused")

    def resume_execution(self, orchestration_id: str) -> None:
        """Resume a paused orchestration.

        If the group loop already stopped, the remaining groups run on the
        calling thread before this returns.

        Raises:
            OrchestrationNotFoundError: If the id is unknown
            InvalidTransitionError: If the orchestration is not paused
            OrchestrationFailedError: If a structural fault ended the run
        """
        handle = self._get_handle(orchestration_id)
        if handle is None:
            self.store.transition(
                orchestration_id,
                OrchestrationStatus.EXECUTING,
                allowed_from={OrchestrationStatus.PAUSED},
            )
            self.store.record_event(orchestration_id, EventType.ORCHESTRATION_RESUMED)
            return

        with handle.lock:
            self.store.transition(
                orchestration_id,
                OrchestrationStatus.EXECUTING,
                allowed_from={OrchestrationStatus.PAUSED},
            )
            needs_driver = not handle.running
        self.store.record_event(
            orchestration_id,
            EventType.ORCHESTRATION_RESUMED,
            remaining_groups=[g.group_id for g in handle.remaining],
        )
        logger.info(
            f"Orchestration '{orchestration_id}' resumed with "
            f"{len(handle.remaining)} groups remaining"
        )
        if needs_driver:
            self._drive(orchestration_id, handle)

    def get_orchestration_state(self, orchestration_id: str) -> OrchestrationState:
        """Return a copy of the orchestration's state.

        Raises:
            OrchestrationNotFoundError: If the id is unknown
        """
        return self.store.get(orchestration_id)

    def get_events(self, orchestration_id: str) -> list[Event]:
        return self.store.get_events(orchestration_id)

    def evaluate_conditional_execution(
        self, node: ActionNode, context: dict[str, ContextValue]
    ) -> bool:
        """Decide whether a conditional node runs. Never raises."""
        try:
            if self.condition_evaluator is not None:
                return bool(self.condition_evaluator(node, context))
            if node.condition is None:
                return self.config.default_condition_result
            return evaluate_condition(node.condition, context)
        except Exception as e:
            logger.warning(f"Condition for action '{node.action_id}' could not be evaluated: {e}")
            return self.config.condition_error_default

    def handle_action_retry(
        self,
        node: ActionNode,
        failure_reason: str,
        orchestration_id: str | None = None,
    ) -> ExecutionResult:
        """Re-run a failed action once.

        The engine never sleeps here; spacing between calls is up to the
        caller (see RetryRunner and RetryPolicy.get_delay).

        Args:
            node: Node to retry (normally in FAILED status)
            failure_reason: Why the previous attempt failed, for the log
            orchestration_id: If given, the result and an ACTION_RETRIED
                event are recorded against this orchestration

        Returns:
            The executor's result, unchanged. A failed result is not an error.

        Raises:
            MaxAttemptsExceededError: If the node has no attempts left
            InvalidStatusTransitionError: If the node cannot enter RETRYING
        """
        max_attempts = node.retry_policy.max_attempts
        if node.current_attempts >= max_attempts:
            raise MaxAttemptsExceededError(node.action_id, max_attempts)

        node.update_status(ActionStatus.RETRYING)
        attempt = node.record_attempt()
        logger.info(
            f"Retrying action '{node.action_id}' (attempt {attempt}/{max_attempts}): "
            f"{failure_reason}"
        )

        result = self._execute_action(node)

        if orchestration_id is not None:
            # failed_groups keeps the first pass; the event ties the retry back to it
            group_id = self._group_of_action(orchestration_id, node.action_id)
            self.store.append_result(orchestration_id, result)
            self.store.record_event(
                orchestration_id,
                EventType.ACTION_RETRIED,
                group_id=group_id,
                action_id=node.action_id,
                attempt=attempt,
                success=result.success,
                recovered_group=group_id if result.success else None,
                failure_reason=failure_reason,
            )
        return result

    def monitor_progress(self, action_nodes: Iterable[ActionNode]) -> ActionProgress:
        statuses = [node.status for node in action_nodes]
        return ActionProgress(
            completed=statuses.count(ActionStatus.COMPLETED),
            executing=statuses.count(ActionStatus.EXECUTING),
            failed=statuses.count(ActionStatus.FAILED),
            total=len(statuses),
        )

    # ========== Group loop ==========

    def _new_orchestration_id(self, container_id: str) -> str:
        """Build '<container>_<epoch ms>', suffixed if taken (call within lock)."""
        sep = self.config.id_separator
        base = f"{container_id}{sep}{int(time.time() * 1000)}"
        candidate = base
        ordinal = 1
        while self.store.exists(candidate) or candidate in self._runs:
            ordinal += 1
            candidate = f"{base}{sep}{ordinal}"
        return candidate

    def _group_of_action(self, orchestration_id: str, action_id: str) -> str | None:
        """Group that last ran the action in this orchestration, if any."""
        for event in reversed(self.store.get_events(orchestration_id)):
            if event.action_id == action_id and event.group_id is not None:
                return event.group_id
        return None

    def _get_handle(self, orchestration_id: str) -> _RunHandle | None:
        with self._lock:
            return self._runs.get(orchestration_id)

    def _forget(self, orchestration_id: str) -> None:
        with self._lock:
            self._runs.pop(orchestration_id, None)

    def _drive(self, orchestration_id: str, handle: _RunHandle) -> None:
        """Run remaining groups until done, paused, or failed."""
        with handle.lock:
            if handle.running:
                return
            handle.running = True

        # running is cleared under the same lock hold as the status check, so a
        # resume either sees this loop alive or starts a new one
        while True:
            with handle.lock:
                if self.store.get_status(orchestration_id) == OrchestrationStatus.PAUSED:
                    handle.running = False
                    logger.info(
                        f"Orchestration '{orchestration_id}' stopped at group boundary "
                        f"({len(handle.remaining)} groups remaining)"
                    )
                    return
                if not handle.remaining:
                    handle.running = False
                    self._complete(orchestration_id)
                    return
                group = handle.groups[handle.cursor]

            try:
                self._run_group(orchestration_id, group)
            except Exception as e:
                with handle.lock:
                    handle.running = False
                self._fail(orchestration_id, group, e)
                raise OrchestrationFailedError(orchestration_id, e) from e

            with handle.lock:
                handle.cursor += 1

    def _complete(self, orchestration_id: str) -> None:
        """Finalize a run whose groups are all done (call within handle lock)."""
        state = self.store.transition(
            orchestration_id,
            OrchestrationStatus.COMPLETED,
            allowed_from={OrchestrationStatus.EXECUTING},
        )
        self.store.record_event(
            orchestration_id,
            EventType.ORCHESTRATION_COMPLETED,
            succeeded=state.succeeded_count,
            failed=state.failed_count,
            failed_groups=state.failed_groups,
        )
        self._forget(orchestration_id)
        logger.info(
            f"Orchestration '{orchestration_id}' completed: {state.succeeded_count} succeeded, "
            f"{state.failed_count} failed, {len(state.skipped_actions)} skipped"
        )

    def _fail(self, orchestration_id: str, group: ExecutionGroup, error: Exception) -> None:
        logger.error(
            f"Orchestration '{orchestration_id}' failed in group '{group.group_id}': {error}"
        )
        self.store.mark_group_failed(orchestration_id, group.group_id)
        self.store.record_event(
            orchestration_id, EventType.GROUP_FAILED, group_id=group.group_id, error=str(error)
        )
        self.store.transition(orchestration_id, OrchestrationStatus.FAILED)
        self.store.record_event(
            orchestration_id,
            EventType.ORCHESTRATION_FAILED,
            group_id=group.group_id,
            error=str(error),
            error_type=type(error).__name__,
        )
        self._forget(orchestration_id)

    def _run_group(self, orchestration_id: str, group: ExecutionGroup) -> None:
        self.store.set_current_group(orchestration_id, group.group_id)
        self.store.record_event(
            orchestration_id,
            EventType.GROUP_STARTED,
            group_id=group.group_id,
            execution_mode=group.execution_mode.value,
            action_ids=group.action_ids,
        )
        logger.info(
            f"Running group '{group.group_id}' ({len(group.action_nodes)} actions, "
            f"{group.execution_mode.value})"
        )

        if group.execution_mode == ExecutionMode.PARALLEL:
            results = self._run_parallel(orchestration_id, group)
        elif group.execution_mode == ExecutionMode.CONDITIONAL:
            results = self._run_conditional(orchestration_id, group)
        else:
            results = self._run_sequential(orchestration_id, group)

        failed = [r.action_id for r in results if not r.success]
        if failed:
            self.store.mark_group_failed(orchestration_id, group.group_id)
            self.store.record_event(
                orchestration_id,
                EventType.GROUP_FAILED,
                group_id=group.group_id,
                failed_actions=failed,
            )
            logger.warning(f"Group '{group.group_id}' finished with failed actions: {failed}")
        else:
            self.store.mark_group_completed(orchestration_id, group.group_id)
            self.store.record_event(
                orchestration_id, EventType.GROUP_COMPLETED, group_id=group.group_id
            )

    def _run_sequential(
        self, orchestration_id: str, group: ExecutionGroup
    ) -> list[ExecutionResult]:
        results = []
        for node in group.action_nodes:
            result = self._execute_action(node)
            self._record_result(orchestration_id, group, result)
            results.append(result)
        return results

    def _run_parallel(self, orchestration_id: str, group: ExecutionGroup) -> list[ExecutionResult]:
        results: list[ExecutionResult] = []
        fault: Exception | None = None
        workers = min(self.config.max_parallel_workers, len(group.action_nodes))

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="funcmodel-action") as pool:
            futures: dict[Future, ActionNode] = {
                pool.submit(self._execute_action, node): node for node in group.action_nodes
            }
            # Results are recorded here, on the orchestration thread, in completion order
            for future in as_completed(futures):
                try:
                    result = future.result()
                except Exception as e:
                    logger.error(f"Action '{futures[future].action_id}' raised: {e}")
                    if fault is None:
                        fault = e
                    continue
                self._record_result(orchestration_id, group, result)
                results.append(result)

        if fault is not None:
            raise fault
        return results

    def _run_conditional(
        self, orchestration_id: str, group: ExecutionGroup
    ) -> list[ExecutionResult]:
        results = []
        for node in group.action_nodes:
            try:
                context = self._fetch_context(node)
            except Exception as e:
                logger.warning(f"No condition context for action '{node.action_id}': {e}")
                should_run = self.config.condition_error_default
            else:
                should_run = self.evaluate_conditional_execution(node, context)

            if not should_run:
                self.store.mark_action_skipped(orchestration_id, node.action_id)
                self.store.record_event(
                    orchestration_id,
                    EventType.ACTION_SKIPPED,
                    group_id=group.group_id,
                    action_id=node.action_id,
                )
                logger.warning(f"Skipping action '{node.action_id}': condition not met")
                continue

            result = self._execute_action(node)
            self._record_result(orchestration_id, group, result)
            results.append(result)
        return results

    def _record_result(
        self, orchestration_id: str, group: ExecutionGroup, result: ExecutionResult
    ) -> None:
        self.store.append_result(orchestration_id, result)
        if result.success:
            self.store.record_event(
                orchestration_id,
                EventType.ACTION_COMPLETED,
                group_id=group.group_id,
                action_id=result.action_id,
                duration=result.duration,
            )
        else:
            self.store.record_event(
                orchestration_id,
                EventType.ACTION_FAILED,
                group_id=group.group_id,
                action_id=result.action_id,
                duration=result.duration,
                error=result.error,
            )

    # ========== Single action ==========

    def _fetch_context(self, node: ActionNode) -> dict[str, ContextValue]:
        """Read the parent container's context on behalf of the node."""
        if self.context_access is None:
            return {}
        snapshot = self.context_access.get_node_context(
            node.action_id, node.parent_node_id, AccessLevel.READ
        )
        return snapshot.data

    def _failed_result(
        self, node: ActionNode, started: datetime, t0: float, error: str
    ) -> ExecutionResult:
        return ExecutionResult(
            action_id=node.action_id,
            success=False,
            duration=time.monotonic() - t0,
            start_time=started,
            error=error,
        )

    def _execute_action(self, node: ActionNode) -> ExecutionResult:
        """Run one node through the executor, tracking its status.

        Expected failures come back as failed results. Anything else the
        executor raises propagates after the node is moved to ERROR.
        """
        started = datetime.now(UTC)
        t0 = time.monotonic()

        try:
            node.update_status(ActionStatus.EXECUTING)
        except InvalidStatusTransitionError as e:
            logger.warning(f"Action '{node.action_id}' cannot execute: {e}")
            return self._failed_result(node, started, t0, str(e))

        try:
            context = self._fetch_context(node)
        except ContextAccessError as e:
            node.update_status(ActionStatus.FAILED)
            logger.warning(f"Action '{node.action_id}' failed: context unavailable: {e}")
            return self._failed_result(node, started, t0, f"Context access failed: {e}")
        except Exception:
            node.update_status(ActionStatus.ERROR)
            raise

        logger.debug(f"Executing action '{node.action_id}'")
        try:
            result = self.executor.execute(node, context)
        except ActionExecutionError as e:
            result = self._failed_result(node, started, t0, str(e))
        except Exception:
            node.update_status(ActionStatus.ERROR)
            raise

        if not isinstance(result, ExecutionResult):
            node.update_status(ActionStatus.ERROR)
            raise TypeError(
                f"Executor returned {type(result).__name__} for action '{node.action_id}', "
                "expected ExecutionResult"
            )

        if result.success:
            node.update_status(ActionStatus.COMPLETED)
            logger.debug(f"Action '{node.action_id}' completed in {result.duration:.2f}s")
        else:
            node.update_status(ActionStatus.FAILED)
            logger.warning(f"Action '{node.action_id}' failed: {result.error}")
        return result
