"""Caller-side retry loop for failed action nodes.

The engine performs one retry per handle_action_retry() call and never
sleeps. RetryRunner is the loop around it: wait for the policy's backoff
delay, retry, repeat until the action succeeds or its attempts run out.
"""

import logging
import time
from collections.abc import Callable, Iterable

from funcmodel.core.engine import MaxAttemptsExceededError, OrchestrationEngine
from funcmodel.core.models import ActionNode, ActionStatus, ExecutionResult

logger = logging.getLogger(__name__)


class RetryRunner:
    """Drive repeated retries of failed actions with backoff.

    USAGE:
        runner = RetryRunner(engine)
        results = runner.retry_until_settled(node, "timeout")
        if results and results[-1].success:
            ...
    """

    def __init__(
        self,
        engine: OrchestrationEngine,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.engine = engine
        self._sleep = sleep

    def retry_until_settled(
        self,
        node: ActionNode,
        failure_reason: str,
        orchestration_id: str | None = None,
    ) -> list[ExecutionResult]:
        """Retry a node until it succeeds or exhausts its retry policy.

        Returns:
            One result per attempt made, in order. Empty if the node had no
            attempts left to begin with.
        """
        results: list[ExecutionResult] = []
        reason = failure_reason

        while not node.retries_exhausted:
            delay = node.retry_policy.get_delay(node.current_attempts)
            if delay > 0:
                logger.debug(f"Waiting {delay:.2f}s before retrying '{node.action_id}'")
                self._sleep(delay)

            try:
                result = self.engine.handle_action_retry(node, reason, orchestration_id)
            except MaxAttemptsExceededError:
                break
            results.append(result)
            if result.success:
                logger.info(f"Action '{node.action_id}' succeeded after {len(results)} retries")
                return results
            reason = result.error or reason

        logger.warning(
            f"Action '{node.action_id}' still failing after "
            f"{node.current_attempts}/{node.retry_policy.max_attempts} attempts"
        )
        return results

    def retry_failed(
        self,
        action_nodes: Iterable[ActionNode],
        orchestration_id: str | None = None,
    ) -> dict[str, list[ExecutionResult]]:
        """Retry every node currently in FAILED status.

        Failure reasons are taken from the orchestration's recorded results
        when an orchestration id is given.
        """
        reasons: dict[str, str] = {}
        if orchestration_id is not None:
            state = self.engine.get_orchestration_state(orchestration_id)
            for result in state.results:
                if not result.success and result.error:
                    reasons[result.action_id] = result.error

        outcome: dict[str, list[ExecutionResult]] = {}
        for node in action_nodes:
            if node.status != ActionStatus.FAILED:
                continue
            reason = reasons.get(node.action_id, "previous attempt failed")
            outcome[node.action_id] = self.retry_until_settled(node, reason, orchestration_id)
        return outcome
