# conftest.py - Shared pytest fixtures for all tests
"""Shared pytest fixtures for the funcmodel test suite.

This module provides foundational fixtures used across all test modules:
- Action node factories and the canonical three-node container
- A scriptable executor that records calls
- State stores, context hierarchies, and wired-up engines
- Container definition files for CLI tests

Usage:
    Import fixtures implicitly via pytest's fixture discovery.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest
import yaml

from funcmodel.core.config import EngineConfig
from funcmodel.core.context import InMemoryContextAccess
from funcmodel.core.engine import ActionExecutionError, OrchestrationEngine
from funcmodel.core.models import (
    ActionNode,
    BackoffStrategy,
    ExecutionMode,
    ExecutionResult,
    RetryPolicy,
)
from funcmodel.core.state import OrchestrationStateStore

CONTAINER_ID = "container-1"


# =============================================================================
# Node Fixtures
# =============================================================================


def make_node(
    action_id: str,
    execution_order: int = 0,
    priority: int = 5,
    mode: ExecutionMode = ExecutionMode.SEQUENTIAL,
    duration: float = 0.0,
    parent_node_id: str = CONTAINER_ID,
    **kwargs: Any,
) -> ActionNode:
    """Build an action node with terse defaults."""
    return ActionNode(
        action_id=action_id,
        parent_node_id=parent_node_id,
        execution_order=execution_order,
        priority=priority,
        execution_mode=mode,
        estimated_duration_seconds=duration,
        **kwargs,
    )


@pytest.fixture
def node_factory() -> Callable[..., ActionNode]:
    """Expose make_node as a fixture."""
    return make_node


@pytest.fixture
def three_nodes() -> list[ActionNode]:
    """Canonical container: two sequential priority-1 nodes and one parallel priority-2 node."""
    return [
        make_node("a", 1, 1, ExecutionMode.SEQUENTIAL, 60),
        make_node("b", 2, 1, ExecutionMode.SEQUENTIAL, 90),
        make_node("c", 3, 2, ExecutionMode.PARALLEL, 120),
    ]


@pytest.fixture
def immediate_policy() -> RetryPolicy:
    """Retry policy without backoff delay, for fast retry tests."""
    return RetryPolicy(max_attempts=3, backoff_strategy=BackoffStrategy.IMMEDIATE)


# =============================================================================
# Executor Fixtures
# =============================================================================


class ScriptedExecutor:
    """Executor whose outcome per action can be scripted.

    Outcomes:
        "ok" (default)   - success
        "fail"           - returns success=False
        "raise"          - raises ActionExecutionError (expected failure)
        "crash"          - raises RuntimeError (structural fault)
        callable         - called with (node, context), its return value is used
    A list of outcomes is consumed one per call; the last one repeats.
    """

    def __init__(self, outcomes: dict[str, Any] | None = None):
        self.outcomes = dict(outcomes or {})
        self.calls: list[str] = []
        self.contexts: dict[str, dict] = {}
        self._lock = threading.Lock()

    def _next_outcome(self, action_id: str) -> Any:
        outcome = self.outcomes.get(action_id, "ok")
        if isinstance(outcome, list):
            if len(outcome) > 1:
                return outcome.pop(0)
            return outcome[0]
        return outcome

    def execute(self, node: ActionNode, context: dict) -> ExecutionResult:
        with self._lock:
            self.calls.append(node.action_id)
            self.contexts[node.action_id] = context
            outcome = self._next_outcome(node.action_id)

        if callable(outcome):
            return outcome(node, context)
        if outcome == "fail":
            return ExecutionResult(action_id=node.action_id, success=False, error="boom")
        if outcome == "raise":
            raise ActionExecutionError(f"{node.action_id} rejected")
        if outcome == "crash":
            raise RuntimeError(f"{node.action_id} crashed")
        return ExecutionResult(action_id=node.action_id, success=True, duration=0.01)


@pytest.fixture
def executor() -> ScriptedExecutor:
    """Executor where every action succeeds unless scripted otherwise."""
    return ScriptedExecutor()


# =============================================================================
# Engine Fixtures
# =============================================================================


@pytest.fixture
def store() -> OrchestrationStateStore:
    """Fresh in-memory state store."""
    return OrchestrationStateStore()


@pytest.fixture
def context_access() -> InMemoryContextAccess:
    """Hierarchy with one container holding region/amount data."""
    access = InMemoryContextAccess()
    access.register_node(
        CONTAINER_ID, node_type="container", data={"region": "emea", "order": {"amount": 250}}
    )
    return access


@pytest.fixture
def engine(store, executor) -> OrchestrationEngine:
    """Engine without a context-access collaborator."""
    return OrchestrationEngine(store, executor, config=EngineConfig(max_parallel_workers=4))


# =============================================================================
# Definition File Fixtures
# =============================================================================


@pytest.fixture
def definition_file(tmp_path: Path) -> Path:
    """Container definition YAML with three nodes and seed context."""
    definition = {
        "container_id": "order-intake",
        "context": {"region": "emea"},
        "nodes": [
            {
                "action_id": "validate",
                "execution_order": 1,
                "priority": 2,
                "execution_mode": "sequential",
                "estimated_duration_seconds": 30,
                "retry_policy": {"max_attempts": 2, "backoff_strategy": "immediate"},
            },
            {
                "action_id": "enrich",
                "execution_order": 2,
                "priority": 1,
                "execution_mode": "parallel",
                "estimated_duration_seconds": 45,
            },
            {
                "action_id": "notify_emea",
                "execution_order": 3,
                "priority": 1,
                "execution_mode": "conditional",
                "condition": {"field": "region", "operator": "==", "value": "emea"},
            },
            {
                "action_id": "notify_apac",
                "execution_order": 4,
                "priority": 1,
                "execution_mode": "conditional",
                "condition": {"field": "region", "operator": "==", "value": "apac"},
            },
        ],
    }
    path = tmp_path / "container.yaml"
    path.write_text(yaml.dump(definition))
    return path
