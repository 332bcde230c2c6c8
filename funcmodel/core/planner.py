"""Execution plan builder for a container's action nodes.

Turns an unordered collection of action nodes into an ordered, grouped plan:

1. Sort nodes by execution_order (ascending, stable)
2. Start a new group whenever (priority, execution_mode) changes
3. Sort groups by priority (descending, first-seen order on ties)
4. Coalesce neighbours that share the same (priority, execution_mode)

Example:
    Nodes (order, priority, mode):
    ├── a (1, 1, sequential)  60s
    ├── b (2, 1, sequential)  90s
    └── c (3, 2, parallel)   120s

    Plan:
    1. priority_2_parallel    [c]     120s
    2. priority_1_sequential  [a, b]  150s
    Total: 270s
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from funcmodel.core.models import ActionNode, ExecutionMode, OrchestrationError

logger = logging.getLogger(__name__)


class PlanError(OrchestrationError):
    """Execution plan could not be built."""

    pass


class EmptyNodeSetError(PlanError):
    """No action nodes were supplied."""

    pass


class ContainerMismatchError(PlanError):
    """An action node belongs to a different container than the plan."""

    pass


def group_id_for(priority: int, mode: ExecutionMode) -> str:
    return f"priority_{priority}_{mode.value}"


@dataclass(frozen=True)
class ExecutionGroup:
    """Priority- and mode-homogeneous batch of action nodes."""

    group_id: str
    priority: int
    execution_mode: ExecutionMode
    action_nodes: tuple[ActionNode, ...]

    def __post_init__(self) -> None:
        for node in self.action_nodes:
            if node.priority != self.priority or node.execution_mode != self.execution_mode:
                raise PlanError(
                    f"Action '{node.action_id}' (priority {node.priority}, "
                    f"{node.execution_mode.value}) does not belong in group '{self.group_id}'"
                )

    @property
    def estimated_duration(self) -> float:
        return sum(node.estimated_duration_seconds for node in self.action_nodes)

    @property
    def action_ids(self) -> list[str]:
        return [node.action_id for node in self.action_nodes]


@dataclass(frozen=True)
class ExecutionPlan:
    """Ordered, grouped schedule for one container's action nodes.

    Construction validates membership: every node must share ``container_id``
    and the node set must not be empty.
    """

    container_id: str
    action_nodes: tuple[ActionNode, ...]
    execution_groups: tuple[ExecutionGroup, ...]

    def __post_init__(self) -> None:
        if not self.action_nodes:
            raise EmptyNodeSetError(
                f"Cannot create execution plan for container '{self.container_id}': "
                "no action nodes supplied"
            )
        foreign = [n.action_id for n in self.action_nodes if n.parent_node_id != self.container_id]
        if foreign:
            raise ContainerMismatchError(
                f"All action nodes must belong to container '{self.container_id}'. "
                f"Foreign nodes: {sorted(foreign)}"
            )

    @property
    def total_estimated_duration(self) -> float:
        return sum(node.estimated_duration_seconds for node in self.action_nodes)

    def get_group(self, group_id: str) -> ExecutionGroup | None:
        for group in self.execution_groups:
            if group.group_id == group_id:
                return group
        return None


@dataclass
class ActionDependencyMap:
    """Implicit dependency chain derived from execution order."""

    # action_id -> ids that must run first
    dependencies: dict[str, list[str]] = field(default_factory=dict)
    # action_id -> ids waiting on it
    dependents: dict[str, list[str]] = field(default_factory=dict)


def _partition(sorted_nodes: Sequence[ActionNode]) -> list[list[ActionNode]]:
    """Split nodes into runs sharing the same (priority, execution_mode)."""
    runs: list[list[ActionNode]] = []
    for node in sorted_nodes:
        if runs and (runs[-1][0].priority, runs[-1][0].execution_mode) == (
            node.priority,
            node.execution_mode,
        ):
            runs[-1].append(node)
        else:
            runs.append([node])
    return runs


def _build_groups(sorted_nodes: Sequence[ActionNode]) -> tuple[ExecutionGroup, ...]:
    runs = _partition(sorted_nodes)
    # sorted() is stable, so equal priorities keep first-seen order
    runs.sort(key=lambda run: run[0].priority, reverse=True)

    # Runs separated only by higher-priority runs become neighbours after sorting
    coalesced: list[list[ActionNode]] = []
    for run in runs:
        head = run[0]
        if coalesced and (coalesced[-1][0].priority, coalesced[-1][0].execution_mode) == (
            head.priority,
            head.execution_mode,
        ):
            coalesced[-1].extend(run)
        else:
            coalesced.append(list(run))

    groups: list[ExecutionGroup] = []
    seen: dict[str, int] = {}
    for members in coalesced:
        head = members[0]
        base_id = group_id_for(head.priority, head.execution_mode)
        seen[base_id] = seen.get(base_id, 0) + 1
        group_id = base_id if seen[base_id] == 1 else f"{base_id}_{seen[base_id]}"
        groups.append(
            ExecutionGroup(
                group_id=group_id,
                priority=head.priority,
                execution_mode=head.execution_mode,
                action_nodes=tuple(members),
            )
        )
    return tuple(groups)


def create_execution_plan(container_id: str, action_nodes: Iterable[ActionNode]) -> ExecutionPlan:
    """Build an execution plan for the action nodes of one container.

    Args:
        container_id: Identifier of the owning container node
        action_nodes: Nodes to schedule, in any order

    Returns:
        ExecutionPlan with nodes sorted by execution_order and groups by priority

    Raises:
        EmptyNodeSetError: If no nodes were supplied
        ContainerMismatchError: If any node belongs to another container
    """
    nodes = list(action_nodes)
    if not nodes:
        raise EmptyNodeSetError(
            f"Cannot create execution plan for container '{container_id}': "
            "no action nodes supplied"
        )
    foreign = [n.action_id for n in nodes if n.parent_node_id != container_id]
    if foreign:
        raise ContainerMismatchError(
            f"All action nodes must belong to container '{container_id}'. "
            f"Foreign nodes: {sorted(foreign)}"
        )

    sorted_nodes = sorted(nodes, key=lambda n: n.execution_order)
    groups = _build_groups(sorted_nodes)

    plan = ExecutionPlan(
        container_id=container_id,
        action_nodes=tuple(sorted_nodes),
        execution_groups=groups,
    )
    logger.debug(
        f"Planned {len(sorted_nodes)} actions for '{container_id}' into "
        f"{len(groups)} groups ({plan.total_estimated_duration:.1f}s estimated)"
    )
    return plan


def optimize_action_order(action_nodes: Iterable[ActionNode]) -> list[ActionNode]:
    """Order nodes by execution_order, breaking ties by higher priority first."""
    return sorted(action_nodes, key=lambda n: (n.execution_order, -n.priority))


def build_dependency_map(action_nodes: Iterable[ActionNode]) -> ActionDependencyMap:
    """Derive the implicit dependency chain: each node waits on its predecessor.

    Execution order is the only dependency signal action nodes carry, so the
    chain links consecutive nodes after sorting by execution_order.
    """
    ordered = sorted(action_nodes, key=lambda n: n.execution_order)
    dep_map = ActionDependencyMap()
    for previous, current in zip(ordered, ordered[1:]):
        dep_map.dependencies[current.action_id] = [previous.action_id]
        dep_map.dependents.setdefault(previous.action_id, []).append(current.action_id)
    return dep_map
