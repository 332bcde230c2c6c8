"""Hierarchical context access between function-model nodes.

The orchestration engine consumes context through the ContextAccess protocol.
InMemoryContextAccess is a self-contained implementation of the hierarchy
rules, used by the CLI and tests:

ACCESS RULES (requesting node -> target node):
- Self: any level
- Ancestor -> descendant: up to WRITE
- Descendant -> ancestor: READ
- Sibling -> sibling (same parent): READ
- Node -> parent's sibling ("uncle/aunt"): READ
- Anything else: denied

A request above the granted level is denied (READ < WRITE < EXECUTE).
"""

from __future__ import annotations

import copy
import logging
import threading
from collections.abc import Iterable, Mapping
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol

import networkx as nx
from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from funcmodel.core.models import ContextValue, OrchestrationError

if TYPE_CHECKING:
    from funcmodel.core.models import ActionNode

logger = logging.getLogger(__name__)

_CONTEXT_DATA = TypeAdapter(dict[str, ContextValue])


class ContextAccessError(OrchestrationError):
    """Context could not be read or written."""

    pass


class AccessLevel(str, Enum):
    """Requested or granted level of access to a node's context."""

    READ = "read"
    WRITE = "write"
    EXECUTE = "execute"

    @property
    def rank(self) -> int:
        return _ACCESS_RANK[self]

    def permits(self, requested: AccessLevel) -> bool:
        """True if this granted level covers the requested one."""
        return self.rank >= requested.rank


_ACCESS_RANK = {AccessLevel.READ: 1, AccessLevel.WRITE: 2, AccessLevel.EXECUTE: 3}


class ContextSnapshot(BaseModel):
    """Copy of a node's context data as seen by a requesting node."""

    node_id: str
    node_type: str = "action"
    parent_node_id: str | None = None
    data: dict[str, ContextValue] = Field(default_factory=dict)
    access_level: AccessLevel = AccessLevel.READ
    hierarchy_level: int = 0


class ContextAccess(Protocol):
    """Collaborator that resolves context data for a node."""

    def get_node_context(
        self,
        requesting_node_id: str,
        target_node_id: str,
        access_level: AccessLevel,
    ) -> ContextSnapshot:
        """Return the target's context or raise ContextAccessError."""
        ...


def validate_context_data(data: Mapping[str, Any] | None) -> dict[str, ContextValue]:
    """Validate arbitrary mapping data as context values.

    Raises:
        ContextAccessError: If the data contains values that are not
            strings, numbers, booleans, None, lists or string-keyed maps
    """
    try:
        return _CONTEXT_DATA.validate_python(dict(data or {}))
    except ValidationError as e:
        raise ContextAccessError(f"Invalid context data: {e}") from e


class InMemoryContextAccess:
    """Node hierarchy held in a networkx DiGraph (edges point parent -> child)."""

    def __init__(self) -> None:
        self._graph = nx.DiGraph()
        self._lock = threading.RLock()

    # ========== Registration ==========

    def register_node(
        self,
        node_id: str,
        node_type: str = "action",
        parent_node_id: str | None = None,
        data: Mapping[str, Any] | None = None,
    ) -> None:
        """Add a node to the hierarchy.

        Raises:
            ContextAccessError: If the node already exists, the parent is
                unknown, or the data is not valid context data
        """
        validated = validate_context_data(data)
        with self._lock:
            if node_id in self._graph:
                raise ContextAccessError(f"Node '{node_id}' is already registered")
            if parent_node_id is not None and parent_node_id not in self._graph:
                raise ContextAccessError(
                    f"Cannot register '{node_id}': parent '{parent_node_id}' is not registered"
                )
            self._graph.add_node(node_id, node_type=node_type, data=validated)
            if parent_node_id is not None:
                self._graph.add_edge(parent_node_id, node_id)

    def register_action_nodes(
        self,
        action_nodes: Iterable[ActionNode],
        container_data: Mapping[str, Any] | None = None,
    ) -> None:
        """Register action nodes under their containers.

        Containers that are not registered yet are added as root nodes of
        type "container" seeded with ``container_data``.
        """
        for node in action_nodes:
            with self._lock:
                if node.parent_node_id not in self._graph:
                    self.register_node(
                        node.parent_node_id, node_type="container", data=container_data
                    )
                if node.action_id in self._graph:
                    continue
                self.register_node(node.action_id, parent_node_id=node.parent_node_id)

    def has_node(self, node_id: str) -> bool:
        with self._lock:
            return node_id in self._graph

    # ========== Hierarchy ==========

    def _require(self, node_id: str) -> None:
        if node_id not in self._graph:
            raise ContextAccessError(f"Access denied: node '{node_id}' not found")

    def _parent(self, node_id: str) -> str | None:
        parents = list(self._graph.predecessors(node_id))
        return parents[0] if parents else None

    def hierarchy_level(self, node_id: str) -> int:
        with self._lock:
            self._require(node_id)
            return len(nx.ancestors(self._graph, node_id))

    def granted_level(self, requesting_node_id: str, target_node_id: str) -> AccessLevel | None:
        """Highest access level the requesting node holds on the target, if any."""
        with self._lock:
            self._require(requesting_node_id)
            self._require(target_node_id)

            if requesting_node_id == target_node_id:
                return AccessLevel.EXECUTE
            if requesting_node_id in nx.ancestors(self._graph, target_node_id):
                return AccessLevel.WRITE
            if target_node_id in nx.ancestors(self._graph, requesting_node_id):
                return AccessLevel.READ

            parent = self._parent(requesting_node_id)
            if parent is None:
                return None
            target_parent = self._parent(target_node_id)
            if target_parent == parent:
                return AccessLevel.READ
            grandparent = self._parent(parent)
            if grandparent is not None and target_parent == grandparent:
                return AccessLevel.READ
            return None

    def _check_access(
        self, requesting_node_id: str, target_node_id: str, requested: AccessLevel
    ) -> AccessLevel:
        granted = self.granted_level(requesting_node_id, target_node_id)
        if granted is None:
            raise ContextAccessError(
                f"Access denied: '{target_node_id}' is not in the accessible context "
                f"hierarchy of '{requesting_node_id}'"
            )
        if not granted.permits(requested):
            raise ContextAccessError(
                f"Access denied: required {requested.value} access, "
                f"but only {granted.value} is available"
            )
        return granted

    # ========== ContextAccess protocol ==========

    def get_node_context(
        self,
        requesting_node_id: str,
        target_node_id: str,
        access_level: AccessLevel = AccessLevel.READ,
    ) -> ContextSnapshot:
        with self._lock:
            granted = self._check_access(requesting_node_id, target_node_id, access_level)
            attrs = self._graph.nodes[target_node_id]
            return ContextSnapshot(
                node_id=target_node_id,
                node_type=attrs["node_type"],
                parent_node_id=self._parent(target_node_id),
                data=copy.deepcopy(attrs["data"]),
                access_level=granted,
                hierarchy_level=self.hierarchy_level(target_node_id),
            )

    def update_node_context(
        self,
        updating_node_id: str,
        target_node_id: str,
        data: Mapping[str, Any],
    ) -> None:
        """Merge data into the target's context (requires WRITE access)."""
        validated = validate_context_data(data)
        with self._lock:
            self._check_access(updating_node_id, target_node_id, AccessLevel.WRITE)
            self._graph.nodes[target_node_id]["data"].update(validated)
        logger.debug(f"'{updating_node_id}' updated context of '{target_node_id}'")
