"""Tests for hierarchical context access.

Hierarchy used throughout:

    root
    ├── container-1
    │   ├── a
    │   │   └── a-child
    │   └── b
    └── container-2
        └── c
"""

from __future__ import annotations

import pytest

from funcmodel.core.context import (
    AccessLevel,
    ContextAccessError,
    InMemoryContextAccess,
    validate_context_data,
)


@pytest.fixture
def hierarchy() -> InMemoryContextAccess:
    """Two containers under one root."""
    access = InMemoryContextAccess()
    access.register_node("root", node_type="model", data={"tenant": "acme"})
    access.register_node("container-1", "container", "root", {"region": "emea"})
    access.register_node("container-2", "container", "root", {"region": "apac"})
    access.register_node("a", parent_node_id="container-1", data={"score": 7})
    access.register_node("a-child", parent_node_id="a")
    access.register_node("b", parent_node_id="container-1")
    access.register_node("c", parent_node_id="container-2")
    return access


class TestAccessLevel:
    """Tests for AccessLevel ordering."""

    def test_ordering(self):
        """read < write < execute."""
        assert AccessLevel.EXECUTE.permits(AccessLevel.WRITE)
        assert AccessLevel.WRITE.permits(AccessLevel.READ)
        assert not AccessLevel.READ.permits(AccessLevel.WRITE)
        assert AccessLevel.READ.permits(AccessLevel.READ)


class TestGrantedLevel:
    """Tests for the hierarchy access rules."""

    @pytest.mark.parametrize(
        "requester,target,expected",
        [
            ("a", "a", AccessLevel.EXECUTE),  # self
            ("container-1", "a", AccessLevel.WRITE),  # parent -> child
            ("root", "a-child", AccessLevel.WRITE),  # ancestor -> descendant
            ("a", "container-1", AccessLevel.READ),  # child -> parent
            ("a-child", "root", AccessLevel.READ),  # descendant -> ancestor
            ("a", "b", AccessLevel.READ),  # siblings
            ("a", "container-2", AccessLevel.READ),  # uncle/aunt
            ("a-child", "b", AccessLevel.READ),  # uncle/aunt
        ],
    )
    def test_allowed(self, hierarchy, requester, target, expected):
        """Each relationship gets its documented level."""
        assert hierarchy.granted_level(requester, target) == expected

    @pytest.mark.parametrize(
        "requester,target",
        [("a", "c"), ("c", "a-child"), ("b", "a-child")],
    )
    def test_denied(self, hierarchy, requester, target):
        """Cousins and nephews get nothing."""
        assert hierarchy.granted_level(requester, target) is None

    def test_unknown_node(self, hierarchy):
        """Unknown nodes raise."""
        with pytest.raises(ContextAccessError, match="not found"):
            hierarchy.granted_level("ghost", "a")


class TestGetNodeContext:
    """Tests for get_node_context."""

    def test_child_reads_parent(self, hierarchy):
        """The usual engine call: action reads its container."""
        snapshot = hierarchy.get_node_context("a", "container-1", AccessLevel.READ)

        assert snapshot.node_id == "container-1"
        assert snapshot.node_type == "container"
        assert snapshot.parent_node_id == "root"
        assert snapshot.data == {"region": "emea"}
        assert snapshot.access_level == AccessLevel.READ
        assert snapshot.hierarchy_level == 1

    def test_requested_level_above_grant_denied(self, hierarchy):
        """Child cannot write its parent."""
        with pytest.raises(ContextAccessError, match="required write"):
            hierarchy.get_node_context("a", "container-1", AccessLevel.WRITE)

    def test_outside_hierarchy_denied(self, hierarchy):
        """Cousins cannot read each other."""
        with pytest.raises(ContextAccessError, match="not in the accessible"):
            hierarchy.get_node_context("a", "c", AccessLevel.READ)

    def test_snapshot_is_a_copy(self, hierarchy):
        """Mutating snapshot data does not affect the hierarchy."""
        snapshot = hierarchy.get_node_context("a", "a", AccessLevel.READ)
        snapshot.data["score"] = 0
        assert hierarchy.get_node_context("a", "a", AccessLevel.READ).data == {"score": 7}


class TestRegistrationAndUpdates:
    """Tests for register_node and update_node_context."""

    def test_duplicate_registration(self, hierarchy):
        """A node id can only be registered once."""
        with pytest.raises(ContextAccessError, match="already registered"):
            hierarchy.register_node("a", parent_node_id="container-1")

    def test_unknown_parent(self):
        """Parents must exist first."""
        access = InMemoryContextAccess()
        with pytest.raises(ContextAccessError, match="parent 'nope'"):
            access.register_node("a", parent_node_id="nope")

    def test_parent_writes_child(self, hierarchy):
        """Ancestors can merge data into descendants."""
        hierarchy.update_node_context("container-1", "a", {"approved": True})
        data = hierarchy.get_node_context("a", "a", AccessLevel.READ).data
        assert data == {"score": 7, "approved": True}

    def test_sibling_cannot_write(self, hierarchy):
        """Siblings only have read access."""
        with pytest.raises(ContextAccessError):
            hierarchy.update_node_context("b", "a", {"score": 0})

    def test_invalid_data_rejected(self):
        """Values must be context values."""
        with pytest.raises(ContextAccessError, match="Invalid context data"):
            validate_context_data({"when": object()})

    def test_register_action_nodes_creates_container(self, node_factory):
        """Action nodes are attached under an auto-registered container."""
        access = InMemoryContextAccess()
        access.register_action_nodes(
            [node_factory("a"), node_factory("b")], container_data={"region": "emea"}
        )

        assert access.has_node("container-1")
        snapshot = access.get_node_context("b", "container-1", AccessLevel.READ)
        assert snapshot.data == {"region": "emea"}
        assert access.granted_level("a", "b") == AccessLevel.READ
