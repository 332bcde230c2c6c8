"""CLI UI components for rendering execution plans and orchestration state."""

from funcmodel.cli_ui.plan_renderer import PlanRenderer, StateTableRenderer

__all__ = [
    "PlanRenderer",
    "StateTableRenderer",
]
