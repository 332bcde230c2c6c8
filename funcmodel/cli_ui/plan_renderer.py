"""Rich renderers for execution plans and orchestration state.

SECURITY: identifiers and error text come from user-supplied definition
files, so every such string is escaped before it reaches Rich markup.
"""

from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.tree import Tree

from funcmodel.core.models import ExecutionMode, ExecutionResult
from funcmodel.core.planner import ExecutionPlan
from funcmodel.core.state import OrchestrationState, OrchestrationStatus

MODE_STYLES = {
    ExecutionMode.SEQUENTIAL: "cyan",
    ExecutionMode.PARALLEL: "magenta",
    ExecutionMode.CONDITIONAL: "yellow",
}

STATUS_STYLES = {
    OrchestrationStatus.EXECUTING: "blue",
    OrchestrationStatus.PAUSED: "yellow",
    OrchestrationStatus.COMPLETED: "green",
    OrchestrationStatus.FAILED: "red",
}


def _format_seconds(seconds: float) -> str:
    if seconds >= 60:
        return f"{seconds / 60:.1f}m"
    return f"{seconds:.1f}s"


class PlanRenderer:
    """Renders an execution plan as a table or a group tree."""

    def __init__(self, console: Console | None = None):
        self.console = console or Console()

    def render_plan_table(self, plan: ExecutionPlan) -> Table:
        table = Table(title=f"Execution plan: {escape(plan.container_id)}")

        table.add_column("#", justify="right", style="dim")
        table.add_column("Group", style="cyan", no_wrap=True)
        table.add_column("Priority", justify="right")
        table.add_column("Mode")
        table.add_column("Actions")
        table.add_column("Estimated", justify="right")

        for index, group in enumerate(plan.execution_groups, start=1):
            style = MODE_STYLES.get(group.execution_mode, "white")
            table.add_row(
                str(index),
                escape(group.group_id),
                str(group.priority),
                f"[{style}]{group.execution_mode.value}[/]",
                escape(", ".join(node.label for node in group.action_nodes)),
                _format_seconds(group.estimated_duration),
            )

        table.caption = (
            f"{len(plan.action_nodes)} actions in {len(plan.execution_groups)} groups, "
            f"{_format_seconds(plan.total_estimated_duration)} estimated"
        )
        return table

    def render_plan_tree(self, plan: ExecutionPlan) -> Tree:
        tree = Tree(f"[bold]{escape(plan.container_id)}[/]")
        for group in plan.execution_groups:
            style = MODE_STYLES.get(group.execution_mode, "white")
            branch = tree.add(
                f"[{style}]{escape(group.group_id)}[/] "
                f"[dim]({_format_seconds(group.estimated_duration)})[/]"
            )
            for node in group.action_nodes:
                label = escape(node.label)
                if node.condition is not None:
                    cond = node.condition
                    label += escape(f" if {cond.path} {cond.operator} {cond.value!r}")
                branch.add(label)
        return tree

    def print_plan(self, plan: ExecutionPlan) -> None:
        self.console.print(self.render_plan_table(plan))


class StateTableRenderer:
    """Renders the final or live state of an orchestration."""

    def __init__(self, console: Console | None = None):
        self.console = console or Console()

    @staticmethod
    def _result_row(result: ExecutionResult) -> tuple[str, str, str, str]:
        if result.success:
            status_text = "[green]✓ Completed[/]"
        else:
            status_text = "[red]✗ Failed[/]"
        error = escape(result.error or "")
        if len(error) > 50:
            error = error[:47] + "..."
        return escape(result.action_id), status_text, f"{result.duration:.2f}s", error

    def render_state_table(self, state: OrchestrationState) -> Table:
        style = STATUS_STYLES.get(state.status, "white")
        table = Table(
            title=(
                f"Orchestration: {escape(state.orchestration_id)} "
                f"[{style}]{state.status.value}[/]"
            )
        )

        table.add_column("Action", style="cyan", no_wrap=True)
        table.add_column("Status", justify="center")
        table.add_column("Duration", justify="right")
        table.add_column("Error", max_width=50)

        for result in state.results:
            table.add_row(*self._result_row(result))
        for action_id in state.skipped_actions:
            table.add_row(escape(action_id), "[dim]⊘ Skipped[/]", "", "")

        table.caption = (
            f"completed groups: {len(state.completed_groups)}, "
            f"failed groups: {len(state.failed_groups)}"
        )
        return table

    def print_state(self, state: OrchestrationState) -> None:
        self.console.print(self.render_state_table(state))
