"""CLI entry point for funcmodel.

Commands:
- funcmodel init: Write a default engine config for this project
- funcmodel validate: Check a container definition and its plan
- funcmodel plan: Show the execution plan for a container definition
- funcmodel run: Run a container definition with a simulated executor
"""

from __future__ import annotations

import logging
import sys
import threading
import time
from pathlib import Path

import click
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from funcmodel import __version__
from funcmodel.cli_ui.plan_renderer import PlanRenderer, StateTableRenderer
from funcmodel.core.config import (
    ConfigError,
    ContainerDefinition,
    load_container_definition,
    load_engine_config,
)
from funcmodel.core.context import InMemoryContextAccess
from funcmodel.core.engine import (
    ActionExecutionError,
    OrchestrationEngine,
    OrchestrationFailedError,
)
from funcmodel.core.models import ActionNode, ContextValue, ExecutionResult
from funcmodel.core.planner import ExecutionPlan, PlanError, create_execution_plan
from funcmodel.core.retry import RetryRunner
from funcmodel.core.state import OrchestrationStateStore, OrchestrationStatus

console = Console()

DEFAULT_ENGINE_CONFIG = """# funcmodel engine configuration for this project
max_parallel_workers: 4

# Conditional nodes without a condition run by default
default_condition_result: true

# Conditional nodes whose condition cannot be evaluated are skipped
condition_error_default: false
"""


class SimulatedExecutor:
    """Executor that pretends to run actions.

    Actions listed in ``fail`` always fail; actions listed in ``flaky`` fail
    on their first call only. Everything else succeeds instantly.
    """

    def __init__(self, fail: set[str] | None = None, flaky: set[str] | None = None):
        self.fail = fail or set()
        self.flaky = flaky or set()
        self.calls: dict[str, int] = {}
        self._lock = threading.Lock()

    def execute(self, node: ActionNode, context: dict[str, ContextValue]) -> ExecutionResult:
        started = time.monotonic()
        with self._lock:
            self.calls[node.action_id] = self.calls.get(node.action_id, 0) + 1
            call_count = self.calls[node.action_id]

        if node.action_id in self.flaky and call_count == 1:
            raise ActionExecutionError(f"Simulated transient failure of '{node.action_id}'")
        if node.action_id in self.fail:
            return ExecutionResult(
                action_id=node.action_id,
                success=False,
                duration=time.monotonic() - started,
                error=f"Simulated failure of '{node.action_id}'",
            )
        return ExecutionResult(
            action_id=node.action_id,
            success=True,
            duration=time.monotonic() - started,
            output={"context_keys": sorted(context)},
        )


def _load_plan(definition_file: str) -> tuple[ContainerDefinition, ExecutionPlan]:
    """Load a definition and build its plan, exiting on any error."""
    try:
        definition = load_container_definition(definition_file)
        plan = create_execution_plan(definition.container_id, definition.nodes)
    except ConfigError as e:
        console.print(f"[red]Invalid definition:[/] {escape(str(e))}")
        sys.exit(1)
    except PlanError as e:
        console.print(f"[red]Cannot build plan:[/] {escape(str(e))}")
        sys.exit(1)
    return definition, plan


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    help="Logging verbosity",
)
def main(log_level: str) -> None:
    """funcmodel - Action-node orchestration for function models."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@main.command()
def init() -> None:
    """Write a default engine config to .funcmodel/engine.yaml."""
    config_path = Path.cwd() / ".funcmodel" / "engine.yaml"
    if config_path.exists():
        console.print("[yellow]Project already initialized[/yellow]")
        return

    config_path.parent.mkdir(parents=True)
    config_path.write_text(DEFAULT_ENGINE_CONFIG)
    console.print(f"[green]Created {config_path}[/green]")


@main.command()
@click.argument("definition_file", type=click.Path(exists=True))
def validate(definition_file: str) -> None:
    """Check that DEFINITION_FILE loads and yields a valid plan."""
    definition, plan = _load_plan(definition_file)
    console.print(
        f"[green]✓ Valid:[/] container '{escape(definition.container_id)}' with "
        f"{len(plan.action_nodes)} actions in {len(plan.execution_groups)} groups"
    )


@main.command()
@click.argument("definition_file", type=click.Path(exists=True))
@click.option("--tree", is_flag=True, help="Show groups as a tree instead of a table")
def plan(definition_file: str, tree: bool) -> None:
    """Show the execution plan for DEFINITION_FILE."""
    _, execution_plan = _load_plan(definition_file)
    renderer = PlanRenderer(console)
    if tree:
        console.print(renderer.render_plan_tree(execution_plan))
    else:
        renderer.print_plan(execution_plan)


@main.command()
@click.argument("definition_file", type=click.Path(exists=True))
@click.option("--fail", "fail_ids", multiple=True, help="Action id that always fails")
@click.option("--flaky", "flaky_ids", multiple=True, help="Action id that fails once")
@click.option("--retry", is_flag=True, help="Retry failed actions per their retry policy")
@click.option("--no-backoff", is_flag=True, help="Do not wait between retries")
@click.option("--config", "config_path", type=click.Path(), help="Engine config file")
@click.option("--events", is_flag=True, help="Print the orchestration event log")
def run(
    definition_file: str,
    fail_ids: tuple[str, ...],
    flaky_ids: tuple[str, ...],
    retry: bool,
    no_backoff: bool,
    config_path: str | None,
    events: bool,
) -> None:
    """Run DEFINITION_FILE with a simulated executor."""
    definition, execution_plan = _load_plan(definition_file)

    try:
        config = load_engine_config(config_path)
    except ConfigError as e:
        console.print(f"[red]Invalid engine config:[/] {escape(str(e))}")
        sys.exit(1)

    context_access = InMemoryContextAccess()
    context_access.register_action_nodes(definition.nodes, container_data=definition.context)

    engine = OrchestrationEngine(
        OrchestrationStateStore(),
        SimulatedExecutor(fail=set(fail_ids), flaky=set(flaky_ids)),
        context_access=context_access,
        config=config,
    )

    try:
        orchestration_id = engine.start_execution(execution_plan)
    except OrchestrationFailedError as e:
        console.print(f"[red]Orchestration failed:[/] {escape(str(e.cause))}")
        orchestration_id = e.orchestration_id

    if retry and engine.get_orchestration_state(orchestration_id).status.is_terminal:
        sleep = (lambda _: None) if no_backoff else time.sleep
        runner = RetryRunner(engine, sleep=sleep)
        retried = runner.retry_failed(execution_plan.action_nodes, orchestration_id)
        for action_id, results in retried.items():
            settled = bool(results) and results[-1].success
            mark = "[green]✓[/]" if settled else "[red]✗[/]"
            console.print(f"{mark} retried {escape(action_id)} {len(results)} time(s)")

    state = engine.get_orchestration_state(orchestration_id)
    StateTableRenderer(console).print_state(state)

    if events:
        event_table = Table(title="Events")
        event_table.add_column("#", justify="right", style="dim")
        event_table.add_column("Type", style="cyan", no_wrap=True)
        event_table.add_column("Group", no_wrap=True)
        event_table.add_column("Action")
        for event in engine.get_events(orchestration_id):
            event_table.add_row(
                str(event.id),
                event.event_type.value,
                escape(event.group_id or ""),
                escape(event.action_id or ""),
            )
        console.print(event_table)

    if state.status == OrchestrationStatus.FAILED:
        console.print(Panel(f"Orchestration {escape(orchestration_id)} failed", style="red"))
        sys.exit(1)


if __name__ == "__main__":
    main()
