"""Core modules for the funcmodel orchestration engine."""

from funcmodel.core.conditions import ActionCondition, evaluate_condition
from funcmodel.core.config import ConfigError, EngineConfig, load_engine_config
from funcmodel.core.context import (
    AccessLevel,
    ContextAccess,
    ContextAccessError,
    ContextSnapshot,
    InMemoryContextAccess,
)
from funcmodel.core.engine import (
    ActionExecutionError,
    ActionExecutor,
    ActionProgress,
    MaxAttemptsExceededError,
    OrchestrationEngine,
    OrchestrationFailedError,
)
from funcmodel.core.models import (
    ActionNode,
    ActionStatus,
    BackoffStrategy,
    ExecutionMode,
    ExecutionResult,
    InvalidStatusTransitionError,
    OrchestrationError,
    RetryPolicy,
)
from funcmodel.core.planner import (
    ContainerMismatchError,
    EmptyNodeSetError,
    ExecutionGroup,
    ExecutionPlan,
    PlanError,
    build_dependency_map,
    create_execution_plan,
    optimize_action_order,
)
from funcmodel.core.retry import RetryRunner
from funcmodel.core.state import (
    Event,
    EventType,
    InvalidTransitionError,
    OrchestrationNotFoundError,
    OrchestrationState,
    OrchestrationStateStore,
    OrchestrationStatus,
)

__all__ = [
    "AccessLevel",
    "ActionCondition",
    "ActionExecutionError",
    "ActionExecutor",
    "ActionNode",
    "ActionProgress",
    "ActionStatus",
    "BackoffStrategy",
    "ConfigError",
    "ContainerMismatchError",
    "ContextAccess",
    "ContextAccessError",
    "ContextSnapshot",
    "EmptyNodeSetError",
    "EngineConfig",
    "Event",
    "EventType",
    "ExecutionGroup",
    "ExecutionMode",
    "ExecutionPlan",
    "ExecutionResult",
    "InMemoryContextAccess",
    "InvalidStatusTransitionError",
    "InvalidTransitionError",
    "MaxAttemptsExceededError",
    "OrchestrationEngine",
    "OrchestrationError",
    "OrchestrationFailedError",
    "OrchestrationNotFoundError",
    "OrchestrationState",
    "OrchestrationStateStore",
    "OrchestrationStatus",
    "PlanError",
    "RetryPolicy",
    "RetryRunner",
    "build_dependency_map",
    "create_execution_plan",
    "evaluate_condition",
    "load_engine_config",
    "optimize_action_order",
]
