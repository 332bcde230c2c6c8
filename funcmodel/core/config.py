"""Engine configuration and container definition loading.

Engine settings are looked up in order:
1. An explicit path passed by the caller
2. .funcmodel/engine.yaml (project-specific)
3. ~/.funcmodel/engine.yaml (user-global)
4. Built-in defaults
"""

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from funcmodel.core.models import ActionNode, ContextValue, OrchestrationError

logger = logging.getLogger(__name__)

DEFAULT_SEARCH_PATHS = [
    Path(".funcmodel/engine.yaml"),
    Path.home() / ".funcmodel/engine.yaml",
]


class ConfigError(OrchestrationError):
    """Configuration or definition file is missing, malformed, or invalid."""

    pass


class EngineConfig(BaseModel):
    """Tunable engine behaviour."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    max_parallel_workers: int = Field(default=4, ge=1)
    # Result for a conditional node that declares no condition
    default_condition_result: bool = True
    # Result when a condition cannot be evaluated (e.g. context access denied)
    condition_error_default: bool = False
    id_separator: str = Field(default="_", min_length=1)


class ContainerDefinition(BaseModel):
    """A container node and the action nodes it owns, as read from YAML."""

    container_id: str = Field(min_length=1)
    nodes: list[ActionNode] = Field(default_factory=list)
    context: dict[str, ContextValue] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def default_parent_ids(cls, data: Any) -> Any:
        """Nodes without parent_node_id belong to the enclosing container."""
        if isinstance(data, dict) and isinstance(data.get("nodes"), list):
            container_id = data.get("container_id")
            data = dict(data)
            data["nodes"] = [
                {"parent_node_id": container_id, **node} if isinstance(node, dict) else node
                for node in data["nodes"]
            ]
        return data


def _load_yaml(path: Path) -> Any:
    """Load a YAML file, wrapping I/O and parse errors."""
    try:
        with open(path, encoding="utf-8") as f:
            return yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e


def load_engine_config(
    path: str | Path | None = None,
    search_paths: list[Path] | None = None,
) -> EngineConfig:
    """Load engine configuration.

    Args:
        path: Explicit config file; must exist if given
        search_paths: Candidate files tried in order when no path is given

    Returns:
        Validated EngineConfig (defaults if no file was found)

    Raises:
        ConfigError: If the file is unreadable, not YAML, or fails validation
    """
    if path is not None:
        config_file: Path | None = Path(path)
        if not config_file.exists():
            raise ConfigError(f"Config file not found: {config_file}")
    else:
        candidates = DEFAULT_SEARCH_PATHS if search_paths is None else search_paths
        config_file = next((p for p in candidates if p.is_file()), None)

    if config_file is None:
        logger.debug("No engine config found, using defaults")
        return EngineConfig()

    raw = _load_yaml(config_file)
    if raw is None:
        return EngineConfig()
    if not isinstance(raw, dict):
        raise ConfigError(
            f"Engine config must be a mapping, got {type(raw).__name__} in {config_file}"
        )

    try:
        config = EngineConfig.model_validate(raw)
    except ValidationError as e:
        raise ConfigError(f"Invalid engine config in {config_file}: {e}") from e
    logger.debug(f"Loaded engine config from {config_file}")
    return config


def load_container_definition(path: str | Path) -> ContainerDefinition:
    """Load a container definition file.

    Raises:
        ConfigError: If the file is unreadable, empty, or fails validation
    """
    path = Path(path)
    raw = _load_yaml(path)
    if raw is None:
        raise ConfigError(f"Empty definition file: {path}")
    if not isinstance(raw, dict):
        raise ConfigError(
            f"Definition must be a mapping, got {type(raw).__name__} in {path}"
        )
    try:
        return ContainerDefinition.model_validate(raw)
    except ValidationError as e:
        raise ConfigError(f"Invalid definition in {path}: {e}") from e
