"""
Configuration loading for NeuroLint MCP.

Settings live in ``config.yaml`` inside the rules directory, next to the
learned-pattern JSON files used by layer 7. Every value has a default so the
engine runs without any file on disk.

The rules directory is resolved in this order:
1. NEUROLINT_MCP_RULES_DIR environment variable
2. ``rules/`` under the project root
3. ``rules/`` under the current working directory
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from neurolint_mcp.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

ALL_LAYERS: tuple[int, ...] = (1, 2, 3, 4, 5, 6, 7, 8)
SECURITY_LAYER = 8
ADAPTIVE_LAYER = 7


def rules_dir_path(rules_dir: str = "rules") -> Path:
    """
    Resolve the rules directory path.

    Args:
        rules_dir: Default rules directory name.

    Returns:
        Resolved Path to the rules directory (may not exist).
    """
    if env_path := os.environ.get("NEUROLINT_MCP_RULES_DIR"):
        return Path(env_path)

    pkg_dir = Path(__file__).resolve().parent
    project_root = pkg_dir.parent.parent

    candidates = [
        project_root / rules_dir,
        Path.cwd() / rules_dir,
        Path(rules_dir),
    ]
    for candidate in candidates:
        if candidate.exists():
            return candidate

    return project_root / rules_dir


@dataclass
class JobsConfig:
    """
    Settings for the analysis job queue and its worker.

    Attributes:
        expiry_hours: Hours until a job becomes eligible for cleanup.
        max_code_bytes: Largest input a worker will analyze.
        poll_interval_seconds: Worker sleep between empty polls.
        database_path: SQLite file for the persistent store (None = in memory).
    """

    expiry_hours: float = 24.0
    max_code_bytes: int = 500_000
    poll_interval_seconds: float = 1.0
    database_path: str | None = None


@dataclass
class ServerConfig:
    """Caller identity used by the MCP server for job ownership."""

    user_id: str = "local"
    tier: str = "free"


@dataclass
class NeuroLintConfig:
    """
    Global configuration loaded from config.yaml.

    Attributes:
        default_layers: Layers run when a caller does not choose any.
        platform: Platform tag reported in analysis metadata.
        severity_weights: Quality-score penalty per issue severity.
        readiness: Readiness-score penalties.
        context_before: Characters a checker may inspect before a match.
        context_after: Characters a checker may inspect after a match.
        max_fixes_per_rule: Upper bound on fixes one rule applies per pass.
        jobs: Job queue settings.
        server: MCP server caller settings.
        rules_dir: Directory the configuration was loaded from.
    """

    default_layers: list[int] = field(default_factory=lambda: list(ALL_LAYERS))
    platform: str = "mcp"
    severity_weights: dict[str, int] = field(
        default_factory=lambda: {"error": 10, "warning": 5, "info": 1}
    )
    readiness: dict[str, int] = field(
        default_factory=lambda: {"missing_client_boundary": 20, "hydration": 10, "accessibility": 5}
    )
    context_before: int = 100
    context_after: int = 500
    max_fixes_per_rule: int = 500
    jobs: JobsConfig = field(default_factory=JobsConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    rules_dir: Path | None = None


def _section(data: dict[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key) or {}
    if not isinstance(value, dict):
        raise ConfigurationError(f"config.yaml: '{key}' must be a mapping")
    return value


def load_config(rules_dir: str | Path | None = None) -> NeuroLintConfig:
    """
    Load configuration from ``config.yaml`` in the rules directory.

    Args:
        rules_dir: Explicit rules directory. Resolved automatically if None.

    Returns:
        NeuroLintConfig with file values layered over the defaults.

    Raises:
        ConfigurationError: If config.yaml exists but is invalid.
    """
    directory = Path(rules_dir) if rules_dir is not None else rules_dir_path()
    config_path = directory / "config.yaml"

    if not config_path.exists():
        logger.warning(f"Config file not found at {config_path}, using defaults")
        return NeuroLintConfig(rules_dir=directory)

    try:
        with open(config_path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid config.yaml: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"Cannot read config.yaml: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError("config.yaml must contain a mapping at the top level")

    defaults = NeuroLintConfig()
    scoring = _section(data, "scoring")
    context = _section(data, "context_window")
    jobs = _section(data, "jobs")
    server = _section(data, "server")

    layers = [int(layer) for layer in data.get("default_layers", defaults.default_layers)]
    unknown = [layer for layer in layers if layer not in ALL_LAYERS]
    if unknown:
        raise ConfigurationError(f"config.yaml: unknown default layers {unknown}")

    return NeuroLintConfig(
        default_layers=sorted(set(layers)),
        platform=data.get("platform", defaults.platform),
        severity_weights={**defaults.severity_weights, **scoring.get("severity_weights", {})},
        readiness={**defaults.readiness, **scoring.get("readiness", {})},
        context_before=int(context.get("before", defaults.context_before)),
        context_after=int(context.get("after", defaults.context_after)),
        max_fixes_per_rule=int(data.get("max_fixes_per_rule", defaults.max_fixes_per_rule)),
        jobs=JobsConfig(
            expiry_hours=float(jobs.get("expiry_hours", JobsConfig.expiry_hours)),
            max_code_bytes=int(jobs.get("max_code_bytes", JobsConfig.max_code_bytes)),
            poll_interval_seconds=float(jobs.get("poll_interval_seconds", JobsConfig.poll_interval_seconds)),
            database_path=jobs.get("database_path"),
        ),
        server=ServerConfig(
            user_id=str(server.get("user_id", ServerConfig.user_id)),
            tier=str(server.get("tier", ServerConfig.tier)),
        ),
        rules_dir=directory,
    )
