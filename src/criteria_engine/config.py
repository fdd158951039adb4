"""
Engine configuration.

Configuration lives in ``config.yaml`` next to the rule packs::

    extensions:            # file extension -> language
      .py: python
    file_kinds:            # file extension or file name -> file kind
      .yaml: config
      Dockerfile: infrastructure
    engine:
      pattern_timeout_seconds: 2.0
      max_workers: 4
      overlap_fraction: 0.0
      snippet_context_lines: 2
      hotspot_limit: 10
    corpus:
      ignored_patterns: ["**/.git/**"]

Only the tool surface locates the rules directory (environment variable,
then project root and working directory candidates); the engine itself is
handed an ``EngineConfig`` and never reads the environment.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from criteria_engine.errors import ConfigurationError

logger = logging.getLogger(__name__)

RULES_DIR_ENV = "CRITERIA_ENGINE_RULES_DIR"

DEFAULT_IGNORED_PATTERNS: list[str] = [
    "**/.git/**",
    "**/node_modules/**",
    "**/__pycache__/**",
    "**/.venv/**",
    "**/venv/**",
    "**/dist/**",
    "**/build/**",
    "**/*.min.js",
]


@dataclass
class EngineConfig:
    """
    Engine and corpus settings loaded from config.yaml.

    Attributes:
        pattern_timeout_seconds: Time budget per (rule, artifact) regex evaluation.
        max_workers: Worker threads used to scan artifacts.
        overlap_fraction: Span overlap (fraction of the shorter span) two
            same-category matches must exceed to merge; 0.0 merges on any
            overlap. A span contained in the other always merges.
        snippet_context_lines: Lines of context around a finding's snippet.
        hotspot_limit: Number of files listed as hotspots in the summary.
        extensions: Extra extension -> language mappings.
        file_kinds: Extra extension/file-name -> file kind mappings.
        ignored_patterns: Glob patterns the corpus provider skips.
    """

    pattern_timeout_seconds: float = 2.0
    max_workers: int = 4
    overlap_fraction: float = 0.0
    snippet_context_lines: int = 2
    hotspot_limit: int = 10
    extensions: dict[str, str] = field(default_factory=dict)
    file_kinds: dict[str, str] = field(default_factory=dict)
    ignored_patterns: list[str] = field(default_factory=lambda: list(DEFAULT_IGNORED_PATTERNS))

    def __post_init__(self) -> None:
        if self.pattern_timeout_seconds <= 0:
            raise ConfigurationError("pattern_timeout_seconds must be positive")
        if self.max_workers < 1:
            raise ConfigurationError("max_workers must be at least 1")
        if not 0.0 <= self.overlap_fraction <= 1.0:
            raise ConfigurationError("overlap_fraction must be between 0.0 and 1.0")
        if self.snippet_context_lines < 0:
            raise ConfigurationError("snippet_context_lines must not be negative")
        if self.hotspot_limit < 0:
            raise ConfigurationError("hotspot_limit must not be negative")


def load_config(path: str | Path | None) -> EngineConfig:
    """
    Load engine configuration from a YAML file.

    Args:
        path: Path to config.yaml. A missing file (or None) yields defaults.

    Returns:
        EngineConfig with values from the file merged over defaults.

    Raises:
        ConfigurationError: If the file is unreadable, not valid YAML, or
            holds values of the wrong type.
    """
    if path is None:
        return EngineConfig()

    config_path = Path(path)
    if not config_path.exists():
        logger.warning(f"Config file not found at {config_path}, using defaults")
        return EngineConfig()

    try:
        with open(config_path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid config.yaml: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"Cannot read config.yaml: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError("config.yaml must contain a mapping at the top level")

    engine = data.get("engine", {}) or {}
    corpus = data.get("corpus", {}) or {}

    try:
        config = EngineConfig(
            pattern_timeout_seconds=float(engine.get("pattern_timeout_seconds", 2.0)),
            max_workers=int(engine.get("max_workers", 4)),
            overlap_fraction=float(engine.get("overlap_fraction", 0.0)),
            snippet_context_lines=int(engine.get("snippet_context_lines", 2)),
            hotspot_limit=int(engine.get("hotspot_limit", 10)),
            extensions=_string_map(data.get("extensions", {}), "extensions"),
            file_kinds=_string_map(data.get("file_kinds", {}), "file_kinds"),
            ignored_patterns=list(corpus.get("ignored_patterns", DEFAULT_IGNORED_PATTERNS)),
        )
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid value in config.yaml: {e}") from e

    logger.debug(
        "Loaded engine configuration",
        extra={"source": str(config_path), "max_workers": config.max_workers},
    )
    return config


def _string_map(value: Any, key: str) -> dict[str, str]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigurationError(f"'{key}' in config.yaml must be a mapping")
    return {str(k): str(v).lower() for k, v in value.items()}


def rules_dir_path(rules_dir: str = "rules") -> Path:
    """
    Resolve the rules directory path.

    Checks in order:
    1. CRITERIA_ENGINE_RULES_DIR environment variable
    2. Project root (2 levels up from package)
    3. Current working directory
    4. The rules_dir argument as given

    Args:
        rules_dir: Default rules directory name.

    Returns:
        Resolved Path to rules directory.
    """
    if env_path := os.environ.get(RULES_DIR_ENV):
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

    # Default to project root even if it doesn't exist
    return project_root / rules_dir
