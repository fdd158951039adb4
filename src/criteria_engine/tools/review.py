"""
Review tools invoked by ``<domain>-reviewer`` agents.

These functions back the MCP tools in ``criteria_engine.server``. They build
the evaluation context from plain arguments, run the shared engine and
return the structured ``Report``; presentation is left to the caller.

Example:
    >>> report = scan_content("permit ip any any\\n", file_path="edge.acl")
    >>> report.summary.worst_severity
    <Severity.CRITICAL: 'critical'>
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, Optional

from criteria_engine.config import load_config, rules_dir_path
from criteria_engine.engine import FindingEngine
from criteria_engine.errors import CorpusError
from criteria_engine.loader import load_directory
from criteria_engine.models import Artifact, EvaluationContext, Severity
from criteria_engine.report import Report

logger = logging.getLogger(__name__)


# =============================================================================
# Global Engine Cache
# =============================================================================


_cached_engine: FindingEngine | None = None
_engine_lock = threading.Lock()


def get_cached_engine() -> FindingEngine:
    """
    Get or create the shared FindingEngine built from the rules directory.

    Thread-safe singleton; the rule set is loaded once per process.

    Raises:
        LoadError: If the rule packs fail to load.
        ConfigurationError: If config.yaml is invalid.
    """
    global _cached_engine
    with _engine_lock:
        if _cached_engine is None:
            rules_dir = rules_dir_path()
            logger.info(f"Initializing engine from {rules_dir}")
            config = load_config(rules_dir / "config.yaml")
            _cached_engine = FindingEngine(load_directory(rules_dir), config)
        return _cached_engine


def clear_engine_cache() -> None:
    """Drop the cached engine so the next call reloads rules and config."""
    global _cached_engine
    with _engine_lock:
        _cached_engine = None
        logger.info("Engine cache cleared")


# =============================================================================
# Context
# =============================================================================


def build_context(
    project_tier: Optional[str] = None,
    platforms: Optional[list[str]] = None,
    language: Optional[str] = None,
    tags: Optional[dict[str, str]] = None,
    metrics: Optional[dict[str, float]] = None,
    disabled_rules: Optional[list[str]] = None,
    severity_overrides: Optional[dict[str, str]] = None,
    threshold_overrides: Optional[dict[str, float]] = None,
) -> EvaluationContext:
    """Build an EvaluationContext from tool arguments (None means undeclared)."""
    return EvaluationContext(
        project_tier=project_tier or None,
        platforms=platforms or (),
        language=language or None,
        tags=tags or {},
        metrics=metrics or {},
        disabled_rules=disabled_rules or (),
        severity_overrides=severity_overrides or {},
        threshold_overrides=threshold_overrides or {},
    )


# =============================================================================
# Scanning
# =============================================================================


def scan_path(path: str | Path, context: Optional[EvaluationContext] = None) -> Report:
    """
    Scan a file or a directory tree.

    Args:
        path: File or directory on disk.
        context: Evaluation context (empty if omitted).

    Returns:
        The run's Report.

    Raises:
        CorpusError: If the path does not exist.
    """
    target = Path(path)
    engine = get_cached_engine()

    if target.is_dir():
        return engine.scan_directory(target, context)
    if target.is_file():
        return engine.run([Artifact(path=target.name, source=target)], context)
    raise CorpusError(f"Path not found: {path}", directory=str(path))


def scan_content(
    content: str,
    file_path: str = "<inline>",
    language: Optional[str] = None,
    file_kind: Optional[str] = None,
    context: Optional[EvaluationContext] = None,
) -> Report:
    """Scan in-memory content as a single artifact."""
    artifact = Artifact(path=file_path, content=content, language=language, file_kind=file_kind)
    return get_cached_engine().run([artifact], context)


# =============================================================================
# Rule catalog
# =============================================================================


def list_rules(category: Optional[str] = None, min_severity: Optional[str] = None) -> list[dict[str, Any]]:
    """
    List loaded rules, optionally filtered by category and minimum constant severity.

    Rules with context-dependent severity are always listed when filtering by
    severity, since their severity is only known for a context.
    """
    rule_set = get_cached_engine().rule_set
    threshold = Severity.parse(min_severity) if min_severity else None

    rules = []
    for compiled in rule_set.rules:
        rule = compiled.rule
        if category and rule.category.lower() != category.lower():
            continue
        if threshold and isinstance(rule.severity, Severity) and rule.severity.rank < threshold.rank:
            continue
        rules.append(_rule_summary(compiled.rule))
    return rules


def get_rule(rule_id: str) -> Optional[dict[str, Any]]:
    """Full definition of one rule, or None if unknown."""
    compiled = get_cached_engine().rule_set.get(rule_id)
    return compiled.rule.model_dump(mode="json") if compiled else None


def _rule_summary(rule: Any) -> dict[str, Any]:
    severity = rule.severity.value if isinstance(rule.severity, Severity) else "context-dependent"
    return {
        "id": rule.id,
        "name": rule.name,
        "category": rule.category,
        "severity": severity,
        "applicability": {k: list(v) for k, v in rule.applicability.predicates.items()},
        "references": list(rule.references),
        "enabled": rule.enabled,
    }
