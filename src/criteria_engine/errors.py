"""
Exception hierarchy for the criteria engine.

Load-time and context errors are fatal and abort a run before any scanning
starts. Per-artifact problems never surface as exceptions from a run; they
are converted into diagnostic findings at the worker boundary.
"""

from __future__ import annotations

from typing import Any


# =============================================================================
# Custom Exceptions
# =============================================================================


class CriteriaEngineError(Exception):
    """Base exception for all criteria engine errors."""

    pass


class ConfigurationError(CriteriaEngineError):
    """Raised when configuration files are invalid or unreadable."""

    pass


# -----------------------------------------------------------------------------
# Load-time errors
# -----------------------------------------------------------------------------


class LoadError(CriteriaEngineError):
    """Base class for rule set load failures. A rule set that fails to load is never used."""

    def __init__(self, message: str, rule_id: str | None = None, source: str | None = None):
        self.rule_id = rule_id
        self.source = source
        super().__init__(message)


class RuleSchemaError(LoadError):
    """Raised when a rule source is not structurally valid (syntax, schema, version)."""

    def __init__(
        self,
        message: str,
        source: str | None = None,
        rule_id: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.details = details or {}
        super().__init__(message, rule_id=rule_id, source=source)


class DuplicateId(LoadError):
    """Raised when two rules share an id within one rule set."""

    def __init__(self, rule_id: str, source: str | None = None):
        super().__init__(f"Duplicate rule id '{rule_id}'", rule_id=rule_id, source=source)


class InvalidPattern(LoadError):
    """Raised when a rule has no patterns or a pattern does not compile."""

    def __init__(self, rule_id: str, reason: str, pattern: str | None = None):
        self.reason = reason
        self.pattern = pattern
        super().__init__(f"Invalid pattern in rule '{rule_id}': {reason}", rule_id=rule_id)


class AmbiguousSeverity(LoadError):
    """Raised when a severity table leaves some context combination unresolved."""

    def __init__(self, rule_id: str, reason: str = "severity table is not total"):
        self.reason = reason
        super().__init__(f"Ambiguous severity for rule '{rule_id}': {reason}", rule_id=rule_id)


class AmbiguousThreshold(LoadError):
    """Raised when a threshold limit table leaves some context combination unresolved."""

    def __init__(self, rule_id: str, reason: str = "threshold table is not total"):
        self.reason = reason
        super().__init__(f"Ambiguous threshold for rule '{rule_id}': {reason}", rule_id=rule_id)


# -----------------------------------------------------------------------------
# Run-time errors
# -----------------------------------------------------------------------------


class ContextError(CriteriaEngineError):
    """Raised when the evaluation context cannot resolve a rule's severity or threshold."""

    def __init__(self, message: str, rule_id: str | None = None, dimension: str | None = None):
        self.rule_id = rule_id
        self.dimension = dimension
        super().__init__(message)


class AggregationInvariantError(CriteriaEngineError):
    """Raised when a raw match is not attributed to exactly one finding."""

    def __init__(self, message: str, unattributed: int = 0, duplicated: int = 0):
        self.unattributed = unattributed
        self.duplicated = duplicated
        super().__init__(message)


class PipelineStateError(CriteriaEngineError):
    """Raised on an illegal pipeline stage transition."""

    pass


class ScanCancelled(CriteriaEngineError):
    """Raised when a run is cancelled; no report is produced."""

    def __init__(self, message: str = "Scan cancelled", completed: int = 0, total: int = 0):
        self.completed = completed
        self.total = total
        super().__init__(message)


class CorpusError(CriteriaEngineError):
    """Raised when the reference corpus provider cannot enumerate artifacts."""

    def __init__(self, message: str, directory: str | None = None):
        self.directory = directory
        super().__init__(message)
