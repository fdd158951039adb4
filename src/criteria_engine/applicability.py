"""
Applicability Resolver.

Decides which rules are evaluated for a run and for each artifact, and
resolves context-dependent severities and threshold limits once per run.
Both entry points are pure functions of their inputs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from criteria_engine.corpus import matches_glob
from criteria_engine.errors import ContextError
from criteria_engine.loader import CompiledRule, RuleSet
from criteria_engine.models import (
    Artifact,
    EvaluationContext,
    LimitTable,
    Rule,
    Severity,
    SeverityTable,
    ThresholdKind,
    ThresholdScope,
    max_severity,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedThreshold:
    """A rule's threshold with its limit resolved for the run's context."""

    kind: ThresholdKind
    scope: ThresholdScope
    limit: float
    metric: Optional[str] = None
    unit: str = ""


@dataclass(frozen=True)
class ResolvedRule:
    """
    A rule paired with its severity (and threshold) resolved for one context.

    Attributes:
        compiled: The compiled rule from the RuleSet.
        severity: Resolved severity.
        threshold: Resolved threshold, if the rule declares one.
    """

    compiled: CompiledRule
    severity: Severity
    threshold: Optional[ResolvedThreshold] = None

    @property
    def rule(self) -> Rule:
        return self.compiled.rule

    @property
    def id(self) -> str:
        return self.compiled.id

    @property
    def category(self) -> str:
        return self.compiled.category


def eligible_rules(rule_set: RuleSet, context: EvaluationContext) -> list[ResolvedRule]:
    """
    Return the rules eligible under ``context``, in rule-id order.

    A rule is eligible when it is enabled, not disabled by the context, and
    every context-level applicability predicate holds. Artifact-level
    predicates (language, file_kind, path) are applied per artifact by
    ``rules_for_artifact``.

    Args:
        rule_set: Loaded rule set.
        context: Evaluation context of the run.

    Returns:
        Resolved rules with severity and threshold fixed for this context.

    Raises:
        ContextError: If an eligible rule's severity or threshold table cannot
            resolve under ``context``.

    Example:
        >>> ctx = EvaluationContext(project_tier="payment", platforms=["linux"])
        >>> [r.id for r in eligible_rules(rule_set, ctx)]
        ['CAP-001', 'TST-COV-001']
    """
    disabled = set(context.disabled_rules)
    resolved: list[ResolvedRule] = []

    for compiled in rule_set.rules:
        rule = compiled.rule
        if not rule.enabled or rule.id in disabled:
            continue
        if not context_predicates_hold(rule, context):
            continue
        resolved.append(
            ResolvedRule(
                compiled=compiled,
                severity=resolve_severity(rule, context),
                threshold=resolve_threshold(rule, context),
            )
        )

    logger.debug(
        "Resolved eligible rules",
        extra={"eligible": len(resolved), "total": len(rule_set)},
    )
    return resolved


def rules_for_artifact(
    resolved: list[ResolvedRule],
    artifact: Artifact,
    context: Optional[EvaluationContext] = None,
) -> list[ResolvedRule]:
    """
    Filter resolved rules by the artifact-level predicates.

    An artifact whose language is unknown is treated as having the context's
    language.
    """
    language = artifact.language or (context.language if context else None)
    return [r for r in resolved if artifact_predicates_hold(r.rule, artifact, language)]


def context_predicates_hold(rule: Rule, context: EvaluationContext) -> bool:
    """True if every context-level predicate of ``rule`` holds under ``context``."""
    for dimension, allowed in rule.applicability.context_predicates().items():
        values = context.dimension_values(dimension)
        if values is None or values.isdisjoint(allowed):
            return False
    return True


def artifact_predicates_hold(rule: Rule, artifact: Artifact, language: Optional[str]) -> bool:
    """True if every artifact-level predicate of ``rule`` holds for ``artifact``."""
    for dimension, allowed in rule.applicability.artifact_predicates().items():
        if dimension == "language":
            if language is None or language.lower() not in allowed:
                return False
        elif dimension == "file_kind":
            if artifact.file_kind is None or artifact.file_kind.lower() not in allowed:
                return False
        elif dimension == "path":
            if not any(matches_glob(artifact.path, pattern) for pattern in allowed):
                return False
    return True


# =============================================================================
# Severity and threshold resolution
# =============================================================================


def resolve_severity(rule: Rule, context: EvaluationContext) -> Severity:
    """
    Resolve a rule's severity for ``context``.

    Resolution order: context override, matching table entries (worst wins
    when a multi-valued dimension hits several), table default.

    Raises:
        ContextError: If the table has no default and nothing matches.
    """
    override = context.severity_overrides.get(rule.id)
    if override is not None:
        return override

    if not isinstance(rule.severity, SeverityTable):
        return rule.severity

    hits = _lookup(rule.severity, context, rule.id, "severity")
    if hits:
        return max_severity(hits)
    return rule.severity.default  # type: ignore[return-value]


def resolve_threshold(rule: Rule, context: EvaluationContext) -> Optional[ResolvedThreshold]:
    """
    Resolve a rule's threshold limit for ``context``.

    When a multi-valued dimension hits several entries, the strictest limit
    wins (highest minimum, lowest maximum).

    Raises:
        ContextError: If the limit table has no default and nothing matches.
    """
    threshold = rule.threshold
    if threshold is None:
        return None

    override = context.threshold_overrides.get(rule.id)
    if override is not None:
        limit = float(override)
    elif isinstance(threshold.limit, LimitTable):
        hits = _lookup(threshold.limit, context, rule.id, "threshold")
        if hits:
            limit = max(hits) if threshold.kind == ThresholdKind.MIN_VALUE else min(hits)
        else:
            limit = threshold.limit.default  # type: ignore[assignment]
    else:
        limit = float(threshold.limit)

    return ResolvedThreshold(
        kind=threshold.kind,
        scope=threshold.scope,
        limit=float(limit),
        metric=threshold.metric,
        unit=threshold.unit,
    )


def _lookup(
    table: SeverityTable | LimitTable,
    context: EvaluationContext,
    rule_id: str,
    what: str,
) -> list:
    values: dict[str, frozenset[str]] = {}
    for dimension in table.dimensions:
        declared = context.dimension_values(dimension)
        if declared is None:
            if table.default is None:
                raise ContextError(
                    f"Rule '{rule_id}' needs context dimension '{dimension}' to resolve its {what}",
                    rule_id=rule_id,
                    dimension=dimension,
                )
            return []
        values[dimension] = declared

    hits = table.matching_values(values) or []
    if not hits and table.default is None:
        shown = {d: sorted(v) for d, v in values.items()}
        raise ContextError(
            f"Rule '{rule_id}' has no {what} entry for context {shown}",
            rule_id=rule_id,
            dimension=table.dimensions[0],
        )
    return hits

