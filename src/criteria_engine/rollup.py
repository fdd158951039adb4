"""
Severity Rollup.

Projects a finding set into a ``Summary``: severity histograms per category
and for the repository, worst severity per file, risk scores, hotspots and
threshold breaches. ``summarize`` is pure and idempotent; it never mutates
its inputs and always returns a fresh Summary.

Risk score calculation:
- Starts at 100
- Deducts points based on severity and count
- Formula: score = max(0, 100 - sum(count * weight))
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Iterable, Mapping, Optional, Sequence

from criteria_engine.applicability import ResolvedRule
from criteria_engine.models import (
    SEVERITY_ORDER,
    CategorySummary,
    FileSummary,
    Finding,
    FindingKind,
    Hotspot,
    Measurement,
    Severity,
    Summary,
    ThresholdBreach,
    ThresholdKind,
    ThresholdScope,
    UnevaluatedThreshold,
    max_severity,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================


# Severity weights for scoring (higher = more impact on score)
SEVERITY_WEIGHTS: dict[Severity, int] = {
    Severity.CRITICAL: 25,
    Severity.HIGH: 10,
    Severity.MEDIUM: 3,
    Severity.LOW: 1,
    Severity.INFO: 0,
}

DEFAULT_HOTSPOT_LIMIT = 10


# =============================================================================
# Summary
# =============================================================================


def summarize(
    findings: Sequence[Finding],
    *,
    thresholds: Iterable[ResolvedRule] = (),
    measurements: Iterable[Measurement] = (),
    metrics: Optional[Mapping[str, float]] = None,
    hotspot_limit: int = DEFAULT_HOTSPOT_LIMIT,
) -> Summary:
    """
    Compute the summary of a finding set.

    Args:
        findings: Every finding of the run, diagnostics included.
        thresholds: Resolved rules; those carrying a threshold are evaluated.
        measurements: Metric values captured by measure patterns.
        metrics: User-declared metric values (fallback observations).
        hotspot_limit: Number of hotspot files to report.

    Returns:
        A fresh Summary.

    Example:
        >>> summary = summarize(findings, thresholds=eligible, metrics={"coverage": 70})
        >>> summary.by_severity["critical"]
        1
    """
    by_category: dict[str, list[Finding]] = defaultdict(list)
    by_file: dict[str, list[Finding]] = defaultdict(list)
    for finding in findings:
        by_category[finding.category].append(finding)
        by_file[finding.location.path].append(finding)

    categories = {category: _category_summary(category, items) for category, items in sorted(by_category.items())}

    files = {
        path: FileSummary(
            path=path,
            total=len(items),
            worst_severity=max_severity(f.severity for f in items),
        )
        for path, items in sorted(by_file.items())
    }

    histogram = severity_histogram(findings)
    breaches, unevaluated = detect_breaches(findings, thresholds, measurements, metrics or {})

    return Summary(
        total_findings=len(findings),
        diagnostics=sum(1 for f in findings if f.kind == FindingKind.DIAGNOSTIC),
        by_severity=histogram,
        categories=categories,
        files=files,
        worst_severity=max_severity(f.severity for f in findings) if findings else None,
        risk_score=calculate_risk_score(histogram),
        hotspots=identify_hotspots(findings, hotspot_limit),
        breaches=breaches,
        unevaluated_thresholds=unevaluated,
    )


def _category_summary(category: str, items: list[Finding]) -> CategorySummary:
    histogram = severity_histogram(items)
    return CategorySummary(
        category=category,
        total=len(items),
        by_severity=histogram,
        worst_severity=max_severity(f.severity for f in items),
        risk_score=calculate_risk_score(histogram),
    )


def severity_histogram(findings: Iterable[Finding]) -> dict[str, int]:
    """Count findings per severity; every level is present, worst first."""
    counts = {severity: 0 for severity in SEVERITY_ORDER}
    for finding in findings:
        counts[finding.severity] += 1
    return {severity.value: counts[severity] for severity in reversed(SEVERITY_ORDER)}


def calculate_risk_score(by_severity: Mapping[str, int]) -> float:
    """
    Calculate a risk score from 0-100 (100 = no weighted findings).

    Args:
        by_severity: Severity value -> count, as from ``severity_histogram``.

    Returns:
        Score rounded to 1 decimal place.
    """
    penalty = 0
    for severity, count in by_severity.items():
        penalty += count * SEVERITY_WEIGHTS[Severity.parse(severity)]
    return round(float(max(0, 100 - penalty)), 1)


def identify_hotspots(findings: Iterable[Finding], top_n: int = DEFAULT_HOTSPOT_LIMIT) -> list[Hotspot]:
    """
    Identify hotspots: files with the most severe issue findings.

    Sorted by critical count, then high count, then issue count (all
    descending), then path.
    """
    per_file: dict[str, list[Finding]] = defaultdict(list)
    for finding in findings:
        if finding.kind == FindingKind.ISSUE:
            per_file[finding.location.path].append(finding)

    hotspots = [
        Hotspot(
            path=path,
            issue_count=len(items),
            critical_count=sum(1 for f in items if f.severity == Severity.CRITICAL),
            high_count=sum(1 for f in items if f.severity == Severity.HIGH),
            categories=sorted({f.category for f in items}),
        )
        for path, items in per_file.items()
    ]
    hotspots.sort(key=lambda h: (-h.critical_count, -h.high_count, -h.issue_count, h.path))
    return hotspots[:top_n]


# =============================================================================
# Threshold breaches
# =============================================================================


def detect_breaches(
    findings: Sequence[Finding],
    rules: Iterable[ResolvedRule],
    measurements: Iterable[Measurement],
    metrics: Mapping[str, float],
) -> tuple[list[ThresholdBreach], list[UnevaluatedThreshold]]:
    """
    Evaluate every resolved threshold against the run's observations.

    ``max_occurrences`` counts the issue findings a rule contributed to (per
    repository or per file). ``min_value`` compares the lowest measured value
    for the rule (per file for file scope), falling back to the declared
    ``metrics[metric]`` when nothing was measured.

    Returns:
        (breaches, thresholds that had no observation)
    """
    measured: dict[str, list[Measurement]] = defaultdict(list)
    for measurement in measurements:
        measured[measurement.rule_id].append(measurement)

    breaches: list[ThresholdBreach] = []
    unevaluated: list[UnevaluatedThreshold] = []

    for resolved in sorted(rules, key=lambda r: r.id):
        threshold = resolved.threshold
        if threshold is None:
            continue

        if threshold.kind == ThresholdKind.MAX_OCCURRENCES:
            breaches.extend(_occurrence_breaches(resolved, findings))
            continue

        observations = _min_value_observations(resolved, measured.get(resolved.id, []), metrics)
        if not observations:
            unevaluated.append(
                UnevaluatedThreshold(
                    rule_id=resolved.id,
                    metric=threshold.metric,
                    reason=f"no measurement or declared value for metric '{threshold.metric}'",
                )
            )
            continue

        for path, observed in observations:
            if observed < threshold.limit:
                breaches.append(
                    _breach(
                        resolved,
                        path,
                        observed,
                        f"{threshold.metric} {observed:g}{threshold.unit} < required "
                        f"{threshold.limit:g}{threshold.unit}",
                    )
                )

    breaches.sort(key=lambda b: (b.rule_id, b.path or ""))
    logger.debug(
        "Evaluated thresholds",
        extra={"breaches": len(breaches), "unevaluated": len(unevaluated)},
    )
    return breaches, unevaluated


def _occurrence_breaches(resolved: ResolvedRule, findings: Sequence[Finding]) -> list[ThresholdBreach]:
    threshold = resolved.threshold
    assert threshold is not None
    contributed = [
        f for f in findings if f.kind == FindingKind.ISSUE and resolved.id in f.rule_ids
    ]

    if threshold.scope == ThresholdScope.REPOSITORY:
        counts: dict[Optional[str], int] = {None: len(contributed)}
    else:
        counts = defaultdict(int)
        for finding in contributed:
            counts[finding.location.path] += 1

    breaches = []
    for path, count in sorted(counts.items(), key=lambda item: item[0] or ""):
        if count > threshold.limit:
            where = f" in {path}" if path else ""
            breaches.append(
                _breach(
                    resolved,
                    path,
                    float(count),
                    f"{count} occurrences of {resolved.id}{where} > allowed {threshold.limit:g}",
                )
            )
    return breaches


def _min_value_observations(
    resolved: ResolvedRule,
    measured: list[Measurement],
    metrics: Mapping[str, float],
) -> list[tuple[Optional[str], float]]:
    threshold = resolved.threshold
    assert threshold is not None

    if measured:
        if threshold.scope == ThresholdScope.FILE:
            lowest: dict[str, float] = {}
            for m in measured:
                lowest[m.artifact_path] = min(m.value, lowest.get(m.artifact_path, m.value))
            return sorted(lowest.items())
        return [(None, min(m.value for m in measured))]

    if threshold.metric is not None and threshold.metric in metrics:
        return [(None, float(metrics[threshold.metric]))]
    return []


def _breach(resolved: ResolvedRule, path: Optional[str], observed: float, message: str) -> ThresholdBreach:
    threshold = resolved.threshold
    assert threshold is not None
    return ThresholdBreach(
        rule_id=resolved.id,
        category=resolved.category,
        severity=resolved.severity,
        kind=threshold.kind,
        scope=threshold.scope,
        path=path,
        observed=observed,
        limit=threshold.limit,
        message=message,
    )
