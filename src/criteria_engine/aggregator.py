"""
Finding Aggregator.

Merges raw matches into canonical findings. Matches on the same artifact
whose rules share a category and whose spans overlap (transitively) form one
finding; matches in different categories are never merged. The merged
finding takes the worst contributing severity, and its message and
remediation come from the primary rule: the highest-severity contributor,
smallest rule id on ties.

Every raw match ends up in exactly one finding; anything else is an
``AggregationInvariantError``.
"""

from __future__ import annotations

import hashlib
import logging
from collections import defaultdict
from typing import Iterable, Mapping, Optional, Sequence, Union

from criteria_engine.applicability import ResolvedRule
from criteria_engine.errors import AggregationInvariantError
from criteria_engine.models import (
    DiagnosticKind,
    Finding,
    FindingKind,
    Location,
    MatcherDiagnostic,
    RawMatch,
    Severity,
)
from criteria_engine.normalize import NormalizedText

logger = logging.getLogger(__name__)

DIAGNOSTIC_CATEGORY = "engine-diagnostics"
UNREADABLE_ARTIFACT_ID = "engine:unreadable-artifact"


def aggregate(
    raw_matches: Sequence[RawMatch],
    rules: Union[Mapping[str, ResolvedRule], Iterable[ResolvedRule]],
    *,
    overlap_fraction: float = 0.0,
    diagnostics: Iterable[MatcherDiagnostic] = (),
    texts: Optional[Mapping[str, NormalizedText]] = None,
    snippet_context_lines: int = 2,
) -> list[Finding]:
    """
    Merge raw matches (and diagnostics) into findings.

    Args:
        raw_matches: All raw matches of the run.
        rules: Resolved rules by id (or an iterable of them); supplies
            category, resolved severity, message and remediation.
        overlap_fraction: Minimum overlap, as a fraction of the shorter span,
            for two matches to merge. 0.0 merges on any overlap.
        diagnostics: Matcher / reader degradations, emitted as INFO findings.
        texts: Normalized text per artifact path, used for snippets.
        snippet_context_lines: Context lines around snippets.

    Returns:
        Findings grouped by artifact and category, in location order.

    Raises:
        AggregationInvariantError: If a raw match belongs to no eligible rule,
            or is not attributed to exactly one finding.

    Example:
        >>> findings = aggregate(matches, resolved, overlap_fraction=0.0)
        >>> findings[0].rule_ids
        ('R1', 'R2')
    """
    by_id = rules if isinstance(rules, Mapping) else {r.id: r for r in rules}
    texts = texts or {}

    unknown = sorted({m.rule_id for m in raw_matches if m.rule_id not in by_id})
    if unknown:
        raise AggregationInvariantError(
            f"Raw matches reference rules that were not evaluated: {', '.join(unknown)}",
            unattributed=sum(1 for m in raw_matches if m.rule_id not in by_id),
        )

    groups: dict[tuple[str, str], list[int]] = defaultdict(list)
    for idx, match in enumerate(raw_matches):
        groups[(match.artifact_path, by_id[match.rule_id].category)].append(idx)

    attribution = [0] * len(raw_matches)
    findings: list[Finding] = []

    for (path, category) in sorted(groups):
        for cluster in _cluster(raw_matches, groups[(path, category)], overlap_fraction):
            for idx in cluster:
                attribution[idx] += 1
            findings.append(
                _merge(
                    [raw_matches[i] for i in cluster],
                    by_id,
                    category,
                    texts.get(path),
                    snippet_context_lines,
                )
            )

    unattributed = attribution.count(0)
    duplicated = sum(1 for count in attribution if count > 1)
    if unattributed or duplicated:
        raise AggregationInvariantError(
            f"{unattributed} raw matches unattributed, {duplicated} attributed more than once",
            unattributed=unattributed,
            duplicated=duplicated,
        )

    findings.extend(_diagnostic_findings(diagnostics))

    logger.debug(
        "Aggregated raw matches",
        extra={"raw_matches": len(raw_matches), "findings": len(findings)},
    )
    return findings


# =============================================================================
# Clustering
# =============================================================================


def _effective_span(match: RawMatch) -> tuple[int, int]:
    # Empty spans count as length 1
    return match.start, max(match.end, match.start + 1)


def spans_overlap(a: RawMatch, b: RawMatch, overlap_fraction: float = 0.0) -> bool:
    """
    True if two matches overlap enough to merge.

    The overlap is measured as a fraction of the shorter span and must be
    more than ``overlap_fraction``. A span lying wholly inside the other
    always merges, so 1.0 means containment only.
    """
    a_start, a_end = _effective_span(a)
    b_start, b_end = _effective_span(b)
    overlap = min(a_end, b_end) - max(a_start, b_start)
    if overlap <= 0:
        return False
    shorter = min(a_end - a_start, b_end - b_start)
    ratio = overlap / shorter
    return ratio > overlap_fraction or ratio == 1.0


def _cluster(matches: Sequence[RawMatch], indices: list[int], overlap_fraction: float) -> list[list[int]]:
    """Transitively cluster overlapping matches (union-find over a start-sorted sweep)."""
    order = sorted(indices, key=lambda i: (matches[i].start, matches[i].end, matches[i].rule_id, i))
    parent = {i: i for i in order}

    def find(i: int) -> int:
        while parent[i] != i:
            parent[i] = parent[parent[i]]
            i = parent[i]
        return i

    for pos, i in enumerate(order):
        _, i_end = _effective_span(matches[i])
        for j in order[pos + 1 :]:
            if matches[j].start >= i_end:
                break
            if spans_overlap(matches[i], matches[j], overlap_fraction):
                root_i, root_j = find(i), find(j)
                if root_i != root_j:
                    parent[max(root_i, root_j)] = min(root_i, root_j)

    clusters: dict[int, list[int]] = defaultdict(list)
    for i in order:
        clusters[find(i)].append(i)
    return sorted(clusters.values(), key=lambda c: (matches[c[0]].start, matches[c[0]].end))


# =============================================================================
# Merging
# =============================================================================


def _primary(contributors: Iterable[ResolvedRule]) -> ResolvedRule:
    """Highest severity wins; the lexicographically smallest id breaks ties."""
    return min(contributors, key=lambda r: (-r.severity.rank, r.id))


def generate_finding_id(category: str, path: str, span: str) -> str:
    """Stable finding id from category and normalized location."""
    content = f"{category}\x00{path}\x00{span}"
    return f"finding-{hashlib.sha256(content.encode()).hexdigest()[:16]}"


def _merge(
    cluster: list[RawMatch],
    by_id: Mapping[str, ResolvedRule],
    category: str,
    text: Optional[NormalizedText],
    snippet_context_lines: int,
) -> Finding:
    contributors = {m.rule_id: by_id[m.rule_id] for m in cluster}
    primary = _primary(contributors.values())
    severity = primary.severity

    first = min(cluster, key=lambda m: (m.start, m.end))
    last = max(cluster, key=lambda m: (m.end, m.start))
    path = first.artifact_path

    snippet = None
    if text is not None:
        snippet = text.snippet(first.line, snippet_context_lines, end_line=last.end_line)

    span = f"{first.line}:{first.column}-{last.end_line}:{last.end_column}"
    return Finding(
        id=generate_finding_id(category, path, span),
        kind=FindingKind.ISSUE,
        category=category,
        severity=severity,
        location=Location(
            path=path,
            line=first.line,
            column=first.column,
            end_line=last.end_line,
            end_column=last.end_column,
            snippet=snippet,
        ),
        message=primary.rule.title,
        remediation=primary.rule.remediation,
        primary_rule_id=primary.id,
        rule_ids=tuple(sorted(contributors)),
        occurrences=len(cluster),
    )


def _diagnostic_findings(diagnostics: Iterable[MatcherDiagnostic]) -> list[Finding]:
    findings: dict[str, Finding] = {}
    for diagnostic in diagnostics:
        if diagnostic.kind == DiagnosticKind.UNREADABLE_ARTIFACT or not diagnostic.rule_id:
            source_id = UNREADABLE_ARTIFACT_ID
        else:
            source_id = diagnostic.rule_id
        finding_id = generate_finding_id(
            DIAGNOSTIC_CATEGORY, diagnostic.artifact_path, f"{diagnostic.kind.value}:{source_id}"
        )
        findings[finding_id] = Finding(
            id=finding_id,
            kind=FindingKind.DIAGNOSTIC,
            category=DIAGNOSTIC_CATEGORY,
            severity=Severity.INFO,
            location=Location(path=diagnostic.artifact_path, line=1, column=1),
            message=diagnostic.detail,
            remediation="",
            primary_rule_id=source_id,
            rule_ids=(source_id,),
            occurrences=0,
        )
    return [findings[k] for k in sorted(findings)]
