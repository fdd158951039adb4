"""Tests for the finding aggregator."""

import pytest

from conftest import rule
from criteria_engine.aggregator import (
    DIAGNOSTIC_CATEGORY,
    UNREADABLE_ARTIFACT_ID,
    aggregate,
    generate_finding_id,
    spans_overlap,
)
from criteria_engine.applicability import eligible_rules
from criteria_engine.errors import AggregationInvariantError
from criteria_engine.models import (
    DiagnosticKind,
    EvaluationContext,
    FindingKind,
    MatcherDiagnostic,
    RawMatch,
    Severity,
)
from criteria_engine.normalize import NormalizedText


def raw(rule_id, start, end, path="acl.conf", line=1):
    return RawMatch(
        rule_id=rule_id,
        artifact_path=path,
        start=start,
        end=end,
        line=line,
        column=start + 1,
        end_line=line,
        end_column=end + 1,
    )


@pytest.fixture
def resolved(build_rule_set):
    rule_set = build_rule_set(
        rule("R1", category="access", severity="critical", message="ACL allows any"),
        rule("R2", category="access", severity="high"),
        rule("R3", category="access", severity="high"),
        rule("S1", category="style", severity="low"),
    )
    return {r.id: r for r in eligible_rules(rule_set, EvaluationContext())}


def test_single_match_single_finding(resolved):
    findings = aggregate([raw("R1", 0, 17)], resolved)
    assert len(findings) == 1
    finding = findings[0]
    assert finding.severity == Severity.CRITICAL
    assert finding.rule_ids == ("R1",)
    assert finding.primary_rule_id == "R1"
    assert finding.message == "ACL allows any"
    assert finding.remediation == "Fix R1."
    assert finding.occurrences == 1
    assert finding.kind == FindingKind.ISSUE


def test_overlapping_same_category_merge_worst_wins(resolved):
    findings = aggregate([raw("R2", 0, 30), raw("R1", 0, 17)], resolved)
    assert len(findings) == 1
    finding = findings[0]
    assert finding.severity == Severity.CRITICAL
    assert finding.rule_ids == ("R1", "R2")
    assert finding.primary_rule_id == "R1"
    assert finding.remediation == "Fix R1."
    assert finding.occurrences == 2


def test_equal_severity_tie_breaks_on_smallest_id(resolved):
    finding = aggregate([raw("R3", 0, 10), raw("R2", 5, 12)], resolved)[0]
    assert finding.severity == Severity.HIGH
    assert finding.primary_rule_id == "R2"


def test_different_categories_never_merge(resolved):
    findings = aggregate([raw("R1", 0, 17), raw("S1", 0, 17)], resolved)
    assert sorted(f.category for f in findings) == ["access", "style"]


def test_disjoint_spans_stay_separate(resolved):
    findings = aggregate([raw("R1", 0, 5), raw("R2", 5, 10)], resolved)
    assert len(findings) == 2


def test_different_artifacts_stay_separate(resolved):
    findings = aggregate([raw("R1", 0, 17, path="a.conf"), raw("R2", 0, 17, path="b.conf")], resolved)
    assert {f.location.path for f in findings} == {"a.conf", "b.conf"}


def test_transitive_clustering(resolved):
    """a overlaps b, b overlaps c; a and c do not touch but end up together."""
    findings = aggregate([raw("R1", 0, 10), raw("R2", 8, 20), raw("R3", 18, 30)], resolved)
    assert len(findings) == 1
    assert findings[0].rule_ids == ("R1", "R2", "R3")
    assert findings[0].location.column == 1
    assert findings[0].location.end_column == 31


def test_overlap_fraction_threshold(resolved):
    matches = [raw("R1", 0, 10), raw("R2", 8, 20)]
    assert len(aggregate(matches, resolved, overlap_fraction=0.0)) == 1
    assert len(aggregate(matches, resolved, overlap_fraction=0.1)) == 1
    assert len(aggregate(matches, resolved, overlap_fraction=0.5)) == 2


def test_overlap_must_exceed_fraction(resolved):
    """Overlap exactly equal to the fraction does not merge."""
    matches = [raw("R1", 0, 10), raw("R2", 8, 20)]
    assert len(aggregate(matches, resolved, overlap_fraction=0.2)) == 2
    assert not spans_overlap(*matches, 0.2)
    assert spans_overlap(*matches, 0.19)


def test_spans_overlap_fraction_uses_shorter_span():
    a, b = raw("R1", 0, 100), raw("R2", 10, 14)
    assert spans_overlap(a, b, 0.99)
    assert not spans_overlap(raw("R1", 0, 4), raw("R2", 4, 8))


def test_full_fraction_merges_contained_spans_only():
    assert spans_overlap(raw("R1", 0, 100), raw("R2", 10, 14), 1.0)
    assert not spans_overlap(raw("R1", 0, 10), raw("R2", 5, 20), 1.0)


def test_empty_span_counts_as_length_one():
    assert spans_overlap(raw("R1", 3, 3), raw("R2", 0, 10))
    assert not spans_overlap(raw("R1", 10, 10), raw("R2", 0, 10))


def test_no_silent_drop(resolved):
    matches = [
        raw("R1", 0, 17),
        raw("R2", 0, 30),
        raw("S1", 2, 4),
        raw("R3", 100, 110, line=5),
        raw("R1", 200, 210, path="other.conf"),
    ]
    findings = aggregate(matches, resolved)
    assert sum(f.occurrences for f in findings) == len(matches)
    assert len(findings) <= len(matches)
    for match in matches:
        owners = [
            f
            for f in findings
            if f.location.path == match.artifact_path and match.rule_id in f.rule_ids
        ]
        assert owners


def test_severity_monotonic(resolved):
    finding = aggregate([raw("R1", 0, 17), raw("R2", 0, 17), raw("R3", 3, 9)], resolved)[0]
    assert all(finding.severity.rank >= resolved[r].severity.rank for r in finding.rule_ids)


def test_unknown_rule_is_invariant_error(resolved):
    with pytest.raises(AggregationInvariantError) as exc:
        aggregate([raw("GHOST", 0, 5)], resolved)
    assert exc.value.unattributed == 1


def test_finding_id_is_stable(resolved):
    first = aggregate([raw("R1", 0, 17), raw("R2", 0, 20)], resolved)[0]
    second = aggregate([raw("R2", 0, 20), raw("R1", 0, 17)], resolved)[0]
    assert first.id == second.id
    assert first.id.startswith("finding-")
    assert first.id == generate_finding_id("access", "acl.conf", "1:1-1:21")


def test_snippet_from_text(resolved):
    text = NormalizedText("deny\npermit ip any any\nend\n")
    match = RawMatch("R1", "acl.conf", start=5, end=22, line=2, column=1, end_line=2, end_column=18)
    finding = aggregate([match], resolved, texts={"acl.conf": text}, snippet_context_lines=1)[0]
    assert ">>> 2 | permit ip any any" in finding.location.snippet


def test_diagnostics_become_info_findings(resolved):
    diagnostics = [
        MatcherDiagnostic(DiagnosticKind.PATTERN_TIMEOUT, "slow.conf", "timed out", rule_id="R2"),
        MatcherDiagnostic(DiagnosticKind.UNREADABLE_ARTIFACT, "binary.conf", "cannot read"),
    ]
    findings = aggregate([raw("R1", 0, 17, path="slow.conf")], resolved, diagnostics=diagnostics)
    diag = [f for f in findings if f.kind == FindingKind.DIAGNOSTIC]
    assert len(diag) == 2
    assert all(f.severity == Severity.INFO and f.category == DIAGNOSTIC_CATEGORY for f in diag)
    assert {f.primary_rule_id for f in diag} == {"R2", UNREADABLE_ARTIFACT_ID}
    assert all(f.occurrences == 0 for f in diag)
    # Diagnostics never merge with issues at the same location
    assert any(f.kind == FindingKind.ISSUE and f.location.path == "slow.conf" for f in findings)
