"""Tests for the data model."""

import pytest
from pydantic import ValidationError

from criteria_engine.models import (
    Applicability,
    Artifact,
    EvaluationContext,
    LimitTable,
    PatternKind,
    PatternSpec,
    RawMatch,
    Rule,
    Severity,
    SeverityTable,
    TextMode,
    Threshold,
    max_severity,
)


def test_severity_rank_orders_scale():
    """Severity ordering follows rank, not string order."""
    ranks = [s.rank for s in (Severity.INFO, Severity.LOW, Severity.MEDIUM, Severity.HIGH, Severity.CRITICAL)]
    assert ranks == [0, 1, 2, 3, 4]


@pytest.mark.parametrize(
    "literal,expected",
    [
        ("critical", Severity.CRITICAL),
        ("HIGH", Severity.HIGH),
        (" Warning ", Severity.MEDIUM),
        ("error", Severity.HIGH),
        ("note", Severity.INFO),
    ],
)
def test_severity_parse_accepts_aliases(literal, expected):
    assert Severity.parse(literal) == expected


def test_severity_parse_rejects_unknown():
    with pytest.raises(ValueError, match="Unknown severity"):
        Severity.parse("blocker")


def test_max_severity():
    assert max_severity([Severity.LOW, Severity.CRITICAL, Severity.HIGH]) == Severity.CRITICAL
    assert max_severity([]) == Severity.INFO


def test_severity_table_shorthand_expands():
    """by/values shorthand becomes a one-dimension table."""
    table = SeverityTable.model_validate(
        {"by": "project_tier", "values": {"payment": "critical", "Prototype": "low"}, "default": "medium"}
    )
    assert table.dimensions == ("project_tier",)
    assert table.default == Severity.MEDIUM
    assert {e.when["project_tier"]: e.value for e in table.entries} == {
        "payment": Severity.CRITICAL,
        "prototype": Severity.LOW,
    }


def test_severity_table_general_form():
    table = SeverityTable.model_validate(
        {
            "dimensions": ["project_tier", "platform"],
            "entries": [{"when": {"project_tier": "payment", "platform": "linux"}, "severity": "high"}],
        }
    )
    assert table.entries[0].value == Severity.HIGH
    assert table.key_of(table.entries[0]) == ("payment", "linux")


def test_severity_table_entry_must_name_all_dimensions():
    with pytest.raises(ValidationError):
        SeverityTable.model_validate(
            {
                "dimensions": ["project_tier", "platform"],
                "entries": [{"when": {"project_tier": "payment"}, "severity": "high"}],
            }
        )


def test_table_matching_values():
    """Multi-valued dimensions can hit several entries; a missing dimension yields None."""
    table = SeverityTable.model_validate(
        {"by": "platform", "values": {"dell": "high", "hpe": "critical", "linux": "low"}}
    )
    assert table.matching_values({"platform": frozenset({"dell", "hpe"})}) == [Severity.HIGH, Severity.CRITICAL]
    assert table.matching_values({"platform": frozenset({"vmware"})}) == []
    assert table.matching_values({}) is None


def test_pattern_spec_shapes():
    assert PatternSpec.model_validate("foo").kind == PatternKind.MATCH

    absence = PatternSpec.model_validate({"anchor": r"open\(", "companion": "except"})
    assert absence.kind == PatternKind.ABSENCE
    assert absence.negative
    assert absence.regex == r"open\("

    measure = PatternSpec.model_validate({"measure": r"(?P<value>\d+)%"})
    assert measure.kind == PatternKind.MEASURE
    assert measure.text == TextMode.RAW


def test_pattern_spec_flags_sorted():
    spec = PatternSpec.model_validate({"regex": "x", "flags": ["multiline", "IGNORECASE", "multiline"]})
    assert [f.value for f in spec.flags] == ["ignorecase", "multiline"]


def test_absence_pattern_requires_companion():
    with pytest.raises(ValidationError, match="companion"):
        PatternSpec.model_validate({"regex": "x", "kind": "absence"})


def test_companion_only_on_absence():
    with pytest.raises(ValidationError):
        PatternSpec.model_validate({"regex": "x", "companion": "y"})


def test_applicability_normalizes_values():
    applicability = Applicability.model_validate(
        {"Platform": ["HPE", "dell"], "file_kind": "config", "path": ["**/Infra/*.tf"]}
    )
    assert applicability.predicates["platform"] == ("dell", "hpe")
    assert applicability.context_predicates() == {"platform": ("dell", "hpe")}
    assert applicability.artifact_predicates()["path"] == ("**/Infra/*.tf",)
    assert not applicability.is_universal
    assert Applicability.model_validate(None).is_universal


def test_threshold_min_value_requires_metric():
    with pytest.raises(ValidationError, match="metric"):
        Threshold.model_validate({"kind": "min_value", "limit": 80})


def test_threshold_limit_table():
    threshold = Threshold.model_validate(
        {
            "kind": "min_value",
            "metric": "coverage",
            "limit": {"by": "project_tier", "values": {"payment": 90}, "default": 80},
        }
    )
    assert isinstance(threshold.limit, LimitTable)
    assert threshold.limit.default == 80


def test_rule_rejects_unknown_fields():
    with pytest.raises(ValidationError):
        Rule.model_validate(
            {"id": "R1", "category": "access", "severity": "high", "patterns": ["x"], "sevirity": "low"}
        )


def test_rule_rejects_bad_id():
    with pytest.raises(ValidationError):
        Rule(id="has space", category="access", severity="high", patterns=["x"])


def test_rule_title_fallbacks():
    rule = Rule(id="R1", category="access", severity="high", patterns=["x"])
    assert rule.title == "access: R1"
    assert Rule(id="R1", name="Open ACL", category="access", severity="high").title == "Open ACL"


def test_context_accepts_platform_alias():
    context = EvaluationContext.model_validate({"platform": ["Linux", "vmware"], "project_tier": "Payment"})
    assert context.platforms == ("linux", "vmware")
    assert context.project_tier == "payment"
    assert context.dimension_values("platform") == frozenset({"linux", "vmware"})
    assert context.dimension_values("project_tier") == frozenset({"payment"})
    assert context.dimension_values("region") is None


def test_context_tags_are_dimensions():
    context = EvaluationContext(tags={"Region": "EU"})
    assert context.dimension_values("region") == frozenset({"eu"})


def test_context_is_frozen():
    context = EvaluationContext(project_tier="payment")
    with pytest.raises(ValidationError):
        context.project_tier = "prototype"


def test_artifact_read_prefers_content(tmp_path):
    path = tmp_path / "a.conf"
    path.write_text("from disk")
    assert Artifact(path="a.conf", content="in memory", source=path).read() == "in memory"
    assert Artifact(path="a.conf", source=path).read() == "from disk"


def test_artifact_read_without_source():
    with pytest.raises(OSError):
        Artifact(path="missing").read()


def test_raw_match_length_of_empty_span():
    match = RawMatch("R1", "a", start=5, end=5, line=1, column=6, end_line=1, end_column=6)
    assert match.length == 1
