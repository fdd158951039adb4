"""
Reporting Interface.

The ``Report`` is the stable output contract handed to presentation layers:
an ordered list of findings plus the summary, together with what produced
them (engine version, rule set descriptors, evaluation context). It carries
no timestamps or timings, so identical input yields byte-identical JSON.
"""

from __future__ import annotations

import json
from typing import Any, Iterable

from pydantic import BaseModel, ConfigDict, Field

from criteria_engine import __version__
from criteria_engine.models import EvaluationContext, Finding, RuleSetDescriptor, Summary


class Report(BaseModel):
    """
    Result of one engine run.

    Attributes:
        engine_version: Version of the engine that produced the report.
        rule_sets: Descriptors of every loaded rule source.
        context: Evaluation context of the run.
        files_scanned: Number of artifacts scanned (unreadable ones included).
        rules_evaluated: Number of rules eligible under the context.
        findings: Findings in canonical order.
        summary: Rollup of the findings.

    Example:
        >>> report = engine.run(artifacts, context)
        >>> report.findings[0].severity
        <Severity.CRITICAL: 'critical'>
        >>> report.to_json() == engine.run(artifacts, context).to_json()
        True
    """

    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "engine_version": "0.1.0",
                "rule_sets": [
                    {
                        "name": "compute-reviewer",
                        "version": "2024.1",
                        "schema_version": "1.0",
                        "source": "rules/compute.yaml",
                        "rule_count": 12,
                    }
                ],
                "files_scanned": 42,
                "rules_evaluated": 9,
                "findings": [],
            }
        },
    )

    engine_version: str = Field(default=__version__, description="Engine version")
    rule_sets: list[RuleSetDescriptor] = Field(
        default_factory=list,
        description="Rule sources the run was evaluated against",
    )
    context: EvaluationContext = Field(
        default_factory=EvaluationContext,
        description="Evaluation context of the run",
    )
    files_scanned: int = Field(default=0, ge=0, description="Number of artifacts scanned")
    rules_evaluated: int = Field(default=0, ge=0, description="Number of eligible rules")
    findings: list[Finding] = Field(default_factory=list, description="Findings in canonical order")
    summary: Summary = Field(default_factory=Summary, description="Rollup of the findings")

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-compatible dictionary."""
        return self.model_dump(mode="json")

    def to_json(self, indent: int | None = 2) -> str:
        """Canonical JSON: sorted keys, stable separators."""
        return json.dumps(self.to_dict(), sort_keys=True, indent=indent, ensure_ascii=False)

    def findings_for(self, path: str) -> list[Finding]:
        return [f for f in self.findings if f.location.path == path]


def finding_sort_key(finding: Finding) -> tuple:
    """Severity descending, then category, path, line, column, id."""
    return (
        -finding.severity.rank,
        finding.category,
        finding.location.path,
        finding.location.line,
        finding.location.column,
        finding.id,
    )


def sort_findings(findings: Iterable[Finding]) -> list[Finding]:
    """Return findings in the canonical report order."""
    return sorted(findings, key=finding_sort_key)


def build_report(
    findings: Iterable[Finding],
    summary: Summary,
    *,
    context: EvaluationContext,
    rule_sets: Iterable[RuleSetDescriptor] = (),
    files_scanned: int = 0,
    rules_evaluated: int = 0,
) -> Report:
    """Assemble a Report, applying the canonical finding order."""
    return Report(
        rule_sets=list(rule_sets),
        context=context,
        files_scanned=files_scanned,
        rules_evaluated=rules_evaluated,
        findings=sort_findings(findings),
        summary=summary,
    )
