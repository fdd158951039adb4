"""
Pydantic models for the criteria engine.

This module defines the data shared by every stage of the pipeline: the
severity scale, rule definitions (detection patterns, applicability, context
tables, thresholds), the evaluation context, artifacts, raw matches and the
externally visible findings and summaries.

All models are designed with:
- Closed enumerations wherever the domain is closed (severity, text modes, scopes)
- Frozen instances for everything built at load time
- JSON serialization support via model_dump(mode="json")
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, ClassVar, Iterable, Mapping, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


# =============================================================================
# Severity
# =============================================================================


class Severity(str, Enum):
    """
    Ordinal severity scale shared by rules, findings and summaries.

    The string values are what rule sources and reports use; ordering is
    given by ``rank`` (INFO lowest, CRITICAL highest), never by the string.

    Attributes:
        INFO: Informational, including engine diagnostics.
        LOW: Minor deviation from the criterion.
        MEDIUM: Should be fixed in the normal course of work.
        HIGH: Must be fixed before the artifact ships.
        CRITICAL: Immediate risk; blocks release.
    """

    INFO = "info"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        """Ordinal position, 0 for INFO up to 4 for CRITICAL."""
        return _SEVERITY_RANK[self]

    @classmethod
    def parse(cls, value: Any) -> "Severity":
        """
        Parse a severity literal, accepting the common linter aliases.

        Args:
            value: A Severity, or a string such as "high" or "warning".

        Returns:
            The matching Severity.

        Raises:
            ValueError: If the value is not a known severity or alias.

        Example:
            >>> Severity.parse("Warning")
            <Severity.MEDIUM: 'medium'>
        """
        if isinstance(value, Severity):
            return value
        if not isinstance(value, str):
            raise ValueError(f"Severity must be a string, got {type(value).__name__}")
        key = value.strip().lower()
        key = SEVERITY_ALIASES.get(key, key)
        try:
            return cls(key)
        except ValueError:
            raise ValueError(
                f"Unknown severity '{value}'; expected one of "
                f"{', '.join(s.value for s in SEVERITY_ORDER)}"
            ) from None


SEVERITY_ORDER: tuple[Severity, ...] = (
    Severity.INFO,
    Severity.LOW,
    Severity.MEDIUM,
    Severity.HIGH,
    Severity.CRITICAL,
)

_SEVERITY_RANK: dict[Severity, int] = {s: i for i, s in enumerate(SEVERITY_ORDER)}

SEVERITY_ALIASES: dict[str, str] = {
    "warning": "medium",
    "warn": "medium",
    "error": "high",
    "note": "info",
    "informational": "info",
}


def max_severity(severities: Iterable[Severity]) -> Severity:
    """Return the worst severity in ``severities`` (INFO for an empty input)."""
    worst = Severity.INFO
    for severity in severities:
        if severity.rank > worst.rank:
            worst = severity
    return worst


SeverityValue = Annotated[Severity, BeforeValidator(Severity.parse)]


# =============================================================================
# Context tables (severity-by-context, limit-by-context)
# =============================================================================


class SeverityEntry(BaseModel):
    """One row of a severity table: the dimension values it applies to and its severity."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    when: dict[str, str] = Field(..., min_length=1)
    value: SeverityValue

    @field_validator("when", mode="before")
    @classmethod
    def _lower_when(cls, v: Any) -> Any:
        if isinstance(v, Mapping):
            return {str(k): str(val).strip().lower() for k, val in v.items()}
        return v


class LimitEntry(BaseModel):
    """One row of a threshold-limit table."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    when: dict[str, str] = Field(..., min_length=1)
    value: float

    @field_validator("when", mode="before")
    @classmethod
    def _lower_when(cls, v: Any) -> Any:
        if isinstance(v, Mapping):
            return {str(k): str(val).strip().lower() for k, val in v.items()}
        return v


class _ContextTable(BaseModel):
    """
    Shared behaviour of lookup tables keyed by context dimensions.

    Rule sources may use the single-dimension shorthand::

        {by: project_tier, values: {payment: critical, prototype: low}, default: medium}

    or the general form::

        {dimensions: [project_tier, platform],
         entries: [{when: {project_tier: payment, platform: linux}, severity: critical}],
         default: medium}
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    value_key: ClassVar[str] = "value"

    dimensions: tuple[str, ...] = Field(..., min_length=1)

    @model_validator(mode="before")
    @classmethod
    def _expand_shorthand(cls, data: Any) -> Any:
        if not isinstance(data, Mapping):
            return data
        data = dict(data)
        if "by" in data:
            dimension = str(data.pop("by"))
            values = data.pop("values", {}) or {}
            if not isinstance(values, Mapping):
                raise ValueError("'values' must map dimension values to table values")
            data["dimensions"] = [dimension]
            data["entries"] = [
                {"when": {dimension: key}, "value": val} for key, val in values.items()
            ]
        entries = []
        for entry in data.get("entries", []) or []:
            if isinstance(entry, Mapping) and cls.value_key in entry and "value" not in entry:
                entry = dict(entry)
                entry["value"] = entry.pop(cls.value_key)
            entries.append(entry)
        data["entries"] = entries
        return data

    @model_validator(mode="after")
    def _check_entry_keys(self) -> "_ContextTable":
        expected = set(self.dimensions)
        for entry in self.entries:  # type: ignore[attr-defined]
            if set(entry.when) != expected:
                raise ValueError(
                    f"table entry {entry.when} must name exactly the dimensions {sorted(expected)}"
                )
        return self

    def key_of(self, entry: SeverityEntry | LimitEntry) -> tuple[str, ...]:
        """Return the entry's dimension values in table-dimension order."""
        return tuple(entry.when[d] for d in self.dimensions)

    def matching_values(self, values: Mapping[str, frozenset[str]]) -> Optional[list[Any]]:
        """
        Return the values of every entry matching the given dimension values.

        Args:
            values: Dimension name -> set of values declared by the context.
                    Multi-valued dimensions (platform) may hit several entries.

        Returns:
            The matching entry values in declaration order (possibly empty),
            or None when a table dimension is missing from ``values``.
        """
        if any(not values.get(d) for d in self.dimensions):
            return None
        hits = []
        for entry in self.entries:  # type: ignore[attr-defined]
            if all(entry.when[d] in values[d] for d in self.dimensions):
                hits.append(entry.value)
        return hits


class SeverityTable(_ContextTable):
    """Severity as a function of declared context dimensions."""

    value_key: ClassVar[str] = "severity"

    entries: tuple[SeverityEntry, ...] = ()
    default: Optional[SeverityValue] = None


class LimitTable(_ContextTable):
    """Threshold limit as a function of declared context dimensions."""

    value_key: ClassVar[str] = "limit"

    entries: tuple[LimitEntry, ...] = ()
    default: Optional[float] = None


# =============================================================================
# Detection patterns
# =============================================================================


class PatternFlag(str, Enum):
    """Regex flags a pattern may request."""

    IGNORECASE = "ignorecase"
    MULTILINE = "multiline"
    DOTALL = "dotall"
    VERBOSE = "verbose"


class TextMode(str, Enum):
    """
    Which normalized view of an artifact a pattern runs against.

    Attributes:
        RAW: Content with line endings normalized to ``\\n``.
        NO_COMMENTS: Comments blanked out (offsets preserved).
        CODE: Comments and string-literal bodies blanked out.
    """

    RAW = "raw"
    NO_COMMENTS = "no_comments"
    CODE = "code"


class PatternKind(str, Enum):
    """
    Detection semantics of a pattern.

    Attributes:
        MATCH: Every non-overlapping match is a raw match.
        ABSENCE: Fires at an anchor when a companion is absent from its scope window.
        MEASURE: Captures a numeric ``value`` for threshold rollups.
    """

    MATCH = "match"
    ABSENCE = "absence"
    MEASURE = "measure"


class ScopeKind(str, Enum):
    """Shape of the lexical window searched for an absence pattern's companion."""

    LINES = "lines"
    BLOCK = "block"


class ScopeWindow(BaseModel):
    """Line window around an anchor (used when scope is ``lines``)."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    before: int = Field(default=0, ge=0)
    after: int = Field(default=5, ge=0)


class PatternSpec(BaseModel):
    """
    One detection pattern of a rule.

    Rule sources write patterns in one of three shapes, normalized here:

    - ``{regex: ...}`` (or a bare string): a positive pattern.
    - ``{anchor: ..., companion: ...}``: an absence (negative) pattern.
    - ``{measure: ...}``: a metric capture with a named group ``value``.

    Attributes:
        kind: Detection semantics.
        regex: The pattern, anchor or measure expression.
        companion: Expression whose absence near the anchor fires the rule.
        flags: Requested regex flags, sorted and de-duplicated.
        text: Normalized text view the pattern runs against.
        scope: Window shape for absence patterns.
        window: Line window for ``lines`` scope.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: PatternKind = PatternKind.MATCH
    regex: str = Field(..., min_length=1)
    companion: Optional[str] = Field(default=None, min_length=1)
    flags: tuple[PatternFlag, ...] = ()
    text: TextMode = TextMode.RAW
    scope: ScopeKind = ScopeKind.LINES
    window: ScopeWindow = Field(default_factory=ScopeWindow)

    @model_validator(mode="before")
    @classmethod
    def _normalize_shape(cls, data: Any) -> Any:
        if isinstance(data, str):
            return {"regex": data}
        if not isinstance(data, Mapping):
            return data
        data = dict(data)
        if "anchor" in data:
            data["regex"] = data.pop("anchor")
            data.setdefault("kind", PatternKind.ABSENCE.value)
        elif "measure" in data:
            data["regex"] = data.pop("measure")
            data.setdefault("kind", PatternKind.MEASURE.value)
        return data

    @field_validator("flags", mode="before")
    @classmethod
    def _sort_flags(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = [v]
        if isinstance(v, (list, tuple, set, frozenset)):
            names = {str(f.value if isinstance(f, PatternFlag) else f).lower() for f in v}
            return tuple(sorted(names))
        return v

    @model_validator(mode="after")
    def _check_companion(self) -> "PatternSpec":
        if self.kind == PatternKind.ABSENCE and not self.companion:
            raise ValueError("absence patterns require a 'companion' expression")
        if self.kind != PatternKind.ABSENCE and self.companion:
            raise ValueError("'companion' is only valid on absence patterns")
        return self

    @property
    def negative(self) -> bool:
        """True for absence-based patterns."""
        return self.kind == PatternKind.ABSENCE


# =============================================================================
# Applicability
# =============================================================================


# Dimensions checked against the artifact rather than the evaluation context.
ARTIFACT_DIMENSIONS: frozenset[str] = frozenset({"language", "file_kind", "path"})


class Applicability(BaseModel):
    """
    Predicate set gating whether a rule is evaluated at all.

    Each predicate maps a dimension to its allowed values; a rule applies
    only when every predicate holds. An empty set is universally applicable.

    Example:
        >>> Applicability.model_validate({"platform": ["dell", "hpe"], "file_kind": "config"})
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    predicates: dict[str, tuple[str, ...]] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _from_mapping(cls, data: Any) -> Any:
        if data is None:
            return {"predicates": {}}
        if isinstance(data, Mapping) and "predicates" not in data:
            data = {"predicates": data}
        if isinstance(data, Mapping):
            normalized: dict[str, tuple[str, ...]] = {}
            for dimension, values in (data.get("predicates") or {}).items():
                if isinstance(values, str):
                    values = [values]
                dimension = str(dimension).strip().lower()
                if dimension == "path":
                    cleaned = tuple(sorted({str(v) for v in values}))
                else:
                    cleaned = tuple(sorted({str(v).strip().lower() for v in values}))
                if not cleaned:
                    raise ValueError(f"applicability predicate '{dimension}' has no values")
                normalized[dimension] = cleaned
            return {"predicates": normalized}
        return data

    @property
    def is_universal(self) -> bool:
        return not self.predicates

    def context_predicates(self) -> dict[str, tuple[str, ...]]:
        return {d: v for d, v in self.predicates.items() if d not in ARTIFACT_DIMENSIONS}

    def artifact_predicates(self) -> dict[str, tuple[str, ...]]:
        return {d: v for d, v in self.predicates.items() if d in ARTIFACT_DIMENSIONS}


# =============================================================================
# Thresholds
# =============================================================================


class ThresholdKind(str, Enum):
    """Rollup-level criteria a rule may carry."""

    MIN_VALUE = "min_value"
    MAX_OCCURRENCES = "max_occurrences"


class ThresholdScope(str, Enum):
    REPOSITORY = "repository"
    FILE = "file"


class Threshold(BaseModel):
    """
    A rollup-level criterion: "must meet minimum X" or "must not exceed N occurrences".

    Attributes:
        kind: min_value or max_occurrences.
        metric: Metric name; required for min_value (e.g. "critical_path_branch_coverage").
        scope: Evaluate once per repository or once per file.
        unit: Display unit for breach messages (e.g. "%").
        limit: Constant limit or a limit table keyed by context dimensions.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: ThresholdKind
    metric: Optional[str] = None
    scope: ThresholdScope = ThresholdScope.REPOSITORY
    unit: str = ""
    limit: float | LimitTable

    @field_validator("limit", mode="before")
    @classmethod
    def _parse_limit(cls, v: Any) -> Any:
        if isinstance(v, Mapping):
            return LimitTable.model_validate(v)
        return v

    @model_validator(mode="after")
    def _check_metric(self) -> "Threshold":
        if self.kind == ThresholdKind.MIN_VALUE and not self.metric:
            raise ValueError("min_value thresholds require a 'metric' name")
        return self


# =============================================================================
# Rule
# =============================================================================


RULE_ID_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9._-]*$"


class Rule(BaseModel):
    """
    Immutable definition of one review criterion.

    Rules are built once by the loader and never mutated. The remediation
    text is an opaque payload carried through to findings untouched.

    Attributes:
        id: Stable identifier, unique within a rule set.
        name: Short human-readable title.
        category: Grouping tag (e.g. "BMC Management Security").
        severity: Constant severity or a table keyed by context dimensions.
        applicability: Predicates gating evaluation.
        patterns: One or more detection patterns (validated by the loader).
        remediation: Opaque remediation guidance.
        message: Finding message; defaults to the name.
        threshold: Optional rollup-level criterion.
        references: Cross-links such as "Quick Reference #3".
        tags: Free-form labels.
        enabled: Disabled rules are never eligible.

    Example:
        >>> rule = Rule(
        ...     id="ACL-001",
        ...     category="access",
        ...     severity="critical",
        ...     patterns=[{"regex": "permit ip any any"}],
        ...     remediation="Restrict the ACL to required sources.",
        ... )
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(..., min_length=1, max_length=128, pattern=RULE_ID_PATTERN)
    name: str = ""
    category: str = Field(..., min_length=1)
    severity: Severity | SeverityTable
    applicability: Applicability = Field(default_factory=Applicability)
    patterns: tuple[PatternSpec, ...] = ()
    remediation: str = ""
    message: str = ""
    threshold: Optional[Threshold] = None
    references: tuple[str, ...] = ()
    tags: tuple[str, ...] = ()
    enabled: bool = True

    @field_validator("severity", mode="before")
    @classmethod
    def _parse_severity(cls, v: Any) -> Any:
        if isinstance(v, (str, Severity)):
            return Severity.parse(v)
        if isinstance(v, Mapping):
            return SeverityTable.model_validate(v)
        return v

    @field_validator("category")
    @classmethod
    def _strip_category(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("category must not be blank")
        return v

    @property
    def title(self) -> str:
        """Message shown on findings: explicit message, else name, else id."""
        return self.message or self.name or f"{self.category}: {self.id}"


class RuleSetDescriptor(BaseModel):
    """Identity of one loaded rule source, as recorded in reports."""

    model_config = ConfigDict(frozen=True)

    name: str
    version: Optional[str] = None
    schema_version: str
    source: str
    rule_count: int = Field(default=0, ge=0)


# =============================================================================
# Evaluation context
# =============================================================================


class EvaluationContext(BaseModel):
    """
    Per-run descriptor of what is being reviewed.

    Created once per invocation and read-only during the run.

    Attributes:
        language: Target language, used for artifacts whose language is unknown.
        project_tier: Declared project tier (e.g. "payment", "prototype").
        platforms: Vendor / OS / hypervisor tags (e.g. "dell", "linux", "vmware").
        tags: Additional named dimensions.
        severity_overrides: Rule id -> severity forced for this run.
        threshold_overrides: Rule id -> threshold limit forced for this run.
        disabled_rules: Rule ids excluded from this run.
        metrics: User-declared metric values (e.g. measured coverage).

    Example:
        >>> ctx = EvaluationContext(project_tier="payment", platforms=["linux", "vmware"])
        >>> ctx.dimension_values("platform")
        frozenset({'linux', 'vmware'})
    """

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    language: Optional[str] = None
    project_tier: Optional[str] = None
    platforms: tuple[str, ...] = Field(
        default=(), validation_alias=AliasChoices("platforms", "platform")
    )
    tags: dict[str, str] = Field(default_factory=dict)
    severity_overrides: dict[str, SeverityValue] = Field(default_factory=dict)
    threshold_overrides: dict[str, float] = Field(default_factory=dict)
    disabled_rules: tuple[str, ...] = ()
    metrics: dict[str, float] = Field(default_factory=dict)

    @field_validator("language", "project_tier", mode="before")
    @classmethod
    def _lower(cls, v: Any) -> Any:
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("platforms", mode="before")
    @classmethod
    def _lower_platforms(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = [v]
        if isinstance(v, (list, tuple, set, frozenset)):
            return tuple(sorted({str(p).strip().lower() for p in v}))
        return v

    @field_validator("tags", mode="before")
    @classmethod
    def _lower_tags(cls, v: Any) -> Any:
        if isinstance(v, Mapping):
            return {str(k).strip().lower(): str(val).strip().lower() for k, val in v.items()}
        return v

    def dimension_values(self, name: str) -> Optional[frozenset[str]]:
        """Return the values this context declares for ``name``, or None if undeclared."""
        if name == "platform":
            return frozenset(self.platforms) or None
        if name == "project_tier":
            return frozenset({self.project_tier}) if self.project_tier else None
        if name == "language":
            return frozenset({self.language}) if self.language else None
        value = self.tags.get(name)
        return frozenset({value}) if value else None


# =============================================================================
# Artifacts and transient scan records
# =============================================================================


@dataclass(frozen=True)
class Artifact:
    """
    A unit of scanning supplied by the corpus provider.

    ``content`` may be omitted when ``source`` points at a file; the engine
    reads it inside the worker that scans the artifact.

    Attributes:
        path: Display / identity path (posix style, usually repository-relative).
        content: Raw text, if already in memory.
        source: Filesystem path to read when ``content`` is None.
        language: Language, if known up front (otherwise detected).
        file_kind: File kind, if known up front (otherwise detected).
    """

    path: str
    content: Optional[str] = None
    source: Optional[Path] = None
    language: Optional[str] = None
    file_kind: Optional[str] = None

    def read(self) -> str:
        """
        Return the artifact's text.

        Raises:
            OSError: If the source file cannot be read, or neither content
                     nor source was provided.
        """
        if self.content is not None:
            return self.content
        if self.source is None:
            raise OSError(f"Artifact {self.path} has neither content nor a source path")
        return self.source.read_bytes().decode("utf-8", errors="replace")

    def with_details(self, **changes: Any) -> "Artifact":
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)


@dataclass(frozen=True)
class RawMatch:
    """
    One pattern hit, produced transiently by the matcher.

    Offsets index the normalized text; lines and columns are 1-based.
    """

    rule_id: str
    artifact_path: str
    start: int
    end: int
    line: int
    column: int
    end_line: int
    end_column: int
    text: str = ""
    groups: dict[str, Optional[str]] = field(default_factory=dict)

    @property
    def length(self) -> int:
        return max(1, self.end - self.start)


@dataclass(frozen=True)
class Measurement:
    """A metric value captured by a measure pattern."""

    rule_id: str
    artifact_path: str
    value: float
    line: int


class DiagnosticKind(str, Enum):
    PATTERN_TIMEOUT = "pattern_timeout"
    UNREADABLE_ARTIFACT = "unreadable_artifact"


@dataclass(frozen=True)
class MatcherDiagnostic:
    """A per-artifact degradation (timeout, unreadable file) to be reported as INFO."""

    kind: DiagnosticKind
    artifact_path: str
    detail: str
    rule_id: Optional[str] = None


# =============================================================================
# Findings
# =============================================================================


class FindingKind(str, Enum):
    ISSUE = "issue"
    DIAGNOSTIC = "diagnostic"


class Location(BaseModel):
    """Where in an artifact a finding was reported."""

    model_config = ConfigDict(frozen=True)

    path: str = Field(..., min_length=1)
    line: int = Field(..., ge=1, description="1-based line number")
    column: int = Field(default=1, ge=1, description="1-based column number")
    end_line: Optional[int] = Field(default=None, ge=1)
    end_column: Optional[int] = Field(default=None, ge=1)
    snippet: Optional[str] = None


class Finding(BaseModel):
    """
    The externally visible result: one or more rules matching one location.

    Attributes:
        id: Stable hash of category and normalized location.
        kind: ``issue`` for rule matches, ``diagnostic`` for engine degradations.
        category: Category shared by every contributing rule.
        severity: Worst resolved severity among contributors.
        location: Merged span of all contributing matches.
        message: Message of the primary rule.
        remediation: Remediation of the primary rule (opaque).
        primary_rule_id: Highest-severity contributor (smallest id on ties).
        rule_ids: All contributing rule ids, sorted.
        occurrences: Number of raw matches merged into this finding.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    kind: FindingKind = FindingKind.ISSUE
    category: str = Field(..., min_length=1)
    severity: Severity
    location: Location
    message: str
    remediation: str = ""
    primary_rule_id: str
    rule_ids: tuple[str, ...] = Field(..., min_length=1)
    occurrences: int = Field(default=1, ge=0)


# =============================================================================
# Summary
# =============================================================================


class CategorySummary(BaseModel):
    """Severity histogram and risk for one category."""

    category: str
    total: int = Field(default=0, ge=0)
    by_severity: dict[str, int] = Field(default_factory=dict)
    worst_severity: Optional[Severity] = None
    risk_score: float = Field(default=100.0, ge=0.0, le=100.0)


class FileSummary(BaseModel):
    """Worst severity and finding count for one artifact."""

    path: str
    total: int = Field(default=0, ge=0)
    worst_severity: Severity


class Hotspot(BaseModel):
    """An artifact ranked among those with the most severe findings."""

    path: str
    issue_count: int
    critical_count: int
    high_count: int
    categories: list[str] = Field(default_factory=list)


class ThresholdBreach(BaseModel):
    """A rollup-level fact: a threshold criterion is violated."""

    rule_id: str
    category: str
    severity: Severity
    kind: ThresholdKind
    scope: ThresholdScope
    path: Optional[str] = None
    observed: float
    limit: float
    message: str


class UnevaluatedThreshold(BaseModel):
    """A threshold that had no observation to compare against."""

    rule_id: str
    metric: Optional[str] = None
    reason: str


class Summary(BaseModel):
    """
    Read-only projection of a finding set.

    Attributes:
        total_findings: Number of findings, diagnostics included.
        diagnostics: Number of diagnostic findings.
        by_severity: Count per severity level (all five levels present).
        categories: Per-category summaries, keyed by category.
        files: Per-file summaries, keyed by path.
        worst_severity: Worst severity across the repository (None if no findings).
        risk_score: Repository risk score, 0-100 (100 = clean).
        hotspots: Files with the most severe findings.
        breaches: Threshold breaches.
        unevaluated_thresholds: Thresholds that could not be evaluated.
    """

    total_findings: int = Field(default=0, ge=0)
    diagnostics: int = Field(default=0, ge=0)
    by_severity: dict[str, int] = Field(default_factory=dict)
    categories: dict[str, CategorySummary] = Field(default_factory=dict)
    files: dict[str, FileSummary] = Field(default_factory=dict)
    worst_severity: Optional[Severity] = None
    risk_score: float = Field(default=100.0, ge=0.0, le=100.0)
    hotspots: list[Hotspot] = Field(default_factory=list)
    breaches: list[ThresholdBreach] = Field(default_factory=list)
    unevaluated_thresholds: list[UnevaluatedThreshold] = Field(default_factory=list)
