"""
Rule Set Loader.

Parses rule-source documents (YAML, JSON or TOML) into an immutable
``RuleSet``: rules are validated against the pydantic schema, every regex is
compiled once, severity and threshold tables are checked for totality, and
the screening automaton used by the matcher is built.

Loading is all-or-nothing: any failure raises a ``LoadError`` subclass and
no rule set is returned.

Example:
    >>> rule_set = load([RuleSource.from_path("rules/compute.yaml")])
    >>> rule_set.get("CMP-BMC-001").rule.category
    'BMC Management Security'
"""

from __future__ import annotations

import itertools
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Iterable, Iterator, Mapping, Optional

import regex
import yaml
from packaging.specifiers import SpecifierSet
from packaging.version import InvalidVersion, Version
from pydantic import ValidationError

from criteria_engine.errors import (
    AmbiguousSeverity,
    AmbiguousThreshold,
    DuplicateId,
    InvalidPattern,
    LoadError,
    RuleSchemaError,
)
from criteria_engine.models import (
    LimitTable,
    PatternFlag,
    PatternKind,
    PatternSpec,
    Rule,
    RuleSetDescriptor,
    SeverityTable,
    TextMode,
)

logger = logging.getLogger(__name__)

SUPPORTED_SCHEMA_VERSIONS = SpecifierSet(">=1.0,<2.0")

RULE_FILE_SUFFIXES: dict[str, str] = {
    ".yaml": "yaml",
    ".yml": "yaml",
    ".json": "json",
    ".toml": "toml",
}

CONFIG_FILE_NAMES = frozenset({"config.yaml", "config.yml"})

_REGEX_FLAGS: dict[PatternFlag, tuple[int, str]] = {
    PatternFlag.IGNORECASE: (regex.IGNORECASE, "i"),
    PatternFlag.MULTILINE: (regex.MULTILINE, "m"),
    PatternFlag.DOTALL: (regex.DOTALL, "s"),
    PatternFlag.VERBOSE: (regex.VERBOSE, "x"),
}

# Constructs that cannot be embedded in a combined alternation unchanged.
_UNSCREENABLE = regex.compile(r"\\[1-9]|\\g<|\\k<|\(\?P=|\(\?\(|\(\?[aiLmsux]+\)")
_NAMED_GROUP = regex.compile(r"\(\?P<\w+>|\(\?<(?![=!])\w+>")


# =============================================================================
# Rule sources
# =============================================================================


@dataclass(frozen=True)
class RuleSource:
    """
    One rule-source document.

    Attributes:
        data: Document bytes or text.
        name: Display name used in errors and report descriptors.
        format: "yaml", "json" or "toml"; inferred from ``name`` when omitted.
        schema_version: Declared schema version. When the document also
            declares one, both must agree.
    """

    data: bytes | str
    name: str = "<memory>"
    format: Optional[str] = None
    schema_version: Optional[str] = None

    @classmethod
    def from_path(cls, path: str | Path, schema_version: Optional[str] = None) -> "RuleSource":
        """
        Read a rule source from disk.

        Raises:
            RuleSchemaError: If the file cannot be read.
        """
        path = Path(path)
        try:
            data = path.read_bytes()
        except OSError as e:
            raise RuleSchemaError(f"Cannot read rule source {path}: {e}", source=str(path)) from e
        return cls(
            data=data,
            name=str(path),
            format=RULE_FILE_SUFFIXES.get(path.suffix.lower()),
            schema_version=schema_version,
        )

    def resolved_format(self) -> str:
        if self.format:
            return self.format.lower()
        return RULE_FILE_SUFFIXES.get(Path(self.name).suffix.lower(), "yaml")

    def text(self) -> str:
        if isinstance(self.data, bytes):
            try:
                return self.data.decode("utf-8")
            except UnicodeDecodeError as e:
                raise RuleSchemaError(f"Rule source is not valid UTF-8: {e}", source=self.name) from e
        return self.data


# =============================================================================
# Compiled structures
# =============================================================================


@dataclass(frozen=True)
class CompiledPattern:
    """
    A detection pattern with its regexes compiled once at load time.

    Attributes:
        rule_id: Owning rule.
        index: Position within the rule's pattern list.
        spec: The pattern definition.
        compiled: Compiled pattern / anchor / measure regex.
        companion: Compiled companion regex (absence patterns only).
        screen_source: Scoped-flag source used in the screening alternation,
            or None if the pattern cannot be screened.
    """

    rule_id: str
    index: int
    spec: PatternSpec
    compiled: Any
    companion: Any = None
    screen_source: Optional[str] = None

    @property
    def key(self) -> tuple[str, int]:
        return (self.rule_id, self.index)

    @property
    def kind(self) -> PatternKind:
        return self.spec.kind

    @property
    def text_mode(self) -> TextMode:
        return self.spec.text

    @property
    def screenable(self) -> bool:
        return self.screen_source is not None


@dataclass(frozen=True)
class CompiledRule:
    """A rule together with its compiled patterns."""

    rule: Rule
    patterns: tuple[CompiledPattern, ...]

    @property
    def id(self) -> str:
        return self.rule.id

    @property
    def category(self) -> str:
        return self.rule.category


@dataclass(frozen=True)
class ScreeningAutomaton:
    """
    Combined alternation of every screenable pattern of one text mode.

    If ``compiled`` finds nothing in a view, none of ``members`` can match
    that view and the matcher skips them.
    """

    mode: TextMode
    compiled: Any
    members: frozenset[tuple[str, int]] = field(default_factory=frozenset)


# =============================================================================
# RuleSet
# =============================================================================


class RuleSet:
    """
    Immutable, indexed collection of compiled rules.

    Independent reviewer rule sets compose with ``RuleSet.combine``; the
    result is shared read-only by every worker of a run.

    Attributes:
        rules: Compiled rules in id order.
        by_id: Rule id -> compiled rule.
        by_category: Category -> compiled rules in id order.
        dimensions: Declared domains of context dimensions.
        descriptors: Identity of every source that contributed rules.
        screens: Text mode -> screening automaton.
    """

    def __init__(
        self,
        rules: Iterable[CompiledRule],
        descriptors: Iterable[RuleSetDescriptor] = (),
        dimensions: Optional[Mapping[str, frozenset[str]]] = None,
    ):
        by_id: dict[str, CompiledRule] = {}
        for compiled in rules:
            if compiled.id in by_id:
                raise DuplicateId(compiled.id)
            by_id[compiled.id] = compiled

        self.rules: tuple[CompiledRule, ...] = tuple(by_id[k] for k in sorted(by_id))
        self.by_id: Mapping[str, CompiledRule] = MappingProxyType({r.id: r for r in self.rules})

        by_category: dict[str, list[CompiledRule]] = {}
        for compiled in self.rules:
            by_category.setdefault(compiled.category, []).append(compiled)
        self.by_category: Mapping[str, tuple[CompiledRule, ...]] = MappingProxyType(
            {k: tuple(v) for k, v in sorted(by_category.items())}
        )

        self.dimensions: Mapping[str, frozenset[str]] = MappingProxyType(dict(dimensions or {}))
        # A domain widened by another source can open a gap in an earlier table
        for compiled in self.rules:
            _check_tables(compiled.rule, self.dimensions)

        self.descriptors: tuple[RuleSetDescriptor, ...] = tuple(descriptors)
        self.screens: Mapping[TextMode, ScreeningAutomaton] = MappingProxyType(
            _build_screens(self.rules)
        )

    def __len__(self) -> int:
        return len(self.rules)

    def __iter__(self) -> Iterator[CompiledRule]:
        return iter(self.rules)

    def __contains__(self, rule_id: object) -> bool:
        return rule_id in self.by_id

    def get(self, rule_id: str) -> Optional[CompiledRule]:
        return self.by_id.get(rule_id)

    @property
    def categories(self) -> list[str]:
        return list(self.by_category)

    @classmethod
    def combine(cls, *rule_sets: "RuleSet") -> "RuleSet":
        """
        Compose independent rule sets into one.

        Raises:
            DuplicateId: If any rule id appears in more than one set.
            AmbiguousSeverity: If a table has no entry for a value another set
                added to a shared dimension.
            AmbiguousThreshold: As above, for a threshold limit table.
        """
        dimensions: dict[str, frozenset[str]] = {}
        for rule_set in rule_sets:
            for name, domain in rule_set.dimensions.items():
                dimensions[name] = dimensions.get(name, frozenset()) | domain
        return cls(
            rules=itertools.chain.from_iterable(rs.rules for rs in rule_sets),
            descriptors=itertools.chain.from_iterable(rs.descriptors for rs in rule_sets),
            dimensions=dimensions,
        )


def _build_screens(rules: Iterable[CompiledRule]) -> dict[TextMode, ScreeningAutomaton]:
    grouped: dict[TextMode, list[CompiledPattern]] = {}
    for compiled_rule in rules:
        for pattern in compiled_rule.patterns:
            if pattern.screenable:
                grouped.setdefault(pattern.text_mode, []).append(pattern)

    screens: dict[TextMode, ScreeningAutomaton] = {}
    for mode, patterns in grouped.items():
        source = "|".join(p.screen_source for p in patterns)  # type: ignore[misc]
        try:
            compiled = regex.compile(source)
        except (regex.error, OverflowError, RecursionError) as e:
            logger.warning(
                f"Screening automaton for '{mode.value}' could not be built, patterns run individually: {e}"
            )
            continue
        screens[mode] = ScreeningAutomaton(
            mode=mode,
            compiled=compiled,
            members=frozenset(p.key for p in patterns),
        )
        logger.debug(
            "Built screening automaton",
            extra={"text_mode": mode.value, "pattern_count": len(patterns)},
        )
    return screens


# =============================================================================
# Loading
# =============================================================================


def load(rule_sources: Iterable[RuleSource]) -> RuleSet:
    """
    Load rule sources into one immutable RuleSet.

    Args:
        rule_sources: Documents to load; rule ids must be unique across all.

    Returns:
        The compiled, indexed RuleSet.

    Raises:
        RuleSchemaError: Malformed document, unsupported schema version or
            rule failing schema validation.
        DuplicateId: Two rules share an id.
        InvalidPattern: A rule has no patterns or a pattern does not compile.
        AmbiguousSeverity: A severity table is not total.
        AmbiguousThreshold: A threshold limit table is not total.
    """
    compiled_rules: list[CompiledRule] = []
    descriptors: list[RuleSetDescriptor] = []
    dimensions: dict[str, frozenset[str]] = {}
    seen: dict[str, str] = {}

    for source in rule_sources:
        try:
            document = _parse_document(source)
            schema_version = _check_schema_version(document, source)
            domains = _parse_dimensions(document, source)

            items = document.get("rules", [])
            if not isinstance(items, list):
                raise RuleSchemaError("'rules' must be a list", source=source.name)

            count = 0
            for idx, item in enumerate(items):
                rule = _validate_rule(item, source, idx)
                if rule.id in seen:
                    raise DuplicateId(rule.id, source=source.name)
                seen[rule.id] = source.name

                _check_tables(rule, domains)
                compiled_rules.append(_compile_rule(rule))
                count += 1
        except LoadError as e:
            logger.error(
                f"Failed to load rule source {source.name}: {e}",
                extra={"source": source.name, "rule_id": e.rule_id},
            )
            raise

        for name, domain in domains.items():
            dimensions[name] = dimensions.get(name, frozenset()) | domain

        descriptors.append(
            RuleSetDescriptor(
                name=str(document.get("name") or Path(source.name).stem),
                version=str(document["version"]) if document.get("version") is not None else None,
                schema_version=str(schema_version),
                source=source.name,
                rule_count=count,
            )
        )
        logger.info(
            f"Loaded {count} rules from {source.name}",
            extra={"source": source.name, "rule_count": count},
        )

    return RuleSet(compiled_rules, descriptors=descriptors, dimensions=dimensions)


def load_directory(path: str | Path, schema_version: Optional[str] = None) -> RuleSet:
    """
    Load every rule document in a directory (config.yaml excluded).

    Files are loaded in name order so ids are checked deterministically.

    Raises:
        RuleSchemaError: If the directory does not exist.
        LoadError: As for ``load``.
    """
    directory = Path(path)
    if not directory.is_dir():
        raise RuleSchemaError(f"Rules directory does not exist: {directory}", source=str(directory))

    files = sorted(
        p
        for p in directory.iterdir()
        if p.is_file() and p.suffix.lower() in RULE_FILE_SUFFIXES and p.name not in CONFIG_FILE_NAMES
    )
    if not files:
        logger.warning(f"No rule documents found in {directory}")

    return load(RuleSource.from_path(p, schema_version=schema_version) for p in files)


def _parse_document(source: RuleSource) -> dict[str, Any]:
    fmt = source.resolved_format()
    text = source.text()
    try:
        if fmt == "yaml":
            data = yaml.safe_load(text)
        elif fmt == "json":
            data = json.loads(text)
        elif fmt == "toml":
            try:
                import tomllib
            except ImportError:
                import tomli as tomllib  # type: ignore[no-redef]
            data = tomllib.loads(text)
        else:
            raise RuleSchemaError(f"Unsupported rule source format '{fmt}'", source=source.name)
    except RuleSchemaError:
        raise
    except yaml.YAMLError as e:
        raise RuleSchemaError(f"Invalid YAML: {e}", source=source.name) from e
    except json.JSONDecodeError as e:
        raise RuleSchemaError(f"Invalid JSON: {e}", source=source.name) from e
    except ValueError as e:
        # tomllib.TOMLDecodeError subclasses ValueError
        raise RuleSchemaError(f"Invalid TOML: {e}", source=source.name) from e

    if data is None:
        data = {}
    if isinstance(data, list):
        data = {"rules": data}
    if not isinstance(data, dict):
        raise RuleSchemaError("Rule source must be a mapping or a list of rules", source=source.name)
    return data


def _check_schema_version(document: Mapping[str, Any], source: RuleSource) -> Version:
    declared = source.schema_version
    in_document = document.get("schema_version")

    if declared is None and in_document is None:
        raise RuleSchemaError("No schema version declared", source=source.name)

    try:
        declared_version = Version(str(declared)) if declared is not None else None
        document_version = Version(str(in_document)) if in_document is not None else None
    except InvalidVersion as e:
        raise RuleSchemaError(f"Invalid schema version: {e}", source=source.name) from e

    if declared_version and document_version and declared_version != document_version:
        raise RuleSchemaError(
            f"Schema version mismatch: declared {declared_version}, document {document_version}",
            source=source.name,
        )

    version = document_version or declared_version
    assert version is not None
    if version not in SUPPORTED_SCHEMA_VERSIONS:
        raise RuleSchemaError(
            f"Unsupported schema version {version} (supported: {SUPPORTED_SCHEMA_VERSIONS})",
            source=source.name,
        )
    return version


def _parse_dimensions(document: Mapping[str, Any], source: RuleSource) -> dict[str, frozenset[str]]:
    raw = document.get("dimensions") or {}
    if not isinstance(raw, Mapping):
        raise RuleSchemaError("'dimensions' must map dimension names to value lists", source=source.name)

    domains: dict[str, frozenset[str]] = {}
    for name, values in raw.items():
        if isinstance(values, str) or not isinstance(values, Iterable):
            raise RuleSchemaError(f"Dimension '{name}' must list its values", source=source.name)
        domain = frozenset(str(v).strip().lower() for v in values)
        if not domain:
            raise RuleSchemaError(f"Dimension '{name}' declares no values", source=source.name)
        domains[str(name).strip().lower()] = domain
    return domains


def _validate_rule(item: Any, source: RuleSource, index: int) -> Rule:
    """
    Validate a rule mapping against the Rule schema.

    Raises:
        RuleSchemaError: If the item is not a mapping or fails validation.
    """
    if not isinstance(item, Mapping):
        raise RuleSchemaError(f"Rule at index {index} is not a mapping", source=source.name)

    rule_id = item.get("id")
    try:
        return Rule.model_validate(dict(item))
    except ValidationError as e:
        raise RuleSchemaError(
            f"Rule '{rule_id or index}' failed validation: {e}",
            source=source.name,
            rule_id=rule_id,
            details={"validation_errors": e.errors(include_url=False)},
        ) from e


# =============================================================================
# Table totality
# =============================================================================


def _check_tables(rule: Rule, domains: Mapping[str, frozenset[str]]) -> None:
    if isinstance(rule.severity, SeverityTable):
        reason = _table_gap(rule.severity, domains, rule.id)
        if reason:
            raise AmbiguousSeverity(rule.id, reason)

    if rule.threshold is not None and isinstance(rule.threshold.limit, LimitTable):
        reason = _table_gap(rule.threshold.limit, domains, rule.id)
        if reason:
            raise AmbiguousThreshold(rule.id, reason)


def _table_gap(
    table: SeverityTable | LimitTable,
    domains: Mapping[str, frozenset[str]],
    rule_id: str,
) -> Optional[str]:
    """
    Return why ``table`` is not total, or None if every context resolves.

    Raises:
        RuleSchemaError: If an entry uses a value outside a declared domain.
    """
    keys: dict[tuple[str, ...], Any] = {}
    for entry in table.entries:
        for dimension, value in entry.when.items():
            domain = domains.get(dimension)
            if domain is not None and value not in domain:
                raise RuleSchemaError(
                    f"Rule '{rule_id}' uses value '{value}' outside the declared "
                    f"domain of dimension '{dimension}'",
                    rule_id=rule_id,
                )
        key = table.key_of(entry)
        if key in keys and keys[key] != entry.value:
            return f"conflicting entries for {dict(zip(table.dimensions, key))}"
        keys[key] = entry.value

    if table.default is not None:
        return None

    undeclared = [d for d in table.dimensions if d not in domains]
    if undeclared:
        return f"no default and no declared domain for dimension(s) {', '.join(undeclared)}"

    for combination in itertools.product(*(sorted(domains[d]) for d in table.dimensions)):
        if combination not in keys:
            return f"no default and no entry for {dict(zip(table.dimensions, combination))}"
    return None


# =============================================================================
# Pattern compilation
# =============================================================================


def _compile_rule(rule: Rule) -> CompiledRule:
    if not rule.patterns:
        raise InvalidPattern(rule.id, "rule declares no detection patterns")
    return CompiledRule(
        rule=rule,
        patterns=tuple(_compile_pattern(rule.id, i, spec) for i, spec in enumerate(rule.patterns)),
    )


def _compile_pattern(rule_id: str, index: int, spec: PatternSpec) -> CompiledPattern:
    """
    Compile one pattern spec with its flags.

    Every pattern is compiled with MULTILINE so ``^``/``$`` anchor at lines.

    Raises:
        InvalidPattern: If a regex is invalid, or a measure pattern lacks a
            ``value`` group.
    """
    flags = regex.MULTILINE
    letters = {"m"}
    for flag in spec.flags:
        value, letter = _REGEX_FLAGS[flag]
        flags |= value
        letters.add(letter)

    compiled = _compile(rule_id, spec.regex, flags)
    companion = _compile(rule_id, spec.companion, flags) if spec.companion else None

    if spec.kind == PatternKind.MEASURE and "value" not in compiled.groupindex:
        raise InvalidPattern(rule_id, "measure pattern must define a named group 'value'", spec.regex)

    screen_source = None
    if PatternFlag.VERBOSE not in spec.flags and not _UNSCREENABLE.search(spec.regex):
        body = _NAMED_GROUP.sub("(?:", spec.regex)
        screen_source = f"(?{''.join(sorted(letters))}:{body})"

    return CompiledPattern(
        rule_id=rule_id,
        index=index,
        spec=spec,
        compiled=compiled,
        companion=companion,
        screen_source=screen_source,
    )


def _compile(rule_id: str, source: str, flags: int) -> Any:
    try:
        return regex.compile(source, flags)
    except (regex.error, OverflowError, RecursionError) as e:
        raise InvalidPattern(rule_id, f"pattern does not compile: {e}", source) from e
