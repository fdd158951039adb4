"""
Pattern Matcher.

Executes the compiled patterns of the eligible rules over one artifact:

- positive patterns yield one ``RawMatch`` per non-overlapping match
- absence patterns yield a ``RawMatch`` at every anchor whose companion is
  missing from the anchor's scope window (a line window, or the enclosing
  brace / indentation block)
- measure patterns yield ``Measurement`` records for threshold rollups

Before individual patterns run, the rule set's screening automaton (one
combined alternation per text mode) is searched once; when it finds nothing,
every screenable pattern of that mode is skipped for the artifact. A screen
gets a fraction of the per-rule budget, and the time a completed screen took
is charged to every rule with patterns in that text mode.

Each (rule, artifact) pair has its own time budget. The ``regex`` package
enforces it inside the match loop and releases the GIL while matching, so
worker threads scan in parallel. A rule that runs out of budget loses its
partial matches for that artifact and is reported as a diagnostic.
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Union

from criteria_engine.applicability import ResolvedRule
from criteria_engine.loader import CompiledPattern, CompiledRule, RuleSet
from criteria_engine.models import (
    Artifact,
    DiagnosticKind,
    MatcherDiagnostic,
    Measurement,
    PatternKind,
    RawMatch,
    ScopeKind,
    TextMode,
)
from criteria_engine.normalize import NormalizedText

logger = logging.getLogger(__name__)

# Maximum length of matched text carried on a RawMatch
MAX_MATCHED_TEXT = 200

# Languages whose blocks are delimited by indentation rather than braces
INDENT_LANGUAGES = frozenset({"python", "yaml", "coffeescript", "nim"})

_CLAUSE_KEYWORD = re.compile(r"(?:except|finally|else|elif|catch)\b")

# Share of the per-rule budget a screening search may use
SCREEN_BUDGET_FRACTION = 0.25


# =============================================================================
# Regex execution helpers
# =============================================================================


class _Budget:
    """Wall-clock budget shared by every regex call of one (rule, artifact) pair."""

    def __init__(self, seconds: float, spent: float = 0.0):
        self.seconds = seconds
        self.deadline = time.monotonic() + seconds - spent

    def remaining(self) -> float:
        left = self.deadline - time.monotonic()
        if left <= 0:
            raise TimeoutError(f"time budget of {self.seconds}s exhausted")
        return left


def _finditer(compiled: Any, text: str, budget: _Budget) -> list[Any]:
    """All non-overlapping matches of ``compiled`` in ``text`` within ``budget``."""
    matches = []
    for match in compiled.finditer(text, concurrent=True, timeout=budget.remaining()):
        matches.append(match)
        budget.remaining()
    return matches


def _search(compiled: Any, text: str, budget: _Budget, pos: int = 0, endpos: Optional[int] = None) -> Any:
    """First match of ``compiled`` in ``text[pos:endpos]`` within ``budget``."""
    if endpos is None:
        endpos = len(text)
    return compiled.search(text, pos, endpos, concurrent=True, timeout=budget.remaining())


# =============================================================================
# Scan results
# =============================================================================


@dataclass
class ScanResult:
    """
    Private output of scanning one artifact; merged only after the join barrier.

    Attributes:
        artifact_path: Scanned artifact.
        matches: Raw matches of all rules that completed within budget.
        measurements: Metric values captured by measure patterns.
        diagnostics: Timeouts and other degradations.
        screened_out: Number of patterns skipped by screening.
        text: Normalized text, kept for snippet extraction.
    """

    artifact_path: str
    matches: list[RawMatch] = field(default_factory=list)
    measurements: list[Measurement] = field(default_factory=list)
    diagnostics: list[MatcherDiagnostic] = field(default_factory=list)
    screened_out: int = 0
    text: Optional[NormalizedText] = None


# =============================================================================
# PatternMatcher Class
# =============================================================================


class PatternMatcher:
    """
    Scans artifacts with the compiled patterns of a RuleSet.

    The matcher holds only read-only state (the rule set and the timeout), so
    one instance is shared by every worker thread of a run.

    Attributes:
        rule_set: Loaded rule set (provides the screening automata).
        timeout_seconds: Budget per (rule, artifact) pair.

    Example:
        >>> matcher = PatternMatcher(rule_set, timeout_seconds=2.0)
        >>> result = matcher.scan(eligible, Artifact(path="acl.conf", content=text))
        >>> [m.rule_id for m in result.matches]
        ['R1']
    """

    DEFAULT_TIMEOUT: float = 2.0

    def __init__(self, rule_set: RuleSet, timeout_seconds: Optional[float] = None):
        self.rule_set = rule_set
        self.timeout_seconds = timeout_seconds or self.DEFAULT_TIMEOUT

    def scan(
        self,
        rules: Iterable[Union[ResolvedRule, CompiledRule]],
        artifact: Artifact,
        text: Optional[NormalizedText] = None,
    ) -> ScanResult:
        """
        Scan one artifact with the given rules.

        Args:
            rules: Eligible rules for this artifact.
            artifact: The artifact; its content is read if ``text`` is None.
            text: Pre-built normalized text.

        Returns:
            ScanResult with matches, measurements and diagnostics.

        Raises:
            OSError: If the artifact cannot be read.
        """
        if text is None:
            text = NormalizedText(artifact.read(), artifact.language)

        compiled_rules = [r.compiled if isinstance(r, ResolvedRule) else r for r in rules]
        result = ScanResult(artifact_path=artifact.path, text=text)

        skipped, screen_seconds = self._screen(compiled_rules, text, artifact.path)

        for compiled_rule in compiled_rules:
            modes = {p.text_mode for p in compiled_rule.patterns}
            budget = _Budget(self.timeout_seconds, spent=sum(screen_seconds.get(m, 0.0) for m in modes))
            rule_matches: list[RawMatch] = []
            rule_measurements: list[Measurement] = []
            try:
                for pattern in compiled_rule.patterns:
                    if pattern.key in skipped:
                        result.screened_out += 1
                        continue
                    self._run_pattern(pattern, artifact.path, text, budget, rule_matches, rule_measurements)
            except TimeoutError:
                logger.warning(
                    f"Pattern timeout for rule {compiled_rule.id} on {artifact.path}",
                    extra={
                        "rule_id": compiled_rule.id,
                        "artifact": artifact.path,
                        "timeout_seconds": self.timeout_seconds,
                    },
                )
                result.diagnostics.append(
                    MatcherDiagnostic(
                        kind=DiagnosticKind.PATTERN_TIMEOUT,
                        artifact_path=artifact.path,
                        rule_id=compiled_rule.id,
                        detail=(
                            f"Pattern evaluation for rule {compiled_rule.id} exceeded "
                            f"{self.timeout_seconds}s; its results for this artifact were discarded"
                        ),
                    )
                )
                continue
            result.matches.extend(rule_matches)
            result.measurements.extend(rule_measurements)

        return result

    # -------------------------------------------------------------------------
    # Screening
    # -------------------------------------------------------------------------

    def _screen(
        self,
        compiled_rules: list[CompiledRule],
        text: NormalizedText,
        artifact_path: str,
    ) -> tuple[frozenset[tuple[str, int]], dict[TextMode, float]]:
        """
        Return the keys of patterns the screening automata prove cannot match,
        and the seconds each completed screen took.

        A screen that runs out of its budget skips nothing and is not charged;
        its patterns run individually under their own budgets.
        """
        wanted: dict[TextMode, set[tuple[str, int]]] = {}
        for compiled_rule in compiled_rules:
            for pattern in compiled_rule.patterns:
                wanted.setdefault(pattern.text_mode, set()).add(pattern.key)

        skipped: set[tuple[str, int]] = set()
        elapsed: dict[TextMode, float] = {}
        for mode, keys in wanted.items():
            screen = self.rule_set.screens.get(mode)
            if screen is None or screen.members.isdisjoint(keys):
                continue
            started = time.monotonic()
            try:
                hit = _search(
                    screen.compiled,
                    text.view(mode),
                    _Budget(self.timeout_seconds * SCREEN_BUDGET_FRACTION),
                )
            except TimeoutError:
                logger.debug(
                    "Screening timed out, patterns run individually",
                    extra={"artifact": artifact_path, "text_mode": mode.value},
                )
                continue
            elapsed[mode] = time.monotonic() - started
            if hit is None:
                skipped |= keys & screen.members
        return frozenset(skipped), elapsed

    # -------------------------------------------------------------------------
    # Pattern execution
    # -------------------------------------------------------------------------

    def _run_pattern(
        self,
        pattern: CompiledPattern,
        artifact_path: str,
        text: NormalizedText,
        budget: _Budget,
        matches: list[RawMatch],
        measurements: list[Measurement],
    ) -> None:
        view = text.view(pattern.text_mode)

        if pattern.kind == PatternKind.MATCH:
            for match in _finditer(pattern.compiled, view, budget):
                matches.append(self._raw_match(pattern.rule_id, artifact_path, text, match))

        elif pattern.kind == PatternKind.ABSENCE:
            for anchor in _finditer(pattern.compiled, view, budget):
                start, end = self._scope_window(pattern, text, anchor.start(), anchor.end())
                if _search(pattern.companion, view, budget, start, end) is None:
                    matches.append(self._raw_match(pattern.rule_id, artifact_path, text, anchor))

        elif pattern.kind == PatternKind.MEASURE:
            for match in _finditer(pattern.compiled, view, budget):
                raw_value = match.group("value")
                try:
                    value = float(raw_value.replace(",", "."))
                except (AttributeError, ValueError):
                    logger.debug(
                        f"Ignoring non-numeric measurement '{raw_value}'",
                        extra={"rule_id": pattern.rule_id, "artifact": artifact_path},
                    )
                    continue
                measurements.append(
                    Measurement(
                        rule_id=pattern.rule_id,
                        artifact_path=artifact_path,
                        value=value,
                        line=text.line_number_at_pos(match.start()),
                    )
                )

    def _raw_match(self, rule_id: str, artifact_path: str, text: NormalizedText, match: Any) -> RawMatch:
        start, end = match.span()
        last = max(start, end - 1)
        return RawMatch(
            rule_id=rule_id,
            artifact_path=artifact_path,
            start=start,
            end=end,
            line=text.line_number_at_pos(start),
            column=text.column_at_pos(start),
            end_line=text.line_number_at_pos(last),
            end_column=text.column_at_pos(last) + (1 if end > start else 0),
            text=text.raw[start:end][:MAX_MATCHED_TEXT],
            groups={k: v for k, v in match.groupdict().items()},
        )

    # -------------------------------------------------------------------------
    # Scope windows for absence patterns
    # -------------------------------------------------------------------------

    def _scope_window(self, pattern: CompiledPattern, text: NormalizedText, start: int, end: int) -> tuple[int, int]:
        """Return the [start, end) offsets searched for the companion of an anchor."""
        if pattern.spec.scope == ScopeKind.LINES:
            window = pattern.spec.window
            first = text.line_number_at_pos(start) - window.before
            last = text.line_number_at_pos(max(start, end - 1)) + window.after
            return text.line_start(first), text.line_end(last)

        if text.language not in INDENT_LANGUAGES:
            block = brace_block(text.view(TextMode.CODE), start)
            if block is not None:
                return block
        return indentation_block(text, start)


def brace_block(code: str, pos: int) -> Optional[tuple[int, int]]:
    """
    Offsets of the innermost ``{...}`` block enclosing ``pos``, extended over
    trailing ``catch``/``finally``/``else``/``except`` clauses.

    Returns None when ``pos`` is not inside any brace block.
    """
    depth = 0
    open_pos = -1
    for i in range(pos - 1, -1, -1):
        char = code[i]
        if char == "}":
            depth += 1
        elif char == "{":
            if depth == 0:
                open_pos = i
                break
            depth -= 1
    if open_pos < 0:
        return None

    close = _matching_brace(code, open_pos)
    while close < len(code):
        nxt = close + 1
        while nxt < len(code) and code[nxt].isspace():
            nxt += 1
        if not _CLAUSE_KEYWORD.match(code, nxt):
            break
        clause_open = code.find("{", nxt)
        if clause_open < 0:
            break
        close = _matching_brace(code, clause_open)
    return open_pos, min(close + 1, len(code))


def _matching_brace(code: str, open_pos: int) -> int:
    depth = 0
    for i in range(open_pos, len(code)):
        if code[i] == "{":
            depth += 1
        elif code[i] == "}":
            depth -= 1
            if depth == 0:
                return i
    return len(code) - 1


def indentation_block(text: NormalizedText, pos: int) -> tuple[int, int]:
    """
    Offsets of the indentation block enclosing ``pos``.

    The block starts at the header line (nearest preceding non-blank line
    with smaller indentation), runs while lines are indented deeper than the
    header, and then absorbs trailing ``except``/``finally``/``else``/``elif``
    clauses at the header's level together with their bodies. Top-level code
    has the whole artifact as its block.
    """
    lines = text.lines()
    anchor_idx = text.line_number_at_pos(pos) - 1
    anchor_indent = _indent(lines[anchor_idx])

    header_idx = None
    for i in range(anchor_idx - 1, -1, -1):
        if lines[i].strip() and _indent(lines[i]) < anchor_indent:
            header_idx = i
            break
    if header_idx is None:
        return 0, len(text.raw)

    header_indent = _indent(lines[header_idx])
    last_idx = anchor_idx
    i = anchor_idx + 1
    while i < len(lines):
        line = lines[i]
        if not line.strip():
            i += 1
            continue
        indent = _indent(line)
        if indent > header_indent:
            last_idx = i
        elif indent == header_indent and _CLAUSE_KEYWORD.match(line.lstrip()):
            last_idx = i
        else:
            break
        i += 1

    return text.line_start(header_idx + 1), text.line_end(last_idx + 1)


def _indent(line: str) -> int:
    return len(line.expandtabs(4)) - len(line.expandtabs(4).lstrip())
