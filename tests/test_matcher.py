"""Tests for the pattern matcher."""

import time

import pytest

from conftest import rule
from criteria_engine import matcher as matcher_module
from criteria_engine.applicability import eligible_rules
from criteria_engine.matcher import PatternMatcher, brace_block, indentation_block
from criteria_engine.models import Artifact, DiagnosticKind, EvaluationContext, TextMode
from criteria_engine.normalize import NormalizedText


def scan(rule_set, content, path="acl.conf", language=None, context=None):
    resolved = eligible_rules(rule_set, context or EvaluationContext())
    artifact = Artifact(path=path, content=content, language=language)
    return PatternMatcher(rule_set, timeout_seconds=5.0).scan(resolved, artifact)


def test_positive_pattern_every_match(build_rule_set):
    rule_set = build_rule_set(rule("R1"))
    result = scan(rule_set, "permit ip any any\ndeny all\npermit ip any any\n")
    assert [(m.line, m.column) for m in result.matches] == [(1, 1), (3, 1)]
    match = result.matches[0]
    assert match.rule_id == "R1"
    assert match.artifact_path == "acl.conf"
    assert match.text == "permit ip any any"
    assert match.end_line == 1
    assert match.end_column == 18


def test_flags_apply(build_rule_set):
    rule_set = build_rule_set(rule("R1", patterns=[{"regex": "permit ip", "flags": ["ignorecase"]}]))
    assert len(scan(rule_set, "PERMIT IP any any").matches) == 1


def test_named_groups_captured(build_rule_set):
    rule_set = build_rule_set(rule("R1", patterns=[r"ratio\s*=\s*(?P<ratio>\d+)"]))
    assert scan(rule_set, "ratio = 8").matches[0].groups == {"ratio": "8"}


def test_multiline_match_span(build_rule_set):
    rule_set = build_rule_set(rule("R1", patterns=[r"except:\s*\n\s*pass"]))
    match = scan(rule_set, "try:\n    x()\nexcept:\n    pass\n", path="a.py").matches[0]
    assert (match.line, match.end_line) == (3, 4)


def test_comment_mode_ignores_commented_code(build_rule_set):
    rule_set = build_rule_set(rule("R1", patterns=[{"regex": r"secure_boot\s*=\s*off", "text": "no_comments"}]))
    content = "# secure_boot = off\nsecure_boot = off\n"
    result = scan(rule_set, content, path="bios.ini", language="ini")
    assert [m.line for m in result.matches] == [2]


def test_match_set_independent_of_rule_order(build_rule_set):
    content = "permit ip any any\nallow all\n"
    first = build_rule_set(rule("A", patterns=["permit"]), rule("B", patterns=["allow"]))
    second = build_rule_set(rule("B", patterns=["allow"]), rule("A", patterns=["permit"]))
    key = lambda r: sorted((m.rule_id, m.start, m.end) for m in r.matches)  # noqa: E731
    assert key(scan(first, content)) == key(scan(second, content))


def test_screening_skips_patterns_without_hits(build_rule_set):
    rule_set = build_rule_set(rule("R1"), rule("R2", patterns=["deny all"]))
    result = scan(rule_set, "nothing relevant here\n")
    assert result.matches == []
    assert result.screened_out == 2


def test_screening_never_hides_matches(build_rule_set):
    rule_set = build_rule_set(rule("R1"), rule("R2", patterns=["deny all"]))
    result = scan(rule_set, "deny all\n")
    assert result.screened_out == 0
    assert [m.rule_id for m in result.matches] == ["R2"]


def test_unscreenable_pattern_runs(build_rule_set):
    rule_set = build_rule_set(rule("R1", patterns=[r"(\w+) \1"]))
    result = scan(rule_set, "any any\n")
    assert len(result.matches) == 1


# =============================================================================
# Absence patterns
# =============================================================================


OPEN_RULE = {
    "anchor": r"\bopen\(",
    "companion": r"\bexcept\b",
    "text": "code",
    "scope": "lines",
    "window": {"before": 0, "after": 3},
}


def test_absence_fires_when_companion_missing(build_rule_set):
    rule_set = build_rule_set(rule("ERR", category="error-handling", patterns=[OPEN_RULE]))
    content = "f = open(path)\ndata = f.read()\n"
    result = scan(rule_set, content, path="io.py", language="python")
    assert [(m.rule_id, m.line, m.text) for m in result.matches] == [("ERR", 1, "open(")]


def test_absence_silent_when_companion_in_window(build_rule_set):
    rule_set = build_rule_set(rule("ERR", patterns=[OPEN_RULE]))
    content = "f = open(path)\ntry:\n    f.read()\nexcept OSError:\n    raise\n"
    assert scan(rule_set, content, path="io.py", language="python").matches == []


def test_absence_window_is_bounded(build_rule_set):
    rule_set = build_rule_set(rule("ERR", patterns=[OPEN_RULE]))
    content = "f = open(path)\na\nb\nc\nd\nexcept OSError:\n"
    assert len(scan(rule_set, content, path="io.py", language="python").matches) == 1


def test_absence_companion_in_comment_does_not_count(build_rule_set):
    rule_set = build_rule_set(rule("ERR", patterns=[OPEN_RULE]))
    content = "f = open(path)  # except nothing\n"
    assert len(scan(rule_set, content, path="io.py", language="python").matches) == 1


def test_absence_block_scope_python(build_rule_set):
    block_rule = dict(OPEN_RULE, scope="block", companion=r"\bwith\b|\bexcept\b")
    del block_rule["window"]
    rule_set = build_rule_set(rule("ERR", patterns=[block_rule]))
    content = (
        "def ok(path):\n"
        "    try:\n"
        "        f = open(path)\n"
        "    except OSError:\n"
        "        return None\n"
        "\n"
        "def bad(path):\n"
        "    f = open(path)\n"
        "    return f.read()\n"
    )
    result = scan(rule_set, content, path="io.py", language="python")
    assert [m.line for m in result.matches] == [8]


def test_absence_block_scope_braces(build_rule_set):
    block_rule = {"anchor": r"\bfopen\(", "companion": r"\bcatch\b", "text": "code", "scope": "block"}
    rule_set = build_rule_set(rule("ERR", patterns=[block_rule]))
    content = (
        "void a() {\n"
        "  try {\n"
        "    fopen(p);\n"
        "  } catch (e) {\n"
        "  }\n"
        "}\n"
        "void b() {\n"
        "  fopen(p);\n"
        "}\n"
    )
    result = scan(rule_set, content, path="io.java", language="java")
    assert [m.line for m in result.matches] == [8]


def test_brace_block_extends_over_catch():
    code = "f() { try { x(); } catch (e) { y(); } finally { z(); } }"
    start, end = brace_block(code, code.index("x()"))
    assert code[start] == "{"
    assert code[start:end].endswith("z(); }")


def test_brace_block_outside_braces():
    assert brace_block("x();", 1) is None


def test_indentation_block_absorbs_except_clause():
    text = NormalizedText("try:\n    a()\nexcept E:\n    b()\nc()\n", language="python")
    start, end = indentation_block(text, text.raw.index("a()"))
    assert text.raw[start:end] == "try:\n    a()\nexcept E:\n    b()"


def test_indentation_block_top_level_is_whole_file():
    text = NormalizedText("a()\nb()\n", language="python")
    assert indentation_block(text, 0) == (0, len(text.raw))


# =============================================================================
# Measurements and timeouts
# =============================================================================


def test_measure_pattern_produces_measurements(build_rule_set):
    rule_set = build_rule_set(rule("COV", patterns=[{"measure": r"coverage:\s*(?P<value>\d+(?:\.\d+)?)%"}]))
    result = scan(rule_set, "unit\ncoverage: 62.5%\n", path="coverage.txt")
    assert result.matches == []
    assert [(m.rule_id, m.value, m.line) for m in result.measurements] == [("COV", 62.5, 2)]


def test_timeout_discards_rule_results_and_records_diagnostic(build_rule_set, monkeypatch):
    rule_set = build_rule_set(
        rule("SLOW", patterns=["permit", "any any"]),
        rule("FAST", patterns=["deny"]),
    )
    real_finditer = matcher_module._finditer

    def finditer(compiled, text, budget):
        if compiled.pattern == "any any":
            raise TimeoutError("budget exhausted")
        return real_finditer(compiled, text, budget)

    monkeypatch.setattr(matcher_module, "_finditer", finditer)
    result = scan(rule_set, "permit ip any any\ndeny\n")

    assert [m.rule_id for m in result.matches] == ["FAST"]
    assert len(result.diagnostics) == 1
    diagnostic = result.diagnostics[0]
    assert diagnostic.kind == DiagnosticKind.PATTERN_TIMEOUT
    assert diagnostic.rule_id == "SLOW"
    assert diagnostic.artifact_path == "acl.conf"


def test_budget_expires():
    budget = matcher_module._Budget(0.01)
    time.sleep(0.02)
    with pytest.raises(TimeoutError):
        budget.remaining()


def test_catastrophic_pattern_times_out(build_rule_set):
    """Real backtracking blowup hits the regex timeout; the other rule still matches."""
    rule_set = build_rule_set(rule("BAD", patterns=[r"^(a|aa)+$"]), rule("FAST", patterns=["a{3}"]))
    resolved = eligible_rules(rule_set, EvaluationContext())
    matcher = PatternMatcher(rule_set, timeout_seconds=0.5)

    started = time.monotonic()
    result = matcher.scan(resolved, Artifact(path="evil.txt", content="a" * 60 + "b"))
    elapsed = time.monotonic() - started

    assert [d.rule_id for d in result.diagnostics] == ["BAD"]
    assert {m.rule_id for m in result.matches} == {"FAST"}
    # Screening adds at most a fraction of the budget on top of the rule's own
    assert elapsed < 0.5 * (1 + matcher_module.SCREEN_BUDGET_FRACTION) + 0.3


def test_screen_budget_is_fraction_of_timeout(build_rule_set, monkeypatch):
    seen = []

    def search(compiled, text, budget, pos=0, endpos=None):
        seen.append(budget.seconds)
        raise TimeoutError("budget exhausted")

    monkeypatch.setattr(matcher_module, "_search", search)
    result = scan(build_rule_set(rule("R1")), "permit ip any any\n")
    assert seen == [5.0 * matcher_module.SCREEN_BUDGET_FRACTION]
    # A timed-out screen skips nothing
    assert [m.rule_id for m in result.matches] == ["R1"]
    assert result.diagnostics == []


def test_screen_time_charged_to_rule_budget(build_rule_set, monkeypatch):
    real_search = matcher_module._search
    real_finditer = matcher_module._finditer
    left = []

    def search(compiled, text, budget, pos=0, endpos=None):
        time.sleep(0.3)
        return real_search(compiled, text, budget, pos, endpos)

    def finditer(compiled, text, budget):
        left.append(budget.deadline - time.monotonic())
        return real_finditer(compiled, text, budget)

    monkeypatch.setattr(matcher_module, "_search", search)
    monkeypatch.setattr(matcher_module, "_finditer", finditer)
    rule_set = build_rule_set(rule("R1"))
    resolved = eligible_rules(rule_set, EvaluationContext())
    PatternMatcher(rule_set, timeout_seconds=2.0).scan(resolved, Artifact(path="acl.conf", content="permit ip any any\n"))

    assert len(left) == 1
    assert left[0] < 1.75


def test_text_views_share_offsets(build_rule_set):
    rule_set = build_rule_set(
        rule("RAW", patterns=["open"]),
        rule("CODE", category="other", patterns=[{"regex": "open", "text": "code"}]),
    )
    result = scan(rule_set, "open()  # open\n", path="a.py", language="python")
    by_rule = {}
    for m in result.matches:
        by_rule.setdefault(m.rule_id, []).append(m.column)
    assert by_rule == {"RAW": [1, 11], "CODE": [1]}


@pytest.mark.parametrize("mode", list(TextMode))
def test_scan_every_text_mode(build_rule_set, mode):
    rule_set = build_rule_set(rule("R1", patterns=[{"regex": "permit", "text": mode.value}]))
    assert len(scan(rule_set, "permit\n", path="a.py", language="python").matches) == 1
