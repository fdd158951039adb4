"""Pytest configuration and fixtures."""

import json
import sys
from pathlib import Path

import pytest

# Ensure src is on path for tests
root = Path(__file__).resolve().parent.parent
src = root / "src"
if str(src) not in sys.path:
    sys.path.insert(0, str(src))

from criteria_engine.loader import RuleSource, load  # noqa: E402

BUNDLED_RULES_DIR = root / "rules"


def rule(rule_id, category="access", severity="high", patterns=None, **extra):
    """Minimal rule mapping for building test rule sources."""
    data = {
        "id": rule_id,
        "category": category,
        "severity": severity,
        "patterns": patterns if patterns is not None else [{"regex": "permit ip any any"}],
        "remediation": f"Fix {rule_id}.",
    }
    data.update(extra)
    return data


def source(*rules, dimensions=None, schema_version="1.0", name="test-rules.json", **extra):
    """Build an in-memory JSON rule source."""
    document = {"schema_version": schema_version, "name": "test-rules", "rules": list(rules)}
    if dimensions:
        document["dimensions"] = dimensions
    document.update(extra)
    return RuleSource(data=json.dumps(document), name=name)


@pytest.fixture
def build_rule_set():
    """Factory fixture: build_rule_set(rule(...), ..., dimensions=...) -> RuleSet."""

    def _build(*rules, **kwargs):
        return load([source(*rules, **kwargs)])

    return _build


@pytest.fixture
def bundled_rules_dir():
    return BUNDLED_RULES_DIR
