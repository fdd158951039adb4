"""Tests for configuration loading."""

import pytest

from criteria_engine.config import DEFAULT_IGNORED_PATTERNS, RULES_DIR_ENV, EngineConfig, load_config, rules_dir_path
from criteria_engine.errors import ConfigurationError


def test_defaults():
    config = EngineConfig()
    assert config.pattern_timeout_seconds == 2.0
    assert config.max_workers == 4
    assert config.overlap_fraction == 0.0
    assert config.ignored_patterns == DEFAULT_IGNORED_PATTERNS


def test_missing_file_uses_defaults(tmp_path):
    assert load_config(tmp_path / "config.yaml") == EngineConfig()
    assert load_config(None) == EngineConfig()


def test_load_config_yaml(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "engine:\n"
        "  pattern_timeout_seconds: 0.5\n"
        "  max_workers: 8\n"
        "  overlap_fraction: 0.25\n"
        "extensions:\n"
        "  .acl: INI\n"
        "file_kinds:\n"
        "  .acl: config\n"
        "corpus:\n"
        "  ignored_patterns: ['**/generated/**']\n"
    )
    config = load_config(path)
    assert config.pattern_timeout_seconds == 0.5
    assert config.max_workers == 8
    assert config.overlap_fraction == 0.25
    assert config.snippet_context_lines == 2
    assert config.extensions == {".acl": "ini"}
    assert config.file_kinds == {".acl": "config"}
    assert config.ignored_patterns == ["**/generated/**"]


@pytest.mark.parametrize(
    "content",
    [
        "engine:\n  max_workers: 0\n",
        "engine:\n  max_workers: many\n",
        "engine:\n  overlap_fraction: 1.5\n",
        "engine:\n  pattern_timeout_seconds: -1\n",
        "extensions: [.acl]\n",
        "- just\n- a list\n",
        "engine: {max_workers: [\n",
    ],
)
def test_invalid_config_raises(tmp_path, content):
    path = tmp_path / "config.yaml"
    path.write_text(content)
    with pytest.raises(ConfigurationError):
        load_config(path)


def test_rules_dir_from_environment(tmp_path, monkeypatch):
    monkeypatch.setenv(RULES_DIR_ENV, str(tmp_path))
    assert rules_dir_path() == tmp_path


def test_rules_dir_falls_back_to_bundled(monkeypatch, bundled_rules_dir):
    monkeypatch.delenv(RULES_DIR_ENV, raising=False)
    assert rules_dir_path().resolve() == bundled_rules_dir.resolve()
