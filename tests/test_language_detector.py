"""Tests for language and file-kind detection."""

import pytest

from criteria_engine.language_detector import LanguageDetector, detect_file_kind, detect_language


@pytest.mark.parametrize(
    "path,expected",
    [
        ("app/main.py", "python"),
        ("web/index.TSX", "typescript"),
        ("infra/main.tf", "hcl"),
        ("deploy/values.yml", "yaml"),
        ("README", None),
    ],
)
def test_detect_language_from_extension(path, expected):
    assert detect_language(path) == expected


def test_detect_language_from_shebang():
    assert detect_language("bin/tool", "#!/usr/bin/env python3\nprint('hi')\n") == "python"
    assert detect_language("bin/run", "#!/bin/bash\necho hi\n") == "shell"


def test_detect_language_from_content():
    assert detect_language("snippet", "from os import path\ndef main():\n    pass\n") == "python"
    assert detect_language("snippet", "interface User {\n  name: string\n}\n") == "typescript"
    assert detect_language("snippet", "just words") is None


@pytest.mark.parametrize(
    "path,expected",
    [
        ("tests/unit/helpers.py", "test"),
        ("pkg/test_api.py", "test"),
        ("web/button.spec.ts", "test"),
        ("deploy/values.yaml", "config"),
        ("Dockerfile", "infrastructure"),
        ("infra/main.tf", "infrastructure"),
        ("Makefile", "build"),
        ("docs/guide.md", "docs"),
        ("src/app.go", "source"),
        ("assets/logo.png", None),
    ],
)
def test_detect_file_kind(path, expected):
    assert detect_file_kind(path) == expected


def test_config_mappings_take_precedence():
    """Mappings from config.yaml override and extend the defaults."""
    detector = LanguageDetector(extensions={".acl": "ini", ".conf": "nginx"}, file_kinds={".acl": "config"})
    assert detector.detect_language("edge.acl") == "ini"
    assert detector.detect_language("site.conf") == "nginx"
    assert detector.detect_file_kind("edge.acl") == "config"
    assert detect_language("edge.acl") is None
