"""
Language and file-kind detection for artifacts.

Applicability predicates may restrict a rule to a language ("python") or a
file kind ("config", "infrastructure", "test"). Artifacts supplied without
those attributes are classified here, from the path first and the content
second.

Example:
    >>> detector = LanguageDetector()
    >>> detector.detect_language("app/main.py")
    'python'
    >>> detector.detect_file_kind("deploy/values.yaml")
    'config'
"""

from __future__ import annotations

import fnmatch
import logging
import re
from pathlib import PurePosixPath
from typing import Mapping, Optional

logger = logging.getLogger(__name__)


# =============================================================================
# Default mappings
# =============================================================================


DEFAULT_EXTENSIONS: dict[str, str] = {
    ".py": "python",
    ".pyi": "python",
    ".pyx": "python",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".go": "go",
    ".java": "java",
    ".kt": "kotlin",
    ".cs": "csharp",
    ".c": "c",
    ".h": "c",
    ".cpp": "cpp",
    ".hpp": "cpp",
    ".rs": "rust",
    ".rb": "ruby",
    ".php": "php",
    ".sh": "shell",
    ".bash": "shell",
    ".ps1": "powershell",
    ".sql": "sql",
    ".tf": "hcl",
    ".hcl": "hcl",
    ".yaml": "yaml",
    ".yml": "yaml",
    ".json": "json",
    ".toml": "toml",
    ".ini": "ini",
    ".cfg": "ini",
    ".conf": "ini",
    ".xml": "xml",
    ".md": "markdown",
}

DEFAULT_FILE_KINDS: dict[str, str] = {
    ".yaml": "config",
    ".yml": "config",
    ".json": "config",
    ".toml": "config",
    ".ini": "config",
    ".cfg": "config",
    ".conf": "config",
    ".xml": "config",
    ".properties": "config",
    ".env": "config",
    ".tf": "infrastructure",
    ".hcl": "infrastructure",
    ".tfvars": "infrastructure",
    ".md": "docs",
    ".rst": "docs",
    ".txt": "docs",
    "Dockerfile": "infrastructure",
    "Vagrantfile": "infrastructure",
    "Makefile": "build",
    "Jenkinsfile": "build",
}

# Extensions classified as source unless a test pattern matches first.
_SOURCE_LANGUAGES = frozenset(
    {
        "python", "javascript", "typescript", "go", "java", "kotlin", "csharp", "c",
        "cpp", "rust", "ruby", "php", "shell", "powershell", "sql",
    }
)

TEST_PATH_PATTERNS: tuple[str, ...] = (
    "test_*.py",
    "*_test.py",
    "*_test.go",
    "*.test.js",
    "*.test.ts",
    "*.spec.js",
    "*.spec.ts",
    "*Test.java",
    "*Tests.cs",
)

TEST_DIRECTORIES = frozenset({"test", "tests", "__tests__", "spec"})


# =============================================================================
# Content Analysis Patterns
# =============================================================================


PYTHON_INDICATORS: list[re.Pattern[str]] = [
    re.compile(r"def\s+\w+\s*\("),
    re.compile(r"class\s+\w+\s*(\(.*\))?:"),
    re.compile(r"from\s+\w+\s+import"),
    re.compile(r"if\s+__name__\s*==\s*['\"]__main__['\"]"),
]

TYPESCRIPT_INDICATORS: list[re.Pattern[str]] = [
    re.compile(r":\s*(string|number|boolean|any|void|never|unknown)\b"),
    re.compile(r"interface\s+\w+\s*\{"),
    re.compile(r"type\s+\w+\s*="),
    re.compile(r"implements\s+\w+"),
]

JAVASCRIPT_INDICATORS: list[re.Pattern[str]] = [
    re.compile(r"function\s+\w+\s*\("),
    re.compile(r"const\s+\w+\s*="),
    re.compile(r"require\s*\(\s*['\"]"),
]

SHEBANGS: dict[str, str] = {
    "python": "python",
    "node": "javascript",
    "bash": "shell",
    "sh": "shell",
}


# =============================================================================
# LanguageDetector Class
# =============================================================================


class LanguageDetector:
    """
    Classifies artifacts by language and file kind.

    Extension mappings from config.yaml are merged over the defaults
    (config takes precedence). Instances hold no mutable state after
    construction and are safe to share between worker threads.

    Attributes:
        extensions: Extension (with dot) -> language.
        file_kinds: Extension or bare file name -> file kind.
    """

    def __init__(
        self,
        extensions: Optional[Mapping[str, str]] = None,
        file_kinds: Optional[Mapping[str, str]] = None,
    ):
        self.extensions: dict[str, str] = {**DEFAULT_EXTENSIONS, **(extensions or {})}
        self.file_kinds: dict[str, str] = {**DEFAULT_FILE_KINDS, **(file_kinds or {})}

    def detect_language(self, path: str, code: Optional[str] = None) -> Optional[str]:
        """
        Detect the language of an artifact.

        Detection priority:
        1. File extension (most reliable)
        2. Shebang line
        3. Content heuristics (python / typescript / javascript)

        Args:
            path: Artifact path.
            code: Optional content for content-based detection.

        Returns:
            Lowercase language name, or None if it cannot be determined.
        """
        extension = PurePosixPath(path).suffix.lower()
        if extension and extension in self.extensions:
            return self.extensions[extension]

        if code:
            detected = self._detect_from_content(code)
            if detected:
                logger.debug(
                    "Detected language from content analysis",
                    extra={"path": path, "language": detected},
                )
                return detected

        return None

    def _detect_from_content(self, code: str) -> Optional[str]:
        first_line = code.lstrip().split("\n", 1)[0]
        if first_line.startswith("#!"):
            for token, language in SHEBANGS.items():
                if re.search(rf"\b{token}[0-9.]*\b", first_line):
                    return language

        scores = {
            "python": sum(1 for p in PYTHON_INDICATORS if p.search(code)),
            "typescript": 2 * sum(1 for p in TYPESCRIPT_INDICATORS if p.search(code)),
            "javascript": sum(1 for p in JAVASCRIPT_INDICATORS if p.search(code)),
        }
        max_score = max(scores.values())
        if max_score == 0:
            return None

        # Prefer Python > TypeScript > JavaScript for ties
        for language in ("python", "typescript", "javascript"):
            if scores[language] == max_score:
                return language
        return None

    def detect_file_kind(self, path: str, language: Optional[str] = None) -> Optional[str]:
        """
        Classify an artifact as test, config, infrastructure, build, docs or source.

        Test paths win over every other kind so that rules scoped to test
        code see test files written in any language.

        Args:
            path: Artifact path.
            language: Already-detected language, if any.

        Returns:
            File kind, or None if the path matches no known kind.
        """
        posix = PurePosixPath(path)
        name = posix.name

        if self.is_test_path(path):
            return "test"

        if name in self.file_kinds:
            return self.file_kinds[name]

        extension = posix.suffix.lower()
        if extension in self.file_kinds:
            return self.file_kinds[extension]

        language = language or self.extensions.get(extension)
        if language in _SOURCE_LANGUAGES:
            return "source"

        return None

    @staticmethod
    def is_test_path(path: str) -> bool:
        posix = PurePosixPath(path)
        if any(part.lower() in TEST_DIRECTORIES for part in posix.parts[:-1]):
            return True
        return any(fnmatch.fnmatchcase(posix.name, pattern) for pattern in TEST_PATH_PATTERNS)


# =============================================================================
# Module-level convenience functions
# =============================================================================


_default_detector: LanguageDetector | None = None


def get_detector() -> LanguageDetector:
    """Return the shared detector built from the default mappings."""
    global _default_detector
    if _default_detector is None:
        _default_detector = LanguageDetector()
    return _default_detector


def detect_language(path: str, code: Optional[str] = None) -> Optional[str]:
    return get_detector().detect_language(path, code)


def detect_file_kind(path: str, language: Optional[str] = None) -> Optional[str]:
    return get_detector().detect_file_kind(path, language)
