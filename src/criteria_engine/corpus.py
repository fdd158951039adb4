"""
Reference corpus provider.

Walks a directory tree and yields lazily-read ``Artifact`` records for every
file with a known language or file kind, honouring ignore globs from
config.yaml and the project's ``.gitignore``. The engine itself only consumes
artifacts; callers with their own discovery can skip this module entirely.

Example:
    >>> artifacts = discover_artifacts(Path("/path/to/project"), config)
    >>> report = FindingEngine(rule_set, config).run(artifacts, context)
"""

from __future__ import annotations

import fnmatch
import logging
import os
from pathlib import Path
from typing import Optional

from criteria_engine.config import EngineConfig
from criteria_engine.errors import CorpusError
from criteria_engine.language_detector import LanguageDetector
from criteria_engine.models import Artifact

logger = logging.getLogger(__name__)


# =============================================================================
# Glob matching
# =============================================================================


def matches_glob(path: str, pattern: str) -> bool:
    """
    Match a posix-style relative path against a glob.

    Patterns starting with ``**/`` match at any depth, including the root.

    Example:
        >>> matches_glob("main.tf", "**/*.tf")
        True
        >>> matches_glob("src/vendor/lib.js", "**/vendor/**")
        True
    """
    path = path.replace("\\", "/")
    if fnmatch.fnmatch(path, pattern):
        return True
    if pattern.startswith("**/"):
        parts = path.split("/")
        for i in range(len(parts)):
            if fnmatch.fnmatch("/".join(parts[i:]), pattern[3:]):
                return True
    return False


def should_ignore_path(rel_path: str, patterns: list[str], is_dir: bool = False) -> bool:
    """
    Check if a relative path should be ignored based on patterns.

    Directories are matched with a trailing slash so ``**/build/**`` and
    ``build/`` both prune the directory itself.
    """
    candidate = f"{rel_path}/" if is_dir else rel_path
    return any(matches_glob(candidate, p) or matches_glob(rel_path, p) for p in patterns)


# =============================================================================
# Gitignore Parser
# =============================================================================


def parse_gitignore(directory: Path) -> list[str]:
    """
    Parse .gitignore file and return list of glob patterns.

    Negated patterns (``!keep.me``) are not supported and are skipped.

    Args:
        directory: Project root directory.

    Returns:
        List of glob patterns.
    """
    gitignore_path = directory / ".gitignore"
    patterns: list[str] = []

    if not gitignore_path.exists():
        return patterns

    try:
        with open(gitignore_path, encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line or line.startswith("#") or line.startswith("!"):
                    continue
                if not line.startswith("**/"):
                    if line.startswith("/"):
                        # Anchored to root
                        line = line[1:]
                    else:
                        line = f"**/{line}"
                patterns.append(line)
    except OSError as e:
        logger.warning(f"Could not read .gitignore: {e}")

    return patterns


# =============================================================================
# File Discovery
# =============================================================================


def discover_files(
    directory: Path,
    ignored_patterns: list[str],
    detector: Optional[LanguageDetector] = None,
) -> list[Path]:
    """
    Discover all scannable files in a directory, sorted by relative path.

    A file is scannable when its extension maps to a language or its name or
    extension maps to a file kind. Hidden directories are not descended into.

    Args:
        directory: Root directory to scan.
        ignored_patterns: Glob patterns to ignore.
        detector: Classifier providing the known extensions and file kinds.

    Returns:
        List of file paths to scan.
    """
    detector = detector or LanguageDetector()
    files: list[Path] = []

    for root, dirs, filenames in os.walk(directory):
        root_path = Path(root)

        # Filter directories to avoid descending into ignored paths
        dirs[:] = sorted(
            d
            for d in dirs
            if not d.startswith(".")
            and not should_ignore_path(_relative(root_path / d, directory), ignored_patterns, is_dir=True)
        )

        for filename in filenames:
            file_path = root_path / filename
            extension = file_path.suffix.lower()
            if (
                extension not in detector.extensions
                and extension not in detector.file_kinds
                and filename not in detector.file_kinds
            ):
                continue
            if should_ignore_path(_relative(file_path, directory), ignored_patterns):
                continue
            files.append(file_path)

    files.sort(key=lambda p: _relative(p, directory))
    return files


def discover_artifacts(
    directory: str | Path,
    config: Optional[EngineConfig] = None,
    use_gitignore: bool = True,
) -> list[Artifact]:
    """
    Enumerate a directory as artifacts whose content is read on demand.

    Args:
        directory: Project root.
        config: Engine configuration (ignore globs, extension mappings).
        use_gitignore: Also honour the root ``.gitignore``.

    Returns:
        Artifacts with repository-relative posix paths, in path order.

    Raises:
        CorpusError: If ``directory`` is not an existing directory.
    """
    config = config or EngineConfig()
    root = Path(directory).resolve()
    if not root.is_dir():
        raise CorpusError(f"Directory not found: {directory}", directory=str(directory))

    patterns = list(config.ignored_patterns)
    if use_gitignore:
        patterns.extend(parse_gitignore(root))

    detector = LanguageDetector(config.extensions, config.file_kinds)
    files = discover_files(root, patterns, detector)

    logger.info(
        f"Discovered {len(files)} artifacts in {root}",
        extra={"directory": str(root), "artifact_count": len(files)},
    )
    return [Artifact(path=_relative(p, root), source=p) for p in files]


def _relative(path: Path, base: Path) -> str:
    try:
        return path.relative_to(base).as_posix()
    except ValueError:
        return path.as_posix()
