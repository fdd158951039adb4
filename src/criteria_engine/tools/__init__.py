"""Tools for running reviews and browsing the rule catalog."""

from criteria_engine.tools.review import (
    build_context,
    clear_engine_cache,
    get_cached_engine,
    get_rule,
    list_rules,
    scan_content,
    scan_path,
)

__all__ = [
    "build_context",
    "clear_engine_cache",
    "get_cached_engine",
    "get_rule",
    "list_rules",
    "scan_content",
    "scan_path",
]
