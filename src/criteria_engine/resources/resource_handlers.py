"""Resource handlers for exposing the rule catalog and engine configuration via MCP."""

from criteria_engine.models import Rule, Severity, SeverityTable, Threshold
from criteria_engine.tools.review import get_cached_engine


def get_catalog_resource(category: str | None = None) -> str:
    """Get the loaded rules as a markdown catalog, grouped by category."""
    rule_set = get_cached_engine().rule_set
    categories = [category] if category else rule_set.categories
    lines = ["# Review Criteria Catalog\n"]

    for descriptor in rule_set.descriptors:
        version = f" {descriptor.version}" if descriptor.version else ""
        lines.append(f"- Source: {descriptor.name}{version} ({descriptor.rule_count} rules)")
    lines.append("")

    found = False
    for name in categories:
        rules = rule_set.by_category.get(name, ())
        if not rules:
            continue
        found = True
        lines.append(f"## {name}\n")
        for compiled in rules:
            lines.extend(_rule_lines(compiled.rule))
    if not found:
        return "No rules configured for the specified category."
    return "\n".join(lines)


def _rule_lines(rule: Rule) -> list[str]:
    lines = [f"### {rule.name or rule.id} (`{rule.id}`)"]
    lines.append(f"- Severity: {_describe_severity(rule.severity)}")
    if not rule.applicability.is_universal:
        scope = "; ".join(f"{d} in {', '.join(v)}" for d, v in rule.applicability.predicates.items())
        lines.append(f"- Applies when: {scope}")
    if rule.threshold:
        lines.append(f"- Threshold: {_describe_threshold(rule.threshold)}")
    if rule.references:
        lines.append(f"- References: {', '.join(rule.references)}")
    if not rule.enabled:
        lines.append("- Disabled")
    lines.append("")
    return lines


def _describe_severity(severity: Severity | SeverityTable) -> str:
    if isinstance(severity, Severity):
        return severity.value
    parts = [
        "/".join(entry.when[d] for d in severity.dimensions) + f"={entry.value.value}"
        for entry in severity.entries
    ]
    if severity.default is not None:
        parts.append(f"default={severity.default.value}")
    return f"by {', '.join(severity.dimensions)} ({', '.join(parts)})"


def _describe_threshold(threshold: Threshold) -> str:
    if isinstance(threshold.limit, float):
        limit = f"{threshold.limit:g}{threshold.unit}"
    else:
        limit = f"by {', '.join(threshold.limit.dimensions)}"
    subject = threshold.metric or "occurrences"
    return f"{threshold.kind.value} {subject} {limit} per {threshold.scope.value}"


def get_config_resource() -> str:
    """Get the engine configuration as formatted text."""
    config = get_cached_engine().config
    lines = [
        "# Engine Configuration",
        "",
        f"Pattern timeout: {config.pattern_timeout_seconds}s",
        f"Max workers: {config.max_workers}",
        f"Overlap fraction: {config.overlap_fraction}",
        f"Snippet context lines: {config.snippet_context_lines}",
        f"Hotspot limit: {config.hotspot_limit}",
        "",
        "File kinds:",
    ]
    for pattern, kind in sorted(config.file_kinds.items()):
        lines.append(f"  - {pattern}: {kind}")
    lines.append("")
    lines.append("Ignored patterns:")
    for pattern in config.ignored_patterns:
        lines.append(f"  - {pattern}")
    return "\n".join(lines)
