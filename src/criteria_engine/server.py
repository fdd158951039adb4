"""Criteria Engine MCP Server - criteria-driven review findings for reviewer agents."""

import json
import logging

from mcp.server.fastmcp import FastMCP

from criteria_engine.tools import (
    build_context,
    clear_engine_cache,
    get_rule,
    list_rules,
    scan_content,
    scan_path,
)
from criteria_engine.resources.resource_handlers import (
    get_catalog_resource,
    get_config_resource,
)
from criteria_engine.prompts.prompt_templates import (
    DOMAIN_REVIEW_PROMPT,
    FINDING_EXPLANATION_PROMPT,
)

# ────────────────────────────────────────────
# LOGGING SETUP
# ────────────────────────────────────────────

logger = logging.getLogger("criteria_engine")

# ────────────────────────────────────────────
# SERVER INSTANTIATION
# ────────────────────────────────────────────

mcp = FastMCP(
    name="Criteria Engine",
    instructions="Evaluates source, configuration and infrastructure files against declarative review criteria. Returns deduplicated findings ranked by context-resolved severity, plus a summary with risk score, hotspots and threshold breaches.",
)

# ────────────────────────────────────────────
# TOOLS
# ────────────────────────────────────────────


@mcp.tool(name="scan_path")
def scan(
    path: str,
    project_tier: str | None = None,
    platforms: list[str] | None = None,
    language: str | None = None,
    tags: dict[str, str] | None = None,
    metrics: dict[str, float] | None = None,
    disabled_rules: list[str] | None = None,
) -> dict:
    """Scan a file or directory against the loaded criteria. project_tier (e.g. payment, prototype), platforms (e.g. dell, linux, vmware) and tags select context-dependent rules and severities; metrics supplies measured values such as coverage for threshold checks."""
    context = build_context(
        project_tier=project_tier,
        platforms=platforms,
        language=language,
        tags=tags,
        metrics=metrics,
        disabled_rules=disabled_rules,
    )
    report = scan_path(path, context)
    logger.info(f"scan: {path}, {len(report.findings)} findings, {len(report.summary.breaches)} breaches")
    return report.to_dict()


@mcp.tool(name="scan_content")
def scan_snippet(
    content: str,
    file_path: str = "<inline>",
    language: str | None = None,
    project_tier: str | None = None,
    platforms: list[str] | None = None,
    tags: dict[str, str] | None = None,
) -> dict:
    """Scan in-memory content as a single file. file_path drives language and file-kind detection unless language is given."""
    context = build_context(
        project_tier=project_tier,
        platforms=platforms,
        language=language,
        tags=tags,
    )
    report = scan_content(content, file_path=file_path, language=language, context=context)
    logger.info(f"scan_snippet: {file_path}, {len(report.findings)} findings")
    return report.to_dict()


@mcp.tool(name="list_rules")
def rules(category: str | None = None, min_severity: str | None = None) -> list:
    """List loaded review criteria. Optionally filter by category or minimum severity (info, low, medium, high, critical)."""
    return list_rules(category, min_severity)


@mcp.tool(name="get_rule")
def rule_details(rule_id: str) -> dict:
    """Full definition of one criterion: patterns, applicability, severity table, threshold and remediation."""
    rule = get_rule(rule_id)
    if rule is None:
        return {"error": f"Unknown rule id: {rule_id}"}
    return rule


@mcp.tool()
def reload_rules() -> dict:
    """Reload rule packs and config.yaml from the rules directory."""
    clear_engine_cache()
    count = len(list_rules())
    logger.info(f"reload_rules: {count} rules loaded")
    return {"rule_count": count}


# ────────────────────────────────────────────
# RESOURCES
# ────────────────────────────────────────────


@mcp.resource("rules://catalog")
def catalog_resource() -> str:
    """All loaded review criteria, grouped by category."""
    return get_catalog_resource()


@mcp.resource("rules://catalog/{category}")
def category_resource(category: str) -> str:
    """Review criteria of one category."""
    return get_catalog_resource(category)


@mcp.resource("rules://config")
def config_resource() -> str:
    """Engine configuration and corpus settings."""
    return get_config_resource()


# ────────────────────────────────────────────
# PROMPTS
# ────────────────────────────────────────────


@mcp.prompt()
def domain_review(path: str, domain: str = "code", project_tier: str = "", platforms: str = "") -> str:
    """Scan a path and return a structured review prompt with findings and breaches included. platforms is comma-separated."""
    context = build_context(
        project_tier=project_tier or None,
        platforms=[p.strip() for p in platforms.split(",") if p.strip()],
    )
    report = scan_path(path, context)
    summary = report.summary

    issues = [f.model_dump(mode="json") for f in report.findings]
    findings_text = json.dumps(issues, indent=2) if issues else "No findings."
    breaches_text = (
        "\n".join(f"- [{b.severity.value}] {b.rule_id}: {b.message}" for b in summary.breaches)
        or "None."
    )
    logger.info(f"domain_review prompt generated: {len(report.findings)} findings")
    return DOMAIN_REVIEW_PROMPT.format(
        domain=domain,
        target=path,
        context=json.dumps(context.model_dump(mode="json", exclude_defaults=True)),
        worst_severity=summary.worst_severity.value if summary.worst_severity else "none",
        risk_score=summary.risk_score,
        total_findings=summary.total_findings,
        diagnostics=summary.diagnostics,
        breaches=breaches_text,
        findings=findings_text,
    )


@mcp.prompt()
def finding_explanation(
    rule_id: str,
    path: str,
    line: int,
    message: str = "",
    severity: str = "",
    snippet: str = "",
) -> str:
    """Generate a prompt explaining one finding, with the rule's remediation guidance."""
    rule = get_rule(rule_id) or {}
    logger.info(f"finding_explanation prompt: rule={rule_id}, line={line}")
    return FINDING_EXPLANATION_PROMPT.format(
        rule_id=rule_id,
        category=rule.get("category", "<unknown>"),
        severity=severity or "<unresolved>",
        location=f"{path}:{line}",
        message=message or rule.get("message") or rule.get("name") or rule_id,
        remediation=rule.get("remediation") or "No remediation guidance recorded.",
        snippet=snippet or "<not provided>",
    )


# ────────────────────────────────────────────
# ENTRY POINT
# ────────────────────────────────────────────


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    logger.info("Starting Criteria Engine MCP server...")
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
