"""Prompt templates for criteria-driven review workflows."""

DOMAIN_REVIEW_PROMPT = """You are the {domain} reviewer. Review the target against the loaded criteria.

**Target:** {target}
**Context:** {context}

**Summary (from the criteria engine):**
- Worst severity: {worst_severity}
- Risk score: {risk_score}/100
- Findings: {total_findings} ({diagnostics} engine diagnostics)

**Threshold breaches:**
{breaches}

**Findings:**
{findings}

Write the review with:
1. A verdict (block / fix before release / acceptable)
2. Critical and high findings first, each with its location and remediation
3. Threshold breaches and what would resolve them
4. Any engine diagnostics that limit confidence in the result
"""

FINDING_EXPLANATION_PROMPT = """Explain the following review finding and how to resolve it.

**Rule:** {rule_id}
**Category:** {category}
**Severity:** {severity}
**Location:** {location}

**Message:** {message}

**Remediation guidance:**
{remediation}

**Matched code:**
```
{snippet}
```

Give a concrete fix for this location. If the guidance does not fit the code, say why.
"""
