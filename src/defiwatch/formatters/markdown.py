"""Markdown rendering of a consolidated report."""

from __future__ import annotations

from pathlib import Path

from ..models.finding import Category
from ..models.report import ConsolidatedReport

RISK_BADGE = {
    "Safe": "PASS",
    "Low Risk": "PASS",
    "Medium Risk": "REVIEW",
    "High Risk": "FAIL",
    "Critical Risk": "FAIL",
}

CATEGORY_TITLES = {
    Category.SECURITY: "Security",
    Category.GAS: "Gas Optimization",
    Category.QUALITY: "Code Quality",
}


def render_markdown_report(report: ConsolidatedReport, dry_run: bool = False) -> str:
    """Render the human-readable audit report."""
    meta = report.metadata
    stats = report.statistics
    risk = report.risk_level.value

    lines: list[str] = []
    lines.append(f"# Security Audit: {meta.contract_name}")
    lines.append("")
    lines.append(f"**Date:** {meta.finished_at.strftime('%Y-%m-%d %H:%M:%S')} UTC")
    lines.append(f"**Risk:** {RISK_BADGE.get(risk, '?')} ({risk})")
    lines.append(f"**Tier:** {meta.tier}")
    supervisor = meta.supervisor_name
    if not meta.supervisor_verified:
        supervisor += " (fallback)"
    lines.append(f"**Supervisor:** {supervisor}")
    if meta.low_confidence:
        lines.append("**Confidence:** LOW (no agent produced a usable reply)")
    if dry_run:
        lines.append("**Mode:** DRY RUN (canned agent replies)")
    duration = (meta.finished_at - meta.started_at).total_seconds()
    lines.append(f"**Duration:** {round(duration, 1)}s")
    lines.append("")

    lines.append("## Executive Summary")
    lines.append("")
    lines.append(report.executive_summary)
    lines.append("")

    lines.append("## Scores")
    lines.append("")
    lines.append("| Security | Gas | Quality | Overall |")
    lines.append("|----------|-----|---------|---------|")
    s = report.scores
    lines.append(f"| {s.security} | {s.gas} | {s.quality} | **{s.overall}** |")
    lines.append("")

    t = stats.totals
    lines.append("## Summary")
    lines.append("")
    lines.append("| Severity | Count |")
    lines.append("|----------|-------|")
    lines.append(f"| CRITICAL | {t.critical} |")
    lines.append(f"| HIGH     | {t.high} |")
    lines.append(f"| MEDIUM   | {t.medium} |")
    lines.append(f"| LOW      | {t.low} |")
    lines.append(f"| INFO     | {t.info} |")
    lines.append(f"| **Total** | **{t.total}** |")
    lines.append("")

    lines.append("## Agent Results")
    lines.append("")
    lines.append("| Agent | Specialty | Status | Parse | Confidence | Findings | Duration |")
    lines.append("|-------|-----------|--------|-------|------------|----------|----------|")
    for a in meta.agents:
        status = "OK" if a.succeeded else "FAILED"
        parse = a.parse_strategy.value if a.succeeded else "-"
        lines.append(
            f"| {a.display_name} | {a.specialty} | {status} | {parse} | "
            f"{a.confidence.value} | {a.finding_count} | {round(a.elapsed_seconds, 1)}s |"
        )
    lines.append("")

    for category in Category:
        findings = report.findings.get(category, [])
        if not findings:
            continue
        lines.append(f"## {CATEGORY_TITLES[category]} Findings")
        lines.append("")
        for f in findings:
            marker = "verified" if f.verified else "single source"
            lines.append(f"### {f.id}: {f.title} [{f.severity.value}]")
            lines.append(f"**Confidence:** {f.confidence.value} ({marker})")
            if f.contributors:
                lines.append(f"**Reported by:** {', '.join(f.contributors)}")
            if f.code_reference:
                lines.append(f"**Location:** `{f.code_reference}`")
            if f.description:
                lines.append(f"\n{f.description}")
            if f.impact:
                lines.append(f"\n**Impact:** {f.impact}")
            if f.recommendation:
                lines.append(f"\n**Recommendation:** {f.recommendation}")
            lines.append("")

    if report.false_positives:
        lines.append("## False Positives")
        lines.append("")
        for f in report.false_positives:
            reason = f" - {f.description}" if f.description else ""
            lines.append(f"- {f.title}{reason}")
        lines.append("")

    lines.append("## Deployment Recommendation")
    lines.append("")
    lines.append(report.deployment_recommendation)
    lines.append("")
    lines.append("---")
    lines.append(f"*Generated by DeFi Watch v{meta.version}*")

    return "\n".join(lines)


def export_markdown_report(
    report: ConsolidatedReport, output_path: Path, dry_run: bool = False
) -> Path:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(render_markdown_report(report, dry_run=dry_run), encoding="utf-8")
    return output_path
