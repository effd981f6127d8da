"""Report consolidation. Pure: same inputs, same report."""

from __future__ import annotations

from typing import Optional

from ..models.agent import AgentSpec, ParsedResult
from ..models.finding import Category, Finding, SeverityCounts
from ..models.report import (
    AgentRunInfo,
    ConsolidatedReport,
    ReportMetadata,
    ReportStatistics,
    SupervisorVerdict,
)


def bucket_findings(findings: list[Finding]) -> dict[Category, list[Finding]]:
    buckets: dict[Category, list[Finding]] = {category: [] for category in Category}
    for f in findings:
        buckets[f.category].append(f)
    for category in buckets:
        buckets[category].sort(key=lambda f: (f.severity.rank, not f.verified, f.title.lower()))
    return buckets


def agent_run_info(result: ParsedResult, spec: Optional[AgentSpec]) -> AgentRunInfo:
    return AgentRunInfo(
        agent_id=result.agent_id,
        display_name=spec.display_name if spec else result.agent_id,
        specialty=spec.specialty if spec else "",
        succeeded=result.succeeded,
        parse_strategy=result.parse_strategy,
        confidence=result.confidence,
        finding_count=len(result.findings),
        elapsed_seconds=result.elapsed_seconds,
        error=result.error,
    )


def build_statistics(
    findings: list[Finding],
    verdict: SupervisorVerdict,
    parsed_results: list[ParsedResult],
) -> ReportStatistics:
    by_category = {
        category: SeverityCounts.from_findings([f for f in findings if f.category == category])
        for category in Category
    }
    confirmed = sum(1 for f in findings if f.verified)
    succeeded = sum(1 for r in parsed_results if r.succeeded)
    return ReportStatistics(
        totals=SeverityCounts.from_findings(findings),
        by_category=by_category,
        confirmed=confirmed,
        single_source=len(findings) - confirmed,
        false_positives=len(verdict.false_positives),
        agents_succeeded=succeeded,
        agents_failed=len(parsed_results) - succeeded,
    )


def executive_summary(
    metadata: ReportMetadata,
    verdict: SupervisorVerdict,
    stats: ReportStatistics,
) -> str:
    t = stats.totals
    agents_total = stats.agents_succeeded + stats.agents_failed
    parts = [
        f"{metadata.contract_name} was analyzed by {stats.agents_succeeded} of "
        f"{agents_total} agent(s) on the {metadata.tier} tier.",
        f"Risk level: {verdict.risk_level.value}. Overall score: {verdict.scores.overall}/100.",
    ]
    if t.total:
        parts.append(
            f"{t.total} finding(s): {t.critical} critical, {t.high} high, "
            f"{t.medium} medium, {t.low} low, {t.info} informational; "
            f"{stats.confirmed} verified."
        )
    else:
        parts.append("No findings were reported.")
    if stats.false_positives:
        parts.append(f"{stats.false_positives} reported issue(s) were rejected as false positives.")
    if verdict.supervisor_verified:
        parts.append(f"Findings were verified by {verdict.supervisor_name}.")
    elif verdict.supervisor_name == "heuristic":
        parts.append("The supervisor was unavailable; findings come from keyword analysis.")
    else:
        parts.append("The supervisor was unavailable; findings come from local consensus.")
    if verdict.low_confidence:
        parts.append("Low confidence: no analysis agent produced a usable reply.")
    parts.append(verdict.deployment_recommendation)
    return " ".join(p for p in parts if p)


def consolidate(
    parsed_results: list[ParsedResult],
    verdict: SupervisorVerdict,
    metadata: ReportMetadata,
    agents: Optional[list[AgentSpec]] = None,
) -> ConsolidatedReport:
    """Assemble the final report from per-agent results and the verdict."""
    specs = {a.id: a for a in (agents or [])}
    findings = list(verdict.verified_findings)
    stats = build_statistics(findings, verdict, parsed_results)

    metadata = metadata.model_copy(update={
        "agents": [agent_run_info(r, specs.get(r.agent_id)) for r in parsed_results],
        "supervisor_name": verdict.supervisor_name,
        "supervisor_verified": verdict.supervisor_verified,
        "supervisor_parse_strategy": verdict.parse_strategy,
        "low_confidence": verdict.low_confidence or stats.agents_succeeded == 0,
    })
    verdict_for_summary = verdict.model_copy(update={"low_confidence": metadata.low_confidence})

    return ConsolidatedReport(
        metadata=metadata,
        executive_summary=executive_summary(metadata, verdict_for_summary, stats),
        scores=verdict.scores,
        risk_level=verdict.risk_level,
        deployment_recommendation=verdict.deployment_recommendation,
        findings=bucket_findings(findings),
        statistics=stats,
        false_positives=list(verdict.false_positives),
        agent_results=list(parsed_results),
    )
