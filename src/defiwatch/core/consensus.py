"""Local consensus over first-stage findings.

Findings are grouped by (category, normalized title). A group reported by at
least two distinct agents is confirmed; single-source groups are kept with
LOW confidence. Grouping depends only on content, never on arrival order.
"""

from __future__ import annotations

import re
from typing import Optional

from pydantic import BaseModel

from ..models.agent import ParsedResult, RiskLevel, Scores
from ..models.finding import Category, Confidence, Finding, Severity
from ..models.report import SupervisorVerdict
from .heuristics import synthesize_findings
from .scoring import (
    DEFAULT_POLICY,
    ScoringPolicy,
    deployment_recommendation,
    gas_score,
    quality_score,
)

LOCAL_SUPERVISOR = "local-consensus"
HEURISTIC_SUPERVISOR = "heuristic"

FindingKey = tuple[str, str]


def normalize_title(title: str) -> str:
    lowered = re.sub(r"[^a-z0-9\s]", "", title.lower())
    return re.sub(r"\s+", " ", lowered).strip()


def finding_key(finding: Finding) -> FindingKey:
    return (finding.category.value, normalize_title(finding.title))


class FindingGroup(BaseModel):
    key: FindingKey
    findings: list[Finding]

    @property
    def contributors(self) -> list[str]:
        return sorted({f.reported_by for f in self.findings})

    @property
    def confirmed(self) -> bool:
        return len(self.contributors) >= 2

    @property
    def representative(self) -> Finding:
        """Most severe member; ties broken by agent id, then title."""
        return min(self.findings, key=lambda f: (f.severity.rank, f.reported_by, f.title))


def group_findings(results: list[ParsedResult]) -> list[FindingGroup]:
    """Group findings from successful results, sorted by severity then key."""
    groups: dict[FindingKey, list[Finding]] = {}
    for result in results:
        if not result.succeeded:
            continue
        for finding in result.findings:
            groups.setdefault(finding_key(finding), []).append(finding)

    built = [FindingGroup(key=key, findings=members) for key, members in groups.items()]
    return sorted(built, key=lambda g: (not g.confirmed, g.representative.severity.rank, g.key))


def penalty_score(findings: list[Finding], policy: ScoringPolicy = DEFAULT_POLICY) -> int:
    return policy.penalty_score(findings)


def category_scores(findings: list[Finding], security: int) -> Scores:
    return Scores(
        security=security,
        gas=gas_score(sum(1 for f in findings if f.category == Category.GAS)),
        quality=quality_score(sum(1 for f in findings if f.category == Category.QUALITY)),
        overall=security,
    )


def _escalate_for_unconfirmed(risk: RiskLevel, unconfirmed: list[Finding]) -> RiskLevel:
    serious = any(f.severity in (Severity.CRITICAL, Severity.HIGH) for f in unconfirmed)
    if serious and risk in (RiskLevel.SAFE, RiskLevel.LOW):
        return RiskLevel.MEDIUM
    return risk


def local_consensus(
    results: list[ParsedResult],
    policy: ScoringPolicy = DEFAULT_POLICY,
    notes: Optional[list[str]] = None,
) -> SupervisorVerdict:
    """Deterministic verdict built from first-stage results alone."""
    verified: list[Finding] = []
    confirmed: list[Finding] = []
    unconfirmed: list[Finding] = []

    for group in group_findings(results):
        finding = group.representative.model_copy(update={
            "verified": group.confirmed,
            "confidence": Confidence.HIGH if group.confirmed else Confidence.LOW,
            "contributors": group.contributors,
        })
        verified.append(finding)
        (confirmed if group.confirmed else unconfirmed).append(finding)

    score = policy.penalty_score(confirmed)
    risk = _escalate_for_unconfirmed(policy.risk_level(confirmed, score), unconfirmed)

    return SupervisorVerdict(
        verified_findings=verified,
        false_positives=[],
        scores=category_scores(verified, score),
        risk_level=risk,
        deployment_recommendation=deployment_recommendation(risk),
        supervisor_name=LOCAL_SUPERVISOR,
        supervisor_verified=False,
        notes=list(notes or []) + [
            f"Local consensus: {len(confirmed)} confirmed, {len(unconfirmed)} single-source"
        ],
    )


def heuristic_verdict(
    source_text: str,
    policy: ScoringPolicy = DEFAULT_POLICY,
    notes: Optional[list[str]] = None,
) -> SupervisorVerdict:
    """Verdict from keyword analysis of the contract source itself."""
    analysis = synthesize_findings(source_text, reported_by=HEURISTIC_SUPERVISOR, policy=policy)
    findings = [
        f.model_copy(update={"contributors": [HEURISTIC_SUPERVISOR]}) for f in analysis.findings
    ]
    risk = policy.risk_level(findings, analysis.score)
    return SupervisorVerdict(
        verified_findings=findings,
        scores=category_scores(findings, analysis.score),
        risk_level=risk,
        deployment_recommendation=deployment_recommendation(risk),
        supervisor_name=HEURISTIC_SUPERVISOR,
        supervisor_verified=False,
        low_confidence=True,
        notes=list(notes or []) + [
            "No model produced a usable analysis; findings come from keyword analysis of the source"
        ],
    )
