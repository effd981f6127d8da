"""Keyword-based finding synthesis.

Last stage of the normalizer and the verdict of last resort when no model
answered. Always returns a result and never raises.
"""

from __future__ import annotations

import re

from pydantic import BaseModel, ConfigDict

from ..models.finding import Category, Confidence, Finding, Severity
from .scoring import DEFAULT_POLICY, ScoringPolicy


class KeywordCluster(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    pattern: str
    severity: Severity
    penalty: int
    category: Category = Category.SECURITY
    title: str
    recommendation: str = ""


KEYWORD_CLUSTERS: list[KeywordCluster] = [
    KeywordCluster(
        name="reentrancy",
        pattern=r"re-?entran(?:cy|t)",
        severity=Severity.CRITICAL,
        penalty=25,
        title="Potential reentrancy vulnerability",
        recommendation="Apply checks-effects-interactions and a reentrancy guard.",
    ),
    KeywordCluster(
        name="delegatecall",
        pattern=r"delegatecall",
        severity=Severity.HIGH,
        penalty=15,
        title="Unsafe delegatecall usage",
        recommendation="Only delegatecall into trusted, immutable targets.",
    ),
    KeywordCluster(
        name="tx.origin",
        pattern=r"tx\.origin",
        severity=Severity.HIGH,
        penalty=15,
        title="tx.origin used for authorization",
        recommendation="Use msg.sender for authorization checks.",
    ),
    KeywordCluster(
        name="access control",
        pattern=r"access[ -]control|unauthori[sz]ed|missing (?:onlyowner|modifier)",
        severity=Severity.HIGH,
        penalty=15,
        title="Access control weakness",
        recommendation="Restrict privileged functions with explicit role checks.",
    ),
    KeywordCluster(
        name="overflow",
        pattern=r"(?:integer )?(?:over|under)flow",
        severity=Severity.HIGH,
        penalty=15,
        title="Integer overflow or underflow",
        recommendation="Use Solidity 0.8 checked arithmetic or SafeMath.",
    ),
    KeywordCluster(
        name="selfdestruct",
        pattern=r"self-?destruct|\bsuicide\s*\(",
        severity=Severity.MEDIUM,
        penalty=10,
        title="Self-destruct risk",
        recommendation="Remove selfdestruct or guard it behind strict access control.",
    ),
    KeywordCluster(
        name="front-running",
        pattern=r"front-?run|sandwich attack|\bmev\b",
        severity=Severity.MEDIUM,
        penalty=10,
        title="Front-running exposure",
        recommendation="Use commit-reveal or slippage limits.",
    ),
    KeywordCluster(
        name="oracle manipulation",
        pattern=r"(?:oracle|price) manipulation|flash[ -]?loan",
        severity=Severity.MEDIUM,
        penalty=10,
        title="Price oracle manipulation",
        recommendation="Use a time-weighted or decentralized price feed.",
    ),
    KeywordCluster(
        name="unchecked call",
        pattern=r"unchecked (?:external |low-level )?call|unchecked return|return value (?:is )?not checked",
        severity=Severity.MEDIUM,
        penalty=10,
        title="Unchecked external call return value",
        recommendation="Check the return value of every low-level call.",
    ),
    KeywordCluster(
        name="timestamp",
        pattern=r"block\.timestamp|timestamp (?:dependence|manipulation)",
        severity=Severity.LOW,
        penalty=5,
        title="Timestamp dependence",
        recommendation="Avoid block.timestamp for short windows or randomness.",
    ),
    KeywordCluster(
        name="gas",
        pattern=r"\bgas\b",
        severity=Severity.LOW,
        penalty=5,
        category=Category.GAS,
        title="Gas optimization opportunities",
        recommendation="Review storage access and loops for gas savings.",
    ),
    KeywordCluster(
        name="documentation",
        pattern=r"documentation|natspec|naming convention",
        severity=Severity.INFO,
        penalty=0,
        category=Category.QUALITY,
        title="Documentation and naming",
        recommendation="Add NatSpec comments and follow Solidity naming conventions.",
    ),
]

_ANALYSIS_WORDS = re.compile(
    r"\b(?:contract|function|vulnerab\w*|security|audit\w*|solidity|finding\w*|risk)\b",
    re.IGNORECASE,
)


class HeuristicAnalysis(BaseModel):
    findings: list[Finding]
    score: int
    matched_keywords: list[str] = []
    looks_like_analysis: bool = False


def looks_like_analysis(text: str) -> bool:
    return len(text.strip()) >= 40 and len(_ANALYSIS_WORDS.findall(text)) >= 2


def synthesize_findings(
    text: str,
    reported_by: str = "heuristic",
    policy: ScoringPolicy = DEFAULT_POLICY,
) -> HeuristicAnalysis:
    """One LOW-confidence finding per matched keyword cluster."""
    text = text or ""
    findings: list[Finding] = []
    matched: list[str] = []
    score = policy.heuristic_baseline

    for cluster in KEYWORD_CLUSTERS:
        m = re.search(cluster.pattern, text, re.IGNORECASE)
        if not m:
            continue
        matched.append(cluster.name)
        score -= cluster.penalty
        findings.append(Finding(
            id=f"{reported_by}-H{len(findings) + 1:02d}",
            severity=cluster.severity,
            category=cluster.category,
            title=cluster.title,
            description=f"Keyword analysis matched '{m.group(0)}'.",
            recommendation=cluster.recommendation,
            reported_by=reported_by,
            confidence=Confidence.LOW,
        ))

    analysis = looks_like_analysis(text)
    if not findings:
        if analysis:
            title = "Unstructured analysis"
            description = "The reply contained analysis text but no recognizable issues."
        else:
            title = "Unparseable response"
            description = "The reply could not be parsed and contained no analysis."
            score = policy.heuristic_unparseable_score
        findings.append(Finding(
            id=f"{reported_by}-H01",
            severity=Severity.INFO,
            category=Category.QUALITY,
            title=title,
            description=description,
            reported_by=reported_by,
            confidence=Confidence.LOW,
        ))

    return HeuristicAnalysis(
        findings=findings,
        score=max(policy.floor, score),
        matched_keywords=matched,
        looks_like_analysis=analysis,
    )
