"""Response normalizer: raw agent text to a ParsedResult.

Four stages in decreasing confidence, first structurally valid result wins:

1. direct     the whole reply is JSON
2. extracted  a fenced block or the widest balanced ``{...}`` span is JSON
3. repaired   the extracted text becomes JSON after the ``REPAIRS`` chain
4. heuristic  keyword clusters (always succeeds)

``normalize`` never raises.
"""

from __future__ import annotations

import json
import math
import re
from typing import Any, Optional

from pydantic import BaseModel

from ..models.agent import ParsedResult, ParseStrategy, RawAgentResponse, RiskLevel, Scores
from ..models.finding import Category, Confidence, Finding, Severity
from ..utils.sanitize import truncate
from .heuristics import synthesize_findings
from .repairs import REPAIRS
from .scoring import DEFAULT_POLICY, ScoringPolicy, gas_score, quality_score

STRUCTURAL_KEYS = (
    "findings",
    "keyFindings",
    "verifiedFindings",
    "vulnerabilities",
    "gasOptimizations",
    "codeQualityIssues",
    "qualityIssues",
    "securityScore",
    "overallScore",
    "consolidatedScore",
    "scores",
)

# (source key, default category). A finding's own "category" field wins.
FINDING_SOURCES: list[tuple[str, Category]] = [
    ("findings", Category.SECURITY),
    ("keyFindings", Category.SECURITY),
    ("verifiedFindings", Category.SECURITY),
    ("vulnerabilities", Category.SECURITY),
    ("gasOptimizations", Category.GAS),
    ("codeQualityIssues", Category.QUALITY),
    ("qualityIssues", Category.QUALITY),
]

SEVERITY_ALIASES: dict[str, Severity] = {
    "BLOCKER": Severity.CRITICAL,
    "CRIT": Severity.CRITICAL,
    "MED": Severity.MEDIUM,
    "MODERATE": Severity.MEDIUM,
    "INFORMATIONAL": Severity.INFO,
    "NOTE": Severity.INFO,
    "WARNING": Severity.LOW,
}

_FENCE = re.compile(r"```[a-zA-Z0-9_-]*\s*\n?(.*?)```", re.DOTALL)


class StructuredParse(BaseModel):
    data: dict
    strategy: ParseStrategy
    repairs: list[str] = []


def is_structurally_valid(data: Any) -> bool:
    return isinstance(data, dict) and any(key in data for key in STRUCTURAL_KEYS)


def _try_load(text: str) -> Optional[dict]:
    try:
        data = json.loads(text)
    except (ValueError, RecursionError):
        return None
    return data if is_structurally_valid(data) else None


def fenced_block(text: str) -> Optional[str]:
    """Body of the first fenced block that starts with ``{``."""
    for m in _FENCE.finditer(text):
        body = m.group(1).strip()
        if body.startswith("{"):
            return body
    return None


def widest_balanced_span(text: str) -> Optional[str]:
    """Longest top-level ``{...}`` span, ignoring braces inside strings."""
    best: Optional[tuple[int, int]] = None
    depth = 0
    start = -1
    in_string = False
    escaped = False
    for i, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"' and depth > 0:
            in_string = True
        elif ch == "{":
            if depth == 0:
                start = i
            depth += 1
        elif ch == "}" and depth > 0:
            depth -= 1
            if depth == 0 and (best is None or i + 1 - start > best[1] - best[0]):
                best = (start, i + 1)
    return text[best[0]:best[1]] if best else None


def parse_structured(text: str) -> Optional[StructuredParse]:
    """Run stages 1-3. Returns None when only heuristics can help."""
    if not text or not text.strip():
        return None

    data = _try_load(text.strip())
    if data is not None:
        return StructuredParse(data=data, strategy=ParseStrategy.DIRECT)

    fenced = fenced_block(text)
    span = widest_balanced_span(text)
    for candidate in (fenced, span):
        if candidate is None:
            continue
        data = _try_load(candidate)
        if data is not None:
            return StructuredParse(data=data, strategy=ParseStrategy.EXTRACTED)

    if fenced is not None:
        working = fenced
    elif span is not None:
        working = span
    elif "{" in text:
        working = text[text.index("{"):]
    else:
        return None

    applied: list[str] = []
    for repair in REPAIRS:
        repaired = repair(working)
        if repaired == working:
            continue
        working = repaired
        applied.append(repair.__name__)
        data = _try_load(working)
        if data is not None:
            return StructuredParse(data=data, strategy=ParseStrategy.REPAIRED, repairs=applied)
    return None


def coerce_severity(value: Any, notes: list[str], label: str) -> Severity:
    if value is None or (isinstance(value, str) and not value.strip()):
        return Severity.INFO
    key = str(value).strip().upper()
    if key in Severity.__members__:
        return Severity[key]
    if key in SEVERITY_ALIASES:
        return SEVERITY_ALIASES[key]
    notes.append(f"{label}: unknown severity '{value}' mapped to INFO")
    return Severity.INFO


def coerce_category(value: Any, default: Category) -> Category:
    if not isinstance(value, str):
        return default
    lowered = value.lower()
    for category in Category:
        if category.value in lowered:
            return category
    return default


def coerce_score(value: Any) -> Optional[int]:
    """75, 75.4, "75" and "75/100" all read as 75. Anything else is None.

    NaN and infinities (JSON allows ``Infinity`` and ``1e999``) are None.
    """
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, str):
        m = re.match(r"\s*(\d+(?:\.\d+)?)", value)
        if not m:
            return None
        value = float(m.group(1))
    if not isinstance(value, (int, float)):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return round(max(0, min(100, value)))


def coerce_risk_level(value: Any) -> Optional[RiskLevel]:
    if not isinstance(value, str):
        return None
    lowered = value.lower()
    if "critical" in lowered:
        return RiskLevel.CRITICAL
    if "high" in lowered:
        return RiskLevel.HIGH
    if "medium" in lowered or "moderate" in lowered:
        return RiskLevel.MEDIUM
    if "low" in lowered:
        return RiskLevel.LOW
    if "safe" in lowered or "minimal" in lowered or lowered.strip() == "none":
        return RiskLevel.SAFE
    return None


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, dict):
        return "; ".join(f"{k}: {v}" for k, v in value.items())
    if isinstance(value, list):
        return "; ".join(str(v) for v in value)
    return str(value).strip()


def _first(data: dict, *keys: str) -> Any:
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return None


def coerce_finding(
    item: Any,
    index: int,
    agent_id: str,
    default_category: Category,
    confidence: Confidence,
    notes: list[str],
) -> Optional[Finding]:
    """Force one loosely shaped item into the Finding schema."""
    if isinstance(item, str):
        item = {"title": item}
    if not isinstance(item, dict):
        notes.append(f"Finding {index + 1}: skipped non-object entry")
        return None

    title = _text(_first(item, "title", "name", "issue", "type"))
    if not title:
        title = f"Finding {index + 1}"
    code_ref = _text(_first(item, "codeReference", "location", "code", "line", "function"))

    return Finding(
        id=_text(item.get("id")) or f"{agent_id}-{index + 1:03d}",
        severity=coerce_severity(item.get("severity"), notes, title),
        category=coerce_category(item.get("category"), default_category),
        title=title,
        description=_text(_first(item, "description", "details", "reason")),
        impact=_text(item.get("impact")),
        recommendation=_text(_first(item, "recommendation", "remediation", "fix", "mitigation")),
        code_reference=code_ref or None,
        reported_by=agent_id,
        confidence=confidence,
    )


def structural_confidence(data: dict, strategy: ParseStrategy) -> Confidence:
    present = sum([
        any(isinstance(data.get(key), list) for key, _ in FINDING_SOURCES),
        _first(data, "securityScore", "overallScore", "consolidatedScore", "scores") is not None,
        _first(data, "riskLevel", "finalRiskLevel", "risk") is not None,
    ])
    confidence = {3: Confidence.HIGH, 2: Confidence.MEDIUM}.get(present, Confidence.LOW)
    if strategy == ParseStrategy.REPAIRED and confidence == Confidence.HIGH:
        return Confidence.MEDIUM
    return confidence


def build_parsed_result(
    agent_id: str,
    parsed: StructuredParse,
    policy: ScoringPolicy = DEFAULT_POLICY,
    elapsed_seconds: float = 0,
) -> ParsedResult:
    data = parsed.data
    notes: list[str] = []
    if parsed.repairs:
        notes.append(f"Repaired with: {', '.join(parsed.repairs)}")
    confidence = structural_confidence(data, parsed.strategy)

    findings: list[Finding] = []
    for key, default_category in FINDING_SOURCES:
        items = data.get(key)
        if items is None:
            continue
        if not isinstance(items, list):
            items = [items]
        for item in items:
            finding = coerce_finding(item, len(findings), agent_id, default_category, confidence, notes)
            if finding is not None:
                findings.append(finding)

    false_positives: list[Finding] = []
    for i, item in enumerate(data.get("falsePositives") or []):
        fp = coerce_finding(item, i, f"{agent_id}-fp", Category.SECURITY, confidence, notes)
        if fp is not None:
            false_positives.append(fp.model_copy(update={"reported_by": agent_id}))

    nested = data.get("scores") if isinstance(data.get("scores"), dict) else {}
    security = coerce_score(_first(data, "securityScore", "consolidatedScore", "score"))
    if security is None:
        security = coerce_score(nested.get("security"))
    overall = coerce_score(_first(data, "overallScore", "consolidatedScore"))
    if overall is None:
        overall = coerce_score(nested.get("overall"))
    gas = coerce_score(data.get("gasScore"))
    if gas is None:
        gas = coerce_score(nested.get("gas"))
    quality = coerce_score(data.get("qualityScore"))
    if quality is None:
        quality = coerce_score(nested.get("quality"))

    reported = any(s is not None for s in (security, overall, gas, quality))
    if security is None:
        security = overall if overall is not None else policy.default_score
    if overall is None:
        overall = security
    if gas is None:
        gas = gas_score(sum(1 for f in findings if f.category == Category.GAS))
    if quality is None:
        quality = quality_score(sum(1 for f in findings if f.category == Category.QUALITY))

    raw_risk = _first(data, "riskLevel", "finalRiskLevel", "risk")
    risk = coerce_risk_level(raw_risk)
    if raw_risk is not None and risk is None:
        notes.append(f"Unrecognized risk level '{raw_risk}' ignored")

    recommendation = data.get("deploymentRecommendation")
    return ParsedResult(
        agent_id=agent_id,
        findings=findings,
        false_positives=false_positives,
        scores=Scores(security=security, gas=gas, quality=quality, overall=overall),
        scores_reported=reported,
        parse_strategy=parsed.strategy,
        confidence=confidence,
        risk_level=risk,
        summary=_text(_first(data, "summary", "overview", "executiveSummary")),
        deployment_recommendation=_text(recommendation) if recommendation else None,
        analysis_notes=notes,
        elapsed_seconds=elapsed_seconds,
    )


def heuristic_result(
    agent_id: str,
    text: str,
    policy: ScoringPolicy = DEFAULT_POLICY,
    elapsed_seconds: float = 0,
    notes: Optional[list[str]] = None,
) -> ParsedResult:
    analysis = synthesize_findings(text, reported_by=agent_id, policy=policy)
    findings = analysis.findings
    n_gas = sum(1 for f in findings if f.category == Category.GAS)
    n_quality = sum(1 for f in findings if f.category == Category.QUALITY)
    return ParsedResult(
        agent_id=agent_id,
        findings=findings,
        scores=Scores(
            security=analysis.score,
            gas=gas_score(n_gas),
            quality=quality_score(n_quality),
            overall=analysis.score,
        ),
        scores_reported=False,
        parse_strategy=ParseStrategy.HEURISTIC,
        confidence=Confidence.LOW,
        risk_level=policy.risk_level(findings, analysis.score),
        summary=truncate(text.strip(), 300),
        matched_keywords=analysis.matched_keywords,
        analysis_notes=(notes or []) + [
            f"No structured data found; synthesized {len(findings)} finding(s) from keywords"
        ],
        elapsed_seconds=elapsed_seconds,
    )


def failed_result(raw: RawAgentResponse) -> ParsedResult:
    """Degraded result for an agent whose call failed."""
    return ParsedResult(
        agent_id=raw.agent_id,
        succeeded=False,
        parse_strategy=ParseStrategy.HEURISTIC,
        confidence=Confidence.LOW,
        error=raw.error or "empty reply",
        analysis_notes=[f"Call failed ({raw.error_kind or 'empty'})"],
        elapsed_seconds=raw.elapsed_seconds,
    )


def normalize(raw: RawAgentResponse, policy: ScoringPolicy = DEFAULT_POLICY) -> ParsedResult:
    """Turn one raw reply into a ParsedResult. Never raises."""
    if not raw.ok:
        return failed_result(raw)

    text = raw.text or ""
    notes: list[str] = []
    parsed = parse_structured(text)
    if parsed is not None:
        try:
            return build_parsed_result(raw.agent_id, parsed, policy, raw.elapsed_seconds)
        except (ValueError, TypeError, KeyError, AttributeError, OverflowError) as e:
            notes.append(f"Structured data could not be coerced: {truncate(str(e), 120)}")
    return heuristic_result(raw.agent_id, text, policy, raw.elapsed_seconds, notes)
