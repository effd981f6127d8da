"""Deterministic scoring policy shared by heuristics and consensus."""

from __future__ import annotations

from typing import Iterable, Optional

from pydantic import BaseModel, ValidationError

from ..errors import ConfigError
from ..models.agent import RiskLevel
from ..models.finding import Finding, Severity

DEPLOYMENT_RECOMMENDATIONS: dict[RiskLevel, str] = {
    RiskLevel.CRITICAL: "Do not deploy. Critical vulnerabilities must be fixed and re-audited.",
    RiskLevel.HIGH: "Do not deploy until the high severity issues are fixed.",
    RiskLevel.MEDIUM: "Fix the reported issues before deploying to mainnet.",
    RiskLevel.LOW: "Safe to deploy after reviewing the minor issues.",
    RiskLevel.SAFE: "No blocking issues found. Deployment is reasonable.",
}


class ScoringPolicy(BaseModel):
    """Penalty constants. Configurable through the ``scoring`` config section."""

    baseline: int = 100
    floor: int = 10
    default_score: int = 75
    penalties: dict[Severity, int] = {
        Severity.CRITICAL: 30,
        Severity.HIGH: 20,
        Severity.MEDIUM: 10,
    }
    heuristic_baseline: int = 85
    heuristic_unparseable_score: int = 50

    @classmethod
    def from_config(cls, config: Optional[dict]) -> "ScoringPolicy":
        scoring = dict((config or {}).get("scoring") or {})
        penalties = scoring.pop("penalties", None) or {}
        if not isinstance(penalties, dict):
            raise ConfigError("scoring.penalties must be a mapping of severity to points")

        parsed: dict[Severity, int] = {}
        for k, v in penalties.items():
            try:
                severity = Severity(str(k).upper())
            except ValueError as e:
                raise ConfigError(f"Unknown severity in scoring.penalties: {k}") from e
            try:
                parsed[severity] = int(v)
            except (TypeError, ValueError) as e:
                raise ConfigError(f"scoring.penalties.{k} must be an integer, got {v!r}") from e

        fields = {k: v for k, v in scoring.items() if k in cls.model_fields}
        if parsed:
            fields["penalties"] = parsed
        try:
            return cls(**fields)
        except ValidationError as e:
            raise ConfigError(f"Invalid scoring config: {e.errors()[0]['msg']}") from e

    def penalty_score(self, findings: Iterable[Finding]) -> int:
        """Baseline minus a fixed penalty per finding severity, floored."""
        score = self.baseline
        for f in findings:
            score -= self.penalties.get(f.severity, 0)
        return max(self.floor, min(100, score))

    def risk_level(self, findings: list[Finding], score: int) -> RiskLevel:
        criticals = sum(1 for f in findings if f.severity == Severity.CRITICAL)
        highs = sum(1 for f in findings if f.severity == Severity.HIGH)
        if criticals:
            return RiskLevel.CRITICAL
        if highs > 1:
            return RiskLevel.HIGH
        if highs == 1 or score < 70:
            return RiskLevel.MEDIUM
        if score >= 85:
            return RiskLevel.SAFE
        return RiskLevel.LOW


def gas_score(gas_findings: int) -> int:
    return max(60, 95 - 5 * gas_findings) if gas_findings else 85


def quality_score(quality_findings: int) -> int:
    return max(60, 95 - 3 * quality_findings) if quality_findings else 90


def deployment_recommendation(risk: RiskLevel) -> str:
    return DEPLOYMENT_RECOMMENDATIONS[risk]


DEFAULT_POLICY = ScoringPolicy()


def get_exit_code(risk: RiskLevel) -> int:
    """Map risk level to CI exit code."""
    return {
        RiskLevel.SAFE: 0,
        RiskLevel.LOW: 0,
        RiskLevel.MEDIUM: 2,
        RiskLevel.HIGH: 1,
        RiskLevel.CRITICAL: 1,
    }.get(risk, 0)
