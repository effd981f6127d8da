"""Supervisor verdict and consolidated report models."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from .agent import ParsedResult, ParseStrategy, RiskLevel, Scores
from .finding import Category, Confidence, Finding, SeverityCounts


class AuditState(str, Enum):
    PENDING = "PENDING"
    DISPATCHED = "DISPATCHED"
    NORMALIZING = "NORMALIZING"
    VERIFYING = "VERIFYING"
    VERIFYING_FALLBACK = "VERIFYING_FALLBACK"
    CONSOLIDATED = "CONSOLIDATED"


class SupervisorVerdict(BaseModel):
    """Reconciled findings for one audit.

    ``verified_findings`` keeps single-source findings as well; those carry
    ``verified=False`` and LOW confidence.
    """

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    verified_findings: list[Finding] = []
    false_positives: list[Finding] = []
    scores: Scores = Scores()
    risk_level: RiskLevel = RiskLevel.MEDIUM
    deployment_recommendation: str = ""
    supervisor_name: str = "local-consensus"
    supervisor_verified: bool = False
    parse_strategy: Optional[ParseStrategy] = None
    low_confidence: bool = False
    notes: list[str] = []


class AgentRunInfo(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    agent_id: str
    display_name: str
    specialty: str
    succeeded: bool
    parse_strategy: ParseStrategy
    confidence: Confidence
    finding_count: int = 0
    elapsed_seconds: float = 0
    error: Optional[str] = None


class ReportMetadata(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    contract_name: str
    tier: str
    prompt_variant: str = "normal"
    started_at: datetime
    finished_at: datetime
    agents: list[AgentRunInfo] = []
    supervisor_name: str = ""
    supervisor_verified: bool = False
    supervisor_parse_strategy: Optional[ParseStrategy] = None
    low_confidence: bool = False
    source_note: str = ""
    states: list[AuditState] = []
    version: str = ""

    @property
    def agents_used(self) -> list[str]:
        return [a.agent_id for a in self.agents if a.succeeded]


class ReportStatistics(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    totals: SeverityCounts = SeverityCounts()
    by_category: dict[Category, SeverityCounts] = {}
    confirmed: int = 0
    single_source: int = 0
    false_positives: int = 0
    agents_succeeded: int = 0
    agents_failed: int = 0


class ConsolidatedReport(BaseModel):
    """Terminal artifact of one audit. Immutable once produced."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    metadata: ReportMetadata
    executive_summary: str
    scores: Scores
    risk_level: RiskLevel
    deployment_recommendation: str = ""
    findings: dict[Category, list[Finding]] = {}
    statistics: ReportStatistics = ReportStatistics()
    false_positives: list[Finding] = []
    agent_results: list[ParsedResult] = []

    def all_findings(self) -> list[Finding]:
        return [f for cat in Category for f in self.findings.get(cat, [])]

    def agent_result(self, agent_id: str) -> Optional[ParsedResult]:
        """Per-agent parsed result, for diagnostics and UI display."""
        for result in self.agent_results:
            if result.agent_id == agent_id:
                return result
        return None

    def to_json_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)
