"""Agent, request and per-agent result models."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .finding import Confidence, Finding


class AgentSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    display_name: str
    specialty: str
    tier: str
    # Provider-side model identifier; defaults to the agent id.
    model: str = ""

    @property
    def model_id(self) -> str:
        return self.model or self.id


class AnalysisRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    contract_name: str
    source_text: str
    tier: str = "free"
    prompt_variant: str = "normal"


class RawAgentResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    agent_id: str
    text: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    elapsed_seconds: float = 0

    @property
    def ok(self) -> bool:
        return self.error is None and bool(self.text and self.text.strip())


class ParseStrategy(str, Enum):
    DIRECT = "direct"
    EXTRACTED = "extracted"
    REPAIRED = "repaired"
    HEURISTIC = "heuristic"


class RiskLevel(str, Enum):
    SAFE = "Safe"
    LOW = "Low Risk"
    MEDIUM = "Medium Risk"
    HIGH = "High Risk"
    CRITICAL = "Critical Risk"


def _clamp(value: int) -> int:
    return max(0, min(100, int(value)))


class Scores(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    security: int = 75
    gas: int = 80
    quality: int = 85
    overall: int = 75

    @field_validator("security", "gas", "quality", "overall", mode="before")
    @classmethod
    def _bounded(cls, v):
        if v is None:
            raise ValueError("score must be numeric")
        return _clamp(round(float(v)))


class ParsedResult(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    agent_id: str
    succeeded: bool = True
    findings: list[Finding] = []
    false_positives: list[Finding] = []
    scores: Scores = Scores()
    scores_reported: bool = False
    parse_strategy: ParseStrategy = ParseStrategy.HEURISTIC
    confidence: Confidence = Confidence.LOW
    risk_level: Optional[RiskLevel] = None
    summary: str = ""
    deployment_recommendation: Optional[str] = None
    matched_keywords: list[str] = []
    analysis_notes: list[str] = Field(default_factory=list)
    error: Optional[str] = None
    elapsed_seconds: float = 0
