"""Finding data models."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class Severity(str, Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    INFO = "INFO"

    @property
    def rank(self) -> int:
        """0 for CRITICAL up to 4 for INFO."""
        return SEVERITY_ORDER.index(self)


SEVERITY_ORDER: list[Severity] = [
    Severity.CRITICAL,
    Severity.HIGH,
    Severity.MEDIUM,
    Severity.LOW,
    Severity.INFO,
]


class Category(str, Enum):
    SECURITY = "security"
    GAS = "gas"
    QUALITY = "quality"


class Confidence(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class Finding(BaseModel):
    """One reported issue. Value object; identity is (category, normalized title)."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    id: str
    severity: Severity = Severity.INFO
    category: Category = Category.SECURITY
    title: str
    description: str = ""
    impact: str = ""
    recommendation: str = ""
    code_reference: Optional[str] = None
    reported_by: str = ""
    verified: bool = False
    confidence: Confidence = Confidence.MEDIUM
    contributors: list[str] = []


class SeverityCounts(BaseModel):
    critical: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0
    info: int = 0
    total: int = 0

    @classmethod
    def from_findings(cls, findings: list[Finding]) -> "SeverityCounts":
        counts = {s.value.lower(): 0 for s in Severity}
        for f in findings:
            counts[f.severity.value.lower()] += 1
        return cls(**counts, total=len(findings))
