"""BidIntake Pydantic models and enumerations.

Enumerations here are the fixed vocabularies that AI responses are
validated against; anything outside them is dropped or defaulted.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator


class DocumentType(str, Enum):
    """Declared type of an uploaded bid document."""

    BIDX = "BIDX"  # schedule-export XML
    BID_SPREADSHEET = "BID_SPREADSHEET"
    PROPOSAL = "PROPOSAL"
    PLANS = "PLANS"
    EXISTING_PLANS = "EXISTING_PLANS"
    SPECIAL_PROVISIONS = "SPECIAL_PROVISIONS"
    ENVIRONMENTAL = "ENVIRONMENTAL"
    ASBESTOS = "ASBESTOS"
    HAZMAT = "HAZMAT"
    GEOTECHNICAL = "GEOTECHNICAL"
    TRAFFIC_STUDY = "TRAFFIC_STUDY"
    ADDENDUM = "ADDENDUM"
    OTHER = "OTHER"


class ProcessingStatus(str, Enum):
    """Document processing lifecycle."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class ProjectStatus(str, Enum):
    DRAFT = "DRAFT"
    IN_PROGRESS = "IN_PROGRESS"
    SUBMITTED = "SUBMITTED"


class PackageStatus(str, Enum):
    PENDING = "PENDING"
    ASSIGNED = "ASSIGNED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETE = "COMPLETE"


class WorkCategory(str, Enum):
    """Coarse construction work types, in canonical package order."""

    MOBILIZATION = "MOBILIZATION"
    DEMOLITION = "DEMOLITION"
    EARTHWORK = "EARTHWORK"
    DRAINAGE = "DRAINAGE"
    SUBSTRUCTURE = "SUBSTRUCTURE"
    SUPERSTRUCTURE = "SUPERSTRUCTURE"
    DECK = "DECK"
    APPROACH_SLABS = "APPROACH_SLABS"
    PAVEMENT = "PAVEMENT"
    GUARDRAIL_BARRIER = "GUARDRAIL_BARRIER"
    SIGNING_STRIPING = "SIGNING_STRIPING"
    MOT = "MOT"  # maintenance of traffic
    ENVIRONMENTAL = "ENVIRONMENTAL"
    UTILITIES = "UTILITIES"
    LANDSCAPING = "LANDSCAPING"
    GENERAL_CONDITIONS = "GENERAL_CONDITIONS"
    OTHER = "OTHER"

    @classmethod
    def parse(cls, value: Any) -> WorkCategory | None:
        """Return the member for value, or None if it is not a known category."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().upper())
        except ValueError:
            return None


class RiskLevel(str, Enum):
    """Risk levels, ordered from least to most severe."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _RISK_ORDER.index(self)

    def at_least(self, other: RiskLevel) -> RiskLevel:
        return self if self.rank >= other.rank else other

    def escalate(self) -> RiskLevel:
        """One level up; HIGH and CRITICAL are unchanged."""
        if self in (RiskLevel.HIGH, RiskLevel.CRITICAL):
            return self
        return _RISK_ORDER[self.rank + 1]

    @classmethod
    def parse(cls, value: Any) -> RiskLevel | None:
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().upper())
        except ValueError:
            return None


_RISK_ORDER = [RiskLevel.LOW, RiskLevel.MEDIUM, RiskLevel.HIGH, RiskLevel.CRITICAL]


class OpportunityType(str, Enum):
    """Estimator opportunity flags an AI categorization may suggest."""

    VALUE_ENGINEERING = "VALUE_ENGINEERING"
    MEANS_METHODS = "MEANS_METHODS"
    QUANTITY_UPSIDE = "QUANTITY_UPSIDE"
    EARLY_COMPLETION = "EARLY_COMPLETION"
    MATERIAL_SUBSTITUTION = "MATERIAL_SUBSTITUTION"
    EQUIPMENT_EFFICIENCY = "EQUIPMENT_EFFICIENCY"
    CREW_OPTIMIZATION = "CREW_OPTIMIZATION"

    @classmethod
    def parse(cls, value: Any) -> OpportunityType | None:
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().upper())
        except ValueError:
            return None


class BidMetadata(BaseModel):
    """Project metadata extracted from a bid document for form pre-fill."""

    project_name: str | None = None
    state_project_number: str | None = None
    federal_project_number: str | None = None
    county: str | None = None
    route: str | None = None
    location_description: str | None = None
    letting_date: str | None = None
    bid_due_date: str | None = None
    contract_time_days: int | None = None
    dbe_goal_percentage: float | None = None
    is_federal_aid: bool = False
    liquidated_damages_per_day: float | None = None
    engineers_estimate: float | None = None
    owner: str | None = None
    confidence_score: float = Field(default=0, ge=0, le=100)
    extraction_notes: list[str] = Field(default_factory=list)

    @field_validator("is_federal_aid", mode="before")
    @classmethod
    def coerce_federal_aid(cls, v: Any) -> bool:
        return bool(v) if v is not None else False

    @field_validator("confidence_score", mode="before")
    @classmethod
    def clamp_confidence(cls, v: Any) -> float:
        try:
            score = float(v)
        except (TypeError, ValueError):
            return 0.0
        return max(0.0, min(100.0, score))

    @classmethod
    def needs_manual_entry(cls) -> BidMetadata:
        """Default record returned when the extraction response is unusable."""
        return cls(
            is_federal_aid=False,
            owner="WVDOH",
            confidence_score=0,
            extraction_notes=["Failed to parse document - please enter details manually"],
        )


class DocumentAnalysis(BaseModel):
    """Full-document analysis result stored on the document record."""

    summary: str
    document_category: str | None = None
    key_findings: list[dict[str, Any]] = Field(default_factory=list)
    extracted_data: dict[str, Any] = Field(default_factory=dict)
    confidence_score: float = 0
    cost_adjustments: list[dict[str, Any]] = Field(default_factory=list)

    @field_validator("key_findings", mode="before")
    @classmethod
    def coerce_findings(cls, v: Any) -> list[dict[str, Any]]:
        """Findings are objects; bare strings become {"title": ...}."""
        if v is None:
            return []
        if isinstance(v, (str, dict)):
            v = [v]
        return [x if isinstance(x, dict) else {"title": str(x)} for x in v]

    @field_validator("extracted_data", mode="before")
    @classmethod
    def coerce_extracted(cls, v: Any) -> dict[str, Any]:
        return v if isinstance(v, dict) else {}

    @field_validator("cost_adjustments", mode="before")
    @classmethod
    def coerce_adjustments(cls, v: Any) -> list[dict[str, Any]]:
        if not isinstance(v, list):
            return []
        return [x for x in v if isinstance(x, dict)]
