"""Catalog-driven risk assessment for line items.

Pure rules over a catalog entry's risk flags. Precedence is fixed:
start LOW, then apply weather, lump-sum, subcontractor, critical-path
and free-text factor rules in that order. Adding a flag never lowers
the resulting level.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

from bidintake.models import RiskLevel

DIRECT_MATCH_CONFIDENCE = 95
FACTOR_COUNT_FOR_HIGH = 3
STANDARD_RISK_EXPLANATION = "Standard item with typical risks"


@dataclass
class RiskAssessment:
    """Risk level with the factors that produced it."""

    level: RiskLevel
    factors: list[str] = field(default_factory=list)
    confidence: int = DIRECT_MATCH_CONFIDENCE

    @property
    def explanation(self) -> str:
        return "; ".join(self.factors) if self.factors else STANDARD_RISK_EXPLANATION


def assess_risk(
    is_weather_sensitive: bool = False,
    is_lump_sum: bool = False,
    requires_subcontractor: bool = False,
    is_critical_path: bool = False,
    risk_factors: Optional[Sequence[Any]] = None,
) -> RiskAssessment:
    """Derive a risk level from catalog risk flags.

    Rules:
    - weather-sensitive: at least MEDIUM
    - lump-sum: one level up (quantity risk)
    - subcontractor-dependent: noted, no escalation
    - critical-path: at least MEDIUM
    - 3 or more free-text risk factors: at least HIGH
    """
    level = RiskLevel.LOW
    factors: list[str] = []

    if is_weather_sensitive:
        level = level.at_least(RiskLevel.MEDIUM)
        factors.append("Weather sensitive")

    if is_lump_sum:
        level = level.escalate()
        factors.append("Lump sum (quantity risk)")

    if requires_subcontractor:
        factors.append("Requires specialty subcontractor")

    if is_critical_path:
        level = level.at_least(RiskLevel.MEDIUM)
        factors.append("Critical path item")

    extra = [str(f).strip() for f in (risk_factors or []) if f and str(f).strip()]
    if extra:
        factors.extend(extra)
        if len(extra) >= FACTOR_COUNT_FOR_HIGH:
            level = level.at_least(RiskLevel.HIGH)

    return RiskAssessment(level=level, factors=factors)


def assess_catalog_item(catalog_item) -> RiskAssessment:
    """assess_risk() over a CatalogItemModel's flags."""
    return assess_risk(
        is_weather_sensitive=bool(catalog_item.is_weather_sensitive),
        is_lump_sum=bool(catalog_item.is_lump_sum),
        requires_subcontractor=bool(catalog_item.requires_subcontractor),
        is_critical_path=bool(catalog_item.is_critical_path),
        risk_factors=catalog_item.risk_factors,
    )
