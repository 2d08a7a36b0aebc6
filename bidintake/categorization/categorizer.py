"""Catalog categorizer - assigns work category and risk to line items.

Two passes per batch:
1. Direct match against the reference catalog (exact code, then the
   first six characters). Reference data drives the result, so the
   confidence is fixed.
2. Items with no catalog match go to the AI extraction adapter in one
   request. Every returned value is validated against the fixed enums
   before anything is written.

Each update runs in its own SAVEPOINT. items_remaining is re-counted
from the database after the batch so callers can simply re-invoke.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from bidintake.categorization.risk import assess_catalog_item
from bidintake.config import AppConfig, get_config
from bidintake.db.models import CatalogItemModel, LineItemModel, ProjectModel
from bidintake.exceptions import ExtractionError
from bidintake.intelligence.extraction import AIExtractionAdapter
from bidintake.models import OpportunityType, RiskLevel, WorkCategory

logger = logging.getLogger(__name__)

PREFIX_LENGTH = 6
AI_DEFAULT_CONFIDENCE = 75
AI_DEFAULT_EXPLANATION = "AI-assessed risk factors"


@dataclass
class Categorization:
    """Validated category assignment for one line item."""

    work_category: WorkCategory
    risk_level: RiskLevel
    risk_explanation: str
    confidence: int
    governing_specs: list[str] = field(default_factory=list)
    opportunity_type: Optional[OpportunityType] = None
    matched_catalog_code: Optional[str] = None


@dataclass
class CategorizationResult:
    """Batch outcome. items_remaining comes from a fresh count."""

    project_id: str
    items_processed: int = 0
    items_failed: int = 0
    direct_matches: int = 0
    ai_categorized: int = 0
    items_remaining: int = 0
    last_line_number: Optional[int] = None
    by_category: dict[str, int] = field(default_factory=dict)
    ai_error: Optional[str] = None
    duration_ms: int = 0
    message: str = ""


def match_catalog(
    item_number: str, catalog: dict[str, CatalogItemModel]
) -> Optional[CatalogItemModel]:
    """Exact code lookup, then the six-character prefix."""
    match = catalog.get(item_number)
    if match is None and item_number:
        match = catalog.get(item_number[:PREFIX_LENGTH])
    return match


def categorize_from_catalog(catalog_item: CatalogItemModel) -> Categorization:
    assessment = assess_catalog_item(catalog_item)
    return Categorization(
        work_category=WorkCategory.parse(catalog_item.work_category) or WorkCategory.OTHER,
        risk_level=assessment.level,
        risk_explanation=assessment.explanation,
        confidence=assessment.confidence,
        governing_specs=[catalog_item.spec_section] if catalog_item.spec_section else [],
        matched_catalog_code=catalog_item.item_code,
    )


def _confidence(value: Any) -> int:
    try:
        score = int(float(value))
    except (TypeError, ValueError):
        return AI_DEFAULT_CONFIDENCE
    if score <= 0:
        return AI_DEFAULT_CONFIDENCE
    return min(score, 100)


def validate_ai_categorization(raw: dict[str, Any]) -> Optional[Categorization]:
    """Validate one AI response entry.

    Returns None when the work category is not a known value; an invalid
    risk level becomes MEDIUM and an invalid opportunity is dropped.
    """
    category = WorkCategory.parse(raw.get("work_category"))
    if category is None:
        return None

    specs = raw.get("governing_specs")
    if not isinstance(specs, list):
        specs = raw.get("governing_spec_sections")
    specs = [str(s) for s in specs if s] if isinstance(specs, list) else []

    return Categorization(
        work_category=category,
        risk_level=RiskLevel.parse(raw.get("risk_level")) or RiskLevel.MEDIUM,
        risk_explanation=raw.get("risk_explanation") or AI_DEFAULT_EXPLANATION,
        confidence=_confidence(raw.get("confidence")),
        governing_specs=specs,
        opportunity_type=OpportunityType.parse(
            raw.get("opportunity_type") or raw.get("opportunity_flag")
        ),
    )


class CatalogCategorizer:
    """Categorizes a project's line items in bounded batches."""

    def __init__(
        self,
        session: AsyncSession,
        adapter: Optional[AIExtractionAdapter] = None,
        config: Optional[AppConfig] = None,
    ):
        self.session = session
        self.adapter = adapter
        self.config = config or get_config()

    async def categorize(
        self,
        project_id: UUID,
        batch_size: Optional[int] = None,
        force: bool = False,
        after_line: Optional[int] = None,
    ) -> CategorizationResult:
        """Categorize the next batch of a project's line items.

        Without a cursor every call starts from the lowest line number, so
        items that can be neither matched nor AI-categorized are selected
        again. Pass the previous result's last_line_number as after_line to
        sweep past them (and to walk a forced re-categorization).

        Args:
            project_id: Project to categorize
            batch_size: Items per invocation (defaults to config)
            force: Re-categorize items that already have a category
            after_line: Only consider items with a higher line number

        Raises:
            LookupError: If the project does not exist
        """
        start = time.time()
        if await self.session.get(ProjectModel, project_id) is None:
            raise LookupError(f"Project {project_id} not found")

        result = CategorizationResult(project_id=str(project_id))
        limit = batch_size or self.config.categorization.batch_size

        query = (
            select(LineItemModel)
            .where(LineItemModel.project_id == project_id)
            .order_by(LineItemModel.line_number)
            .limit(limit)
        )
        if not force:
            query = query.where(LineItemModel.work_category.is_(None))
        if after_line is not None:
            query = query.where(LineItemModel.line_number > after_line)
        items = list((await self.session.execute(query)).scalars().all())

        if not items:
            result.message = "No line items need categorization"
            result.by_category = await self._category_counts(project_id)
            return result

        result.last_line_number = items[-1].line_number
        catalog = await self._load_catalog()

        assignments: dict[UUID, Categorization] = {}
        unmatched: list[LineItemModel] = []
        for item in items:
            catalog_item = match_catalog(item.item_number, catalog)
            if catalog_item is not None:
                assignments[item.id] = categorize_from_catalog(catalog_item)
            else:
                unmatched.append(item)
        result.direct_matches = len(assignments)

        if unmatched:
            ai_assignments = await self._categorize_with_ai(unmatched, catalog, result)
            result.ai_categorized = len(ai_assignments)
            assignments.update(ai_assignments)

        by_id = {item.id: item for item in items}
        for item_id, categorization in assignments.items():
            if await self._apply(by_id[item_id], categorization):
                result.items_processed += 1
            else:
                result.items_failed += 1

        await self.session.commit()

        result.items_remaining = await self._remaining(project_id)
        result.by_category = await self._category_counts(project_id)
        result.duration_ms = int((time.time() - start) * 1000)
        result.message = (
            f"Categorized {result.items_processed} items "
            f"({result.direct_matches} catalog, {result.ai_categorized} AI), "
            f"{result.items_failed} failed, {result.items_remaining} remaining"
        )
        logger.info(result.message)
        return result

    async def _load_catalog(self) -> dict[str, CatalogItemModel]:
        rows = (
            await self.session.execute(select(CatalogItemModel).order_by(CatalogItemModel.item_code))
        ).scalars().all()
        return {row.item_code: row for row in rows}

    async def _categorize_with_ai(
        self,
        items: list[LineItemModel],
        catalog: dict[str, CatalogItemModel],
        result: CategorizationResult,
    ) -> dict[UUID, Categorization]:
        """AI fallback. Never raises; failures leave the items for a later run."""
        if self.adapter is None:
            logger.info(f"{len(items)} items have no catalog match and AI categorization is disabled")
            return {}

        sample = [
            {
                "code": c.item_code,
                "description": c.description,
                "category": c.work_category,
                "spec": c.spec_section,
            }
            for c in list(catalog.values())[: self.config.categorization.catalog_sample_size]
        ]
        payload = [
            {
                "id": str(item.id),
                "item_number": item.item_number,
                "description": item.description,
                "quantity": str(item.quantity),
                "unit": item.unit,
            }
            for item in items
        ]

        try:
            responses = await self.adapter.categorize_items(payload, sample)
        except ExtractionError as e:
            logger.warning(f"AI categorization failed, {len(items)} items left uncategorized: {e}")
            result.ai_error = str(e)
            return {}

        known = {str(item.id): item.id for item in items}
        assignments: dict[UUID, Categorization] = {}
        for raw in responses:
            item_id = known.get(str(raw.get("id") or raw.get("line_item_id") or ""))
            if item_id is None:
                continue
            categorization = validate_ai_categorization(raw)
            if categorization is None:
                logger.debug(f"Dropping AI categorization with invalid category: {raw.get('work_category')!r}")
                continue
            assignments[item_id] = categorization
        return assignments

    async def _apply(self, item: LineItemModel, categorization: Categorization) -> bool:
        # A savepoint rollback expires the item, id included
        item_id = item.id
        try:
            async with self.session.begin_nested():
                item.work_category = categorization.work_category.value
                item.risk_level = categorization.risk_level.value
                item.risk_explanation = categorization.risk_explanation
                item.governing_specs = categorization.governing_specs
                item.categorization_confidence = categorization.confidence
                item.matched_catalog_code = categorization.matched_catalog_code
                item.opportunity_type = (
                    categorization.opportunity_type.value if categorization.opportunity_type else None
                )
        except SQLAlchemyError as e:
            logger.warning(f"Failed to update line item {item_id}: {e}")
            return False
        return True

    async def _remaining(self, project_id: UUID) -> int:
        result = await self.session.execute(
            select(func.count(LineItemModel.id)).where(
                LineItemModel.project_id == project_id,
                LineItemModel.work_category.is_(None),
            )
        )
        return result.scalar_one()

    async def _category_counts(self, project_id: UUID) -> dict[str, int]:
        rows = await self.session.execute(
            select(LineItemModel.work_category, func.count(LineItemModel.id))
            .where(
                LineItemModel.project_id == project_id,
                LineItemModel.work_category.is_not(None),
            )
            .group_by(LineItemModel.work_category)
        )
        return {category: count for category, count in rows.all()}
