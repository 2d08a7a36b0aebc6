"""Persist parsed line items for a project.

Each row is written in its own SAVEPOINT so one bad row is counted and
skipped without losing its siblings.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from bidintake.db.models import LineItemModel, WorkPackageItemModel, WorkPackageModel
from bidintake.ingestion.types import ImportResult, ImportStatus, ParsedLineItem, ParseResult

logger = logging.getLogger(__name__)

ENGINEER_ESTIMATE_CONFIDENCE = 0.95


async def next_line_number(session: AsyncSession, project_id: UUID) -> int:
    """Line number that an incremental import should start from."""
    result = await session.execute(
        select(func.max(LineItemModel.line_number)).where(LineItemModel.project_id == project_id)
    )
    return (result.scalar() or 0) + 1


async def delete_document_items(
    session: AsyncSession, project_id: UUID, document_id: UUID
) -> int:
    """Remove the line items a document previously produced.

    Their package links go too, and package totals are recounted so they
    keep matching their children.
    """
    item_ids = select(LineItemModel.id).where(
        LineItemModel.project_id == project_id,
        LineItemModel.source_document_id == document_id,
    )

    affected = (
        await session.execute(
            select(WorkPackageItemModel.work_package_id)
            .where(WorkPackageItemModel.line_item_id.in_(item_ids))
            .distinct()
        )
    ).scalars().all()

    await session.execute(
        delete(WorkPackageItemModel).where(WorkPackageItemModel.line_item_id.in_(item_ids))
    )
    result = await session.execute(
        delete(LineItemModel).where(
            LineItemModel.project_id == project_id,
            LineItemModel.source_document_id == document_id,
        )
    )

    for package_id in affected:
        count = (
            await session.execute(
                select(func.count(WorkPackageItemModel.id)).where(
                    WorkPackageItemModel.work_package_id == package_id
                )
            )
        ).scalar_one()
        await session.execute(
            update(WorkPackageModel)
            .where(WorkPackageModel.id == package_id)
            .values(total_items=count)
        )

    deleted = result.rowcount or 0
    logger.info(f"Replaced {deleted} existing line items from document {document_id}")
    return deleted


def build_line_item(
    item: ParsedLineItem,
    project_id: UUID,
    document_id: Optional[UUID],
    line_number: int,
) -> LineItemModel:
    """Map a parsed row onto a LineItemModel."""
    price = item.unit_price if item.unit_price is not None and item.unit_price > 0 else None

    return LineItemModel(
        project_id=project_id,
        source_document_id=document_id,
        line_number=line_number,
        item_number=item.item_number,
        alt_item_number=item.alt_item_number,
        description=item.description,
        short_description=item.short_description,
        quantity=item.quantity,
        unit=item.unit,
        section=item.section,
        spec_section=item.spec_section,
        source_category=item.category,
        governing_specs=[],
        suggested_unit_price=price,
        estimator_notes=f"Engineer Estimate: ${price:.2f}/unit" if price is not None else None,
        pricing_metadata=(
            {
                "source": "engineer_estimate",
                "confidence": ENGINEER_ESTIMATE_CONFIDENCE,
                "extracted_at": datetime.now(timezone.utc).isoformat(),
            }
            if price is not None
            else {}
        ),
        pricing_reviewed=False,
    )


async def import_line_items(
    session: AsyncSession,
    project_id: UUID,
    document_id: Optional[UUID],
    parse_result: ParseResult,
    replace_existing: bool = False,
) -> ImportResult:
    """Insert a parse result's line items for a project.

    Args:
        session: Database session (caller commits)
        project_id: Owning project
        document_id: Source document, used for replace and provenance
        parse_result: Successful parser output
        replace_existing: Delete this document's earlier items first

    Returns:
        ImportResult with inserted/skipped/failed counts. Items whose code
        already exists for the project are skipped unless replacing.
    """
    result = ImportResult(
        document_id=str(document_id) if document_id else None,
        status=ImportStatus.SUCCESS,
    )

    if replace_existing and document_id is not None:
        await delete_document_items(session, project_id, document_id)

    existing_codes = set(
        (
            await session.execute(
                select(LineItemModel.item_number).where(LineItemModel.project_id == project_id)
            )
        ).scalars().all()
    )

    line_number = await next_line_number(session, project_id)
    result.first_line_number = line_number

    for item in parse_result.line_items:
        if item.item_number in existing_codes:
            result.records_skipped += 1
            continue

        try:
            async with session.begin_nested():
                session.add(build_line_item(item, project_id, document_id, line_number))
        except SQLAlchemyError as e:
            result.records_failed += 1
            result.errors.append(f"Line {line_number} ({item.item_number}): {e}")
            logger.warning(f"Failed to insert line item {item.item_number}: {e}")
            continue

        existing_codes.add(item.item_number)
        result.records_inserted += 1
        line_number += 1

    if result.records_inserted == 0:
        result.status = ImportStatus.SKIPPED if result.records_failed == 0 else ImportStatus.FAILED
    elif result.records_failed or result.records_skipped:
        result.status = ImportStatus.PARTIAL_SUCCESS

    result.message = (
        f"Imported {result.records_inserted} line items "
        f"({result.records_skipped} skipped, {result.records_failed} failed)"
    )
    logger.info(result.message)
    return result
