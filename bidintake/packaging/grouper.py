"""Work package grouper - clusters a project's line items for estimators.

Strategy:
1. AI grouping when enabled and the project is large enough; each
   proposed package is validated and anything unusable is dropped.
2. Deterministic grouping by work category in canonical order when the
   AI stage is off, fails, or yields no usable package. Oversized
   categories are split into numbered parts.

Packages are written first, then links. A link rejected by the
one-package-per-item constraint is counted, never raised.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field
from typing import Any, NamedTuple, Optional
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from bidintake.config import AppConfig, get_config
from bidintake.db.models import (
    LineItemModel,
    ProjectModel,
    WorkPackageItemModel,
    WorkPackageModel,
)
from bidintake.exceptions import ExtractionError, PackagesExistError
from bidintake.intelligence.extraction import AIExtractionAdapter
from bidintake.models import PackageStatus, WorkCategory

logger = logging.getLogger(__name__)


class PackageConfig(NamedTuple):
    name: str
    code: str
    order: int


PACKAGE_CONFIG: dict[WorkCategory, PackageConfig] = {
    WorkCategory.MOBILIZATION: PackageConfig("Mobilization & General", "MOB", 1),
    WorkCategory.DEMOLITION: PackageConfig("Demolition & Removals", "DEM", 2),
    WorkCategory.EARTHWORK: PackageConfig("Earthwork", "EW", 3),
    WorkCategory.DRAINAGE: PackageConfig("Drainage & Storm", "DRN", 4),
    WorkCategory.SUBSTRUCTURE: PackageConfig("Bridge Substructure", "SUB", 5),
    WorkCategory.SUPERSTRUCTURE: PackageConfig("Bridge Superstructure", "SUP", 6),
    WorkCategory.DECK: PackageConfig("Bridge Deck", "DCK", 7),
    WorkCategory.APPROACH_SLABS: PackageConfig("Approach Slabs", "APR", 8),
    WorkCategory.PAVEMENT: PackageConfig("Paving", "PAV", 9),
    WorkCategory.GUARDRAIL_BARRIER: PackageConfig("Guardrail & Barrier", "GRB", 10),
    WorkCategory.SIGNING_STRIPING: PackageConfig("Signing & Striping", "SGN", 11),
    WorkCategory.MOT: PackageConfig("Maintenance of Traffic", "MOT", 12),
    WorkCategory.ENVIRONMENTAL: PackageConfig("Environmental", "ENV", 13),
    WorkCategory.UTILITIES: PackageConfig("Utilities", "UTL", 14),
    WorkCategory.LANDSCAPING: PackageConfig("Landscaping & Restoration", "LND", 15),
    WorkCategory.GENERAL_CONDITIONS: PackageConfig("General Conditions", "GEN", 16),
    WorkCategory.OTHER: PackageConfig("Miscellaneous", "MSC", 17),
}


@dataclass
class PackagePlan:
    """A package to create and the line items it should claim."""

    package_number: int
    package_name: str
    package_code: str
    description: str
    work_category: WorkCategory
    sort_order: int
    item_ids: list[UUID]
    is_ai_generated: bool = False


@dataclass
class PackagingResult:
    project_id: str
    packages_created: int = 0
    items_linked: int = 0
    items_failed: int = 0
    total_items: int = 0
    method: str = "deterministic"
    packages: list[dict[str, Any]] = field(default_factory=list)
    duration_ms: int = 0
    message: str = ""

    @property
    def ai_generated(self) -> bool:
        return self.method == "ai"


def group_by_category(items: list[LineItemModel]) -> dict[WorkCategory, list[LineItemModel]]:
    """Bucket items by work category; unknown or missing categories go to OTHER."""
    groups: dict[WorkCategory, list[LineItemModel]] = {}
    for item in items:
        category = WorkCategory.parse(item.work_category) or WorkCategory.OTHER
        groups.setdefault(category, []).append(item)
    return groups


def plan_deterministic(
    groups: dict[WorkCategory, list[LineItemModel]],
    chunk_ceiling: int = 50,
    chunk_size: int = 40,
) -> list[PackagePlan]:
    """One package per category in canonical order, splitting oversized ones."""
    plans: list[PackagePlan] = []
    package_number = 1

    for category in sorted(groups, key=lambda c: PACKAGE_CONFIG[c].order):
        items = groups[category]
        config = PACKAGE_CONFIG[category]

        if len(items) > chunk_ceiling:
            chunks = math.ceil(len(items) / chunk_size)
            for i in range(chunks):
                chunk = items[i * chunk_size : (i + 1) * chunk_size]
                part = i + 1
                name = f"{config.name} (Part {part})" if chunks > 1 else config.name
                plans.append(
                    PackagePlan(
                        package_number=package_number,
                        package_name=name,
                        package_code=f"{config.code}{part}" if chunks > 1 else config.code,
                        description=f"{name} items",
                        work_category=category,
                        sort_order=config.order * 10 + i,
                        item_ids=[item.id for item in chunk],
                    )
                )
                package_number += 1
        else:
            plans.append(
                PackagePlan(
                    package_number=package_number,
                    package_name=config.name,
                    package_code=config.code,
                    description=f"{config.name} items",
                    work_category=category,
                    sort_order=config.order * 10,
                    item_ids=[item.id for item in items],
                )
            )
            package_number += 1

    return plans


def validate_ai_packages(raw_packages: list[dict[str, Any]], valid_ids: set[str]) -> list[PackagePlan]:
    """Turn AI proposals into plans.

    Unknown categories become OTHER and ids outside the project are
    excluded. A proposal left with no members is dropped.
    """
    plans: list[PackagePlan] = []
    for raw in raw_packages:
        member_ids = raw.get("item_ids") or raw.get("line_item_ids")
        if not isinstance(member_ids, list):
            continue
        members = [UUID(str(i)) for i in member_ids if str(i) in valid_ids]
        if not members:
            continue

        category = WorkCategory.parse(raw.get("work_category")) or WorkCategory.OTHER
        config = PACKAGE_CONFIG[category]
        number = len(plans) + 1
        plans.append(
            PackagePlan(
                package_number=number,
                package_name=str(raw.get("name") or raw.get("package_name") or config.name),
                package_code=str(raw.get("code") or raw.get("package_code") or config.code),
                description=str(raw.get("description") or raw.get("rationale") or ""),
                work_category=category,
                sort_order=number,
                item_ids=members,
                is_ai_generated=True,
            )
        )
    return plans


class WorkPackageGrouper:
    """Generates work packages for a project."""

    def __init__(
        self,
        session: AsyncSession,
        adapter: Optional[AIExtractionAdapter] = None,
        config: Optional[AppConfig] = None,
    ):
        self.session = session
        self.adapter = adapter
        self.config = config or get_config()

    async def generate(
        self,
        project_id: UUID,
        regenerate: bool = False,
        use_ai: Optional[bool] = None,
    ) -> PackagingResult:
        """Create packages and links for a project.

        Args:
            project_id: Project to package
            regenerate: Delete existing packages first
            use_ai: Override the configured AI grouping switch

        Raises:
            LookupError: If the project does not exist
            PackagesExistError: If packages exist and regenerate is False
        """
        start = time.time()
        if await self.session.get(ProjectModel, project_id) is None:
            raise LookupError(f"Project {project_id} not found")

        existing = await self._existing_count(project_id)
        if existing and not regenerate:
            raise PackagesExistError(str(project_id), existing)

        if existing:
            await self._delete_packages(project_id)

        items = list(
            (
                await self.session.execute(
                    select(LineItemModel)
                    .where(LineItemModel.project_id == project_id)
                    .order_by(LineItemModel.line_number)
                )
            ).scalars().all()
        )

        result = PackagingResult(project_id=str(project_id), total_items=len(items))
        if not items:
            await self.session.commit()
            result.message = "No line items found to package"
            return result

        packaging = self.config.packaging
        ai_enabled = packaging.ai_enabled if use_ai is None else use_ai

        plans: list[PackagePlan] = []
        if ai_enabled and self.adapter is not None and len(items) > packaging.ai_min_items:
            plans = await self._plan_with_ai(items)
        if plans:
            result.method = "ai"
        else:
            plans = plan_deterministic(
                group_by_category(items), packaging.chunk_ceiling, packaging.chunk_size
            )

        for plan in plans:
            package = await self._create_package(project_id, plan)
            linked, failed = await self._link_items(package, plan.item_ids)
            package.total_items = linked
            result.packages_created += 1
            result.items_linked += linked
            result.items_failed += failed
            result.packages.append(
                {
                    "id": str(package.id),
                    "package_number": package.package_number,
                    "package_name": package.package_name,
                    "package_code": package.package_code,
                    "work_category": package.work_category,
                    "total_items": linked,
                }
            )

        await self.session.commit()

        result.duration_ms = int((time.time() - start) * 1000)
        result.message = (
            f"Created {result.packages_created} packages ({result.method}), "
            f"linked {result.items_linked}/{result.total_items} items, "
            f"{result.items_failed} failed to link"
        )
        logger.info(result.message)
        return result

    async def _existing_count(self, project_id: UUID) -> int:
        result = await self.session.execute(
            select(func.count(WorkPackageModel.id)).where(WorkPackageModel.project_id == project_id)
        )
        return result.scalar_one()

    async def _delete_packages(self, project_id: UUID) -> None:
        package_ids = select(WorkPackageModel.id).where(WorkPackageModel.project_id == project_id)
        await self.session.execute(
            delete(WorkPackageItemModel).where(WorkPackageItemModel.work_package_id.in_(package_ids))
        )
        result = await self.session.execute(
            delete(WorkPackageModel).where(WorkPackageModel.project_id == project_id)
        )
        logger.info(f"Deleted {result.rowcount} existing work packages for project {project_id}")

    async def _plan_with_ai(self, items: list[LineItemModel]) -> list[PackagePlan]:
        """AI grouping stage. Any failure yields no plans."""
        payload = [
            {
                "id": str(item.id),
                "line": item.line_number,
                "item": item.item_number,
                "desc": item.description[:100],
                "qty": str(item.quantity),
                "unit": item.unit,
                "category": item.work_category,
            }
            for item in items
        ]
        try:
            proposals = await self.adapter.propose_packages(payload)
        except ExtractionError as e:
            logger.warning(f"AI grouping failed, falling back to category-based packages: {e}")
            return []

        plans = validate_ai_packages(proposals, {str(item.id) for item in items})
        if not plans:
            logger.info("AI grouping produced no usable packages, falling back to category-based")
        return plans

    async def _create_package(self, project_id: UUID, plan: PackagePlan) -> WorkPackageModel:
        package = WorkPackageModel(
            project_id=project_id,
            package_number=plan.package_number,
            package_name=plan.package_name,
            package_code=plan.package_code,
            description=plan.description,
            work_category=plan.work_category.value,
            status=PackageStatus.PENDING.value,
            total_items=0,
            sort_order=plan.sort_order,
            is_ai_generated=plan.is_ai_generated,
        )
        self.session.add(package)
        await self.session.flush()
        return package

    async def _link_items(self, package: WorkPackageModel, item_ids: list[UUID]) -> tuple[int, int]:
        linked = failed = 0
        for position, item_id in enumerate(item_ids, start=1):
            try:
                async with self.session.begin_nested():
                    self.session.add(
                        WorkPackageItemModel(
                            work_package_id=package.id,
                            line_item_id=item_id,
                            sort_order=position,
                        )
                    )
            except IntegrityError:
                # Already claimed by another package
                logger.debug(f"Line item {item_id} already linked to a package")
                failed += 1
            else:
                linked += 1
        return linked, failed
