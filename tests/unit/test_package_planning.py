"""Unit tests for work package planning (no database)."""

from __future__ import annotations

from uuid import uuid4

from bidintake.db.models import LineItemModel
from bidintake.models import WorkCategory
from bidintake.packaging.grouper import (
    PACKAGE_CONFIG,
    group_by_category,
    plan_deterministic,
    validate_ai_packages,
)


def items(count: int, category=None) -> list[LineItemModel]:
    return [LineItemModel(id=uuid4(), work_category=category) for _ in range(count)]


class TestGroupByCategory:
    def test_unknown_and_missing_go_to_other(self):
        groups = group_by_category(items(2) + items(1, "PLUMBING") + items(3, "DECK"))

        assert len(groups[WorkCategory.OTHER]) == 3
        assert len(groups[WorkCategory.DECK]) == 3


class TestPlanDeterministic:
    def test_canonical_order(self):
        groups = group_by_category(items(2, "PAVEMENT") + items(1, "MOBILIZATION") + items(4, "EARTHWORK"))

        plans = plan_deterministic(groups)

        assert [p.work_category for p in plans] == [
            WorkCategory.MOBILIZATION,
            WorkCategory.EARTHWORK,
            WorkCategory.PAVEMENT,
        ]
        assert [p.package_number for p in plans] == [1, 2, 3]
        assert [p.package_code for p in plans] == ["MOB", "EW", "PAV"]
        assert [p.sort_order for p in plans] == [10, 30, 90]

    def test_oversized_category_split_into_parts(self):
        plans = plan_deterministic({WorkCategory.OTHER: items(120)})

        assert [len(p.item_ids) for p in plans] == [40, 40, 40]
        assert [p.package_name for p in plans] == [
            "Miscellaneous (Part 1)",
            "Miscellaneous (Part 2)",
            "Miscellaneous (Part 3)",
        ]
        assert [p.package_code for p in plans] == ["MSC1", "MSC2", "MSC3"]
        assert [p.package_number for p in plans] == [1, 2, 3]

    def test_uneven_split(self):
        plans = plan_deterministic({WorkCategory.DRAINAGE: items(95)})

        assert [len(p.item_ids) for p in plans] == [40, 40, 15]

    def test_ceiling_is_inclusive(self):
        plans = plan_deterministic({WorkCategory.DRAINAGE: items(50)})

        assert len(plans) == 1
        assert plans[0].package_name == "Drainage & Storm"

    def test_every_item_planned_once(self):
        all_items = items(60, "DECK") + items(7, "MOT") + items(3)

        plans = plan_deterministic(group_by_category(all_items))

        planned = [i for p in plans for i in p.item_ids]
        assert sorted(map(str, planned)) == sorted(str(i.id) for i in all_items)

    def test_every_category_has_config(self):
        assert set(PACKAGE_CONFIG) == set(WorkCategory)


class TestValidateAiPackages:
    def test_filters_foreign_ids_and_empty_packages(self):
        ids = [str(uuid4()) for _ in range(3)]
        raw = [
            {"name": "Bridge Work", "work_category": "DECK", "item_ids": [ids[0], str(uuid4())]},
            {"name": "Ghosts", "work_category": "OTHER", "item_ids": [str(uuid4())]},
            {"name": "No list", "work_category": "MOT", "item_ids": "everything"},
            {"package_name": "Traffic", "work_category": "TELEPORT", "line_item_ids": ids[1:]},
        ]

        plans = validate_ai_packages(raw, set(ids))

        assert [p.package_name for p in plans] == ["Bridge Work", "Traffic"]
        assert [str(i) for i in plans[0].item_ids] == [ids[0]]
        assert plans[1].work_category == WorkCategory.OTHER
        assert plans[1].package_code == "MSC"
        assert [p.package_number for p in plans] == [1, 2]
        assert all(p.is_ai_generated for p in plans)
