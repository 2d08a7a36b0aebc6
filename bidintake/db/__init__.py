"""Database layer for BidIntake with async SQLAlchemy."""

from bidintake.db.connection import get_session, init_db
from bidintake.db.models import (
    Base,
    CatalogItemModel,
    DocumentModel,
    LineItemModel,
    ProjectModel,
    WorkPackageItemModel,
    WorkPackageModel,
)

__all__ = [
    "Base",
    "ProjectModel",
    "DocumentModel",
    "LineItemModel",
    "CatalogItemModel",
    "WorkPackageModel",
    "WorkPackageItemModel",
    "get_session",
    "init_db",
]
