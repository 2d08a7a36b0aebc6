"""SQLAlchemy async database models for BidIntake.

Uniqueness constraints double as idempotency guards: line numbers are
unique per project, package numbers are unique per project, and a line
item can be linked into at most one work package.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql import func


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class ProjectModel(Base):
    """Bid project that documents and line items belong to."""

    __tablename__ = "projects"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    contract_number: Mapped[str | None] = mapped_column(Text)
    county: Mapped[str | None] = mapped_column(Text)
    route: Mapped[str | None] = mapped_column(Text)
    letting_date: Mapped[date | None] = mapped_column(Date)
    status: Mapped[str] = mapped_column(Text, nullable=False, default="DRAFT")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), onupdate=func.now()
    )


class DocumentModel(Base):
    """Uploaded bid document and its processing state."""

    __tablename__ = "documents"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    project_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )

    document_type: Mapped[str] = mapped_column(Text, nullable=False)
    file_name: Mapped[str] = mapped_column(Text, nullable=False)
    file_path: Mapped[str] = mapped_column(Text, nullable=False)  # object storage path
    mime_type: Mapped[str] = mapped_column(Text, nullable=False)
    file_size_bytes: Mapped[int | None] = mapped_column(Integer)

    # PENDING -> PROCESSING -> COMPLETED | FAILED
    processing_status: Mapped[str] = mapped_column(Text, nullable=False, default="PENDING")
    processing_error: Mapped[str | None] = mapped_column(Text)
    processing_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    processing_started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    processing_completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    summary: Mapped[str | None] = mapped_column(Text)
    extraction_metadata: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("idx_documents_status_created", "processing_status", "created_at"),
    )


class LineItemModel(Base):
    """One priced unit of work on a bid."""

    __tablename__ = "line_items"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    project_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    source_document_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("documents.id", ondelete="SET NULL"), index=True
    )

    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    item_number: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    alt_item_number: Mapped[str | None] = mapped_column(Text)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    short_description: Mapped[str | None] = mapped_column(Text)
    quantity: Mapped[Decimal] = mapped_column(Numeric(14, 3), nullable=False, default=Decimal("0"))
    unit: Mapped[str] = mapped_column(Text, nullable=False, default="LS")
    section: Mapped[str | None] = mapped_column(Text)
    spec_section: Mapped[str | None] = mapped_column(Text)
    source_category: Mapped[str | None] = mapped_column(Text)  # category text from the source file

    # Written only by the categorizer
    work_category: Mapped[str | None] = mapped_column(Text, index=True)
    risk_level: Mapped[str | None] = mapped_column(Text)
    risk_explanation: Mapped[str | None] = mapped_column(Text)
    governing_specs: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    opportunity_type: Mapped[str | None] = mapped_column(Text)
    categorization_confidence: Mapped[int | None] = mapped_column(Integer)
    matched_catalog_code: Mapped[str | None] = mapped_column(Text)

    # Pricing
    suggested_unit_price: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    estimator_notes: Mapped[str | None] = mapped_column(Text)
    pricing_metadata: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    pricing_reviewed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), onupdate=func.now()
    )

    __table_args__ = (
        UniqueConstraint("project_id", "line_number", name="uq_line_items_project_line"),
        Index("idx_line_items_project_item", "project_id", "item_number"),
    )


class CatalogItemModel(Base):
    """Reference record for a known pay item code. Read-only to the pipeline."""

    __tablename__ = "catalog_items"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    item_code: Mapped[str] = mapped_column(Text, nullable=False, unique=True, index=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    unit: Mapped[str | None] = mapped_column(Text)
    work_category: Mapped[str | None] = mapped_column(Text)

    price_low: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    price_median: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    price_high: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))

    is_weather_sensitive: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_lump_sum: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    requires_subcontractor: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_critical_path: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    risk_factors: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    spec_section: Mapped[str | None] = mapped_column(Text)


class WorkPackageModel(Base):
    """Named grouping of line items assigned to an estimator."""

    __tablename__ = "work_packages"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    project_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    package_number: Mapped[int] = mapped_column(Integer, nullable=False)
    package_name: Mapped[str] = mapped_column(Text, nullable=False)
    package_code: Mapped[str | None] = mapped_column(Text)
    description: Mapped[str | None] = mapped_column(Text)
    work_category: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False, default="PENDING")
    total_items: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_ai_generated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    items: Mapped[list["WorkPackageItemModel"]] = relationship(
        back_populates="work_package", cascade="all, delete-orphan"
    )

    __table_args__ = (
        UniqueConstraint("project_id", "package_number", name="uq_work_packages_project_number"),
    )


class WorkPackageItemModel(Base):
    """Link of one line item into one work package."""

    __tablename__ = "work_package_items"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    work_package_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("work_packages.id", ondelete="CASCADE"), nullable=False, index=True
    )
    line_item_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("line_items.id", ondelete="CASCADE"), nullable=False
    )
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    work_package: Mapped["WorkPackageModel"] = relationship(back_populates="items")

    __table_args__ = (
        UniqueConstraint("line_item_id", name="uq_work_package_items_line_item"),
    )
