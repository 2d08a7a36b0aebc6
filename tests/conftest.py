"""Pytest configuration and fixtures for BidIntake tests.

Provides an in-memory database, a scripted extraction client and small
factories for projects, documents and line items.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from io import BytesIO
from typing import Any, Callable, Optional, Union
from uuid import UUID

import pytest
import pytest_asyncio
import structlog
from openpyxl import Workbook
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from bidintake.config import AppConfig, get_config, reset_config
from bidintake.core.logging import HANDLER_NAME
from bidintake.db.connection import configure_sqlite
from bidintake.db.models import (
    Base,
    CatalogItemModel,
    DocumentModel,
    LineItemModel,
    ProjectModel,
)
from bidintake.intelligence.extraction import AIExtractionAdapter, ExtractionContent


@pytest.fixture(autouse=True)
def setup_test_env(monkeypatch, tmp_path):
    """Set up test environment variables."""
    monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")
    monkeypatch.setenv("STORAGE_ROOT", str(tmp_path / "storage"))
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    reset_config()
    yield
    reset_config()
    reset_logging()


def reset_logging() -> None:
    """Drop handlers installed by configure_logging() during a test."""
    root = logging.getLogger()
    for handler in list(root.handlers):
        if handler.get_name() == HANDLER_NAME:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(logging.WARNING)
    structlog.contextvars.clear_contextvars()
    structlog.reset_defaults()


@pytest.fixture
def app_config() -> AppConfig:
    return get_config()


@pytest_asyncio.fixture()
async def db_session() -> AsyncSession:
    """Create in-memory database for testing."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    configure_sqlite(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    SessionLocal = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    session = SessionLocal()
    try:
        yield session
    finally:
        await session.close()
        await engine.dispose()


Response = Union[str, Exception, Callable[[ExtractionContent, str], str]]


class FakeExtractionClient:
    """Scripted stand-in for the AI extraction capability.

    Each call pops the next scripted response; an Exception is raised,
    a callable is invoked with (content, instructions).
    """

    def __init__(self, *responses: Response):
        self.responses = list(responses)
        self.calls: list[tuple[ExtractionContent, str]] = []

    async def extract(self, content: ExtractionContent, instructions: str) -> str:
        self.calls.append((content, instructions))
        if not self.responses:
            raise AssertionError("FakeExtractionClient has no scripted response left")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(content, instructions)
        return response


@pytest.fixture
def make_adapter(app_config: AppConfig):
    def _make(*responses: Response) -> tuple[AIExtractionAdapter, FakeExtractionClient]:
        client = FakeExtractionClient(*responses)
        return AIExtractionAdapter(client, app_config), client

    return _make


class MemoryStorage:
    """In-memory ObjectStorage."""

    def __init__(self, objects: Optional[dict[str, bytes]] = None):
        self.objects = dict(objects or {})

    async def download(self, path: str) -> bytes:
        if path not in self.objects:
            raise FileNotFoundError(f"Object not found in storage: {path}")
        return self.objects[path]

    async def upload(self, path: str, data: bytes, content_type: str) -> str:
        self.objects[path] = data
        return path


@pytest.fixture
def memory_storage() -> MemoryStorage:
    return MemoryStorage()


@pytest_asyncio.fixture
async def project(db_session: AsyncSession) -> ProjectModel:
    project = ProjectModel(name="US 35 Bridge Replacement")
    db_session.add(project)
    await db_session.commit()
    return project


async def add_document(
    session: AsyncSession,
    project_id: UUID,
    document_type: str = "BIDX",
    mime_type: str = "application/xml",
    file_path: str = "bids/schedule.xml",
    file_name: str = "schedule.xml",
    status: str = "PENDING",
) -> DocumentModel:
    document = DocumentModel(
        project_id=project_id,
        document_type=document_type,
        file_name=file_name,
        file_path=file_path,
        mime_type=mime_type,
        processing_status=status,
    )
    session.add(document)
    await session.commit()
    return document


async def add_line_items(
    session: AsyncSession,
    project_id: UUID,
    count: int,
    document_id: Optional[UUID] = None,
    start: int = 1,
    **fields: Any,
) -> list[LineItemModel]:
    items = []
    for n in range(start, start + count):
        item = LineItemModel(
            project_id=project_id,
            source_document_id=document_id,
            line_number=n,
            item_number=fields.get("item_number", f"999.{n:03d}"),
            description=fields.get("description", f"Item {n}"),
            quantity=Decimal("1"),
            unit="EA",
            work_category=fields.get("work_category"),
        )
        session.add(item)
        items.append(item)
    await session.commit()
    return items


async def add_catalog_item(session: AsyncSession, item_code: str, **fields: Any) -> CatalogItemModel:
    catalog_item = CatalogItemModel(
        item_code=item_code,
        description=fields.pop("description", f"Catalog {item_code}"),
        **fields,
    )
    session.add(catalog_item)
    await session.commit()
    return catalog_item


def build_workbook(rows: list[list[Any]], sheet_name: str = "Bid Items", extra_sheets: Optional[dict] = None) -> bytes:
    """Serialize rows to xlsx bytes."""
    wb = Workbook()
    ws = wb.active
    ws.title = sheet_name
    for row in rows:
        ws.append(row)
    for name, sheet_rows in (extra_sheets or {}).items():
        extra = wb.create_sheet(name)
        for row in sheet_rows:
            extra.append(row)
    buffer = BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


@pytest.fixture
def make_document(db_session: AsyncSession):
    async def _make(project_id: UUID, **fields: Any) -> DocumentModel:
        return await add_document(db_session, project_id, **fields)

    return _make


@pytest.fixture
def make_line_items(db_session: AsyncSession):
    async def _make(project_id: UUID, count: int, **fields: Any) -> list[LineItemModel]:
        return await add_line_items(db_session, project_id, count, **fields)

    return _make


@pytest.fixture
def make_catalog_item(db_session: AsyncSession):
    async def _make(item_code: str, **fields: Any) -> CatalogItemModel:
        return await add_catalog_item(db_session, item_code, **fields)

    return _make


@pytest.fixture
def workbook():
    return build_workbook
