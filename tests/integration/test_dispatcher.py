"""Integration tests for the format dispatcher and document lifecycle."""

from __future__ import annotations

import json
from datetime import date
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from bidintake.db.models import DocumentModel, LineItemModel, ProjectModel
from bidintake.exceptions import DocumentStateError, UnsupportedDocumentError
from bidintake.pipeline import dispatcher as dispatcher_module
from bidintake.pipeline.dispatcher import XLSX_MIME, FormatDispatcher, parse_iso_date

SINGLE_ITEM_XML = (
    b"<BidItems><Item><ItemNumber>201001-000</ItemNumber>"
    b"<Description>Clearing</Description></Item></BidItems>"
)

PROJECT_XML = b"""<Letting>
  <Project>
    <ProjectName>Mason County Bridge</ProjectName>
    <ContractNumber>C-2025-017</ContractNumber>
    <County>Mason</County>
    <Route>US 35</Route>
    <LettingDate>2025-03-11T10:00:00</LettingDate>
  </Project>
  <BidItems>
    <Item><ItemNumber>201.001</ItemNumber><Description>Clearing</Description><Quantity>1</Quantity></Item>
    <Item><ItemNumber>207.002</ItemNumber><Description>Excavation</Description><Quantity>900</Quantity></Item>
  </BidItems>
</Letting>
"""

HEADER = ["Item #", "Description", "Qty", "Unit", "Unit Price"]


async def count_items(session, project_id) -> int:
    result = await session.execute(
        select(func.count(LineItemModel.id)).where(LineItemModel.project_id == project_id)
    )
    return result.scalar_one()


class TestStructuredDocuments:
    """BIDX and spreadsheet documents go through the parsers."""

    @pytest.mark.asyncio
    async def test_bidx_document_completed(self, db_session, project, make_document, memory_storage):
        memory_storage.objects["bids/schedule.xml"] = SINGLE_ITEM_XML
        document = await make_document(project.id)

        result = await FormatDispatcher(db_session, memory_storage).process(document.id)

        assert result.success is True
        assert result.handler == "xml"
        assert result.line_items_found == 1
        assert result.line_items_imported == 1

        await db_session.refresh(document)
        assert document.processing_status == "COMPLETED"
        assert document.processing_error is None
        assert document.processing_started_at is not None
        assert document.processing_completed_at is not None
        assert document.extraction_metadata["schema"] == "bidx-xml"
        assert document.extraction_metadata["line_items_imported"] == 1
        assert document.extraction_metadata["first_line_number"] == 1

        item = (await db_session.execute(select(LineItemModel))).scalar_one()
        assert item.item_number == "201.001"
        assert item.quantity == 0
        assert item.source_document_id == document.id

    @pytest.mark.asyncio
    async def test_project_backfilled_from_document(
        self, db_session, project, make_document, memory_storage
    ):
        memory_storage.objects["bids/schedule.xml"] = PROJECT_XML
        document = await make_document(project.id)

        await FormatDispatcher(db_session, memory_storage).process(document.id)

        await db_session.refresh(project)
        # A name the user already set is kept
        assert project.name == "US 35 Bridge Replacement"
        assert project.contract_number == "C-2025-017"
        assert project.county == "Mason"
        assert project.route == "US 35"
        assert project.letting_date == date(2025, 3, 11)
        assert project.status == "IN_PROGRESS"

    @pytest.mark.asyncio
    async def test_backfill_only_fills_blanks(self, db_session, make_document, memory_storage):
        project = ProjectModel(name="", county="Jackson")
        db_session.add(project)
        await db_session.commit()
        memory_storage.objects["bids/schedule.xml"] = PROJECT_XML
        document = await make_document(project.id)

        await FormatDispatcher(db_session, memory_storage).process(document.id)

        await db_session.refresh(project)
        assert project.name == "Mason County Bridge"
        assert project.county == "Jackson"

    @pytest.mark.asyncio
    async def test_spreadsheet_document(self, db_session, project, make_document, memory_storage, workbook):
        memory_storage.objects["bids/schedule.xlsx"] = workbook(
            [HEADER, ["201.001", "Clearing & Grubbing", "12.5", "AC", "1500"]]
        )
        document = await make_document(
            project.id,
            document_type="BID_SPREADSHEET",
            mime_type=XLSX_MIME,
            file_path="bids/schedule.xlsx",
            file_name="schedule.xlsx",
        )

        result = await FormatDispatcher(db_session, memory_storage).process(document.id)

        assert result.success is True
        assert result.handler == "spreadsheet"
        item = (await db_session.execute(select(LineItemModel))).scalar_one()
        assert "$1500.00" in item.estimator_notes

    @pytest.mark.asyncio
    async def test_other_type_routed_by_mime(self, db_session, project, make_document, memory_storage, workbook):
        memory_storage.objects["misc/tabulation.xlsx"] = workbook(
            [HEADER, ["201.001", "Clearing", "1", "LS", "100"]]
        )
        document = await make_document(
            project.id, document_type="OTHER", mime_type=XLSX_MIME, file_path="misc/tabulation.xlsx"
        )

        result = await FormatDispatcher(db_session, memory_storage).process(document.id)

        assert result.handler == "spreadsheet"
        assert result.success is True

    @pytest.mark.asyncio
    async def test_reprocess_without_replace_skips_existing(
        self, db_session, project, make_document, memory_storage
    ):
        project_id = project.id
        memory_storage.objects["bids/schedule.xml"] = SINGLE_ITEM_XML
        document = await make_document(project_id)
        dispatcher = FormatDispatcher(db_session, memory_storage)
        await dispatcher.process(document.id)

        document.processing_status = "PENDING"
        await db_session.commit()
        result = await dispatcher.process(document.id)

        assert result.success is True
        assert result.line_items_imported == 0
        assert result.line_items_skipped == 1
        assert await count_items(db_session, project_id) == 1

    @pytest.mark.asyncio
    async def test_reprocess_with_replace(self, db_session, project, make_document, memory_storage):
        project_id = project.id
        memory_storage.objects["bids/schedule.xml"] = SINGLE_ITEM_XML
        document = await make_document(project_id)
        dispatcher = FormatDispatcher(db_session, memory_storage)
        await dispatcher.process(document.id)

        document.processing_status = "PENDING"
        await db_session.commit()
        result = await dispatcher.process(document.id, replace_existing=True)

        assert result.line_items_imported == 1
        assert result.line_items_skipped == 0
        assert await count_items(db_session, project_id) == 1

    @pytest.mark.asyncio
    async def test_failed_document_can_be_retried(self, db_session, project, make_document, memory_storage):
        memory_storage.objects["bids/schedule.xml"] = SINGLE_ITEM_XML
        document = await make_document(project.id, status="FAILED")

        result = await FormatDispatcher(db_session, memory_storage).process(document.id)

        assert result.success is True


class TestFailures:
    """Every failure after the document is claimed lands on the record."""

    @pytest.mark.asyncio
    async def test_malformed_xml(self, db_session, project, make_document, memory_storage):
        project_id = project.id
        memory_storage.objects["bids/schedule.xml"] = b"<BidItems><Item>"
        document = await make_document(project_id)

        result = await FormatDispatcher(db_session, memory_storage).process(document.id)

        assert result.success is False
        assert "XML parsing error" in result.error
        await db_session.refresh(document)
        assert document.processing_status == "FAILED"
        assert "XML parsing error" in document.processing_error
        assert document.processing_completed_at is not None
        assert await count_items(db_session, project_id) == 0

    @pytest.mark.asyncio
    async def test_unrecognized_xml(self, db_session, project, make_document, memory_storage):
        memory_storage.objects["bids/schedule.xml"] = b"<Root><Widget/></Root>"
        document = await make_document(project.id)

        result = await FormatDispatcher(db_session, memory_storage).process(document.id)

        assert result.success is False
        assert result.handler == "xml"
        assert "No line items found" in result.error
        await db_session.refresh(document)
        assert document.processing_status == "FAILED"

    @pytest.mark.asyncio
    async def test_mime_mismatch(self, db_session, project, make_document, memory_storage):
        document = await make_document(project.id, mime_type="application/pdf")

        result = await FormatDispatcher(db_session, memory_storage).process(document.id)

        assert result.success is False
        assert "Invalid MIME type application/pdf" in result.error
        await db_session.refresh(document)
        assert document.processing_status == "FAILED"

    @pytest.mark.asyncio
    async def test_unknown_document_type(self, db_session, project, make_document, memory_storage):
        document = await make_document(project.id, document_type="BLUEPRINT")

        result = await FormatDispatcher(db_session, memory_storage).process(document.id)

        assert result.success is False
        assert "Unknown document type" in result.error

    @pytest.mark.asyncio
    async def test_missing_object(self, db_session, project, make_document, memory_storage):
        document = await make_document(project.id, file_path="bids/gone.xml")

        result = await FormatDispatcher(db_session, memory_storage).process(document.id)

        assert result.success is False
        assert "Object not found" in result.error

    @pytest.mark.asyncio
    async def test_partial_writes_rolled_back(
        self, db_session, project, make_document, memory_storage, monkeypatch
    ):
        project_id = project.id
        memory_storage.objects["bids/schedule.xml"] = SINGLE_ITEM_XML
        document = await make_document(project_id)

        async def exploding_import(session, project_id, document_id, parse_result, replace_existing=False):
            session.add(
                LineItemModel(project_id=project_id, line_number=1, item_number="X", description="partial")
            )
            await session.flush()
            raise RuntimeError("connection reset")

        monkeypatch.setattr(dispatcher_module, "import_line_items", exploding_import)

        result = await FormatDispatcher(db_session, memory_storage).process(document.id)

        assert result.success is False
        assert result.error == "connection reset"
        assert await count_items(db_session, project_id) == 0
        await db_session.refresh(document)
        assert document.processing_status == "FAILED"

    @pytest.mark.asyncio
    async def test_completed_document_rejected(self, db_session, project, make_document, memory_storage):
        document = await make_document(project.id, status="COMPLETED")

        with pytest.raises(DocumentStateError):
            await FormatDispatcher(db_session, memory_storage).process(document.id)

    @pytest.mark.asyncio
    async def test_processing_document_rejected(self, db_session, project, make_document, memory_storage):
        document = await make_document(project.id, status="PROCESSING")

        with pytest.raises(DocumentStateError):
            await FormatDispatcher(db_session, memory_storage).process(document.id)

    @pytest.mark.asyncio
    async def test_unknown_document(self, db_session, memory_storage):
        with pytest.raises(LookupError):
            await FormatDispatcher(db_session, memory_storage).process(uuid4())


class TestUnstructuredDocuments:
    """Plans are skipped; proposals and reports go to the AI adapter."""

    @pytest.mark.asyncio
    async def test_plans_skipped(self, db_session, project, make_document, memory_storage):
        document = await make_document(
            project.id, document_type="PLANS", mime_type="application/pdf", file_path="plans/set.pdf"
        )

        result = await FormatDispatcher(db_session, memory_storage).process(document.id)

        assert result.success is True
        assert result.handler == "skip"
        await db_session.refresh(document)
        assert document.processing_status == "COMPLETED"
        assert "skipped_reason" in document.extraction_metadata

    @pytest.mark.asyncio
    async def test_proposal_analyzed(self, db_session, project, make_document, memory_storage, make_adapter):
        memory_storage.objects["docs/proposal.pdf"] = b"%PDF-1.7 proposal"
        document = await make_document(
            project.id,
            document_type="PROPOSAL",
            mime_type="application/pdf",
            file_path="docs/proposal.pdf",
            file_name="proposal.pdf",
        )
        adapter, client = make_adapter(
            json.dumps(
                {
                    "summary": "Replace the US 35 bridge over Crab Creek.",
                    "document_category": "PROPOSAL",
                    "key_findings": ["DBE goal 8%"],
                    "confidence_score": 90,
                }
            )
        )

        result = await FormatDispatcher(db_session, memory_storage, adapter).process(document.id)

        assert result.success is True
        assert result.handler == "analysis"
        assert len(client.calls) == 1
        assert client.calls[0][0].data == b"%PDF-1.7 proposal"

        await db_session.refresh(document)
        assert document.summary == "Replace the US 35 bridge over Crab Creek."
        assert document.extraction_metadata["key_findings"] == [{"title": "DBE goal 8%"}]
        assert document.extraction_metadata["sent_as_text"] is False

    @pytest.mark.asyncio
    async def test_analysis_without_adapter_fails(self, db_session, project, make_document, memory_storage):
        memory_storage.objects["docs/hazmat.pdf"] = b"%PDF-1.7"
        document = await make_document(
            project.id, document_type="HAZMAT", mime_type="application/pdf", file_path="docs/hazmat.pdf"
        )

        result = await FormatDispatcher(db_session, memory_storage).process(document.id)

        assert result.success is False
        assert "no extraction client" in result.error

    @pytest.mark.asyncio
    async def test_unusable_analysis_fails_document(
        self, db_session, project, make_document, memory_storage, make_adapter
    ):
        memory_storage.objects["docs/geotech.pdf"] = b"%PDF-1.7"
        document = await make_document(
            project.id, document_type="GEOTECHNICAL", mime_type="application/pdf", file_path="docs/geotech.pdf"
        )
        adapter, _ = make_adapter("Boring logs show shale at 12 ft.")

        result = await FormatDispatcher(db_session, memory_storage, adapter).process(document.id)

        assert result.success is False
        await db_session.refresh(document)
        assert document.processing_status == "FAILED"
        assert "Failed to parse AI response" in document.processing_error
        assert document.summary is None


class TestProjectPrefill:
    """Bid metadata extraction pre-fills blank project fields."""

    @pytest.mark.asyncio
    async def test_blank_fields_filled(self, db_session, make_document, memory_storage, make_adapter):
        project = ProjectModel(name="Draft bid", county="Jackson")
        db_session.add(project)
        await db_session.commit()
        project_id = project.id
        memory_storage.objects["docs/proposal.pdf"] = b"%PDF-1.7 proposal"
        document = await make_document(
            project_id,
            document_type="PROPOSAL",
            mime_type="application/pdf",
            file_path="docs/proposal.pdf",
            file_name="proposal.pdf",
        )
        adapter, client = make_adapter(
            json.dumps(
                {
                    "project_name": "US 35 Bridge Replacement",
                    "state_project_number": "S326-35-12.40",
                    "county": "Mason",
                    "route": "US 35",
                    "letting_date": "2025-03-11",
                    "is_federal_aid": True,
                    "confidence_score": 85,
                }
            )
        )

        metadata = await FormatDispatcher(db_session, memory_storage, adapter).prefill_project(document.id)

        assert metadata.confidence_score == 85
        assert metadata.is_federal_aid is True
        assert len(client.calls) == 1

        await db_session.refresh(project)
        assert project.name == "Draft bid"
        assert project.county == "Jackson"
        assert project.contract_number == "S326-35-12.40"
        assert project.route == "US 35"
        assert project.letting_date == date(2025, 3, 11)

        # Pre-fill leaves the processing lifecycle alone
        await db_session.refresh(document)
        assert document.processing_status == "PENDING"

    @pytest.mark.asyncio
    async def test_unusable_response_fills_nothing(
        self, db_session, project, make_document, memory_storage, make_adapter
    ):
        project_id = project.id
        memory_storage.objects["docs/proposal.pdf"] = b"%PDF-1.7"
        document = await make_document(
            project_id, document_type="PROPOSAL", mime_type="application/pdf", file_path="docs/proposal.pdf"
        )
        adapter, _ = make_adapter("I could not read this proposal.")

        metadata = await FormatDispatcher(db_session, memory_storage, adapter).prefill_project(document.id)

        assert metadata.confidence_score == 0
        assert metadata.extraction_notes
        refreshed = await db_session.get(ProjectModel, project_id)
        await db_session.refresh(refreshed)
        assert refreshed.county is None
        assert refreshed.contract_number is None

    @pytest.mark.asyncio
    async def test_requires_extraction_client(self, db_session, project, make_document, memory_storage):
        document = await make_document(project.id, document_type="PROPOSAL", mime_type="application/pdf")

        with pytest.raises(UnsupportedDocumentError):
            await FormatDispatcher(db_session, memory_storage).prefill_project(document.id)

    @pytest.mark.asyncio
    async def test_unknown_document(self, db_session, memory_storage, make_adapter):
        adapter, _ = make_adapter()

        with pytest.raises(LookupError):
            await FormatDispatcher(db_session, memory_storage, adapter).prefill_project(uuid4())


def test_parse_iso_date():
    assert parse_iso_date("2025-03-11") == date(2025, 3, 11)
    assert parse_iso_date("Letting 2025-03-11T10:00") == date(2025, 3, 11)
    assert parse_iso_date("March 11, 2025") is None
    assert parse_iso_date("2025-13-45") is None
    assert parse_iso_date(None) is None
