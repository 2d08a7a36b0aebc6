"""Format dispatcher - routes one bid document to its parser or AI adapter.

Owns the document status lifecycle:
    PENDING -> PROCESSING -> COMPLETED | FAILED

Any failure after the document is claimed lands on the document record,
so a synchronous failure never leaves it stuck in PROCESSING.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from bidintake.core.logging import bind_document_context, clear_document_context
from bidintake.db.models import DocumentModel, ProjectModel
from bidintake.exceptions import DocumentStateError, UnsupportedDocumentError
from bidintake.ingestion.base_parser import BaseParser
from bidintake.ingestion.importer import import_line_items
from bidintake.ingestion.spreadsheet_parser import SpreadsheetParser
from bidintake.ingestion.types import ParseResult, ProjectInfo
from bidintake.ingestion.xml_parser import BidxXmlParser
from bidintake.intelligence.extraction import AIExtractionAdapter
from bidintake.models import BidMetadata, DocumentType, ProcessingStatus, ProjectStatus
from bidintake.storage import ObjectStorage

logger = logging.getLogger(__name__)

XLS_MIME = "application/vnd.ms-excel"
XLSX_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
SPREADSHEET_MIMES = {XLS_MIME, XLSX_MIME, "text/csv"}

DOCUMENT_TYPE_MIME_MAP: dict[DocumentType, set[str]] = {
    DocumentType.BIDX: {"application/xml", "text/xml", "application/gzip"},
    DocumentType.BID_SPREADSHEET: SPREADSHEET_MIMES,
    DocumentType.PROPOSAL: {"application/pdf"},
    DocumentType.PLANS: {"application/pdf", "image/tiff"},
    DocumentType.EXISTING_PLANS: {"application/pdf", "image/tiff"},
    DocumentType.SPECIAL_PROVISIONS: {"application/pdf"},
    DocumentType.ENVIRONMENTAL: {"application/pdf"},
    DocumentType.ASBESTOS: {"application/pdf"},
    DocumentType.HAZMAT: {"application/pdf"},
    DocumentType.GEOTECHNICAL: {"application/pdf"},
    DocumentType.TRAFFIC_STUDY: {"application/pdf"},
    DocumentType.ADDENDUM: {"application/pdf"},
    DocumentType.OTHER: {
        "application/pdf",
        "application/xml",
        "text/xml",
        XLS_MIME,
        XLSX_MIME,
        "image/png",
        "image/jpeg",
        "image/tiff",
    },
}

ANALYSIS_TYPES = {
    DocumentType.PROPOSAL,
    DocumentType.ENVIRONMENTAL,
    DocumentType.ASBESTOS,
    DocumentType.HAZMAT,
    DocumentType.GEOTECHNICAL,
    DocumentType.SPECIAL_PROVISIONS,
    DocumentType.ADDENDUM,
    DocumentType.TRAFFIC_STUDY,
}

_ISO_DATE_RE = re.compile(r"\d{4}-\d{2}-\d{2}")


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class DispatchResult:
    """Outcome of processing one document."""

    document_id: str
    status: ProcessingStatus
    handler: str = ""
    line_items_found: int = 0
    line_items_imported: int = 0
    line_items_skipped: int = 0
    line_items_failed: int = 0
    error: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.status == ProcessingStatus.COMPLETED


def check_mime(document_type: DocumentType, mime_type: str) -> None:
    """Cross-check a declared document type against its MIME type.

    Raises:
        UnsupportedDocumentError: If the pair is not allowed
    """
    allowed = DOCUMENT_TYPE_MIME_MAP.get(document_type, set())
    if mime_type not in allowed:
        raise UnsupportedDocumentError(
            f"Invalid MIME type {mime_type} for document type {document_type.value}. "
            f"Allowed: {', '.join(sorted(allowed))}"
        )


def select_handler(document_type: DocumentType, mime_type: str) -> str:
    """Name of the handler for a document: xml, spreadsheet, analysis or skip."""
    if document_type == DocumentType.BIDX:
        return "xml"
    if document_type == DocumentType.BID_SPREADSHEET:
        return "spreadsheet"
    if document_type == DocumentType.OTHER:
        if mime_type in SPREADSHEET_MIMES:
            return "spreadsheet"
        if mime_type in ("application/xml", "text/xml"):
            return "xml"
        return "analysis"
    if document_type in ANALYSIS_TYPES:
        return "analysis"
    return "skip"


def parse_iso_date(value: Optional[str]) -> Optional[date]:
    """First YYYY-MM-DD in value as a date, or None."""
    if not value:
        return None
    match = _ISO_DATE_RE.search(value)
    if not match:
        return None
    try:
        return date.fromisoformat(match.group(0))
    except ValueError:
        return None


class FormatDispatcher:
    """Classifies a document and runs the matching pipeline stage.

    The caller owns the session; the dispatcher commits at each status
    transition so the transitions are observable while work is running.
    """

    def __init__(
        self,
        session: AsyncSession,
        storage: ObjectStorage,
        adapter: Optional[AIExtractionAdapter] = None,
    ):
        self.session = session
        self.storage = storage
        self.adapter = adapter

    async def process(self, document_id: UUID, replace_existing: bool = False) -> DispatchResult:
        """Process one document end to end.

        Raises:
            LookupError: If the document does not exist
            DocumentStateError: If the document is already COMPLETED or PROCESSING
        """
        document = await self.session.get(DocumentModel, document_id)
        if document is None:
            raise LookupError(f"Document {document_id} not found")

        if document.processing_status in (
            ProcessingStatus.COMPLETED.value,
            ProcessingStatus.PROCESSING.value,
        ):
            raise DocumentStateError(
                f"Document {document_id} is {document.processing_status}; "
                "only PENDING or FAILED documents can be processed"
            )

        bind_document_context(str(document.id), str(document.project_id))
        try:
            document.processing_status = ProcessingStatus.PROCESSING.value
            document.processing_started_at = _now()
            document.processing_completed_at = None
            document.processing_error = None
            await self.session.commit()
            logger.info(f"Processing {document.document_type} document {document.file_name}")

            try:
                result = await self._run(document, replace_existing)
            except Exception as e:
                logger.error(f"Processing failed for document {document_id}: {e}", exc_info=True)
                await self._mark_failed(document_id, str(e))
                return DispatchResult(
                    document_id=str(document_id), status=ProcessingStatus.FAILED, error=str(e)
                )
            return result
        finally:
            clear_document_context()

    async def _run(self, document: DocumentModel, replace_existing: bool) -> DispatchResult:
        try:
            document_type = DocumentType(document.document_type)
        except ValueError:
            raise UnsupportedDocumentError(f"Unknown document type {document.document_type!r}")

        mime_type = (document.mime_type or "").lower()
        check_mime(document_type, mime_type)
        handler = select_handler(document_type, mime_type)

        if handler == "skip":
            metadata = {"skipped_reason": f"No automated analysis for {document_type.value} documents"}
            return await self._complete(document, handler, metadata)

        content = await self.storage.download(document.file_path)

        if handler == "analysis":
            return await self._analyze(document, document_type, content)

        parser: BaseParser = BidxXmlParser() if handler == "xml" else SpreadsheetParser()
        parse_result = parser.parse(content)
        if not parse_result.success:
            error = parse_result.error_message or "No line items found"
            document_id = document.id
            # _mark_failed rolls back, which expires the document
            await self._mark_failed(document_id, error)
            return DispatchResult(
                document_id=str(document_id),
                status=ProcessingStatus.FAILED,
                handler=handler,
                error=error,
                metadata={"schema": parse_result.schema, **parse_result.stats},
            )
        return await self._import(document, handler, parse_result, replace_existing)

    async def _import(
        self,
        document: DocumentModel,
        handler: str,
        parse_result: ParseResult,
        replace_existing: bool,
    ) -> DispatchResult:
        imported = await import_line_items(
            self.session,
            document.project_id,
            document.id,
            parse_result,
            replace_existing=replace_existing,
        )

        project = await self.session.get(ProjectModel, document.project_id)
        if project is not None:
            if parse_result.project_info:
                self._backfill_project(project, parse_result.project_info)
            if imported.records_inserted and project.status == ProjectStatus.DRAFT.value:
                project.status = ProjectStatus.IN_PROGRESS.value

        metadata = {
            "schema": parse_result.schema,
            "line_items_found": len(parse_result.line_items),
            "line_items_imported": imported.records_inserted,
            "line_items_skipped": imported.records_skipped,
            "line_items_failed": imported.records_failed,
            "first_line_number": imported.first_line_number,
            "import_status": imported.status.value,
            "project_info": parse_result.project_info.as_dict() if parse_result.project_info else {},
            "warnings": parse_result.warnings,
            "parsed_at": _now().isoformat(),
        }
        result = await self._complete(document, handler, metadata)
        result.line_items_found = len(parse_result.line_items)
        result.line_items_imported = imported.records_inserted
        result.line_items_skipped = imported.records_skipped
        result.line_items_failed = imported.records_failed
        return result

    async def _analyze(
        self, document: DocumentModel, document_type: DocumentType, content: bytes
    ) -> DispatchResult:
        if self.adapter is None:
            raise UnsupportedDocumentError(
                f"{document_type.value} documents need AI analysis but no extraction client is configured"
            )

        payload = self.adapter.prepare_content(content, document.mime_type.lower(), document.file_name)
        analysis = await self.adapter.analyze_document(payload, document_type)

        document.summary = analysis.summary
        metadata = {
            "document_category": analysis.document_category,
            "key_findings": analysis.key_findings,
            "extracted_data": analysis.extracted_data,
            "cost_adjustments": analysis.cost_adjustments,
            "confidence_score": analysis.confidence_score,
            "sent_as_text": payload.is_text,
            "analyzed_at": _now().isoformat(),
        }
        return await self._complete(document, "analysis", metadata)

    async def prefill_project(self, document_id: UUID) -> BidMetadata:
        """Extract bid metadata from a document and back-fill blank project fields.

        Used at upload time to pre-fill the project form. Does not touch the
        document status; a zero-confidence result fills nothing.

        Raises:
            LookupError: If the document does not exist
            UnsupportedDocumentError: If no extraction client is configured or
                the MIME type cannot be sent for extraction
        """
        document = await self.session.get(DocumentModel, document_id)
        if document is None:
            raise LookupError(f"Document {document_id} not found")
        if self.adapter is None:
            raise UnsupportedDocumentError("Metadata extraction needs an extraction client")

        content = await self.storage.download(document.file_path)
        payload = self.adapter.prepare_content(
            content, (document.mime_type or "").lower(), document.file_name
        )
        metadata = await self.adapter.extract_metadata(payload)
        if metadata.confidence_score <= 0:
            logger.info(f"No usable metadata in document {document_id}, manual entry needed")
            return metadata

        project = await self.session.get(ProjectModel, document.project_id)
        if project is not None:
            self._backfill_project(
                project,
                ProjectInfo(
                    project_name=metadata.project_name,
                    contract_number=metadata.state_project_number,
                    county=metadata.county,
                    route=metadata.route,
                    letting_date=metadata.letting_date,
                ),
            )
            await self.session.commit()
        return metadata

    def _backfill_project(self, project: ProjectModel, info: ProjectInfo) -> None:
        """Fill blank project fields from harvested document metadata.

        A field the user already set is never overwritten.
        """
        filled = []
        if info.project_name and not (project.name or "").strip():
            project.name = info.project_name
            filled.append("name")
        if info.contract_number and not project.contract_number:
            project.contract_number = info.contract_number
            filled.append("contract_number")
        if info.county and not project.county:
            project.county = info.county
            filled.append("county")
        if info.route and not project.route:
            project.route = info.route
            filled.append("route")
        letting = parse_iso_date(info.letting_date)
        if letting and project.letting_date is None:
            project.letting_date = letting
            filled.append("letting_date")

        if filled:
            logger.info(f"Back-filled project {project.id} fields: {', '.join(filled)}")

    async def _complete(
        self, document: DocumentModel, handler: str, metadata: dict[str, Any]
    ) -> DispatchResult:
        document.processing_status = ProcessingStatus.COMPLETED.value
        document.processing_completed_at = _now()
        document.processing_error = None
        document.extraction_metadata = metadata
        await self.session.commit()

        logger.info(f"Document {document.id} completed via {handler} handler")
        return DispatchResult(
            document_id=str(document.id),
            status=ProcessingStatus.COMPLETED,
            handler=handler,
            metadata=metadata,
        )

    async def _mark_failed(self, document_id: UUID, error: str) -> None:
        # Discard any partial writes before recording the failure
        await self.session.rollback()
        await self.session.execute(
            update(DocumentModel)
            .where(DocumentModel.id == document_id)
            .values(
                processing_status=ProcessingStatus.FAILED.value,
                processing_error=error,
                processing_completed_at=_now(),
            )
        )
        await self.session.commit()
        logger.warning(f"Document {document_id} marked FAILED: {error}")
