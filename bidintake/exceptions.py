"""Exception types raised across the ingestion pipeline."""

from __future__ import annotations


class BidIntakeError(Exception):
    """Base class for pipeline errors."""

    pass


class ConfigurationError(BidIntakeError):
    """Configuration file is invalid or missing."""

    pass


class StructuralParseError(BidIntakeError):
    """Document could not be read at all (malformed XML, unreadable workbook)."""

    pass


class ExtractionError(BidIntakeError):
    """AI extraction failed or returned content that could not be used."""

    pass


class UnsupportedDocumentError(BidIntakeError):
    """No handler accepts the document's declared type and MIME type."""

    pass


class DocumentStateError(BidIntakeError):
    """Document is not in a state that allows processing."""

    pass


class PackagesExistError(BidIntakeError):
    """Work packages already exist and regeneration was not requested."""

    def __init__(self, project_id: str, existing_count: int):
        self.project_id = project_id
        self.existing_count = existing_count
        super().__init__(
            f"Work packages already exist for project {project_id} "
            f"({existing_count} packages). Use regenerate to replace them."
        )
