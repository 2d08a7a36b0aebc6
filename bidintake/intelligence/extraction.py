"""AI extraction adapter for unstructured bid documents.

Wraps the external extraction capability (an LLM) behind one coroutine,
prepares document payloads within its size limits, and validates the
JSON it returns. The capability is treated as unreliable: responses may
be non-JSON, incomplete, or carry invalid enum values.
"""

from __future__ import annotations

import base64
import json
import logging
import re
from dataclasses import dataclass
from io import BytesIO
from typing import Any, Optional, Protocol

import openai
from openai import AsyncOpenAI
from pydantic import ValidationError
from pypdf import PdfReader
from pypdf.errors import PdfReadError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from bidintake.config import AppConfig, get_config
from bidintake.exceptions import ExtractionError, UnsupportedDocumentError
from bidintake.intelligence.prompts import (
    CATEGORIZATION_PROMPT,
    METADATA_PROMPT,
    PACKAGING_PROMPT,
    analysis_prompt_for,
)
from bidintake.models import BidMetadata, DocumentAnalysis, DocumentType

logger = logging.getLogger(__name__)

_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")

PDF_MIME = "application/pdf"
IMAGE_MIMES = {"image/png", "image/jpeg", "image/jpg", "image/tiff", "image/gif", "image/webp"}
XML_MIMES = {"application/xml", "text/xml"}

TRANSIENT_ERRORS = (
    openai.APIConnectionError,
    openai.APITimeoutError,
    openai.RateLimitError,
    openai.InternalServerError,
)


@dataclass
class ExtractionContent:
    """Document payload for the capability: either raw bytes or text."""

    mime_type: str
    data: Optional[bytes] = None
    text: Optional[str] = None
    file_name: str = "document"

    @property
    def is_text(self) -> bool:
        return self.text is not None


class ExtractionClient(Protocol):
    """Black-box extraction capability.

    Returns free-form text expected to contain one JSON object.
    """

    async def extract(self, content: ExtractionContent, instructions: str) -> str: ...


def extract_json_object(text: Optional[str]) -> dict[str, Any]:
    """Pull the outermost {...} span out of a response and parse it.

    Raises:
        ValueError: If no JSON object is present or it does not parse
    """
    if not text:
        raise ValueError("Empty response from extraction service")
    match = _JSON_OBJECT_RE.search(text)
    if not match:
        raise ValueError("No JSON found in response")
    data = json.loads(match.group(0))
    if not isinstance(data, dict):
        raise ValueError("Response JSON is not an object")
    return data


def pdf_to_text(data: bytes) -> str:
    """Extract text from every PDF page."""
    try:
        reader = PdfReader(BytesIO(data))
        pages = [page.extract_text() or "" for page in reader.pages]
    except PdfReadError as e:
        raise ExtractionError(f"Could not read PDF for text extraction: {e}")
    return "\n\n".join(f"--- Page {i} ---\n{text}" for i, text in enumerate(pages, start=1))


class OpenAIExtractionClient:
    """ExtractionClient backed by OpenAI chat completions."""

    def __init__(self, config: Optional[AppConfig] = None, client: Optional[AsyncOpenAI] = None):
        self.config = config or get_config()
        if client is None:
            if not self.config.llm.api_key:
                raise ValueError("OPENAI_API_KEY is required for AI extraction")
            client = AsyncOpenAI(api_key=self.config.llm.api_key)
        self.client = client
        self.model = self.config.llm.llm_model

    def _user_parts(self, content: ExtractionContent) -> list[dict[str, Any]]:
        intro = f"Extract structured data from this document. Filename: {content.file_name}"
        if content.is_text:
            return [{"type": "text", "text": f"{intro}\n\n{content.text}"}]

        encoded = base64.b64encode(content.data or b"").decode("ascii")
        data_url = f"data:{content.mime_type};base64,{encoded}"
        if content.mime_type == PDF_MIME:
            attachment = {
                "type": "file",
                "file": {"filename": content.file_name, "file_data": data_url},
            }
        else:
            attachment = {"type": "image_url", "image_url": {"url": data_url}}
        return [attachment, {"type": "text", "text": intro}]

    async def extract(self, content: ExtractionContent, instructions: str) -> str:
        @retry(
            stop=stop_after_attempt(self.config.llm.retry_attempts),
            wait=wait_exponential(multiplier=1, min=2, max=10),
            retry=retry_if_exception_type(TRANSIENT_ERRORS),
            reraise=True,
        )
        async def _call() -> str:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": instructions},
                    {"role": "user", "content": self._user_parts(content)},
                ],
                response_format={"type": "json_object"},
                temperature=self.config.llm.temperature,
                max_tokens=self.config.llm.max_tokens,
            )
            return response.choices[0].message.content or ""

        try:
            return await _call()
        except openai.OpenAIError as e:
            raise ExtractionError(f"Extraction service error: {e}") from e


class AIExtractionAdapter:
    """Validating front end to the extraction capability."""

    def __init__(self, client: ExtractionClient, config: Optional[AppConfig] = None):
        self.client = client
        self.config = config or get_config()

    def prepare_content(self, data: bytes, mime_type: str, file_name: str = "document") -> ExtractionContent:
        """Shape a raw document into a payload the capability accepts.

        XML goes as decoded text; PDFs over the payload limit go as
        extracted text; other PDFs and images go as binary.

        Raises:
            UnsupportedDocumentError: For MIME types the capability cannot read
        """
        limits = self.config.extraction
        mime_type = (mime_type or "").lower()

        if mime_type in XML_MIMES or mime_type.startswith("text/"):
            text = data.decode("utf-8", errors="replace")
            return ExtractionContent(
                mime_type=mime_type, text=text[: limits.max_text_chars], file_name=file_name
            )

        if mime_type == PDF_MIME:
            if len(data) > limits.max_payload_bytes:
                logger.info(
                    f"{file_name} is {len(data)} bytes (limit {limits.max_payload_bytes}); "
                    "sending extracted text instead"
                )
                text = pdf_to_text(data)
                return ExtractionContent(
                    mime_type=mime_type, text=text[: limits.max_text_chars], file_name=file_name
                )
            return ExtractionContent(mime_type=mime_type, data=data, file_name=file_name)

        if mime_type in IMAGE_MIMES:
            if len(data) > limits.max_payload_bytes:
                raise UnsupportedDocumentError(
                    f"Image {file_name} exceeds the extraction payload limit "
                    f"({len(data)} > {limits.max_payload_bytes} bytes)"
                )
            return ExtractionContent(mime_type=mime_type, data=data, file_name=file_name)

        raise UnsupportedDocumentError(f"AI extraction does not support MIME type {mime_type!r}")

    async def _request_json(self, content: ExtractionContent, instructions: str) -> dict[str, Any]:
        response = await self.client.extract(content, instructions)
        try:
            return extract_json_object(response)
        except ValueError as e:
            logger.warning(f"Unparseable extraction response for {content.file_name}: {e}")
            raise ExtractionError(f"Failed to parse AI response: {e}") from e

    async def extract_metadata(self, content: ExtractionContent) -> BidMetadata:
        """Extract project metadata for form pre-fill.

        Never raises for a bad response: returns a zero-confidence default
        record so the caller can fall back to manual entry.
        """
        try:
            data = await self._request_json(content, METADATA_PROMPT)
            return BidMetadata.model_validate(data)
        except (ExtractionError, ValidationError) as e:
            logger.warning(f"Metadata extraction failed for {content.file_name}: {e}")
            return BidMetadata.needs_manual_entry()

    async def analyze_document(
        self, content: ExtractionContent, document_type: DocumentType
    ) -> DocumentAnalysis:
        """Full-document analysis with a type-specific instruction schema.

        Raises:
            ExtractionError: If the capability fails or its response is unusable
        """
        data = await self._request_json(content, analysis_prompt_for(document_type))
        if not data.get("summary"):
            raise ExtractionError("AI response is missing a summary")
        try:
            return DocumentAnalysis.model_validate(data)
        except ValidationError as e:
            raise ExtractionError(f"AI response did not match the analysis schema: {e}") from e

    async def categorize_items(
        self, items: list[dict[str, Any]], catalog_sample: list[dict[str, Any]]
    ) -> list[dict[str, Any]]:
        """Ask for categories for uncatalogued line items.

        Returns raw item dicts; the categorizer validates each one.

        Raises:
            ExtractionError: If the capability fails or its response is unusable
        """
        payload = json.dumps(
            {"line_items": items, "reference_catalog": catalog_sample}, default=str
        )
        content = ExtractionContent(mime_type="application/json", text=payload, file_name="line-items.json")
        data = await self._request_json(content, CATEGORIZATION_PROMPT)
        results = data.get("items")
        return [r for r in results if isinstance(r, dict)] if isinstance(results, list) else []

    async def propose_packages(self, items: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Ask for a work package grouping of a project's line items.

        Raises:
            ExtractionError: If the capability fails or its response is unusable
        """
        payload = json.dumps({"line_items": items}, default=str)
        content = ExtractionContent(mime_type="application/json", text=payload, file_name="line-items.json")
        data = await self._request_json(content, PACKAGING_PROMPT)
        packages = data.get("packages")
        return [p for p in packages if isinstance(p, dict)] if isinstance(packages, list) else []
