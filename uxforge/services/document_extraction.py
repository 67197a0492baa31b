"""Document extraction: uploaded PDF/image to structured PRD data via LLM vision."""

import json
import re
import time
import uuid
from dataclasses import dataclass

from pydantic import ValidationError

from uxforge.core.logging import get_logger
from uxforge.schemas.document import DocumentSection, ExtractedDocumentData
from uxforge.services.llm import LLMClient
from uxforge.services.prompts import DOCUMENT_EXTRACTION_PROMPT

logger = get_logger(__name__)

SUPPORTED_MIME_TYPES = frozenset({
    "application/pdf",
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/gif",
    "image/webp",
})

_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


class UnsupportedDocumentTypeError(ValueError):
    """Raised for uploads whose MIME type the vision model cannot read."""

    def __init__(self, mime_type: str) -> None:
        self.mime_type = mime_type
        super().__init__(f"Unsupported document type: {mime_type}")


@dataclass
class ExtractionResult:
    document_id: str
    file_name: str
    mime_type: str
    data: ExtractedDocumentData
    parsed: bool  # False when the fallback structure was used


def new_document_id() -> str:
    return f"doc_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


def fallback_document(text: str, file_name: str) -> ExtractedDocumentData:
    return ExtractedDocumentData(
        document_type="other",
        title=file_name,
        summary=text[:200] + "...",
        sections=[DocumentSection(title="Contenido extraído", content=text, type="other")],
    )


def parse_extracted_document(text: str, file_name: str) -> tuple[ExtractedDocumentData, bool]:
    """Parse the model's answer; never raises.

    Takes the widest ``{...}`` span in *text* so prose around the JSON is
    ignored. Returns the fallback structure (and ``False``) when nothing
    usable is found.
    """
    match = _JSON_OBJECT_RE.search(text)
    candidate = match.group(0) if match else text
    try:
        raw = json.loads(candidate)
        if not isinstance(raw, dict):
            raise ValueError("extracted JSON is not an object")
        return ExtractedDocumentData.model_validate(raw), True
    except (ValueError, ValidationError) as e:
        logger.warning("document_parse_failed", file_name=file_name, error=str(e)[:200])
        return fallback_document(text, file_name), False


class DocumentExtractor:
    """Runs the extraction prompt over a document with the vision model."""

    def __init__(self, llm: LLMClient) -> None:
        self.llm = llm

    async def extract(
        self,
        file_bytes: bytes,
        file_name: str,
        mime_type: str,
        custom_prompt: str | None = None,
    ) -> ExtractionResult:
        if mime_type not in SUPPORTED_MIME_TYPES:
            raise UnsupportedDocumentTypeError(mime_type)
        # Some browsers report image/jpg; providers only accept image/jpeg
        provider_mime = "image/jpeg" if mime_type == "image/jpg" else mime_type

        logger.info("document_extraction_started", file_name=file_name, mime_type=mime_type, size=len(file_bytes))
        result = await self.llm.complete_vision(
            custom_prompt or DOCUMENT_EXTRACTION_PROMPT, file_bytes, provider_mime
        )
        if result.refused:
            logger.warning("document_extraction_refused", file_name=file_name)

        data, parsed = parse_extracted_document(result.text, file_name)
        extraction = ExtractionResult(
            document_id=new_document_id(),
            file_name=file_name,
            mime_type=mime_type,
            data=data,
            parsed=parsed,
        )
        logger.info(
            "document_extracted",
            document_id=extraction.document_id,
            parsed=parsed,
            features=len(data.features),
            user_flows=len(data.user_flows),
        )
        return extraction
