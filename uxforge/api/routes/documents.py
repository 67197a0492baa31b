"""Document extraction endpoint (PDF / image → structured PRD data)."""

import base64
import binascii

from fastapi import APIRouter, HTTPException, status

from uxforge.core.logging import get_logger
from uxforge.deps import Services
from uxforge.schemas.api import ProcessDocumentReply, ProcessDocumentRequest

logger = get_logger(__name__)

router = APIRouter()


def decode_file_data(file_data: str) -> bytes:
    """Decode a base64 payload, tolerating a ``data:<mime>;base64,`` prefix."""
    if file_data.startswith("data:") and "," in file_data:
        file_data = file_data.split(",", 1)[1]
    try:
        return base64.b64decode(file_data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="fileData is not valid base64",
        ) from e


@router.post("/gemini/process-document", response_model=ProcessDocumentReply)
async def process_document(data: ProcessDocumentRequest, services: Services) -> ProcessDocumentReply:
    file_bytes = decode_file_data(data.file_data)
    extraction = await services.extractor.extract(
        file_bytes,
        data.file_name,
        data.mime_type,
        custom_prompt=data.custom_prompt,
    )
    return ProcessDocumentReply(
        extracted_data=extraction.data,
        document_id=extraction.document_id,
        file_name=extraction.file_name,
    )
