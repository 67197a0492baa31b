"""Chat session schemas (persisted per client as one JSON document)."""

from datetime import UTC, datetime
from enum import StrEnum
from typing import Annotated

from pydantic import AfterValidator, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from uxforge.schemas.document import ExtractedDocumentData


def _ensure_utc(value: datetime) -> datetime:
    return value.replace(tzinfo=UTC) if value.tzinfo is None else value


# Imported or hand-edited sessions may carry naive timestamps
UtcDatetime = Annotated[datetime, AfterValidator(_ensure_utc)]


class MessageRole(StrEnum):
    USER = "user"
    ASSISTANT = "assistant"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FileAttachment(_CamelModel):
    """Attachment metadata only; binary payloads are never persisted."""

    name: str
    type: str
    size: int = 0


class ChatMessage(_CamelModel):
    id: str
    role: MessageRole
    content: str
    timestamp: UtcDatetime
    attachments: list[FileAttachment] | None = None
    is_generating: bool = False
    preview_url: str | None = None
    project_id: str | None = None


class DocumentContext(_CamelModel):
    document_id: str
    file_name: str
    mime_type: str
    extracted_data: ExtractedDocumentData | None = None
    processed: bool = True
    timestamp: UtcDatetime


class ChatSession(_CamelModel):
    session_id: str
    sandbox_id: str | None = None
    messages: list[ChatMessage] = Field(default_factory=list)
    documents: list[DocumentContext] = Field(default_factory=list)
    created_at: UtcDatetime
    last_activity: UtcDatetime
    is_active: bool = True
