"""Pydantic schemas for sessions, extracted documents and API payloads."""

from uxforge.schemas.document import (
    DocumentSection,
    ExtractedDocumentData,
    Feature,
    TechnicalSpec,
    UserFlow,
)
from uxforge.schemas.session import (
    ChatMessage,
    ChatSession,
    DocumentContext,
    FileAttachment,
    MessageRole,
)
