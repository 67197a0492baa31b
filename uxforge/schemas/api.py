"""Request/response payloads for the HTTP API (camelCase on the wire)."""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from uxforge.schemas.document import ExtractedDocumentData
from uxforge.schemas.session import ChatMessage, ChatSession, DocumentContext, FileAttachment


class _ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Chat & documents ─────────────────────────────────────────────────


class ChatRequest(_ApiModel):
    message: str = Field(min_length=1)
    context: str | None = None


class ChatReply(_ApiModel):
    success: bool = True
    response: str


class AnalyzeDocumentRequest(_ApiModel):
    file_content: str = Field(min_length=1)
    file_name: str | None = None
    prompt: str = Field(min_length=1)


class AnalyzeDocumentReply(_ApiModel):
    success: bool = True
    analysis: str
    file_name: str | None = None


class ProcessDocumentRequest(_ApiModel):
    file_data: str = Field(min_length=1)  # base64
    file_name: str = Field(min_length=1)
    mime_type: str = Field(min_length=1)
    custom_prompt: str | None = None


class ProcessDocumentReply(_ApiModel):
    success: bool = True
    extracted_data: ExtractedDocumentData
    document_id: str
    file_name: str


class HistoryEntry(_ApiModel):
    role: str
    content: str


class AssistantChatRequest(_ApiModel):
    message: str = Field(min_length=1)
    context: str | None = None
    conversation_history: list[HistoryEntry] = Field(default_factory=list)


# ── Sandboxes ────────────────────────────────────────────────────────


class GenerateRequest(_ApiModel):
    prompt: str = Field(min_length=1)
    framework: str = "nextjs"


class GenerateReply(_ApiModel):
    success: bool = True
    sandbox_id: str
    project_name: str
    framework: str
    preview_url: str
    server_confirmed: bool
    modified: bool = False


class SandboxCreated(_ApiModel):
    success: bool = True
    sandbox_id: str


class SandboxSummary(_ApiModel):
    sandbox_id: str
    status: str = "active"
    project_name: str | None = None
    preview_url: str | None = None


class SandboxList(_ApiModel):
    success: bool = True
    sandboxes: list[SandboxSummary]
    count: int


class SuccessReply(_ApiModel):
    success: bool = True


class HealthReply(_ApiModel):
    status: str = "OK"
    timestamp: str
    active_sandboxes: int


# ── Sessions ─────────────────────────────────────────────────────────


class SessionMessageRequest(_ApiModel):
    message: str = Field(min_length=1)
    attachments: list[FileAttachment] | None = None


class TurnReply(_ApiModel):
    success: bool = True
    kind: str
    intent: str
    message: ChatMessage
    preview_url: str | None = None
    session: ChatSession


class SessionDocumentRequest(_ApiModel):
    file_data: str = Field(min_length=1)  # base64
    file_name: str = Field(min_length=1)
    mime_type: str = Field(min_length=1)
    auto_generate: bool = True


class SessionDocumentReply(_ApiModel):
    success: bool = True
    document: DocumentContext
    kind: str | None = None
    preview_url: str | None = None
    session: ChatSession


class NewChatReply(_ApiModel):
    success: bool = True
    sandbox_closed: bool
    session: ChatSession


class SessionImportRequest(_ApiModel):
    session: dict
