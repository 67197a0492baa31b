"""Stateless chat and document-analysis endpoints."""

from fastapi import APIRouter, HTTPException, status

from uxforge.core.logging import get_logger
from uxforge.deps import Services
from uxforge.schemas.api import (
    AnalyzeDocumentReply,
    AnalyzeDocumentRequest,
    AssistantChatRequest,
    ChatReply,
    ChatRequest,
)
from uxforge.services.prompts import (
    ASSISTANT_CHAT_PROMPT,
    DEFAULT_ASSISTANT_CONTEXT,
    DEFAULT_CHAT_CONTEXT,
    DOCUMENT_ANALYSIS_PROMPT,
)

logger = get_logger(__name__)

router = APIRouter()


@router.post("/chat", response_model=ChatReply)
async def chat(data: ChatRequest, services: Services) -> ChatReply:
    """Short single-turn reply; a provider refusal is a 400."""
    logger.info("chat_request", chars=len(data.message))
    settings = services.settings
    result = await services.llm.complete_text(
        f"{data.context or DEFAULT_CHAT_CONTEXT}\n\nUsuario: {data.message}",
        max_tokens=settings.chat_max_tokens,
    )
    if result.refused:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="The assistant declined to respond to this request",
        )
    return ChatReply(response=result.text)


@router.post("/analyze-document", response_model=AnalyzeDocumentReply)
async def analyze_document(data: AnalyzeDocumentRequest, services: Services) -> AnalyzeDocumentReply:
    """Free-form analysis of already-extracted document text."""
    logger.info("analyze_document_request", file_name=data.file_name)
    settings = services.settings
    result = await services.llm.complete_text(
        DOCUMENT_ANALYSIS_PROMPT.format(
            prompt=data.prompt,
            file_name=data.file_name or "documento",
            file_content=data.file_content,
        ),
        max_tokens=settings.analysis_max_tokens,
    )
    if result.refused:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="The assistant declined to analyze this document",
        )
    return AnalyzeDocumentReply(analysis=result.text, file_name=data.file_name)


@router.post("/gemini/chat", response_model=ChatReply)
async def assistant_chat(data: AssistantChatRequest, services: Services) -> ChatReply:
    """Conversational reply with caller-supplied history."""
    history = "\n".join(f"{entry.role}: {entry.content}" for entry in data.conversation_history)
    settings = services.settings
    result = await services.llm.complete_text(
        ASSISTANT_CHAT_PROMPT.format(
            context=data.context or DEFAULT_ASSISTANT_CONTEXT,
            history=history,
            message=data.message,
        ),
        max_tokens=settings.assistant_max_tokens,
    )
    if result.refused:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="The assistant declined to respond to this request",
        )
    return ChatReply(response=result.text)
