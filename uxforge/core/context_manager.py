"""Smart context manager: builds one token-bounded prompt per chat turn.

The manager picks a budget configuration from the request intent, keeps only
the documents and messages that are recent and relevant, renders them as
Markdown blocks trimmed to their budgets, and closes with the instruction
block for the context type and the literal user request.

Budgets are in estimated tokens (see ``uxforge.core.tokens``). The user
request is reserved first, so the assembled prompt never exceeds
``max_total_tokens`` by more than the instruction block.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Any

from uxforge.core.instructions import ContextType, InstructionSet, load_instructions
from uxforge.core.intent import (
    CODE_GENERATION_KEYWORDS,
    DOCUMENT_REFERENCE_KEYWORDS,
    RequestIntent,
    detect_request_intent,
    is_recent,
    matched_keywords,
)
from uxforge.core.logging import get_logger
from uxforge.core.tokens import TokenEstimator, WordCountEstimator, trim_to_token_limit
from uxforge.schemas.document import ExtractedDocumentData
from uxforge.schemas.session import ChatMessage, DocumentContext, MessageRole

logger = get_logger(__name__)


# ── Configurations ──────────────────────────────────────────────────


@dataclass(frozen=True)
class ContextConfig:
    max_document_tokens: int
    max_chat_tokens: int
    max_total_tokens: int
    sliding_window_size: int
    include_documents: bool
    include_chat_history: bool
    document_relevance_threshold_hours: float


DEFAULT_CONFIGS: dict[ContextType, ContextConfig] = {
    ContextType.CODE_GENERATION: ContextConfig(
        max_document_tokens=80_000,
        max_chat_tokens=0,
        max_total_tokens=100_000,
        sliding_window_size=0,
        include_documents=True,
        include_chat_history=False,
        document_relevance_threshold_hours=24,
    ),
    ContextType.CONVERSATION: ContextConfig(
        max_document_tokens=30_000,
        max_chat_tokens=40_000,
        max_total_tokens=80_000,
        sliding_window_size=20,
        include_documents=True,
        include_chat_history=True,
        document_relevance_threshold_hours=48,
    ),
    ContextType.DOCUMENT_ANALYSIS: ContextConfig(
        max_document_tokens=70_000,
        max_chat_tokens=20_000,
        max_total_tokens=100_000,
        sliding_window_size=10,
        include_documents=True,
        include_chat_history=True,
        document_relevance_threshold_hours=2,
    ),
}

MIN_CHAT_BUDGET_TOKENS = 100
MAX_MESSAGE_CHARS = 5000
CHAT_LINE_CHARS = 200
LEXICAL_OVERLAP_THRESHOLD = 0.1
REQUEST_HEADER = "# Solicitud del Usuario"


def context_type_for(intent: RequestIntent) -> ContextType:
    if intent in (RequestIntent.GENERATE_CODE, RequestIntent.MODIFY_EXISTING):
        return ContextType.CODE_GENERATION
    if intent == RequestIntent.ANALYZE_DOCUMENT:
        return ContextType.DOCUMENT_ANALYSIS
    return ContextType.CONVERSATION


@dataclass
class SmartContext:
    type: ContextType
    intent: RequestIntent
    final_prompt: str
    token_count: int
    documents_used: list[DocumentContext] = field(default_factory=list)
    messages_used: list[ChatMessage] = field(default_factory=list)
    confidence: float = 0.5


# ── Rendering ───────────────────────────────────────────────────────


def format_document_data(data: ExtractedDocumentData) -> str:
    """Render extracted document data as Markdown for prompt context."""
    formatted = ""

    if data.title:
        formatted += f"**Título**: {data.title}\n\n"
    if data.summary:
        formatted += f"**Resumen**: {data.summary}\n\n"

    if data.requirements:
        formatted += "**Requisitos Clave**:\n"
        for req in data.requirements[:10]:
            formatted += f"- {req}\n"
        formatted += "\n"

    if data.features:
        formatted += "**Funcionalidades Principales**:\n"
        for feature in data.features[:8]:
            formatted += f"- **{feature.name}**: {feature.description}\n"
            if feature.components:
                formatted += f"  - Componentes: {', '.join(feature.components)}\n"
        formatted += "\n"

    if data.user_flows:
        formatted += "**Flujos de Usuario**:\n"
        for flow in data.user_flows[:5]:
            formatted += f"- **{flow.name}** (Prioridad: {flow.priority or 'media'}):\n"
            formatted += f"  - Pasos: {' → '.join(flow.steps)}\n"
            if flow.screens:
                formatted += f"  - Pantallas: {', '.join(flow.screens)}\n"
        formatted += "\n"

    if data.technical_specs:
        formatted += "**Especificaciones Técnicas**:\n"
        for spec in data.technical_specs:
            formatted += f"- **{spec.category}**:\n"
            for req in spec.requirements:
                formatted += f"  - {req}\n"
        formatted += "\n"

    return formatted


def build_document_block(documents: list[DocumentContext]) -> str:
    sections = [
        f"## {doc.file_name}\n{format_document_data(doc.extracted_data)}\n---\n\n"
        for doc in documents
        if doc.processed and doc.extracted_data
    ]
    if not sections:
        return ""
    return "# Contexto de Documentos Analizados\n\n" + "".join(sections)


def build_chat_block(messages: list[ChatMessage]) -> str:
    if not messages:
        return ""
    context = "# Contexto de Conversación Reciente\n\n"
    for msg in messages:
        role = "Usuario" if msg.role == MessageRole.USER else "Asistente"
        content = msg.content
        if len(content) > CHAT_LINE_CHARS:
            content = content[:CHAT_LINE_CHARS] + "..."
        context += f"**{role}**: {content}\n\n"
    return context


def _lexical_overlap(prompt: str, data: ExtractedDocumentData) -> float:
    words = [w for w in prompt.lower().split() if len(w) > 3]
    if not words:
        return 0.0
    content = json.dumps(data.model_dump(by_alias=True), ensure_ascii=False).lower()
    return sum(1 for w in words if w in content) / len(words)


# ── Manager ─────────────────────────────────────────────────────────


class SmartContextManager:
    """Assembles the prompt for a turn from session messages and documents."""

    def __init__(
        self,
        instructions: InstructionSet | None = None,
        estimator: TokenEstimator | None = None,
    ) -> None:
        self.instructions = instructions or load_instructions()
        self.estimator = estimator or WordCountEstimator()

    def build_smart_context(
        self,
        user_prompt: str,
        messages: list[ChatMessage],
        documents: list[DocumentContext],
        *,
        intent: RequestIntent | None = None,
        overrides: dict[str, Any] | None = None,
        now: datetime | None = None,
    ) -> SmartContext:
        """Classify (unless *intent* is given), filter, and render the turn prompt."""
        now = now or datetime.now(UTC)
        intent = intent or detect_request_intent(user_prompt, messages, documents, now)
        context_type = context_type_for(intent)
        config = replace(DEFAULT_CONFIGS[context_type], **(overrides or {}))

        relevant_documents = self.filter_relevant_documents(
            documents, user_prompt, config.document_relevance_threshold_hours, now
        )
        relevant_messages = self.filter_relevant_messages(
            messages, context_type, config.sliding_window_size
        )
        final_prompt = self._build_prompt(
            user_prompt, relevant_messages, relevant_documents, context_type, config
        )
        confidence = self.calculate_confidence(intent, user_prompt, relevant_documents, now)

        smart_context = SmartContext(
            type=context_type,
            intent=intent,
            final_prompt=final_prompt,
            token_count=self.estimator.estimate(final_prompt),
            documents_used=relevant_documents,
            messages_used=relevant_messages,
            confidence=confidence,
        )
        logger.info(
            "smart_context_built",
            type=context_type.value,
            intent=intent.value,
            token_count=smart_context.token_count,
            documents_used=len(relevant_documents),
            messages_used=len(relevant_messages),
            confidence=round(confidence, 2),
        )
        return smart_context

    # ── Filters ─────────────────────────────────────────────────────

    def filter_relevant_documents(
        self,
        documents: list[DocumentContext],
        user_prompt: str,
        threshold_hours: float,
        now: datetime | None = None,
    ) -> list[DocumentContext]:
        now = now or datetime.now(UTC)
        mentions_document = bool(matched_keywords(user_prompt, DOCUMENT_REFERENCE_KEYWORDS))

        relevant = []
        for doc in documents:
            if not is_recent(doc.timestamp, threshold_hours, now):
                continue
            if mentions_document or doc.extracted_data is None:
                relevant.append(doc)
            elif _lexical_overlap(user_prompt, doc.extracted_data) > LEXICAL_OVERLAP_THRESHOLD:
                relevant.append(doc)
        return relevant

    def filter_relevant_messages(
        self,
        messages: list[ChatMessage],
        context_type: ContextType,
        window_size: int,
    ) -> list[ChatMessage]:
        if context_type == ContextType.CODE_GENERATION or window_size <= 0:
            return []
        return [
            m for m in messages[-window_size:]
            if not m.is_generating and len(m.content) <= MAX_MESSAGE_CHARS
        ]

    # ── Assembly ────────────────────────────────────────────────────

    def _build_prompt(
        self,
        user_prompt: str,
        messages: list[ChatMessage],
        documents: list[DocumentContext],
        context_type: ContextType,
        config: ContextConfig,
    ) -> str:
        header_tokens = self.estimator.estimate(REQUEST_HEADER)
        if self.estimator.estimate(user_prompt) + header_tokens > config.max_total_tokens:
            user_prompt = trim_to_token_limit(
                user_prompt, config.max_total_tokens - header_tokens, self.estimator
            )
        request_block = f"{REQUEST_HEADER}\n{user_prompt}"
        reserved = self.estimator.estimate(request_block)

        blocks: list[str] = []
        used = 0

        if config.include_documents and documents:
            budget = min(config.max_document_tokens, config.max_total_tokens - reserved)
            document_block = build_document_block(documents)
            if document_block and budget > 0:
                document_block = trim_to_token_limit(document_block, budget, self.estimator)
                if document_block.strip():
                    blocks.append(document_block.rstrip())
                    used += self.estimator.estimate(document_block)

        if config.include_chat_history and messages:
            available = min(config.max_chat_tokens, config.max_total_tokens - used - reserved)
            if available > MIN_CHAT_BUDGET_TOKENS:
                chat_block = trim_to_token_limit(build_chat_block(messages), available, self.estimator)
                if chat_block.strip():
                    blocks.append(chat_block.rstrip())
                    used += self.estimator.estimate(chat_block)

        blocks.append(self.instructions.for_context(context_type))
        blocks.append(request_block)
        return "\n\n".join(blocks)

    def calculate_confidence(
        self,
        intent: RequestIntent,
        user_prompt: str,
        documents: list[DocumentContext],
        now: datetime | None = None,
    ) -> float:
        """Informational score in [0.5, 1.0]; never used for control flow."""
        now = now or datetime.now(UTC)
        confidence = 0.5
        if intent == RequestIntent.GENERATE_CODE:
            confidence += 0.1 * len(matched_keywords(user_prompt, CODE_GENERATION_KEYWORDS))
        if documents:
            confidence += 0.2
            if any(is_recent(doc.timestamp, 1, now) for doc in documents):
                confidence += 0.1
        return min(confidence, 1.0)
