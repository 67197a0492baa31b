"""Chat turn handler: the per-message flow of a session.

    user message
      → fine intent (keywords + recency)
      → MODIFY_EXISTING: straight to generation
      → otherwise coarse CODE/CHAT check (LLM, keyword fallback)
           CODE → clarification check → generation
           CHAT → assistant reply
      → everything persisted in the session

A turn never raises: collaborator failures become an assistant message and
a logged diagnostic.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from uxforge.config import Settings, get_settings
from uxforge.core.context_manager import SmartContext, SmartContextManager
from uxforge.core.intent import (
    CLARIFICATION_MARKER,
    IntentClassifier,
    RequestIntent,
    detect_request_intent,
)
from uxforge.core.logging import get_logger
from uxforge.core.orchestrator import GenerationError, GenerationOrchestrator
from uxforge.schemas.document import ExtractedDocumentData
from uxforge.schemas.session import ChatMessage, DocumentContext, FileAttachment, MessageRole
from uxforge.services.document_extraction import DocumentExtractor
from uxforge.services.llm import LLMClient, LLMProviderError
from uxforge.services.session_store import SessionStore

logger = get_logger(__name__)


class TurnKind(StrEnum):
    CHAT = "chat"
    CLARIFICATION = "clarification"
    GENERATION = "generation"
    ERROR = "error"


@dataclass
class TurnOutcome:
    kind: TurnKind
    intent: RequestIntent
    message: ChatMessage
    smart_context: SmartContext | None = None
    preview_url: str | None = None


REFUSAL_REPLY = "⚠️ El asistente declinó responder a esta solicitud. Intenta reformularla."
ERROR_REPLY = "❌ Error: {error}"
GENERIC_ERROR = "No pude contactar al asistente en este momento. Intenta de nuevo en unos segundos."


def detect_framework(prompt: str) -> str:
    """Framework hint shown to the user; the generated artifact is always static HTML."""
    lowered = prompt.lower()
    if "vite" in lowered:
        return "vite"
    if "react" in lowered and "next" not in lowered:
        return "react"
    return "nextjs"


def clarification_message(questions: str) -> str:
    return (
        f"{CLARIFICATION_MARKER} **¡Perfecto! Quiero asegurarme de crear exactamente lo que necesitas.**\n\n"
        f"{questions}\n\n"
        "*Una vez que me confirmes estos detalles, procederé a generar el código del mockup móvil.*"
    )


# ── Document-driven prompts ─────────────────────────────────────────

_FEATURE_THEMES: tuple[tuple[tuple[str, ...], str], ...] = (
    (
        ("gamif", "reto", "punto", "challenge"),
        "Crea una interfaz móvil para gamificación con retos y puntos, basada en \"{title}\". "
        "Incluye: tarjetas de retos, sistema de puntos, badges, y clasificación de usuarios.",
    ),
    (
        ("pago", "tip", "checkout", "propina"),
        "Crea una interfaz móvil para checkout y pagos con propinas, basada en \"{title}\". "
        "Incluye: resumen del pedido, métodos de pago, opciones de propina, y confirmación.",
    ),
    (
        ("deliver", "entrega", "track"),
        "Crea una interfaz móvil para seguimiento de entrega, basada en \"{title}\". "
        "Incluye: mapa en tiempo real, estado del pedido, información del repartidor, y tiempo estimado.",
    ),
    (
        ("restaurant", "comida", "menu"),
        "Crea una interfaz móvil para restaurantes y menús, basada en \"{title}\". "
        "Incluye: lista de restaurantes, categorías de comida, productos con precios, y carrito de compras.",
    ),
)


def compose_document_prompt(file_name: str, data: ExtractedDocumentData | None) -> str:
    """Generation prompt derived from a freshly extracted document."""
    if data is None:
        return (
            f"Crea una interfaz móvil basada en el documento \"{file_name}\". "
            "Genera una pantalla principal con funcionalidades de la app."
        )

    title = data.title or file_name
    if data.features:
        main = data.features[0]
        name = main.name.lower()
        for keywords, template in _FEATURE_THEMES:
            if any(k in name for k in keywords):
                return template.format(title=title)
        return (
            f"Crea una interfaz móvil para {main.name}, basada en \"{title}\". "
            f"Funcionalidad principal: {main.description}"
        )
    if data.user_flows:
        flow = data.user_flows[0]
        return (
            f"Crea una interfaz móvil para el flujo \"{flow.name}\", basada en \"{title}\". "
            f"Incluye las pantallas: {', '.join(flow.screens[:3])}."
        )
    if data.requirements:
        return f"Crea una interfaz móvil basada en \"{title}\". Requisito principal: {data.requirements[0]}"
    return (
        f"Crea una interfaz móvil basada en el documento \"{title}\". "
        "Genera una pantalla principal con las funcionalidades identificadas en el PRD."
    )


# ── Handler ─────────────────────────────────────────────────────────


class ChatTurnHandler:
    def __init__(
        self,
        llm: LLMClient,
        classifier: IntentClassifier,
        context_manager: SmartContextManager,
        orchestrator: GenerationOrchestrator,
        extractor: DocumentExtractor,
        settings: Settings | None = None,
    ) -> None:
        self.llm = llm
        self.classifier = classifier
        self.context_manager = context_manager
        self.orchestrator = orchestrator
        self.extractor = extractor
        self._settings = settings or get_settings()

    async def handle_message(
        self,
        store: SessionStore,
        content: str,
        attachments: list[FileAttachment] | None = None,
    ) -> TurnOutcome:
        history = await store.get_messages()
        documents = await store.get_document_contexts()
        await store.add_message(MessageRole.USER, content, attachments=attachments)

        intent = detect_request_intent(content, history, documents)
        if intent == RequestIntent.MODIFY_EXISTING:
            logger.info("turn_routed", route="modify", intent=intent.value)
            return await self._generate(store, content, history, documents, intent)

        if await self.classifier.is_code_request(content):
            questions = await self.classifier.clarifying_questions(content, history, documents)
            if questions:
                message = await store.add_message(MessageRole.ASSISTANT, clarification_message(questions))
                logger.info("turn_routed", route="clarification")
                return TurnOutcome(TurnKind.CLARIFICATION, RequestIntent.GENERATE_CODE, message)

            # The coarse check outranks a document/chat reading of the same message
            logger.info("turn_routed", route="generate", fine_intent=intent.value)
            return await self._generate(store, content, history, documents, RequestIntent.GENERATE_CODE)

        chat_intent = intent if intent == RequestIntent.ANALYZE_DOCUMENT else RequestIntent.CHAT
        logger.info("turn_routed", route="chat", intent=chat_intent.value)
        return await self._reply(store, content, history, documents, chat_intent)

    async def _generate(
        self,
        store: SessionStore,
        content: str,
        history: list[ChatMessage],
        documents: list[DocumentContext],
        intent: RequestIntent,
    ) -> TurnOutcome:
        smart_context = self.context_manager.build_smart_context(
            content, history, documents, intent=intent
        )
        try:
            message = await self.orchestrator.generate_for_session(
                store,
                smart_context.final_prompt,
                user_prompt=content,
                framework=detect_framework(content),
                document_count=len(smart_context.documents_used),
            )
        except GenerationError as e:
            # The in-flight message already carries the error body
            logger.error("turn_generation_failed", error=str(e))
            messages = await store.get_messages()
            return TurnOutcome(TurnKind.ERROR, intent, messages[-1], smart_context)

        return TurnOutcome(
            TurnKind.GENERATION,
            intent,
            message,
            smart_context,
            preview_url=message.preview_url,
        )

    async def _reply(
        self,
        store: SessionStore,
        content: str,
        history: list[ChatMessage],
        documents: list[DocumentContext],
        intent: RequestIntent,
    ) -> TurnOutcome:
        smart_context = self.context_manager.build_smart_context(
            content, history, documents, intent=intent
        )
        try:
            result = await self.llm.complete_text(
                smart_context.final_prompt, max_tokens=self._settings.assistant_max_tokens
            )
        except LLMProviderError as e:
            logger.error("turn_reply_failed", error=str(e))
            message = await store.add_message(MessageRole.ASSISTANT, ERROR_REPLY.format(error=GENERIC_ERROR))
            return TurnOutcome(TurnKind.ERROR, intent, message, smart_context)

        if result.refused:
            logger.warning("turn_reply_refused")
            message = await store.add_message(MessageRole.ASSISTANT, REFUSAL_REPLY)
            return TurnOutcome(TurnKind.ERROR, intent, message, smart_context)

        message = await store.add_message(MessageRole.ASSISTANT, result.text.strip())
        return TurnOutcome(TurnKind.CHAT, intent, message, smart_context)

    # ── Documents ───────────────────────────────────────────────────

    async def process_document(
        self,
        store: SessionStore,
        file_bytes: bytes,
        file_name: str,
        mime_type: str,
        *,
        auto_generate: bool = True,
    ) -> tuple[DocumentContext, TurnOutcome | None]:
        """Extract a document into the session and optionally generate a UI from it.

        Extraction errors (unsupported type, provider failure) propagate to
        the caller; generation problems are reported in the chat.
        """
        extraction = await self.extractor.extract(file_bytes, file_name, mime_type)
        document = await store.add_document_context(
            extraction.document_id,
            file_name,
            extraction.data,
            mime_type,
        )
        notice = f"📄 **Documento procesado: \"{file_name}\"**\n\n✅ He analizado el documento y extraído la información clave."
        if auto_generate:
            notice += " Ahora voy a generar automáticamente una interfaz móvil basada en el contenido del PRD."
        await store.add_message(MessageRole.ASSISTANT, notice)

        if not auto_generate:
            return document, None

        prompt = compose_document_prompt(file_name, extraction.data)
        logger.info("document_auto_generation", document_id=document.document_id)
        history = await store.get_messages()
        documents = await store.get_document_contexts()
        outcome = await self._generate(store, prompt, history, documents, RequestIntent.GENERATE_CODE)
        if outcome.kind == TurnKind.ERROR:
            paused = await store.add_message(
                MessageRole.ASSISTANT,
                "⚠️ **Auto-generación pausada**\n\nTuve un problema generando automáticamente la interfaz. "
                f"Puedes pedirme que cree una interfaz específica basada en el documento \"{file_name}\".",
            )
            outcome.message = paused
        return document, outcome

    # ── New chat ────────────────────────────────────────────────────

    async def start_new_chat(self, store: SessionStore) -> bool:
        """Reset the session and close its sandbox. Returns True if a sandbox was closed."""
        sandbox_id = await store.get_sandbox_id()
        try:
            await store.clear_session()
        finally:
            closed = False
            if sandbox_id:
                closed = await self.orchestrator.discard(sandbox_id)
                if closed:
                    logger.info("new_chat_sandbox_closed", sandbox_id=sandbox_id)
                else:
                    logger.error("new_chat_sandbox_leaked", sandbox_id=sandbox_id)
        logger.info("new_chat_started", sandbox_closed=closed)
        return closed
