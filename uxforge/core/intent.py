"""Intent classification for incoming chat messages.

Two layers:

* ``detect_request_intent``: pure keyword/recency rules that pick one of
  four intents and drive context assembly. No I/O.
* ``IntentClassifier``: the coarse CODE vs CHAT decision and the
  clarification check. Both ask the LLM but always have a deterministic
  answer to fall back on, so a provider failure never blocks a turn.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from enum import StrEnum

from uxforge.config import Settings, get_settings
from uxforge.core.logging import get_logger
from uxforge.schemas.session import ChatMessage, DocumentContext, MessageRole
from uxforge.services.llm import LLMClient, LLMProviderError
from uxforge.services.prompts import CLARIFICATION_PROMPT, INTENT_PROMPT

logger = get_logger(__name__)


class RequestIntent(StrEnum):
    GENERATE_CODE = "generate_code"
    MODIFY_EXISTING = "modify_existing"
    CHAT = "chat"
    ANALYZE_DOCUMENT = "analyze_document"


# ── Keyword tables ──────────────────────────────────────────────────

CODE_GENERATION_KEYWORDS: tuple[str, ...] = (
    "genera", "crea", "construye", "haz", "desarrolla", "código", "aplicación",
    "app", "website", "web", "sitio", "landing", "dashboard", "ecommerce",
    "tienda", "pantalla", "interfaz", "componente", "página", "formulario",
    "build", "create", "develop", "make", "design", "implement",
)

MODIFICATION_KEYWORDS: tuple[str, ...] = (
    "modifica", "cambia", "actualiza", "mejora", "agrega", "añade", "quita",
    "elimina", "corrige", "arregla", "ajusta", "edita",
    "modify", "change", "update", "improve", "add", "remove", "fix", "edit", "adjust",
)

DOCUMENT_REFERENCE_KEYWORDS: tuple[str, ...] = (
    "pdf", "documento", "archivo", "imagen", "prd", "wireframe", "diseño",
    "especificación", "requerimiento", "este documento", "el documento",
    "la imagen", "el archivo", "document", "file", "image", "spec", "requirement",
)

# Narrower list for the CODE/CHAT pre-filter; a miss skips the LLM entirely.
CODE_REQUEST_KEYWORDS: tuple[str, ...] = (
    "crea", "genera", "construye", "desarrolla", "haz una", "build", "create", "make",
    "aplicación", "app", "página", "sitio", "website", "web", "landing",
    "dashboard", "formulario", "interfaz", "componente",
)

CLARIFICATION_MARKER = "🤔"
GENERATE_DIRECTLY_TOKEN = "GENERAR_DIRECTO"
CODE_VERDICT_TOKEN = "CÓDIGO"

ANALYZE_DOCUMENT_RECENCY_HOURS = 0.5
MODIFY_RECENCY_HOURS = 2
CLARIFICATION_LOOKBACK_MESSAGES = 10
MAX_CLARIFICATION_CHARS = 300


def matched_keywords(prompt: str, keywords: tuple[str, ...]) -> list[str]:
    lowered = prompt.lower()
    return [k for k in keywords if k in lowered]


def is_recent(timestamp: datetime, hours: float, now: datetime | None = None) -> bool:
    now = now or datetime.now(UTC)
    return now - timestamp <= timedelta(hours=hours)


def detect_request_intent(
    prompt: str,
    messages: list[ChatMessage],
    documents: list[DocumentContext],
    now: datetime | None = None,
) -> RequestIntent:
    """Classify *prompt* by keyword and recency rules. First matching rule wins."""
    now = now or datetime.now(UTC)

    if matched_keywords(prompt, DOCUMENT_REFERENCE_KEYWORDS) and any(
        is_recent(doc.timestamp, ANALYZE_DOCUMENT_RECENCY_HOURS, now) for doc in documents
    ):
        return RequestIntent.ANALYZE_DOCUMENT

    if matched_keywords(prompt, MODIFICATION_KEYWORDS) and any(
        msg.preview_url and is_recent(msg.timestamp, MODIFY_RECENCY_HOURS, now) for msg in messages
    ):
        return RequestIntent.MODIFY_EXISTING

    if matched_keywords(prompt, CODE_GENERATION_KEYWORDS):
        return RequestIntent.GENERATE_CODE

    return RequestIntent.CHAT


def keyword_code_verdict(prompt: str) -> bool:
    """Deterministic CODE/CHAT verdict used as pre-filter and fallback."""
    return bool(matched_keywords(prompt, CODE_REQUEST_KEYWORDS))


# ── LLM-backed checks ───────────────────────────────────────────────


class IntentClassifier:
    """CODE/CHAT disambiguation and clarification check, backed by the LLM."""

    def __init__(self, llm: LLMClient, settings: Settings | None = None) -> None:
        self.llm = llm
        self._settings = settings or get_settings()

    async def is_code_request(self, prompt: str) -> bool:
        has_keywords = keyword_code_verdict(prompt)
        if not has_keywords:
            return False

        try:
            result = await self.llm.complete_text(
                INTENT_PROMPT.format(prompt=prompt),
                max_tokens=self._settings.intent_max_tokens,
            )
        except LLMProviderError as e:
            logger.warning("intent_llm_failed", error=str(e), fallback=has_keywords)
            return has_keywords

        answer = result.text.strip().upper()
        if result.refused or not answer:
            logger.info("intent_llm_no_answer", refused=result.refused, fallback=has_keywords)
            return has_keywords

        is_code = CODE_VERDICT_TOKEN in answer
        logger.info("intent_classified", verdict="code" if is_code else "chat")
        return is_code

    async def clarifying_questions(
        self,
        prompt: str,
        messages: list[ChatMessage],
        documents: list[DocumentContext],
    ) -> str | None:
        """Return questions to ask before generating, or ``None`` to generate directly."""
        recent = messages[-CLARIFICATION_LOOKBACK_MESSAGES:]
        if any(m.role == MessageRole.ASSISTANT and CLARIFICATION_MARKER in m.content for m in recent):
            logger.info("clarification_skipped", reason="already_asked")
            return None

        if documents:
            document_context = "Documentos disponibles: " + ", ".join(d.file_name for d in documents)
        else:
            document_context = "No hay documentos analizados"

        try:
            result = await self.llm.complete_text(
                CLARIFICATION_PROMPT.format(prompt=prompt, document_context=document_context),
                max_tokens=self._settings.clarification_max_tokens,
            )
        except LLMProviderError as e:
            logger.warning("clarification_llm_failed", error=str(e))
            return None

        answer = result.text.strip()
        if result.refused or not answer or GENERATE_DIRECTLY_TOKEN in answer:
            return None
        if len(answer) > MAX_CLARIFICATION_CHARS:
            logger.info("clarification_skipped", reason="too_long", length=len(answer))
            return None

        logger.info("clarification_requested", length=len(answer))
        return answer
