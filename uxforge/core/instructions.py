"""Instruction blocks appended to assembled prompts, one per context type.

The code-generation block is the brand/style guide shipped as a package
asset (``uxforge/assets/brand_guide.md``). It is used verbatim and loaded
once per process; ``BRAND_GUIDE_PATH`` points at a replacement file.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from functools import lru_cache
from importlib import resources
from pathlib import Path

from uxforge.config import get_settings
from uxforge.core.logging import get_logger

logger = get_logger(__name__)


class ContextType(StrEnum):
    CODE_GENERATION = "code_generation"
    CONVERSATION = "conversation"
    DOCUMENT_ANALYSIS = "document_analysis"


CONVERSATION_INSTRUCTIONS = """# Instrucciones para Conversación
Responde como un asistente útil de UXForge.
Considera el contexto de documentos y conversación reciente si es relevante.
Da respuestas concisas y útiles."""

DOCUMENT_ANALYSIS_INSTRUCTIONS = """# Instrucciones para Análisis de Documentos
Analiza el documento proporcionado y responde basándote en su contenido específico.
Proporciona insights útiles y responde preguntas específicas sobre el documento."""


@dataclass(frozen=True)
class InstructionSet:
    code_generation: str
    conversation: str = CONVERSATION_INSTRUCTIONS
    document_analysis: str = DOCUMENT_ANALYSIS_INSTRUCTIONS

    def for_context(self, context_type: ContextType) -> str:
        if context_type == ContextType.CODE_GENERATION:
            return self.code_generation
        if context_type == ContextType.DOCUMENT_ANALYSIS:
            return self.document_analysis
        return self.conversation


def read_brand_guide(path: str | None = None) -> str:
    if path:
        return Path(path).read_text(encoding="utf-8").strip()
    return resources.files("uxforge").joinpath("assets/brand_guide.md").read_text(encoding="utf-8").strip()


@lru_cache
def load_instructions() -> InstructionSet:
    """Load the instruction set once per process."""
    path = get_settings().brand_guide_path
    brand_guide = read_brand_guide(path)
    logger.info("instructions_loaded", brand_guide_chars=len(brand_guide), override=bool(path))
    return InstructionSet(code_generation=brand_guide)


def compose_code_prompt(user_prompt: str, instructions: InstructionSet | None = None) -> str:
    """Brand guide followed by the literal request, for callers without session context."""
    instructions = instructions or load_instructions()
    return f"{instructions.code_generation}\n\n# Solicitud del Usuario\n{user_prompt}"
