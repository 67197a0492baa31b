"""HTML code generation: one self-contained page per request."""

import html
import re

from uxforge.config import Settings, get_settings
from uxforge.core.logging import get_logger
from uxforge.services.llm import LLMClient

logger = get_logger(__name__)

_FENCE_RE = re.compile(r"^```[a-zA-Z]*\s*\n?|\n?```\s*$")


def strip_code_fences(text: str) -> str:
    """Remove a leading/trailing Markdown code fence if the model added one."""
    return _FENCE_RE.sub("", text.strip()).strip()


def fallback_html(prompt: str) -> str:
    """Deterministic placeholder page used when the model refuses or returns nothing."""
    return (
        "<!DOCTYPE html><html><head><meta charset=\"utf-8\"><title>App</title>"
        "<meta name=\"viewport\" content=\"width=device-width, initial-scale=1\">"
        "<style>body{margin:0;font-family:Arial,sans-serif;background:#667eea;padding:20px}"
        "div{background:white;padding:20px;text-align:center;border-radius:10px;max-width:400px;margin:0 auto}"
        "button{background:#007bff;color:white;border:none;padding:10px;cursor:pointer}</style></head>"
        f"<body><div><h1>App Generated</h1><p>Request: {html.escape(prompt)}</p>"
        "<button onclick=\"alert('Working!')\">Test</button></div></body></html>"
    )


class CodeGenerator:
    def __init__(self, llm: LLMClient, settings: Settings | None = None) -> None:
        self.llm = llm
        self._settings = settings or get_settings()

    async def generate_html(self, prompt: str, fallback_label: str | None = None) -> str:
        """Generate a full HTML document for *prompt*.

        A refusal or empty answer yields ``fallback_html``; transport errors
        propagate as ``LLMProviderError``.
        """
        result = await self.llm.complete_text(prompt, max_tokens=self._settings.codegen_max_tokens)
        label = fallback_label if fallback_label is not None else prompt
        if result.refused:
            logger.warning("codegen_refused")
            return fallback_html(label)

        code = strip_code_fences(result.text)
        if not code:
            logger.warning("codegen_empty")
            return fallback_html(label)

        logger.info("codegen_completed", chars=len(code))
        return code
