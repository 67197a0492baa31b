"""LLM client for text and vision completions (OpenAI-compatible endpoint).

Text completions go through the ``openai`` SDK pointed at the configured base
URL (Mistral by default). Vision completions post base64 data URIs directly
with httpx, since PDF inputs need the ``document_url`` content part that the
SDK types do not model.

A provider refusal is not an error: it comes back as
``CompletionResult(refused=True)`` and callers decide what it means for
their flow. Transport and HTTP failures raise ``LLMProviderError``.
"""

import base64
import logging
import time
from dataclasses import dataclass

import httpx
from openai import APIError, AsyncOpenAI

from uxforge.config import Settings, get_settings

logger = logging.getLogger(__name__)


class LLMProviderError(Exception):
    """Raised when the LLM provider cannot be reached or returns an error."""


@dataclass(frozen=True)
class CompletionResult:
    text: str
    refused: bool = False


def _is_refusal(finish_reason: str | None, refusal: str | None) -> bool:
    return finish_reason == "content_filter" or bool(refusal)


class LLMClient:
    """Thin async wrapper over the provider's chat-completions API."""

    def __init__(self, settings: Settings | None = None, client: AsyncOpenAI | None = None) -> None:
        self._settings = settings or get_settings()
        self.model = self._settings.llm_model
        self.vision_model = self._settings.llm_vision_model
        self.client = client or AsyncOpenAI(
            api_key=self._settings.llm_api_key,
            base_url=self._settings.llm_base_url,
            timeout=self._settings.llm_timeout_seconds,
        )

    async def complete_text(self, prompt: str, max_tokens: int) -> CompletionResult:
        """Single-turn completion of *prompt*."""
        t0 = time.monotonic()
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                max_tokens=max_tokens,
                messages=[{"role": "user", "content": prompt}],
            )
        except APIError as e:
            logger.error("LLM completion failed: %s", e)
            raise LLMProviderError(f"LLM completion failed: {e}") from e

        if not response.choices:
            raise LLMProviderError("LLM returned no choices")

        choice = response.choices[0]
        refusal = getattr(choice.message, "refusal", None)
        if _is_refusal(choice.finish_reason, refusal):
            logger.warning("LLM refused completion (finish_reason=%s)", choice.finish_reason)
            return CompletionResult(text="", refused=True)

        text = choice.message.content or ""
        logger.debug(
            "LLM completion: %d chars in %d ms",
            len(text),
            int((time.monotonic() - t0) * 1000),
        )
        return CompletionResult(text=text)

    async def complete_vision(
        self,
        prompt: str,
        file_bytes: bytes,
        mime_type: str,
        max_tokens: int | None = None,
    ) -> CompletionResult:
        """Completion over *prompt* plus one image or PDF attachment."""
        if not self._settings.llm_api_key:
            raise LLMProviderError("LLM_API_KEY is not configured")

        b64 = base64.b64encode(file_bytes).decode("ascii")
        data_uri = f"data:{mime_type};base64,{b64}"

        # Use image_url type for images, document_url for PDFs
        if mime_type.startswith("image/"):
            attachment = {"type": "image_url", "image_url": data_uri}
        else:
            attachment = {"type": "document_url", "document_url": data_uri}

        payload = {
            "model": self.vision_model,
            "max_tokens": max_tokens or self._settings.analysis_max_tokens,
            "messages": [
                {
                    "role": "user",
                    "content": [{"type": "text", "text": prompt}, attachment],
                }
            ],
        }

        url = f"{self._settings.llm_base_url.rstrip('/')}/chat/completions"
        try:
            async with httpx.AsyncClient(timeout=self._settings.llm_timeout_seconds) as client:
                response = await client.post(
                    url,
                    json=payload,
                    headers={
                        "Authorization": f"Bearer {self._settings.llm_api_key}",
                        "Content-Type": "application/json",
                    },
                )
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error("Vision HTTP error %s: %s", e.response.status_code, e.response.text[:500])
            raise LLMProviderError(f"Vision completion returned {e.response.status_code}") from e
        except httpx.RequestError as e:
            logger.error("Vision request error: %s", e)
            raise LLMProviderError(f"Vision completion request failed: {e}") from e

        data = response.json()
        choices = data.get("choices") or []
        if not choices:
            raise LLMProviderError("Vision completion returned no choices")

        choice = choices[0]
        message = choice.get("message") or {}
        if _is_refusal(choice.get("finish_reason"), message.get("refusal")):
            logger.warning("Vision completion refused for %s", mime_type)
            return CompletionResult(text="", refused=True)

        content = message.get("content") or ""
        if isinstance(content, list):
            # Some providers return content parts instead of a plain string
            content = "".join(part.get("text", "") for part in content if isinstance(part, dict))

        logger.info("Vision completion: %d chars for %s", len(content), mime_type)
        return CompletionResult(text=content)
