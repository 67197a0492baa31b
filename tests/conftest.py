"""Shared fakes for Redis, the sandbox provider and the LLM."""

from __future__ import annotations

import fnmatch
import uuid
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ResponseError

from uxforge.config import Settings
from uxforge.core.instructions import InstructionSet
from uxforge.schemas.document import ExtractedDocumentData
from uxforge.schemas.session import ChatMessage, DocumentContext, MessageRole
from uxforge.services.llm import CompletionResult
from uxforge.services.sandbox import CommandOutput, SandboxNotFoundError, SandboxProviderError

BRAND_GUIDE = "# Guía de marca\nUsa rojo #FF441F y Roboto."


class FakeRedis:
    """Just enough of redis.asyncio.Redis for the session store."""

    def __init__(self) -> None:
        self.data: dict[str, str] = {}
        self.expiry: dict[str, int] = {}
        self.fail_sets = 0  # number of upcoming SETs that raise

    async def get(self, key: str) -> str | None:
        return self.data.get(key)

    async def set(self, key: str, value: str, ex: int | None = None) -> bool:
        if self.fail_sets > 0:
            self.fail_sets -= 1
            raise ResponseError("OOM command not allowed when used memory > 'maxmemory'.")
        self.data[key] = value
        if ex is not None:
            self.expiry[key] = ex
        return True

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
        return removed

    async def scan_iter(self, match: str = "*"):
        for key in list(self.data):
            if fnmatch.fnmatch(key, match):
                yield key

    async def aclose(self) -> None:
        return None


class FakeSandboxClient:
    """In-memory SandboxClient that records every call."""

    def __init__(self, ready_after: int = 1) -> None:
        self.ready_after = ready_after  # curl attempts until "200"; 0 = never
        self.created: list[str] = []
        self.killed: list[str] = []
        self.files: dict[tuple[str, str], str] = {}
        self.commands: list[tuple[str, str, bool]] = []
        self.fail_write = False
        self.missing: set[str] = set()
        self._checks: dict[str, int] = {}

    async def create(self, timeout_seconds: int) -> str:
        sandbox_id = f"sbx{len(self.created) + 1}"
        self.created.append(sandbox_id)
        return sandbox_id

    def _ensure(self, sandbox_id: str) -> None:
        if sandbox_id in self.missing or sandbox_id in self.killed:
            raise SandboxNotFoundError(sandbox_id)

    async def write_file(self, sandbox_id: str, path: str, content: str) -> None:
        self._ensure(sandbox_id)
        if self.fail_write:
            raise SandboxProviderError("disk full")
        self.files[(sandbox_id, path)] = content

    async def run_command(self, sandbox_id, command, *, workdir=None, background=False, timeout_seconds=None):
        self._ensure(sandbox_id)
        self.commands.append((sandbox_id, command, background))
        if command.startswith("curl"):
            self._checks[sandbox_id] = self._checks.get(sandbox_id, 0) + 1
            if self.ready_after and self._checks[sandbox_id] >= self.ready_after:
                return CommandOutput(stdout="200")
            return CommandOutput(stdout="000", exit_code=7)
        if command.startswith("pkill"):
            return CommandOutput(exit_code=1)
        return CommandOutput()

    async def get_host(self, sandbox_id: str, port: int) -> str:
        self._ensure(sandbox_id)
        return f"{port}-{sandbox_id}.e2b.app"

    async def kill(self, sandbox_id: str) -> None:
        self._ensure(sandbox_id)
        self.killed.append(sandbox_id)

    def html_for(self, sandbox_id: str) -> list[str]:
        return [content for (sid, _), content in self.files.items() if sid == sandbox_id]


def make_llm(responder: Callable[[str], CompletionResult | str] | None = None) -> AsyncMock:
    """LLM double whose complete_text answers via *responder(prompt)*."""

    async def complete_text(prompt: str, max_tokens: int) -> CompletionResult:
        answer = responder(prompt) if responder else "ok"
        return answer if isinstance(answer, CompletionResult) else CompletionResult(text=answer)

    llm = AsyncMock()
    llm.complete_text = AsyncMock(side_effect=complete_text)
    llm.complete_vision = AsyncMock(return_value=CompletionResult(text="{}"))
    return llm


APP_HTML = "<!DOCTYPE html><html><body>app</body></html>"


def scripted_responder(
    *,
    verdict: str = "CÓDIGO",
    clarify: str = "GENERAR_DIRECTO",
    html: CompletionResult | str | Exception = APP_HTML,
    reply: CompletionResult | str | Exception = "Claro, te ayudo con eso.",
    seen: list[str] | None = None,
    code_marker: str = BRAND_GUIDE,
) -> Callable[[str], CompletionResult | str]:
    """Answer each kind of prompt the chat flow sends; exceptions are raised."""

    def respond(prompt: str) -> CompletionResult | str:
        if seen is not None:
            seen.append(prompt)
        if "GENERAR CÓDIGO o CHATEAR" in prompt:
            answer = verdict
        elif "preguntas de clarificación" in prompt:
            answer = clarify
        elif code_marker in prompt:
            answer = html
        else:
            answer = reply
        if isinstance(answer, Exception):
            raise answer
        return answer

    return respond


def make_message(
    content: str,
    role: MessageRole = MessageRole.USER,
    *,
    age: timedelta = timedelta(0),
    preview_url: str | None = None,
    is_generating: bool = False,
) -> ChatMessage:
    return ChatMessage(
        id=f"msg_{uuid.uuid4().hex[:9]}",
        role=role,
        content=content,
        timestamp=datetime.now(UTC) - age,
        preview_url=preview_url,
        is_generating=is_generating,
    )


def make_document(
    file_name: str = "prd.pdf",
    *,
    age: timedelta = timedelta(0),
    data: ExtractedDocumentData | None = None,
    document_id: str | None = None,
) -> DocumentContext:
    return DocumentContext(
        document_id=document_id or f"doc_{file_name}",
        file_name=file_name,
        mime_type="application/pdf",
        extracted_data=data,
        timestamp=datetime.now(UTC) - age,
    )


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        llm_api_key="test-key",
        sandbox_ready_max_attempts=3,
        sandbox_ready_interval_seconds=0,
    )


@pytest.fixture
def instructions() -> InstructionSet:
    return InstructionSet(code_generation=BRAND_GUIDE)


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def fake_sandbox() -> FakeSandboxClient:
    return FakeSandboxClient()
