"""Tests for the generation orchestrator and the sandbox registry."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from conftest import APP_HTML, FakeSandboxClient, make_llm
from structlog.testing import capture_logs

from uxforge.core.orchestrator import (
    CREATE_HEADER,
    KILL_SERVER_COMMAND,
    MODIFY_HEADER,
    GenerationError,
    GenerationOrchestrator,
    derive_project_name,
)
from uxforge.core.sandbox_registry import SandboxRegistry
from uxforge.schemas.session import MessageRole
from uxforge.services.code_generation import CodeGenerator
from uxforge.services.llm import LLMProviderError
from uxforge.services.sandbox import SandboxNotFoundError, SandboxProviderError
from uxforge.services.session_store import SessionStore


def build_orchestrator(sandbox: FakeSandboxClient, settings, llm=None) -> GenerationOrchestrator:
    llm = llm or make_llm(lambda p: APP_HTML)
    return GenerationOrchestrator(
        sandbox,
        SandboxRegistry(),
        CodeGenerator(llm, settings),
        settings,
        sleep=AsyncMock(),
    )


class ResettingSandboxClient(FakeSandboxClient):
    """Fake whose writes to one sandbox fail with a non-provider error once ``broken`` is set."""

    def __init__(self, broken_id: str) -> None:
        super().__init__()
        self.broken_id = broken_id
        self.broken = False

    async def write_file(self, sandbox_id: str, path: str, content: str) -> None:
        if self.broken and sandbox_id == self.broken_id:
            raise RuntimeError("connection reset by peer")
        await super().write_file(sandbox_id, path, content)


@pytest.fixture
def orchestrator(fake_sandbox, settings) -> GenerationOrchestrator:
    return build_orchestrator(fake_sandbox, settings)


@pytest.fixture
def store(fake_redis, settings) -> SessionStore:
    return SessionStore(fake_redis, "client-1", settings)


# ── Helpers ────────────────────────────────────────────────────────


class TestDeriveProjectName:
    def test_first_three_long_words(self):
        assert derive_project_name("Crea una app de delivery!", "1234") == "crea-una-app-1234"

    def test_strips_non_ascii(self):
        assert derive_project_name("Diseño móvil bonito", "0001") == "diseo-mvil-bonito-0001"

    def test_default_name(self):
        assert derive_project_name("¿¡ y o !?", "9999") == "my-app-9999"

    def test_generated_suffix(self):
        name = derive_project_name("tienda online")
        prefix, suffix = name.rsplit("-", 1)
        assert prefix == "tienda-online"
        assert len(suffix) == 4 and suffix.isdigit()


# ── Create ─────────────────────────────────────────────────────────


class TestCreate:
    async def test_builds_running_preview(self, orchestrator, fake_sandbox, settings):
        result = await orchestrator.create("prompt final", name_source="tienda de café")

        assert result.sandbox_id == "sbx1"
        assert result.preview_url == "https://3000-sbx1.e2b.app"
        assert result.server_confirmed is True
        assert result.modified is False
        assert result.project_name.startswith("tienda-caf-")

        path = f"{settings.sandbox_workdir}/{result.project_name}/index.html"
        assert fake_sandbox.files[("sbx1", path)] == APP_HTML

        servers = [c for c in fake_sandbox.commands if "http.server" in c[1]]
        assert len(servers) == 1
        assert servers[0][2] is True  # background
        assert f"http.server {settings.sandbox_port} --bind 0.0.0.0" in servers[0][1]

        record = orchestrator.registry.get("sbx1")
        assert record.project_name == result.project_name
        assert record.preview_url == result.preview_url

    async def test_progress_is_reported(self, orchestrator):
        statuses: list[str] = []

        async def on_progress(status: str) -> None:
            statuses.append(status)

        await orchestrator.create("p", name_source="app", on_progress=on_progress)
        assert statuses[0] == "Creando sandbox..."
        assert statuses[-1] == "Iniciando servidor..."

    async def test_failure_kills_sandbox(self, orchestrator, fake_sandbox):
        fake_sandbox.fail_write = True
        with pytest.raises(SandboxProviderError):
            await orchestrator.create("p", name_source="app")
        assert fake_sandbox.killed == ["sbx1"]
        assert orchestrator.registry.count() == 0

    async def test_llm_failure_kills_sandbox(self, fake_sandbox, settings):
        llm = make_llm()
        llm.complete_text.side_effect = LLMProviderError("down")
        orchestrator = build_orchestrator(fake_sandbox, settings, llm)
        with pytest.raises(LLMProviderError):
            await orchestrator.create("p", name_source="app")
        assert fake_sandbox.killed == ["sbx1"]

    async def test_unconfirmed_server_still_returns_url(self, settings):
        sandbox = FakeSandboxClient(ready_after=0)
        orchestrator = build_orchestrator(sandbox, settings)
        with capture_logs() as logs:
            result = await orchestrator.create("p", name_source="app")

        assert result.server_confirmed is False
        assert result.preview_url == "https://3000-sbx1.e2b.app"
        warnings = [e for e in logs if e["event"] == "sandbox_server_not_confirmed"]
        assert warnings and warnings[0]["log_level"] == "warning"
        assert orchestrator._sleep.await_count == settings.sandbox_ready_max_attempts - 1

    async def test_create_bare(self, orchestrator, fake_sandbox):
        sandbox_id = await orchestrator.create_bare()
        assert orchestrator.registry.contains(sandbox_id)
        assert fake_sandbox.files == {}


class TestWaitForServer:
    async def test_ready_on_second_attempt(self, settings):
        sandbox = FakeSandboxClient(ready_after=2)
        orchestrator = build_orchestrator(sandbox, settings)
        sandbox_id = await sandbox.create(60)
        assert await orchestrator.wait_for_server(sandbox_id) is True
        orchestrator._sleep.assert_awaited_once_with(settings.sandbox_ready_interval_seconds)

    async def test_missing_sandbox_propagates(self, orchestrator, fake_sandbox):
        fake_sandbox.missing.add("gone")
        with pytest.raises(SandboxNotFoundError):
            await orchestrator.wait_for_server("gone")


# ── Modify ─────────────────────────────────────────────────────────


class TestModify:
    async def test_reuses_sandbox_and_restarts_server(self, orchestrator, fake_sandbox):
        created = await orchestrator.create("p", name_source="app")
        modified = await orchestrator.modify(created.sandbox_id, "p2")

        assert modified.modified is True
        assert modified.sandbox_id == created.sandbox_id
        assert modified.preview_url == created.preview_url
        assert modified.project_name.startswith("project-")
        assert fake_sandbox.created == ["sbx1"]
        commands = [c[1] for c in fake_sandbox.commands]
        assert KILL_SERVER_COMMAND in commands
        assert commands.index(KILL_SERVER_COMMAND) < max(
            i for i, c in enumerate(commands) if "http.server" in c and "pkill" not in c
        )
        assert orchestrator.registry.get("sbx1").project_name == modified.project_name

    async def test_unknown_sandbox(self, orchestrator):
        with pytest.raises(SandboxNotFoundError):
            await orchestrator.modify("nope", "p")


class TestKill:
    async def test_kill_unregisters(self, orchestrator, fake_sandbox):
        sandbox_id = await orchestrator.create_bare()
        await orchestrator.kill(sandbox_id)
        assert fake_sandbox.killed == [sandbox_id]
        assert not orchestrator.registry.contains(sandbox_id)

    async def test_kill_failure_still_unregisters(self, orchestrator, fake_sandbox):
        sandbox_id = await orchestrator.create_bare()
        fake_sandbox.missing.add(sandbox_id)
        with pytest.raises(SandboxNotFoundError):
            await orchestrator.kill(sandbox_id)
        assert not orchestrator.registry.contains(sandbox_id)

    async def test_discard_reports_failure(self, orchestrator, fake_sandbox):
        sandbox_id = await orchestrator.create_bare()
        fake_sandbox.missing.add(sandbox_id)
        assert await orchestrator.discard(sandbox_id) is False


# ── Session-level generation ───────────────────────────────────────


class TestGenerateForSession:
    async def test_first_generation_creates(self, orchestrator, store):
        message = await orchestrator.generate_for_session(
            store, "final", user_prompt="crea una app", framework="nextjs", document_count=2
        )
        assert message.role == MessageRole.ASSISTANT
        assert message.is_generating is False
        assert message.preview_url == "https://3000-sbx1.e2b.app"
        assert "generado exitosamente" in message.content
        assert "usando el contexto de 2 documento(s)" in message.content
        assert message.project_id
        assert await store.get_sandbox_id() == "sbx1"

    async def test_second_generation_modifies(self, orchestrator, store, fake_sandbox):
        first = await orchestrator.generate_for_session(store, "f1", user_prompt="crea una app")
        second = await orchestrator.generate_for_session(store, "f2", user_prompt="cambia el color")
        assert second.preview_url == first.preview_url
        assert "modificado exitosamente" in second.content
        assert fake_sandbox.created == ["sbx1"]

    async def test_failed_modify_falls_back_to_create(self, orchestrator, store, fake_sandbox):
        await orchestrator.generate_for_session(store, "f1", user_prompt="crea una app")
        fake_sandbox.missing.add("sbx1")

        message = await orchestrator.generate_for_session(store, "f2", user_prompt="cambia el color")
        assert message.preview_url == "https://3000-sbx2.e2b.app"
        assert "generado exitosamente" in message.content
        assert await store.get_sandbox_id() == "sbx2"
        assert not orchestrator.registry.contains("sbx1")

    async def test_unexpected_modify_error_falls_back_to_create(self, settings, store):
        sandbox = ResettingSandboxClient("sbx1")
        orchestrator = build_orchestrator(sandbox, settings)
        await orchestrator.generate_for_session(store, "f1", user_prompt="crea una app")
        sandbox.broken = True

        with capture_logs() as logs:
            message = await orchestrator.generate_for_session(store, "f2", user_prompt="cambia el color")

        assert message.preview_url == "https://3000-sbx2.e2b.app"
        assert message.is_generating is False
        assert await store.get_sandbox_id() == "sbx2"
        assert sandbox.killed == ["sbx1"]
        failed = [e for e in logs if e["event"] == "sandbox_modify_failed_creating_new"]
        assert failed[0]["error_type"] == "RuntimeError"

    async def test_fallback_progress_uses_create_header(self, orchestrator, store, fake_sandbox):
        await orchestrator.generate_for_session(store, "f1", user_prompt="crea una app")
        fake_sandbox.missing.add("sbx1")
        seen: list[str] = []
        original = store.update_message

        async def spy(message_id, **patch):
            if "content" in patch:
                seen.append(patch["content"])
            return await original(message_id, **patch)

        store.update_message = spy
        await orchestrator.generate_for_session(store, "f2", user_prompt="cambia el color")

        progress = [c for c in seen if "**Estado**" in c]
        assert progress[0].startswith(MODIFY_HEADER)
        creating = next(c for c in progress if "Creando sandbox..." in c)
        assert creating.startswith(CREATE_HEADER)
        assert progress[-1].startswith(CREATE_HEADER)

    async def test_unregistered_sandbox_id_creates_new(self, orchestrator, store, fake_sandbox):
        await store.set_sandbox_id("from-previous-process")
        message = await orchestrator.generate_for_session(store, "f", user_prompt="crea una app")
        assert message.preview_url == "https://3000-sbx1.e2b.app"
        assert fake_sandbox.killed == []

    async def test_progress_updates_the_inflight_message(self, fake_sandbox, settings, store):
        orchestrator = build_orchestrator(fake_sandbox, settings)
        seen: list[str] = []
        original = store.update_message

        async def spy(message_id, **patch):
            if "content" in patch:
                seen.append(patch["content"])
            return await original(message_id, **patch)

        store.update_message = spy
        await orchestrator.generate_for_session(store, "f", user_prompt="crea una app")
        assert any("**Estado**: Creando sandbox..." in c for c in seen)

    async def test_error_leaves_message_settled(self, fake_sandbox, settings, store):
        llm = make_llm()
        llm.complete_text.side_effect = LLMProviderError("provider down")
        orchestrator = build_orchestrator(fake_sandbox, settings, llm)

        with pytest.raises(GenerationError):
            await orchestrator.generate_for_session(store, "f", user_prompt="crea una app")

        messages = await store.get_messages()
        assert messages[-1].is_generating is False
        assert messages[-1].content.startswith("❌ **Error en la generación**")
        assert "provider down" in messages[-1].content
        assert fake_sandbox.killed == ["sbx1"]
        assert await store.get_sandbox_id() is None

    async def test_unconfirmed_server_is_noted(self, settings, store):
        orchestrator = build_orchestrator(FakeSandboxClient(ready_after=0), settings)
        message = await orchestrator.generate_for_session(store, "f", user_prompt="crea una app")
        assert message.preview_url
        assert "⚠️ El servidor aún no confirmó" in message.content


# ── Registry ───────────────────────────────────────────────────────


class TestSandboxRegistry:
    def test_register_touch_unregister(self):
        registry = SandboxRegistry()
        record = registry.register("s1")
        before = record.last_activity
        registry.touch("s1", project_name="p", preview_url="https://x")
        assert record.project_name == "p"
        assert record.preview_url == "https://x"
        assert record.last_activity >= before
        assert registry.count() == 1
        assert registry.unregister("s1") is True
        assert registry.unregister("s1") is False
        assert registry.list_records() == []

    def test_touch_unknown_is_ignored(self):
        registry = SandboxRegistry()
        registry.touch("missing", project_name="p")
        assert registry.get("missing") is None

    def test_lock_per_sandbox(self):
        registry = SandboxRegistry()
        assert registry.lock("a") is registry.lock("a")
        assert registry.lock("a") is not registry.lock("b")

    def test_registries_are_independent(self):
        a, b = SandboxRegistry(), SandboxRegistry()
        a.register("s1")
        assert not b.contains("s1")
