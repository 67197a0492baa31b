"""Generation orchestrator: turns a prompt into a running preview.

Create path: new sandbox → generate HTML → write ``index.html`` into a fresh
project directory → start a static file server → poll readiness → preview URL.
Modify path: same steps on the session's existing sandbox, restarting the
server in place so the preview host stays the same.

Any failure on the create path kills the half-built sandbox before the error
propagates. A failed modify falls back to create within the same turn.
Readiness is soft: when polling gives up the URL is still returned with
``server_confirmed=False``.
"""

from __future__ import annotations

import asyncio
import re
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from uxforge.config import Settings, get_settings
from uxforge.core.logging import get_logger, sandbox_id_var
from uxforge.core.sandbox_registry import SandboxRegistry
from uxforge.schemas.session import ChatMessage, MessageRole
from uxforge.services.code_generation import CodeGenerator
from uxforge.services.sandbox import SandboxClient, SandboxNotFoundError, SandboxProviderError
from uxforge.services.session_store import SessionStore

logger = get_logger(__name__)

ProgressCallback = Callable[[str], Awaitable[None]]

DEFAULT_PROJECT_NAME = "my-app"
KILL_SERVER_COMMAND = 'pkill -f "python3.*http.server"'

CREATE_HEADER = "🚀 **Generando aplicación móvil**"
MODIFY_HEADER = "🔄 **Modificando aplicación existente**"


class GenerationError(Exception):
    """Raised when neither modifying nor creating a sandbox produced a preview."""


@dataclass
class GenerationResult:
    sandbox_id: str
    project_name: str
    preview_url: str
    server_confirmed: bool
    modified: bool = False


def _uniqueness_suffix() -> str:
    return str(int(time.time() * 1000))[-4:]


def derive_project_name(prompt: str, suffix: str | None = None) -> str:
    """Filesystem-safe project directory name built from the prompt's first words."""
    cleaned = re.sub(r"[^a-z0-9\s]", "", prompt.lower())
    words = [w for w in cleaned.split() if len(w) > 2][:3]
    name = "-".join(words) if words else DEFAULT_PROJECT_NAME
    return f"{name}-{suffix or _uniqueness_suffix()}"


async def _report(on_progress: ProgressCallback | None, status: str) -> None:
    if on_progress is not None:
        await on_progress(status)


# ── User-facing messages ────────────────────────────────────────────


def _start_message(prompt: str, modifying: bool) -> str:
    if modifying:
        return (
            f"🔄 **Modificando aplicación existente**\n\nSolicitud: \"{prompt}\"\n\n"
            "✨ Aplicando cambios al mockup móvil actual..."
        )
    return (
        f"🚀 **Generando nueva aplicación móvil**\n\nSolicitud: \"{prompt}\"\n\n"
        "🎯 Creando mockup móvil desde cero..."
    )


def _success_message(result: GenerationResult, framework: str, document_count: int) -> str:
    context_info = (
        f" usando el contexto de {document_count} documento(s) analizado(s)" if document_count else ""
    )
    if result.modified:
        text = (
            "🔄 **¡Mockup móvil modificado exitosamente!**\n\n"
            f"He actualizado el mockup basándome en tu nueva solicitud{context_info}.\n\n"
            "📱 **Vista previa**: El mockup actualizado está ejecutándose en el mismo sandbox\n"
            f"📦 **Framework**: {framework}\n"
            f"🆔 **Proyecto**: {result.project_name}"
        )
    else:
        text = (
            "✅ **¡Mockup móvil generado exitosamente!**\n\n"
            f"He creado un nuevo mockup móvil basado en tu solicitud{context_info}.\n\n"
            "📱 **Vista previa**: El mockup está ejecutándose en un sandbox aislado\n"
            f"📦 **Framework**: {framework}\n"
            f"🆔 **Proyecto**: {result.project_name}"
        )
    if not result.server_confirmed:
        text += "\n\n⚠️ El servidor aún no confirmó que está listo. Si la vista previa no carga, recárgala en unos segundos."
    return text


# ── Orchestrator ────────────────────────────────────────────────────


class GenerationOrchestrator:
    def __init__(
        self,
        sandbox: SandboxClient,
        registry: SandboxRegistry,
        code_generator: CodeGenerator,
        settings: Settings | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.sandbox = sandbox
        self.registry = registry
        self.code_generator = code_generator
        self._settings = settings or get_settings()
        self._sleep = sleep

    @property
    def port(self) -> int:
        return self._settings.sandbox_port

    # ── Session-level entry point ───────────────────────────────────

    async def generate_for_session(
        self,
        store: SessionStore,
        final_prompt: str,
        *,
        user_prompt: str,
        framework: str = "nextjs",
        document_count: int = 0,
    ) -> ChatMessage:
        """Run one generation cycle for a chat session.

        Creates the in-flight assistant message, reuses the session's sandbox
        when it has one, and always leaves the message out of the generating
        state. Raises ``GenerationError`` when no preview could be produced.
        """
        existing_id = await store.get_sandbox_id()
        header = MODIFY_HEADER if existing_id else CREATE_HEADER
        message = await store.add_message(
            MessageRole.ASSISTANT,
            _start_message(user_prompt, modifying=existing_id is not None),
            is_generating=True,
        )

        async def progress(status: str) -> None:
            await store.update_message(message.id, content=f"{header}\n\n**Estado**: {status}")

        try:
            result: GenerationResult | None = None
            if existing_id:
                result = await self._try_modify(existing_id, final_prompt, user_prompt, progress)
            if result is None:
                header = CREATE_HEADER
                result = await self.create(
                    final_prompt, name_source=user_prompt, fallback_label=user_prompt, on_progress=progress
                )
        except Exception as e:
            await store.update_message(
                message.id,
                content=f"❌ **Error en la generación**\n\n{e}",
                is_generating=False,
            )
            logger.error("generation_failed", error=str(e), error_type=type(e).__name__)
            raise GenerationError(str(e)) from e

        await store.set_sandbox_id(result.sandbox_id)
        await store.update_message(
            message.id,
            content=_success_message(result, framework, document_count),
            is_generating=False,
            preview_url=result.preview_url,
            project_id=result.project_name,
        )
        return await store.get_message(message.id) or message

    async def _try_modify(
        self,
        sandbox_id: str,
        final_prompt: str,
        user_prompt: str,
        on_progress: ProgressCallback,
    ) -> GenerationResult | None:
        try:
            return await self.modify(
                sandbox_id, final_prompt, fallback_label=user_prompt, on_progress=on_progress
            )
        except Exception as e:
            logger.warning(
                "sandbox_modify_failed_creating_new",
                sandbox_id=sandbox_id,
                error=str(e),
                error_type=type(e).__name__,
            )
        # Don't leave the old sandbox running once the session moves on
        if self.registry.contains(sandbox_id):
            await self.discard(sandbox_id)
        return None

    # ── Create / modify ─────────────────────────────────────────────

    async def create(
        self,
        final_prompt: str,
        *,
        name_source: str,
        fallback_label: str | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> GenerationResult:
        await _report(on_progress, "Creando sandbox...")
        sandbox_id = await self.sandbox.create(self._settings.sandbox_timeout_seconds)
        self.registry.register(sandbox_id)
        sandbox_id_var.set(sandbox_id)

        try:
            await _report(on_progress, "Generando código HTML...")
            html = await self.code_generator.generate_html(final_prompt, fallback_label=fallback_label)

            project_name = derive_project_name(name_source)
            await _report(on_progress, f"Escribiendo proyecto {project_name}...")
            await self._write_project(sandbox_id, project_name, html)

            await _report(on_progress, "Iniciando servidor...")
            await self._start_server(sandbox_id, project_name)
            confirmed = await self.wait_for_server(sandbox_id)

            preview_url = await self._preview_url(sandbox_id)
        except Exception:
            logger.error("sandbox_create_failed_cleaning_up", sandbox_id=sandbox_id)
            await self.discard(sandbox_id)
            raise

        self.registry.touch(sandbox_id, project_name=project_name, preview_url=preview_url)
        logger.info(
            "sandbox_app_created",
            sandbox_id=sandbox_id,
            project_name=project_name,
            preview_url=preview_url,
            server_confirmed=confirmed,
        )
        return GenerationResult(
            sandbox_id=sandbox_id,
            project_name=project_name,
            preview_url=preview_url,
            server_confirmed=confirmed,
        )

    async def modify(
        self,
        sandbox_id: str,
        final_prompt: str,
        *,
        fallback_label: str | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> GenerationResult:
        """Regenerate the app inside an existing sandbox and restart its server."""
        if not self.registry.contains(sandbox_id):
            raise SandboxNotFoundError(sandbox_id)
        sandbox_id_var.set(sandbox_id)

        async with self.registry.lock(sandbox_id):
            self.registry.touch(sandbox_id)
            await _report(on_progress, "Generando código HTML actualizado...")
            html = await self.code_generator.generate_html(final_prompt, fallback_label=fallback_label)

            project_name = f"project-{_uniqueness_suffix()}"
            await _report(on_progress, f"Actualizando proyecto {project_name}...")
            await self._write_project(sandbox_id, project_name, html)

            await _report(on_progress, "Reiniciando servidor...")
            stopped = await self.sandbox.run_command(
                sandbox_id, KILL_SERVER_COMMAND, workdir=self._settings.sandbox_workdir
            )
            if not stopped.ok:
                logger.debug("no_server_to_stop", sandbox_id=sandbox_id, exit_code=stopped.exit_code)
            await self._start_server(sandbox_id, project_name)
            confirmed = await self.wait_for_server(sandbox_id)
            preview_url = await self._preview_url(sandbox_id)

        self.registry.touch(sandbox_id, project_name=project_name, preview_url=preview_url)
        logger.info(
            "sandbox_app_modified",
            sandbox_id=sandbox_id,
            project_name=project_name,
            server_confirmed=confirmed,
        )
        return GenerationResult(
            sandbox_id=sandbox_id,
            project_name=project_name,
            preview_url=preview_url,
            server_confirmed=confirmed,
            modified=True,
        )

    async def create_bare(self) -> str:
        """Provision an empty sandbox without generating anything."""
        sandbox_id = await self.sandbox.create(self._settings.sandbox_timeout_seconds)
        self.registry.register(sandbox_id)
        return sandbox_id

    # ── Teardown ────────────────────────────────────────────────────

    async def kill(self, sandbox_id: str) -> None:
        """Kill a sandbox and forget it. Provider errors propagate."""
        try:
            await self.sandbox.kill(sandbox_id)
        finally:
            self.registry.unregister(sandbox_id)

    async def discard(self, sandbox_id: str) -> bool:
        """Best-effort kill used on failure paths. Returns True if the provider confirmed."""
        try:
            await self.kill(sandbox_id)
            return True
        except SandboxProviderError as e:
            logger.error("sandbox_cleanup_failed", sandbox_id=sandbox_id, error=str(e))
            return False

    # ── Sandbox steps ───────────────────────────────────────────────

    async def _write_project(self, sandbox_id: str, project_name: str, html: str) -> None:
        workdir = self._settings.sandbox_workdir
        created = await self.sandbox.run_command(sandbox_id, f"mkdir -p {project_name}", workdir=workdir)
        if not created.ok:
            raise SandboxProviderError(f"Could not create project directory: {created.stderr.strip()}")
        await self.sandbox.write_file(sandbox_id, f"{workdir}/{project_name}/index.html", html)

    async def _start_server(self, sandbox_id: str, project_name: str) -> None:
        project_path = f"{self._settings.sandbox_workdir}/{project_name}"
        await self.sandbox.run_command(
            sandbox_id,
            f"cd {project_path} && python3 -m http.server {self.port} --bind 0.0.0.0",
            workdir=self._settings.sandbox_workdir,
            background=True,
            timeout_seconds=0,
        )

    async def _preview_url(self, sandbox_id: str) -> str:
        host = await self.sandbox.get_host(sandbox_id, self.port)
        return f"https://{host}"

    async def wait_for_server(self, sandbox_id: str, port: int | None = None) -> bool:
        """Poll the static server until it answers 200 or attempts run out."""
        port = port or self.port
        max_attempts = self._settings.sandbox_ready_max_attempts
        check = f'curl -s -o /dev/null -w "%{{http_code}}" http://localhost:{port}'

        for attempt in range(1, max_attempts + 1):
            try:
                output = await self.sandbox.run_command(sandbox_id, check, timeout_seconds=5)
                if "200" in output.stdout:
                    logger.info("sandbox_server_ready", sandbox_id=sandbox_id, attempts=attempt)
                    return True
            except SandboxNotFoundError:
                raise
            except SandboxProviderError as e:
                logger.debug("sandbox_server_check_failed", attempt=attempt, error=str(e))
            if attempt < max_attempts:
                await self._sleep(self._settings.sandbox_ready_interval_seconds)

        logger.warning(
            "sandbox_server_not_confirmed",
            sandbox_id=sandbox_id,
            port=port,
            attempts=max_attempts,
        )
        return False
