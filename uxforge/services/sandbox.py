"""Remote sandbox client (E2B).

Wraps ``e2b.AsyncSandbox`` behind a small interface keyed by sandbox id so the
orchestrator never holds SDK objects. Handles are cached per process and
re-attached with ``AsyncSandbox.connect`` when missing (e.g. after a
restart). Provider failures surface as ``SandboxProviderError``; an unknown
or expired sandbox as ``SandboxNotFoundError``.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Protocol

from e2b import AsyncSandbox, CommandExitException, NotFoundException, SandboxException

from uxforge.config import Settings, get_settings
from uxforge.core.logging import get_logger

logger = get_logger(__name__)


class SandboxProviderError(Exception):
    """Raised when the sandbox provider fails."""


class SandboxNotFoundError(SandboxProviderError):
    """Raised when a sandbox id is unknown to the provider or has expired."""

    def __init__(self, sandbox_id: str) -> None:
        self.sandbox_id = sandbox_id
        super().__init__(f"Sandbox not found: {sandbox_id}")


@dataclass(frozen=True)
class CommandOutput:
    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class SandboxClient(Protocol):
    async def create(self, timeout_seconds: int) -> str: ...

    async def write_file(self, sandbox_id: str, path: str, content: str) -> None: ...

    async def run_command(
        self,
        sandbox_id: str,
        command: str,
        *,
        workdir: str | None = None,
        background: bool = False,
        timeout_seconds: float | None = None,
    ) -> CommandOutput: ...

    async def get_host(self, sandbox_id: str, port: int) -> str: ...

    async def kill(self, sandbox_id: str) -> None: ...


@contextmanager
def _provider_errors(sandbox_id: str | None, action: str) -> Iterator[None]:
    try:
        yield
    except NotFoundException as e:
        raise SandboxNotFoundError(sandbox_id or "unknown") from e
    except SandboxException as e:
        logger.error("sandbox_provider_error", action=action, sandbox_id=sandbox_id, error=str(e))
        raise SandboxProviderError(f"Sandbox {action} failed: {e}") from e


class E2BSandboxClient:
    """SandboxClient backed by the E2B SDK."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        self._handles: dict[str, AsyncSandbox] = {}

    def _api_key(self) -> str | None:
        return self._settings.e2b_api_key or None

    async def _handle(self, sandbox_id: str) -> AsyncSandbox:
        handle = self._handles.get(sandbox_id)
        if handle is None:
            with _provider_errors(sandbox_id, "connect"):
                handle = await AsyncSandbox.connect(sandbox_id, api_key=self._api_key())
            self._handles[sandbox_id] = handle
        return handle

    async def create(self, timeout_seconds: int) -> str:
        with _provider_errors(None, "create"):
            sandbox = await AsyncSandbox.create(timeout=timeout_seconds, api_key=self._api_key())
        self._handles[sandbox.sandbox_id] = sandbox
        logger.info("sandbox_created", sandbox_id=sandbox.sandbox_id, timeout=timeout_seconds)
        return sandbox.sandbox_id

    async def write_file(self, sandbox_id: str, path: str, content: str) -> None:
        sandbox = await self._handle(sandbox_id)
        with _provider_errors(sandbox_id, "write_file"):
            await sandbox.files.write(path, content)

    async def run_command(
        self,
        sandbox_id: str,
        command: str,
        *,
        workdir: str | None = None,
        background: bool = False,
        timeout_seconds: float | None = None,
    ) -> CommandOutput:
        """Run *command*; a non-zero exit code is returned, not raised."""
        sandbox = await self._handle(sandbox_id)
        timeout = self._settings.sandbox_command_timeout_seconds if timeout_seconds is None else timeout_seconds
        with _provider_errors(sandbox_id, "run_command"):
            try:
                if background:
                    await sandbox.commands.run(command, cwd=workdir, background=True, timeout=timeout)
                    return CommandOutput()
                result = await sandbox.commands.run(command, cwd=workdir, timeout=timeout)
            except CommandExitException as e:
                return CommandOutput(e.stdout, e.stderr, e.exit_code)
        return CommandOutput(result.stdout, result.stderr, result.exit_code)

    async def get_host(self, sandbox_id: str, port: int) -> str:
        sandbox = await self._handle(sandbox_id)
        return sandbox.get_host(port)

    async def kill(self, sandbox_id: str) -> None:
        sandbox = await self._handle(sandbox_id)
        with _provider_errors(sandbox_id, "kill"):
            await sandbox.kill()
        self._handles.pop(sandbox_id, None)
        logger.info("sandbox_killed", sandbox_id=sandbox_id)
