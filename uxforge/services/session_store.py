"""Chat session persistence: one JSON document per client in Redis.

Each client (browser/device) owns exactly one live session under
``<prefix>:<client_id>``. Sessions that are ended or older than the
configured max age are discarded on load and archived under
``<prefix>:<client_id>:old:<session_id>`` with a TTL; at most
``session_archive_limit`` archives are kept per client.

Storage is best-effort: a failing write prunes archives and retries once,
after which the in-memory session stays authoritative and the store is
flagged as degraded. Callers never see persistence errors.
"""

from __future__ import annotations

import asyncio
import json
import time
import uuid
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

from pydantic import ValidationError
from redis.exceptions import RedisError

from uxforge.config import Settings, get_settings
from uxforge.core.context_manager import format_document_data
from uxforge.core.logging import get_logger, session_id_var
from uxforge.schemas.document import ExtractedDocumentData
from uxforge.schemas.session import (
    ChatMessage,
    ChatSession,
    DocumentContext,
    FileAttachment,
    MessageRole,
)

logger = get_logger(__name__)


def generate_id(prefix: str) -> str:
    """``<prefix>_<epoch-ms>_<9 random chars>``."""
    return f"{prefix}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


def _archive_sort_key(key: str) -> int:
    # Archive keys end with the session id, whose second segment is epoch-ms
    session_id = key.rsplit(":", 1)[-1]
    parts = session_id.split("_")
    try:
        return int(parts[1])
    except (IndexError, ValueError):
        return 0


class SessionStore:
    """Durable chat session for one client."""

    def __init__(
        self,
        redis: Any,
        client_id: str,
        settings: Settings | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._redis = redis
        self.client_id = client_id
        self._settings = settings or get_settings()
        self._clock = clock or (lambda: datetime.now(UTC))
        self._session: ChatSession | None = None
        self.persistence_degraded = False

    @property
    def key(self) -> str:
        return f"{self._settings.session_key_prefix}:{self.client_id}"

    def _archive_key(self, session_id: str) -> str:
        return f"{self.key}:old:{session_id}"

    # ── Lifecycle ────────────────────────────────────────────────────

    async def get_or_create_session(self) -> ChatSession:
        """Return the live session, restoring it from storage or starting fresh.

        A cached session gets the same freshness check as a stored one, so a
        long-lived process never hands back a session past its max age.
        """
        if self._session is not None:
            if not self._expired(self._session):
                return self._session
            cached = self._session
            self._session = None
            logger.info("session_discarded", reason=self._discard_reason(cached), session_id=cached.session_id)
            await self._archive(cached.session_id, cached.model_dump_json(by_alias=True))
            return await self._create_new_session()

        restored = await self._load()
        if restored is not None:
            self._session = restored
            session_id_var.set(restored.session_id)
            logger.info(
                "session_restored",
                session_id=restored.session_id,
                messages=len(restored.messages),
                documents=len(restored.documents),
            )
            return restored

        return await self._create_new_session()

    def _expired(self, session: ChatSession) -> bool:
        max_age = timedelta(hours=self._settings.session_max_age_hours)
        return not session.is_active or self._clock() - session.last_activity > max_age

    @staticmethod
    def _discard_reason(session: ChatSession) -> str:
        return "inactive" if not session.is_active else "stale"

    async def _create_new_session(self) -> ChatSession:
        now = self._clock()
        self._session = ChatSession(
            session_id=generate_id("session"),
            created_at=now,
            last_activity=now,
        )
        session_id_var.set(self._session.session_id)
        logger.info("session_created", session_id=self._session.session_id)
        await self._persist()
        return self._session

    async def _load(self) -> ChatSession | None:
        try:
            raw = await self._redis.get(self.key)
        except RedisError as e:
            logger.warning("session_load_failed", error=str(e))
            return None
        if not raw:
            return None

        try:
            session = ChatSession.model_validate_json(raw)
        except ValidationError as e:
            logger.warning("session_discarded", reason="corrupt", error=str(e)[:200])
            await self._delete_key(self.key)
            return None

        if self._expired(session):
            logger.info("session_discarded", reason=self._discard_reason(session), session_id=session.session_id)
            await self._archive(session.session_id, raw)
            return None

        return session

    async def end_session(self) -> None:
        """Mark the session inactive, persist it, and drop the in-memory copy."""
        if self._session is None:
            return
        self._session.is_active = False
        self._touch()
        await self._persist()
        logger.info("session_ended", session_id=self._session.session_id)
        self._session = None

    async def clear_session(self) -> ChatSession:
        """Delete the stored session and start a new empty one.

        Any sandbox referenced by the old session must be captured and
        killed by the caller; this only resets local state.
        """
        await self._delete_key(self.key)
        self._session = None
        logger.info("session_cleared", client_id=self.client_id)
        return await self._create_new_session()

    # ── Messages ─────────────────────────────────────────────────────

    async def add_message(
        self,
        role: MessageRole | str,
        content: str,
        *,
        attachments: list[FileAttachment] | None = None,
        is_generating: bool = False,
        preview_url: str | None = None,
        project_id: str | None = None,
    ) -> ChatMessage:
        session = await self.get_or_create_session()
        message = ChatMessage(
            id=generate_id("msg"),
            role=MessageRole(role),
            content=content,
            timestamp=self._clock(),
            attachments=attachments,
            is_generating=is_generating,
            preview_url=preview_url,
            project_id=project_id,
        )
        session.messages.append(message)
        self._touch()
        await self._persist()
        return message

    async def update_message(self, message_id: str, **patch: Any) -> bool:
        """Merge *patch* into the message with *message_id*. The id itself never changes."""
        session = await self.get_or_create_session()
        for index, message in enumerate(session.messages):
            if message.id != message_id:
                continue
            data = message.model_dump()
            data.update({k: v for k, v in patch.items() if k != "id"})
            session.messages[index] = ChatMessage.model_validate(data)
            self._touch()
            await self._persist()
            return True

        logger.warning("message_not_found", message_id=message_id)
        return False

    async def get_message(self, message_id: str) -> ChatMessage | None:
        session = await self.get_or_create_session()
        return next((m for m in session.messages if m.id == message_id), None)

    async def get_messages(self) -> list[ChatMessage]:
        session = await self.get_or_create_session()
        return list(session.messages)

    # ── Documents ────────────────────────────────────────────────────

    async def add_document_context(
        self,
        document_id: str,
        file_name: str,
        extracted_data: ExtractedDocumentData | None,
        mime_type: str,
        processed: bool = True,
    ) -> DocumentContext:
        """Attach a document; re-adding the same id replaces the earlier entry."""
        session = await self.get_or_create_session()
        document = DocumentContext(
            document_id=document_id,
            file_name=file_name,
            mime_type=mime_type,
            extracted_data=extracted_data,
            processed=processed,
            timestamp=self._clock(),
        )
        session.documents = [d for d in session.documents if d.document_id != document_id]
        session.documents.append(document)
        self._touch()
        await self._persist()
        logger.info("document_context_added", document_id=document_id, file_name=file_name)
        return document

    async def get_document_contexts(self) -> list[DocumentContext]:
        session = await self.get_or_create_session()
        return list(session.documents)

    # ── Sandbox association ──────────────────────────────────────────

    async def set_sandbox_id(self, sandbox_id: str | None) -> None:
        session = await self.get_or_create_session()
        session.sandbox_id = sandbox_id
        self._touch()
        await self._persist()
        logger.info("session_sandbox_set", sandbox_id=sandbox_id)

    async def get_sandbox_id(self) -> str | None:
        session = await self.get_or_create_session()
        return session.sandbox_id

    # ── Export / import ──────────────────────────────────────────────

    async def export_session(self) -> str:
        session = await self.get_or_create_session()
        return json.dumps(session.model_dump(mode="json", by_alias=True), indent=2, ensure_ascii=False)

    async def import_session(self, raw: str) -> bool:
        """Adopt a previously exported session. Returns False on invalid input."""
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning("session_import_failed", error=str(e))
            return False
        if not isinstance(data, dict) or "sessionId" not in data or not isinstance(data.get("messages"), list):
            logger.warning("session_import_failed", error="missing sessionId or messages")
            return False
        try:
            session = ChatSession.model_validate(data)
        except ValidationError as e:
            logger.warning("session_import_failed", error=str(e)[:200])
            return False

        self._session = session
        self._touch()
        await self._persist()
        logger.info("session_imported", session_id=session.session_id)
        return True

    async def get_formatted_context(self) -> str:
        """Document summaries plus the last five messages, as Markdown."""
        session = await self.get_or_create_session()
        context = ""

        if session.documents:
            context += "\n# Contexto de Documentos Analizados\n\n"
            for doc in session.documents:
                if doc.processed and doc.extracted_data:
                    context += f"## {doc.file_name}\n"
                    context += format_document_data(doc.extracted_data)
                    context += "\n---\n\n"

        recent = session.messages[-5:]
        if recent:
            context += "\n# Historial de Conversación Reciente\n\n"
            for msg in recent:
                role = "Usuario" if msg.role == MessageRole.USER else "Asistente"
                context += f"**{role}**: {msg.content}\n\n"

        return context

    # ── Storage internals ────────────────────────────────────────────

    def _touch(self) -> None:
        # lastActivity never moves backwards, even if the clock does
        now = self._clock()
        if self._session is not None and now > self._session.last_activity:
            self._session.last_activity = now

    async def _persist(self) -> None:
        if self._session is None:
            return
        payload = self._session.model_dump_json(by_alias=True)

        try:
            await self._redis.set(self.key, payload)
            self.persistence_degraded = False
            return
        except RedisError as e:
            logger.warning("session_save_failed", error=str(e))

        await self._prune_archives(keep=0)
        try:
            await self._redis.set(self.key, payload)
            self.persistence_degraded = False
            logger.info("session_save_recovered", session_id=self._session.session_id)
        except RedisError as e:
            self.persistence_degraded = True
            logger.error(
                "session_save_retry_failed",
                session_id=self._session.session_id,
                error=str(e),
            )

    async def _archive(self, session_id: str, raw: str) -> None:
        ttl = self._settings.session_archive_ttl_hours * 3600
        try:
            await self._redis.set(self._archive_key(session_id), raw, ex=ttl)
            await self._redis.delete(self.key)
        except RedisError as e:
            logger.warning("session_archive_failed", session_id=session_id, error=str(e))
            return
        await self._prune_archives(keep=self._settings.session_archive_limit)

    async def _prune_archives(self, keep: int) -> int:
        """Delete archived sessions beyond the newest *keep*. Returns how many were removed."""
        try:
            keys = [key async for key in self._redis.scan_iter(match=f"{self.key}:old:*")]
            keys.sort(key=_archive_sort_key, reverse=True)
            stale = keys[keep:]
            if stale:
                await self._redis.delete(*stale)
        except RedisError as e:
            logger.warning("session_archive_prune_failed", error=str(e))
            return 0
        if stale:
            logger.info("session_archives_pruned", removed=len(stale))
        return len(stale)

    async def _delete_key(self, key: str) -> None:
        try:
            await self._redis.delete(key)
        except RedisError as e:
            logger.warning("session_delete_failed", key=key, error=str(e))


class SessionManager:
    """Hands out one SessionStore per client and serializes turns per client.

    Stores and locks of clients idle for ``session_cache_idle_minutes`` are
    dropped; the next request reloads the session from Redis. A store whose
    lock is held, or whose last write failed, is kept since memory is then
    the only up-to-date copy.
    """

    def __init__(
        self,
        redis: Any,
        settings: Settings | None = None,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._redis = redis
        self._settings = settings or get_settings()
        self._monotonic = monotonic
        self._stores: dict[str, SessionStore] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._last_used: dict[str, float] = {}

    def get_store(self, client_id: str) -> SessionStore:
        self._mark_used(client_id)
        store = self._stores.get(client_id)
        if store is None:
            store = SessionStore(self._redis, client_id, self._settings)
            self._stores[client_id] = store
        return store

    def lock(self, client_id: str) -> asyncio.Lock:
        self._mark_used(client_id)
        return self._locks.setdefault(client_id, asyncio.Lock())

    def cached_clients(self) -> int:
        return len(self._last_used)

    def _mark_used(self, client_id: str) -> None:
        now = self._monotonic()
        self._evict_idle(now)
        self._last_used[client_id] = now

    def _evict_idle(self, now: float) -> None:
        idle_limit = self._settings.session_cache_idle_minutes * 60
        evicted = 0
        for client_id, last_used in list(self._last_used.items()):
            if now - last_used < idle_limit:
                continue
            lock = self._locks.get(client_id)
            store = self._stores.get(client_id)
            if (lock is not None and lock.locked()) or (store is not None and store.persistence_degraded):
                continue
            self._stores.pop(client_id, None)
            self._locks.pop(client_id, None)
            del self._last_used[client_id]
            evicted += 1
        if evicted:
            logger.debug("session_stores_evicted", count=evicted, remaining=len(self._last_used))
