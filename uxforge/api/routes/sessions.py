"""Session endpoints: server-side chat flow for one client.

Turns for the same client are serialized with the session manager's
per-client lock.
"""

import json

from fastapi import APIRouter, HTTPException, status
from fastapi.responses import Response

from uxforge.api.routes.documents import decode_file_data
from uxforge.deps import ClientSession, Services
from uxforge.schemas.api import (
    NewChatReply,
    SessionDocumentReply,
    SessionDocumentRequest,
    SessionImportRequest,
    SessionMessageRequest,
    SuccessReply,
    TurnReply,
)
from uxforge.schemas.session import ChatSession

router = APIRouter()


@router.get("/{client_id}", response_model=ChatSession)
async def get_session(client_id: str, store: ClientSession) -> ChatSession:
    return await store.get_or_create_session()


@router.post("/{client_id}/messages", response_model=TurnReply)
async def send_message(
    client_id: str,
    data: SessionMessageRequest,
    store: ClientSession,
    services: Services,
) -> TurnReply:
    """Run one chat turn: reply, ask for clarification, or generate/modify the app."""
    async with services.sessions.lock(client_id):
        outcome = await services.turns.handle_message(store, data.message, data.attachments)
        session = await store.get_or_create_session()
    return TurnReply(
        kind=outcome.kind.value,
        intent=outcome.intent.value,
        message=outcome.message,
        preview_url=outcome.preview_url,
        session=session,
    )


@router.post("/{client_id}/documents", response_model=SessionDocumentReply)
async def upload_document(
    client_id: str,
    data: SessionDocumentRequest,
    store: ClientSession,
    services: Services,
) -> SessionDocumentReply:
    """Extract a document into the session and, by default, generate a UI from it."""
    file_bytes = decode_file_data(data.file_data)
    async with services.sessions.lock(client_id):
        document, outcome = await services.turns.process_document(
            store,
            file_bytes,
            data.file_name,
            data.mime_type,
            auto_generate=data.auto_generate,
        )
        session = await store.get_or_create_session()
    return SessionDocumentReply(
        document=document,
        kind=outcome.kind.value if outcome else None,
        preview_url=outcome.preview_url if outcome else None,
        session=session,
    )


@router.post("/{client_id}/new-chat", response_model=NewChatReply)
async def new_chat(client_id: str, store: ClientSession, services: Services) -> NewChatReply:
    """Start over: clear the session and close its sandbox."""
    async with services.sessions.lock(client_id):
        closed = await services.turns.start_new_chat(store)
        session = await store.get_or_create_session()
    return NewChatReply(sandbox_closed=closed, session=session)


@router.get("/{client_id}/export")
async def export_session(client_id: str, store: ClientSession) -> Response:
    return Response(content=await store.export_session(), media_type="application/json")


@router.post("/{client_id}/import", response_model=SuccessReply)
async def import_session(client_id: str, data: SessionImportRequest, store: ClientSession) -> SuccessReply:
    if not await store.import_session(json.dumps(data.session)):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid session data")
    return SuccessReply()
