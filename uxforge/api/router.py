"""API router aggregating all endpoints."""

from fastapi import APIRouter

from uxforge.api.routes import chat, documents, health, sandboxes, sessions

api_router = APIRouter()

api_router.include_router(health.router, tags=["health"])
api_router.include_router(chat.router, prefix="/api", tags=["chat"])
api_router.include_router(documents.router, prefix="/api", tags=["documents"])
api_router.include_router(sandboxes.router, prefix="/api/e2b", tags=["sandboxes"])
api_router.include_router(sessions.router, prefix="/api/sessions", tags=["sessions"])
