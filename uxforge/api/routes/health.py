"""Liveness endpoint."""

from datetime import UTC, datetime

from fastapi import APIRouter

from uxforge.deps import Services
from uxforge.schemas.api import HealthReply

router = APIRouter()


@router.get("/health", response_model=HealthReply)
async def health(services: Services) -> HealthReply:
    return HealthReply(
        timestamp=datetime.now(UTC).isoformat(),
        active_sandboxes=services.registry.count(),
    )
