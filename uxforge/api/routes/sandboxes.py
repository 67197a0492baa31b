"""Sandbox endpoints: generate, modify, list and kill hosted previews."""

from fastapi import APIRouter, HTTPException, status

from uxforge.core.instructions import compose_code_prompt
from uxforge.core.logging import get_logger
from uxforge.core.orchestrator import GenerationResult
from uxforge.deps import Services
from uxforge.schemas.api import (
    GenerateReply,
    GenerateRequest,
    SandboxCreated,
    SandboxList,
    SandboxSummary,
    SuccessReply,
)

logger = get_logger(__name__)

router = APIRouter()


def _reply(result: GenerationResult, framework: str) -> GenerateReply:
    return GenerateReply(
        sandbox_id=result.sandbox_id,
        project_name=result.project_name,
        framework=framework,
        preview_url=result.preview_url,
        server_confirmed=result.server_confirmed,
        modified=result.modified,
    )


@router.post("/sandbox", response_model=SandboxCreated)
async def create_sandbox(services: Services) -> SandboxCreated:
    """Provision an empty sandbox."""
    sandbox_id = await services.orchestrator.create_bare()
    return SandboxCreated(sandbox_id=sandbox_id)


@router.post("/generate", response_model=GenerateReply)
async def generate(data: GenerateRequest, services: Services) -> GenerateReply:
    """Generate a new app in a fresh sandbox."""
    logger.info("generate_request", framework=data.framework, chars=len(data.prompt))
    result = await services.orchestrator.create(
        compose_code_prompt(data.prompt, services.instructions),
        name_source=data.prompt,
        fallback_label=data.prompt,
    )
    return _reply(result, data.framework)


@router.post("/modify/{sandbox_id}", response_model=GenerateReply)
async def modify(sandbox_id: str, data: GenerateRequest, services: Services) -> GenerateReply:
    """Regenerate the app inside an existing sandbox. Unknown or expired ids are a 404."""
    result = await services.orchestrator.modify(
        sandbox_id,
        compose_code_prompt(data.prompt, services.instructions),
        fallback_label=data.prompt,
    )
    return _reply(result, data.framework)


@router.get("/sandboxes", response_model=SandboxList)
async def list_sandboxes(services: Services) -> SandboxList:
    sandboxes = [
        SandboxSummary(
            sandbox_id=record.sandbox_id,
            status=record.status,
            project_name=record.project_name,
            preview_url=record.preview_url,
        )
        for record in services.registry.list_records()
    ]
    return SandboxList(sandboxes=sandboxes, count=len(sandboxes))


@router.delete("/sandbox/{sandbox_id}", response_model=SuccessReply)
async def kill_sandbox(sandbox_id: str, services: Services) -> SuccessReply:
    if not services.registry.contains(sandbox_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Sandbox not found")
    await services.orchestrator.kill(sandbox_id)
    logger.info("sandbox_terminated", sandbox_id=sandbox_id)
    return SuccessReply()
