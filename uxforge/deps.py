"""Service wiring and FastAPI dependencies.

Every collaborator is built once in the app lifespan and kept on
``app.state.services``; routes receive them through the ``Annotated``
aliases below, so tests can inject fakes by passing their own
``AppServices`` to ``create_app``.
"""

from dataclasses import dataclass
from typing import Annotated, Any

import redis.asyncio as aioredis
from fastapi import Depends, Request

from uxforge.config import Settings, get_settings
from uxforge.core.chat_turn import ChatTurnHandler
from uxforge.core.context_manager import SmartContextManager
from uxforge.core.instructions import InstructionSet, load_instructions
from uxforge.core.intent import IntentClassifier
from uxforge.core.logging import client_id_var
from uxforge.core.orchestrator import GenerationOrchestrator
from uxforge.core.sandbox_registry import SandboxRegistry
from uxforge.services.code_generation import CodeGenerator
from uxforge.services.document_extraction import DocumentExtractor
from uxforge.services.llm import LLMClient
from uxforge.services.sandbox import E2BSandboxClient, SandboxClient
from uxforge.services.session_store import SessionManager, SessionStore


@dataclass
class AppServices:
    settings: Settings
    redis: Any
    sessions: SessionManager
    llm: LLMClient
    sandbox: SandboxClient
    registry: SandboxRegistry
    instructions: InstructionSet
    orchestrator: GenerationOrchestrator
    extractor: DocumentExtractor
    turns: ChatTurnHandler


def build_services(
    settings: Settings | None = None,
    *,
    redis: Any = None,
    llm: LLMClient | None = None,
    sandbox: SandboxClient | None = None,
) -> AppServices:
    """Build the service graph. Any collaborator passed in is used as-is."""
    settings = settings or get_settings()
    redis = redis if redis is not None else aioredis.from_url(settings.redis_url, decode_responses=True)
    llm = llm or LLMClient(settings)
    sandbox = sandbox or E2BSandboxClient(settings)
    registry = SandboxRegistry()
    instructions = load_instructions()

    orchestrator = GenerationOrchestrator(sandbox, registry, CodeGenerator(llm, settings), settings)
    extractor = DocumentExtractor(llm)
    turns = ChatTurnHandler(
        llm,
        IntentClassifier(llm, settings),
        SmartContextManager(instructions),
        orchestrator,
        extractor,
        settings,
    )
    return AppServices(
        settings=settings,
        redis=redis,
        sessions=SessionManager(redis, settings),
        llm=llm,
        sandbox=sandbox,
        registry=registry,
        instructions=instructions,
        orchestrator=orchestrator,
        extractor=extractor,
        turns=turns,
    )


def get_services(request: Request) -> AppServices:
    return request.app.state.services


Services = Annotated[AppServices, Depends(get_services)]


def get_session_store(client_id: str, services: Services) -> SessionStore:
    client_id_var.set(client_id)
    return services.sessions.get_store(client_id)


ClientSession = Annotated[SessionStore, Depends(get_session_store)]
