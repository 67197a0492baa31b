"""FastAPI application factory."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from uxforge import __version__
from uxforge.api.router import api_router
from uxforge.config import get_settings
from uxforge.core.logging import get_logger, setup_logging
from uxforge.core.middleware import ObservabilityMiddleware
from uxforge.core.orchestrator import GenerationError
from uxforge.deps import AppServices, build_services
from uxforge.services.document_extraction import UnsupportedDocumentTypeError
from uxforge.services.llm import LLMProviderError
from uxforge.services.sandbox import SandboxNotFoundError, SandboxProviderError

logger = get_logger(__name__)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


def _install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(HTTPException)
    async def http_error(request: Request, exc: HTTPException) -> JSONResponse:
        return _error(exc.status_code, str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        first = exc.errors()[0] if exc.errors() else {}
        field = ".".join(str(part) for part in first.get("loc", ())[1:])
        message = f"{field}: {first.get('msg', 'invalid request')}" if field else "Invalid request"
        return _error(status.HTTP_400_BAD_REQUEST, message)

    @app.exception_handler(UnsupportedDocumentTypeError)
    async def unsupported_document(request: Request, exc: UnsupportedDocumentTypeError) -> JSONResponse:
        return _error(status.HTTP_400_BAD_REQUEST, str(exc))

    @app.exception_handler(SandboxNotFoundError)
    async def sandbox_not_found(request: Request, exc: SandboxNotFoundError) -> JSONResponse:
        return _error(status.HTTP_404_NOT_FOUND, "Sandbox not found or expired")

    @app.exception_handler(SandboxProviderError)
    async def sandbox_failed(request: Request, exc: SandboxProviderError) -> JSONResponse:
        logger.error("sandbox_request_failed", path=request.url.path, error=str(exc))
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc))

    @app.exception_handler(LLMProviderError)
    async def llm_failed(request: Request, exc: LLMProviderError) -> JSONResponse:
        logger.error("llm_request_failed", path=request.url.path, error=str(exc))
        return _error(status.HTTP_502_BAD_GATEWAY, str(exc))

    @app.exception_handler(GenerationError)
    async def generation_failed(request: Request, exc: GenerationError) -> JSONResponse:
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc))


def create_app(services: AppServices | None = None) -> FastAPI:
    """Build the app. Passing *services* skips building real collaborators."""
    settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        owned = services is None
        if owned:
            setup_logging()
        app.state.services = services or build_services(settings)
        logger.info("app_started", version=__version__)
        try:
            yield
        finally:
            if owned:
                await app.state.services.redis.aclose()
            logger.info("app_stopped", active_sandboxes=app.state.services.registry.count())

    app = FastAPI(title="UXForge", version=__version__, lifespan=lifespan)
    app.add_middleware(ObservabilityMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    _install_error_handlers(app)
    app.include_router(api_router)
    return app


app = create_app()
