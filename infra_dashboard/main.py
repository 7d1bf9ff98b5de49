# infra_dashboard/main.py

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI
from fastapi.responses import JSONResponse

from infra_dashboard.api.dependencies import require_session
from infra_dashboard.api.middleware import CorrelationIdMiddleware, RequestAuditMiddleware
from infra_dashboard.api.routers import (
    auth,
    autoheal,
    deployments,
    health,
    internal,
    queues,
    servers,
    stream,
)
from infra_dashboard.application.exceptions import (
    ActionFailedError,
    ApplicationError,
    BackendUnavailableError,
)
from infra_dashboard.config.logging import configure_logging
from infra_dashboard.config.settings import get_settings
from infra_dashboard.core.container import ServiceContainer, build_container
from infra_dashboard.domain.exceptions import DomainError, DomainValidationError, NotFoundError
from infra_dashboard.security.exceptions import AuthenticationError, SecurityError

logger = logging.getLogger(__name__)


def _lifespan(container: Optional[ServiceContainer], start_aggregator: bool):
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = container is None
        app.state.container = container or build_container(get_settings())
        task = None
        if start_aggregator:
            task = asyncio.create_task(app.state.container.aggregator.run(), name="snapshot-aggregator")
        try:
            yield
        finally:
            if task is not None:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
            if owned:
                await app.state.container.aclose()

    return lifespan


def create_app(
    container: Optional[ServiceContainer] = None,
    start_aggregator: bool = True,
) -> FastAPI:
    """
    Build the ASGI app. The container is built from settings at startup unless one is given;
    a given container is left open on shutdown for its owner to close.
    """
    settings = container.settings if container is not None else get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title=settings.app_name,
        version=settings.version,
        debug=settings.debug,
        lifespan=_lifespan(container, start_aggregator),
    )
    if container is not None:
        app.state.container = container

    # Middleware order: last added runs first (outermost). Request flow: CorrelationId -> RequestAudit.
    app.add_middleware(RequestAuditMiddleware)
    app.add_middleware(CorrelationIdMiddleware)

    @app.exception_handler(DomainValidationError)
    async def domain_validation_error_handler(request, exc: DomainValidationError):
        return JSONResponse(status_code=422, content={"detail": exc.message})

    @app.exception_handler(NotFoundError)
    async def not_found_error_handler(request, exc: NotFoundError):
        return JSONResponse(status_code=404, content={"detail": exc.message})

    @app.exception_handler(DomainError)
    async def domain_error_handler(request, exc: DomainError):
        return JSONResponse(status_code=400, content={"detail": exc.message})

    @app.exception_handler(AuthenticationError)
    async def authentication_error_handler(request, exc: AuthenticationError):
        return JSONResponse(status_code=401, content={"detail": exc.message})

    @app.exception_handler(SecurityError)
    async def security_error_handler(request, exc: SecurityError):
        return JSONResponse(status_code=403, content={"detail": exc.message})

    @app.exception_handler(BackendUnavailableError)
    async def backend_unavailable_error_handler(request, exc: BackendUnavailableError):
        return JSONResponse(status_code=503, content={"detail": exc.message})

    @app.exception_handler(ActionFailedError)
    async def action_failed_error_handler(request, exc: ActionFailedError):
        return JSONResponse(status_code=502, content={"detail": exc.message})

    @app.exception_handler(ApplicationError)
    async def application_error_handler(request, exc: ApplicationError):
        return JSONResponse(status_code=500, content={"detail": exc.message})

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request, exc: Exception):
        logger.exception("unhandled_error", extra={"path": request.url.path})
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    gated = [Depends(require_session)]

    # Public: /health, /auth. Everything else sits behind the session gate.
    app.include_router(health.router)
    app.include_router(auth.router, prefix="/auth")
    app.include_router(stream.router, dependencies=gated)
    app.include_router(deployments.router, prefix="/deployments", dependencies=gated)
    app.include_router(queues.router, prefix="/queues", dependencies=gated)
    app.include_router(autoheal.router, prefix="/autoheal", dependencies=gated)
    app.include_router(servers.router, dependencies=gated)
    app.include_router(internal.router, prefix="/internal", dependencies=gated)
    return app


app = create_app()
