"""relay-admin - FastAPI application factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse

from relay_admin.api import api_router
from relay_admin.api.auth import login_router
from relay_admin.api.auth import router as auth_router
from relay_admin.api.dashboard import router as dashboard_router
from relay_admin.api.health import router as health_router
from relay_admin.core import StoreClient, StoreError, settings, setup_logging
from relay_admin.core.logging import get_logger
from relay_admin.middleware import SessionGuardMiddleware
from relay_admin.services.repository import RowNotFoundError
from relay_admin.services.session import SessionClient, SessionState

logger = get_logger("main")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    setup_logging(
        level=settings.log_level,
        format_type="structured" if not settings.debug else "dev",
    )
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    if not settings.store_api_key:
        logger.warning("STORE_API_KEY is not set; store requests will be rejected")

    session_client = SessionClient.get_instance()
    session_state = SessionState.get_instance()
    await session_state.initialize(session_client)

    yield

    logger.info("Shutting down...")
    await session_state.shutdown()
    await session_client.aclose()
    await StoreClient.get_instance().aclose()


async def store_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Store failures reach the caller with the store's own message."""
    assert isinstance(exc, StoreError)
    logger.error(f"Store error on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=status.HTTP_502_BAD_GATEWAY,
        content={"detail": exc.message, "code": exc.code},
    )


async def row_not_found_handler(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title=settings.app_name,
        description="Admin console for relay nodes, tunnels and forwarding rules",
        version=settings.app_version,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
    )

    app.add_middleware(SessionGuardMiddleware)

    # CORS must be outermost (added last) so redirects carry CORS headers too
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "Accept"],
    )

    app.add_exception_handler(StoreError, store_error_handler)
    app.add_exception_handler(RowNotFoundError, row_not_found_handler)

    app.include_router(health_router)
    app.include_router(login_router)
    app.include_router(auth_router)
    app.include_router(dashboard_router)
    app.include_router(api_router)

    @app.get("/", include_in_schema=False)
    async def root() -> RedirectResponse:
        return RedirectResponse(url="/dashboard", status_code=status.HTTP_307_TEMPORARY_REDIRECT)

    return app


# Application instance
app = create_app()
