"""
main.py
-------
FastAPI application factory and entry point.

Application lifecycle:
  1. App is created by create_application().
  2. lifespan context manager runs on startup / shutdown.
  3. Routers are registered; every tenant route lives under
     /workspaces/{workspace_ref}.
  4. Exception handlers turn domain errors into redirects or JSON:
       NotAuthenticated      → 303 to the sign-in page
       AccessDenied family   → 303 to the caller's first workspace
       OnboardingRequired    → 303 to the workspace onboarding page
       InvalidTransition     → 409
       ValidationIncomplete  → 422 with the missing fields
       NotFound              → 404

Run with:
    uvicorn main:app --reload              # development
    uvicorn main:app --workers 4           # production (no --reload)
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse

from agency_portal.api.routes import (
    agency,
    deliverables,
    messages,
    onboarding,
    portal,
    reports,
    roadmap,
    workspaces,
)
from agency_portal.core.config import settings
from agency_portal.core.exceptions import (
    AccessDenied,
    InvalidTransition,
    NotAuthenticated,
    NotFound,
    OnboardingRequired,
    ValidationIncomplete,
)
from agency_portal.core.logging import configure_logging, get_logger
from agency_portal.db.session import engine
from agency_portal.services import background

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Startup / shutdown lifecycle hook.

    Shutdown:
      - Let in-flight detached tasks (role sync, profile pointer) finish
      - Dispose the async engine (graceful connection pool drain)
    """
    configure_logging()
    logger.info(
        "Starting up",
        app=settings.APP_NAME,
        env=settings.APP_ENV,
        debug=settings.DEBUG,
    )
    yield
    logger.info("Shutting down, draining background tasks", pending=background.pending_count())
    await background.drain()
    await engine.dispose()


def create_application() -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        description=(
            "Multi-tenant agency/client portal: workspaces, role-scoped "
            "access with agency delegation, onboarding flows, deliverables "
            "and messaging."
        ),
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # ── CORS ─────────────────────────────────────────────────────────────────
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── Routers ───────────────────────────────────────────────────────────────
    app.include_router(workspaces.router)
    app.include_router(agency.router)
    app.include_router(portal.router)
    app.include_router(deliverables.router)
    app.include_router(onboarding.router)
    app.include_router(messages.router)
    app.include_router(reports.router)
    app.include_router(roadmap.router)

    # ── Domain Exception Handlers ─────────────────────────────────────────────

    @app.exception_handler(NotAuthenticated)
    async def not_authenticated_handler(request: Request, exc: NotAuthenticated) -> RedirectResponse:
        return RedirectResponse(settings.SIGN_IN_PATH, status_code=status.HTTP_303_SEE_OTHER)

    @app.exception_handler(AccessDenied)
    async def access_denied_handler(request: Request, exc: AccessDenied) -> RedirectResponse:
        # Same response for every reason; the reason is only logged
        logger.info(
            "Redirecting denied request",
            path=request.url.path,
            user_id=exc.user_id,
            reason=exc.reason,
        )
        return RedirectResponse(
            exc.landing_path or settings.DEFAULT_LANDING_PATH,
            status_code=status.HTTP_303_SEE_OTHER,
        )

    @app.exception_handler(OnboardingRequired)
    async def onboarding_required_handler(request: Request, exc: OnboardingRequired) -> RedirectResponse:
        return RedirectResponse(
            f"/workspaces/{exc.workspace_ref}/onboarding",
            status_code=status.HTTP_303_SEE_OTHER,
        )

    @app.exception_handler(InvalidTransition)
    async def invalid_transition_handler(request: Request, exc: InvalidTransition) -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"detail": exc.detail})

    @app.exception_handler(ValidationIncomplete)
    async def validation_incomplete_handler(request: Request, exc: ValidationIncomplete) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content={"detail": exc.detail, "missing": exc.missing},
        )

    @app.exception_handler(NotFound)
    async def not_found_handler(request: Request, exc: NotFound) -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})

    # ── Global Exception Handlers ─────────────────────────────────────────────

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        logger.error(
            "Unhandled exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=True,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Internal server error"},
        )

    # ── Health Check ──────────────────────────────────────────────────────────

    @app.get("/health", tags=["Health"], summary="Service health check")
    async def health() -> dict:
        return {"status": "ok", "app": settings.APP_NAME, "env": settings.APP_ENV}

    return app


app = create_application()
