"""FastAPI application entry point."""

import logging
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from sqlalchemy import text
from starlette.requests import Request

from appraise.api.v1 import router as api_v1_router
from appraise.config import settings
from appraise.core.orchestrator import RunOrchestrator
from appraise.core.store import RunStore
from appraise.db.session import async_session_factory, engine

logger = logging.getLogger("appraise.main")


def configure_logging() -> None:
    """Apply ``settings.log_level`` to the root logger."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan context manager."""
    # Startup
    orchestrator = RunOrchestrator(RunStore(async_session_factory), settings)
    app.state.orchestrator = orchestrator
    try:
        await orchestrator.recover()
    except Exception:
        logger.exception("Could not recover orphaned test runs")
    yield
    # Shutdown
    await orchestrator.shutdown()
    await engine.dispose()


def create_application() -> FastAPI:
    """Create and configure the FastAPI application."""
    configure_logging()
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Launches test-runner processes, streams their output and ingests their reports",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    cors_kw: dict[str, Any] = {
        "allow_origins": list(settings.cors_origins),
        "allow_credentials": True,
        "allow_methods": ["*"],
        "allow_headers": ["*"],
    }
    # In development, allow any localhost origin
    if settings.environment == "development":
        cors_kw["allow_origin_regex"] = r"http://(localhost|127\.0\.0\.1)(:\d+)?"
    app.add_middleware(CORSMiddleware, **cors_kw)

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> Response:
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> Response:
        """Return JSON 500 for anything the routes did not handle."""
        logger.exception("Unhandled exception: %s", exc)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    @app.get("/health", tags=["Health"])
    async def health_check(request: Request) -> dict[str, Any]:
        """Health check endpoint with a real DB connectivity check."""
        result: dict[str, Any] = {
            "status": "healthy",
            "version": settings.app_version,
            "services": {},
        }

        try:
            start = time.monotonic()
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            db_latency_ms = round((time.monotonic() - start) * 1000, 2)
            result["services"]["database"] = {
                "status": "healthy",
                "latency_ms": db_latency_ms,
            }
        except Exception as exc:
            result["services"]["database"] = {
                "status": "unhealthy",
                "error": str(exc),
            }
            result["status"] = "degraded"

        orchestrator = getattr(request.app.state, "orchestrator", None)
        if orchestrator is not None:
            result["services"]["processes"] = {
                "status": "healthy",
                "active": orchestrator.registry.size(),
            }

        return result

    app.include_router(api_v1_router, prefix="/api/v1")

    return app


app = create_application()
