from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from storefront.app.core.config import settings
from storefront.app.core.logging import get_logger, setup_logging
from storefront.app.exceptions import RateLimitExceededError, StorefrontException
from storefront.app.middleware.rate_limit import (
    RateLimitCleanupTask,
    RateLimitMiddleware,
    get_rate_limiter,
    get_request_identifier,
    resolve_policy,
)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    setup_logging()
    logger = get_logger(__name__)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Run periodic rate limit cleanup for the app's lifetime."""
        limiter = get_rate_limiter()
        cleanup_task = RateLimitCleanupTask(limiter)
        await cleanup_task.start()

        logger.info(
            "Application startup complete",
            extra={
                "rate_limit_backend": limiter.backend.name,
                "rate_limit_enabled": settings.rate_limit_enabled,
                "debug_mode": settings.debug,
            }
        )

        yield

        await cleanup_task.stop()
        await limiter.close()

        logger.info("Application shutdown complete")

    app = FastAPI(
        title="Storefront API",
        description="Multi-tenant storefront backend with per-client rate limiting",
        version="1.0.0",
        lifespan=lifespan
    )

    app.add_middleware(RateLimitMiddleware, enabled=settings.rate_limit_enabled)

    @app.get("/health")
    async def health() -> dict[str, Any]:
        """Health check including the rate limit backend."""
        health_status: dict[str, Any] = {"status": "ok", "components": {}}

        limiter = get_rate_limiter()
        try:
            healthy = await limiter.health_check()
            health_status["components"]["rate_limiter"] = {
                "status": "ok" if healthy else "error",
                "backend": limiter.backend.name,
            }
            if not healthy:
                health_status["status"] = "degraded"
        except Exception as e:
            health_status["status"] = "degraded"
            health_status["components"]["rate_limiter"] = {
                "status": "error",
                "error": str(e)[:100]  # Truncate for security
            }

        return health_status

    @app.get("/api/rate-limit/status")
    async def rate_limit_status(request: Request) -> dict[str, Any]:
        """Limiter state for the calling client."""
        identifier = get_request_identifier(request)
        policy = resolve_policy(request.url.path, identifier)
        stats = await get_rate_limiter().get_stats(f"{policy.name}:{identifier}")
        return {"stats": stats}

    @app.exception_handler(RateLimitExceededError)
    async def rate_limit_handler(request: Request, exc: RateLimitExceededError) -> JSONResponse:
        """Handle RateLimitExceededError and return HTTP 429 response."""
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_dict(),
            headers=exc.headers,
        )

    @app.exception_handler(StorefrontException)
    async def storefront_error_handler(request: Request, exc: StorefrontException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": type(exc).__name__, "message": exc.message},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler for unhandled exceptions.

        Never returns a traceback to the client; details go to the logs.
        """
        logger.exception(
            "Unhandled exception",
            extra={
                "path": request.url.path,
                "method": request.method,
                "exception_type": type(exc).__name__,
            }
        )

        if settings.debug:
            return JSONResponse(
                status_code=500,
                content={
                    "error": "internal_error",
                    "message": str(exc),
                    "exception_type": type(exc).__name__,
                }
            )

        return JSONResponse(
            status_code=500,
            content={"error": "internal_error", "message": "Internal server error"}
        )

    return app


# Create the application instance
app = create_app()
