"""FastAPI application factory with the background queue consumer."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from listing_hub.config import Settings
from listing_hub.db.database import Database
from listing_hub.db.queries import ListingQueryService
from listing_hub.descriptions import DescriptionGenerator
from listing_hub.logging import configure_logging, get_logger
from listing_hub.queue import MessageQueue, QueueConsumer
from listing_hub.reconcile import ReconciliationPipeline

logger = get_logger(__name__)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        return response


async def _validation_error_handler(request: Request, exc: Exception) -> JSONResponse:
    errors = exc.errors() if isinstance(exc, RequestValidationError) else []
    fields = sorted({".".join(str(p) for p in err["loc"][1:]) or "body" for err in errors})
    logger.info("request_validation_failed", path=request.url.path, fields=fields)
    return JSONResponse({"error": f"invalid request: {', '.join(fields)}"}, status_code=400)


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("request_failed", path=request.url.path, method=request.method, exc_info=exc)
    return JSONResponse({"error": "internal server error"}, status_code=500)


def create_app(settings: Settings | None = None, *, run_consumer: bool = True) -> FastAPI:
    """Create the FastAPI application.

    Args:
        settings: Application settings. Loaded from env if not provided.
        run_consumer: Whether to start the background queue consumer.
    """
    if settings is None:
        settings = Settings()

    configure_logging(json_output=settings.log_json)

    db = Database(
        settings.database_path,
        pool_size=settings.db_pool_size,
        busy_timeout_ms=settings.db_busy_timeout_ms,
    )
    queue = MessageQueue(backoff_schedule=settings.get_backoff_schedule())
    api_key = settings.anthropic_api_key.get_secret_value()
    generator = DescriptionGenerator.from_settings(settings) if api_key else None

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await db.open()
        app.state.settings = settings
        app.state.db = db
        app.state.queries = ListingQueryService(db)
        app.state.queue = queue
        app.state.generator = generator

        if run_consumer:
            pipeline = ReconciliationPipeline.from_settings(db, settings)
            consumer = QueueConsumer.from_settings(db, pipeline, generator, settings)
            await queue.start(consumer.handle)
            logger.info("web_server_started", consumer="enabled")
        else:
            logger.info("web_server_started", consumer="disabled")

        yield

        # Shutdown
        await queue.close()
        if generator is not None:
            await generator.close()
        await db.close()
        logger.info("web_server_stopped")

    app = FastAPI(title="Listing Hub", lifespan=lifespan)

    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)

    # Security headers
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_cors_origins(),
        allow_methods=["GET", "POST", "PATCH", "DELETE"],
        allow_headers=["*"],
    )

    # Register routes
    from listing_hub.web.routes import router

    app.include_router(router)

    return app
