"""FastAPI application factory for Relay-Engine."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from relay_engine.common.config import get_settings
from relay_engine.common.exceptions import (
    DeliveryNotFoundError,
    DeliveryStateError,
    EndpointNotFoundError,
    EventNotFoundError,
    InvalidCursorError,
    RelayError,
)
from relay_engine.common.logging import setup_logging
from relay_engine.common.schemas import ErrorResponse, HealthResponse

_STATUS_BY_ERROR = (
    (EndpointNotFoundError, 404),
    (EventNotFoundError, 404),
    (DeliveryNotFoundError, 404),
    (DeliveryStateError, 409),
    (InvalidCursorError, 422),
)


def create_app() -> FastAPI:
    settings = get_settings()
    setup_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        from relay_engine.deps import get_engine
        engine = get_engine()
        await engine.db.init()
        await engine.db.create_all()
        yield
        # Shutdown
        await engine.aclose()
        await engine.db.close()

    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        lifespan=lifespan,
    )

    @app.exception_handler(RelayError)
    async def relay_error_handler(request: Request, exc: RelayError):
        status_code = 400
        for error_type, code in _STATUS_BY_ERROR:
            if isinstance(exc, error_type):
                status_code = code
                break
        body = ErrorResponse(error=exc.message, code=exc.code)
        return JSONResponse(status_code=status_code, content=body.model_dump())

    @app.get("/health", response_model=HealthResponse)
    async def health():
        return HealthResponse(version=settings.api_version)

    # Mount routers
    from relay_engine.endpoints.router import router as endpoint_router
    from relay_engine.events.router import router as event_router
    from relay_engine.deliveries.router import cron_router
    from relay_engine.deliveries.router import router as delivery_router

    prefix = settings.api_prefix
    app.include_router(endpoint_router, prefix=prefix, tags=["endpoints"])
    app.include_router(event_router, prefix=prefix, tags=["events"])
    app.include_router(delivery_router, prefix=prefix, tags=["deliveries"])
    app.include_router(cron_router, prefix=prefix, tags=["cron"])

    return app
