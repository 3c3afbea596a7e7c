from typing import Any, cast

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from .config import StorefrontSettings
from .tracing import configure_tracing


async def _validation_error_handler(request: Request, exc: Exception) -> JSONResponse:
    errors = exc.errors() if isinstance(exc, RequestValidationError) else []
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": "Validation error", "errors": jsonable_encoder(errors)},
    )


def instrument_app(app: FastAPI, settings: StorefrontSettings) -> None:
    """Attach metrics exporters when enabled."""

    if settings.enable_metrics:
        Instrumentator(excluded_handlers=["/health", "/metrics"]).instrument(app).expose(
            app, include_in_schema=False
        )

    state = cast(Any, app.state)
    state.settings = settings


def build_app(settings: StorefrontSettings, **extra_kwargs: Any) -> FastAPI:
    """Create a FastAPI instance with standard metadata, error rendering and instrumentation.

    Request validation failures are rendered as 400 responses; callers never
    receive FastAPI's default 422 for malformed bodies.
    """

    app = FastAPI(title=settings.app_name, version="1.0.0", **extra_kwargs)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    instrument_app(app, settings)
    configure_tracing(app, settings)
    return app
