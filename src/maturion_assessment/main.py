"""Maturion assessment service entry point."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from maturion_assessment import __version__
from maturion_assessment.adapters.database import close_database, init_database
from maturion_assessment.api.router import get_settings, router
from maturion_assessment.api.schemas import ErrorResponse
from maturion_assessment.errors import MaturionError
from maturion_assessment.observability import configure_logging, get_logger

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown lifecycle.

    Args:
        app: The FastAPI application instance.

    Yields:
        None
    """
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_json)
    init_database(settings.database_url, echo=settings.database_echo)
    logger.info("Service started", service_name=settings.service_name, version=__version__)
    yield
    await close_database()
    logger.info("Service stopped", service_name=settings.service_name)


async def maturion_error_handler(request: Request, exc: MaturionError) -> JSONResponse:
    """Render a MaturionError as a JSON error body with its status code."""
    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        "Request failed",
        path=request.url.path,
        error_code=exc.error_code.value,
        status_code=exc.status_code,
        message=exc.message,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error_code=exc.error_code.value,
            message=exc.message,
            details=exc.details,
        ).model_dump(),
    )


def create_app() -> FastAPI:
    """Build the FastAPI application with routes and error handlers."""
    application = FastAPI(
        title="Maturion Assessment",
        version=__version__,
        lifespan=lifespan,
    )
    application.add_exception_handler(MaturionError, maturion_error_handler)
    application.include_router(router, prefix="/api/v1")

    @application.get("/health", tags=["Health"])
    async def health() -> dict[str, str]:
        return {"status": "ok", "version": __version__}

    return application


app: FastAPI = create_app()
