"""FastAPI application for the itinerary generation service."""

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator

# Load environment variables from .env file
from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from tripweaver.api.components import AppComponents, build_components
from tripweaver.api.routes import router as api_router
from tripweaver.api.streaming_routes import router as streaming_router
from tripweaver.config import Settings, settings as default_settings
from tripweaver.errors import ErrorCode, GenerationError

logger = logging.getLogger(__name__)


def create_app(
    app_settings: Settings | None = None,
    components: AppComponents | None = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        app_settings: Settings to use (defaults to the environment)
        components: Pre-built components; built from settings at startup if omitted
    """
    config = app_settings or (components.settings if components else default_settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        # Startup
        logger.info("Starting Tripweaver API...")
        app.state.components = components or await build_components(config)
        logger.info("Generation service ready")
        yield
        # Shutdown
        logger.info("Shutting down Tripweaver API...")
        await app.state.components.aclose()
        logger.info("Background work drained, providers closed")

    app = FastAPI(
        title="Tripweaver",
        description="Tiered multi-provider itinerary generation with live progress",
        version="0.1.0",
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # API key authentication middleware (optional)
    if config.api_key:
        from tripweaver.security import ApiKeyMiddleware
        app.add_middleware(ApiKeyMiddleware, api_key=config.api_key)
        logger.info("API key authentication enabled")

    # Request timing middleware
    @app.middleware("http")
    async def add_timing_header(request: Request, call_next):
        start_time = time.perf_counter()
        response = await call_next(request)
        process_time = (time.perf_counter() - start_time) * 1000
        response.headers["X-Process-Time-Ms"] = f"{process_time:.2f}"
        return response

    @app.exception_handler(GenerationError)
    async def generation_error_handler(request: Request, exc: GenerationError) -> JSONResponse:
        if exc.code in (ErrorCode.GENERATION_FAILED, ErrorCode.TIMEOUT):
            logger.warning(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_dict(),
            headers=exc.headers or None,
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        error = GenerationError(
            ErrorCode.VALIDATION_ERROR,
            "Invalid request",
            {
                "errors": [
                    {
                        "field": ".".join(str(part) for part in err.get("loc", ())),
                        "message": err.get("msg", ""),
                    }
                    for err in exc.errors()
                ]
            },
        )
        return JSONResponse(status_code=error.status_code, content=error.to_dict())

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        error = GenerationError(ErrorCode.INTERNAL_ERROR, "An unexpected error occurred")
        return JSONResponse(status_code=error.status_code, content=error.to_dict())

    # Include API routes
    app.include_router(api_router, prefix="/v1")
    app.include_router(streaming_router, prefix="/v1", tags=["streaming"])

    # Health check
    @app.get("/health")
    async def health_check():
        return {"status": "healthy", "version": "0.1.0"}

    # Root
    @app.get("/")
    async def root():
        return {
            "name": "Tripweaver",
            "version": "0.1.0",
            "docs": "/docs",
            "openapi": "/openapi.json",
        }

    return app


# Create app instance
app = create_app()
