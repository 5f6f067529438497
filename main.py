"""
Main FastAPI application entry point
"""
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.health import router as health_router
from core.config import Settings, get_settings
from core.exceptions import StoreError
from core.logging import get_logger, setup_logging
from core.services import Services, build_services
from d2_checkout.api import router as checkout_router
from d3_webhooks.api import router as webhooks_router
from d4_downloads.api import router as downloads_router
from d5_fulfillment.api import router as fulfillment_router

logger = get_logger(__name__)


def create_app(settings: Optional[Settings] = None, services: Optional[Services] = None) -> FastAPI:
    """
    Build the application.

    Passing services skips building them in the lifespan; the caller then
    owns their shutdown.
    """
    settings = settings or (services.settings if services else get_settings())
    setup_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = services is None
        app.state.services = services or build_services(settings)
        logger.info(f"Starting {settings.app_name} version={settings.app_version} environment={settings.environment}")
        try:
            yield
        finally:
            logger.info(f"Shutting down {settings.app_name}")
            if owned:
                app.state.services.close()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    if services is not None:
        app.state.services = services

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials="*" not in settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    @app.exception_handler(StoreError)
    async def store_error_handler(request: Request, exc: StoreError):
        """Handle custom store errors"""
        log = logger.error if exc.status_code >= 500 else logger.warning
        log(f"Store error - error_code: {exc.error_code}, details: {exc.details}, path: {request.url.path}")

        headers = None
        if getattr(exc, "retry_after", None):
            headers = {"Retry-After": str(exc.retry_after)}
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = "; ".join(f"{'.'.join(str(p) for p in e['loc'][1:])}: {e['msg']}" for e in exc.errors())
        logger.warning(f"Invalid request body - path: {request.url.path}, errors: {errors}")
        return JSONResponse(status_code=400, content={"error": "Invalid request", "details": errors})

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle unexpected errors"""
        logger.exception(f"Unexpected error - path: {request.url.path}", exc_info=exc)
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    # Register routers
    app.include_router(health_router, tags=["health"])
    app.include_router(checkout_router)
    app.include_router(webhooks_router)
    app.include_router(downloads_router)
    app.include_router(fulfillment_router)

    return app


app = create_app()


if __name__ == "__main__":
    settings = get_settings()
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.is_development,
        log_level=settings.log_level.lower(),
    )
