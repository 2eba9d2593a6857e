"""
FastAPI main application for the BookMarket API.
"""

import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

import structlog
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

from bookmarket.auth import FirebaseIdentityVerifier
from bookmarket.config import MarketplaceConfig, config
from bookmarket.database import MarketplaceDatabaseService
from bookmarket.errors import InvalidInput, MarketplaceError, UpstreamFailure
from bookmarket.models import ErrorResponse, HealthResponse
from bookmarket.payments import StripePaymentBroker
from bookmarket.routers import books, orders, payments, reviews, users, wishlist
from utilities.logger import bind_request_context, clear_request_context, setup_logging

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    settings: MarketplaceConfig = app.state.settings
    setup_logging(
        log_level=settings.log_level,
        log_format=settings.log_format,
        log_file=settings.get_log_file_path(),
        debug=settings.debug,
    )
    logger.info("Starting BookMarket API")

    client = None
    if app.state.db_service is None:
        try:
            client = AsyncIOMotorClient(settings.mongodb_url)
            database = client[settings.mongodb_database]

            # Test connection
            await database.command("ping")
            logger.info("Database connection established", database=settings.mongodb_database)

            db_service = MarketplaceDatabaseService(database)
            await db_service.create_indexes()
            app.state.db_service = db_service

        except PyMongoError as e:
            logger.error("Failed to connect to database", error=str(e))
            raise

    if app.state.identity_verifier is None:
        app.state.identity_verifier = FirebaseIdentityVerifier(settings.fb_service_key)

    if app.state.payment_broker is None:
        app.state.payment_broker = StripePaymentBroker(
            secret_key=settings.stripe_secret_key,
            client_domain=settings.client_domain,
            currency=settings.currency,
        )

    yield

    # Shutdown
    logger.info("Shutting down BookMarket API")
    if client:
        client.close()


def create_app(
    settings: Optional[MarketplaceConfig] = None,
    db_service: Optional[MarketplaceDatabaseService] = None,
    identity_verifier: Optional[FirebaseIdentityVerifier] = None,
    payment_broker: Optional[StripePaymentBroker] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Services that are not injected are created by the lifespan from the
    configuration.
    """
    settings = settings or config

    app = FastAPI(
        title=settings.api_title,
        description=settings.api_description,
        version=settings.api_version,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.db_service = db_service
    app.state.identity_verifier = identity_verifier
    app.state.payment_broker = payment_broker

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        clear_request_context()
        bind_request_context(request_id=uuid.uuid4().hex[:12], method=request.method, path=request.url.path)
        started = time.perf_counter()
        response = await call_next(request)
        logger.info(
            "Request completed",
            status_code=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        return response

    register_exception_handlers(app, debug=settings.debug)

    for module in (users, books, orders, payments, wishlist, reviews):
        app.include_router(module.router)

    @app.get("/", tags=["Health"])
    async def root():
        return {"message": "Hello from BookMarket server"}

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    async def health_check():
        """Health check endpoint."""
        db_status = "unavailable"
        if app.state.db_service is not None:
            health_info = await app.state.db_service.health_check()
            db_status = health_info.get("status", "unknown")

        return HealthResponse(
            status="healthy" if db_status == "healthy" else "degraded",
            timestamp=datetime.utcnow(),
            version=settings.api_version,
            database_status=db_status,
        )

    return app


def register_exception_handlers(app: FastAPI, debug: bool = False) -> None:
    """Render every failure as a JSON body with a human-readable message."""

    @app.exception_handler(MarketplaceError)
    async def marketplace_exception_handler(request: Request, exc: MarketplaceError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_content())

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        problems = [
            f"{'.'.join(str(part) for part in error.get('loc', ()))}: {error.get('msg')}"
            for error in exc.errors()
        ]
        error = InvalidInput("Invalid request: " + "; ".join(problems))
        return JSONResponse(status_code=error.status_code, content=error.to_content())

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        """Handle HTTP exceptions."""
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(message=str(exc.detail), status_code=exc.status_code).model_dump(),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(PyMongoError)
    async def database_exception_handler(request: Request, exc: PyMongoError):
        logger.error("Unhandled database error", error=str(exc), path=request.url.path)
        error = UpstreamFailure("Database operation failed")
        return JSONResponse(status_code=error.status_code, content=error.to_content())

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle general exceptions."""
        logger.error("Unhandled exception", error=str(exc), path=request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=ErrorResponse(
                message="Internal server error",
                detail=str(exc) if debug else None,
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            ).model_dump(),
        )


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "bookmarket.main:app",
        host=config.host,
        port=config.port,
        reload=config.debug,
        log_level="info",
    )
