"""
arena/main.py
FastAPI application for the tournament lifecycle engine.

Run with:
    uvicorn arena.main:app
"""
import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import async_sessionmaker

from arena import __version__
from arena.bootstrap import Services, build_services
from arena.config.settings import Settings
from arena.database import build_engine, build_session_factory, close_db, init_db
from arena.errors import APIError, ErrorCode
from arena.routes import admin, cs2_server, registrations, tournaments
from arena.tasks.notification_retry import start_delivery_task
from arena.tasks.status_sweep import start_sweep_task

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler()]
)
logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    services: Optional[Services] = None,
    session_factory: Optional[async_sessionmaker] = None,
    run_background_tasks: bool = True
) -> FastAPI:
    """
    Build the application.

    Without arguments everything is wired from the environment at startup.
    Tests pass a ready session factory and services so the app shares
    their database and clock.
    """
    settings = settings or (services.settings if services else None) or Settings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting application...")
        engine = None
        factory = session_factory
        if factory is None:
            engine = build_engine(settings.database_url, settings.sql_echo)
            factory = build_session_factory(engine)
            try:
                await init_db(engine)
                logger.info("Database connected successfully")
            except Exception as e:
                logger.error(f"Failed to connect to database: {str(e)}")
                raise
            app.state.session_factory = factory
            app.state.services = build_services(settings, factory)

        background = []
        if run_background_tasks:
            if settings.flags.is_enabled("FEATURE_STATUS_SWEEP"):
                background.append(start_sweep_task(
                    factory, app.state.services.status_engine, settings.status_sweep_interval_seconds
                ))
            if settings.flags.is_enabled("FEATURE_NOTIFICATIONS"):
                background.append(start_delivery_task(
                    app.state.services.dispatcher, settings.notification_retry_interval_seconds
                ))

        yield

        logger.info("Shutting down application...")
        for task in background:
            task.cancel()
        if background:
            await asyncio.gather(*background, return_exceptions=True)
        await app.state.services.dispatcher.drain()
        if engine is not None:
            try:
                await close_db(engine)
            except Exception as e:
                logger.error(f"Error closing database connection: {str(e)}")

    app = FastAPI(
        title="Arena Tournament Engine",
        description="Tournament lifecycle and registration consistency engine",
        version=__version__,
        lifespan=lifespan
    )

    # Injected wiring is usable without running the lifespan
    if session_factory is not None:
        app.state.session_factory = session_factory
        app.state.services = services or build_services(settings, session_factory)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        logger.warning(f"Validation error on {request.url.path}: {exc.errors()}")
        error_details = [
            {
                "loc": list(error.get("loc", ())),
                "msg": error.get("msg"),
                "type": error.get("type")
            }
            for error in exc.errors()
        ]
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "success": False,
                "error": "Validation Error",
                "message": "Request validation failed",
                "code": ErrorCode.VALIDATION_ERROR,
                "details": {"errors": error_details}
            }
        )

    @app.exception_handler(APIError)
    async def api_error_handler(request: Request, exc: APIError):
        logger.warning(f"API error on {request.url.path}: {exc.code} - {exc.message}")
        return exc.to_response()

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        log_id = str(uuid.uuid4())[:8]
        logger.error(f"[{log_id}] Unhandled exception on {request.url.path}: {type(exc).__name__}: {str(exc)}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "success": False,
                "error": "Internal Error",
                "message": "An unexpected error occurred. Please try again later.",
                "code": ErrorCode.INTERNAL_ERROR,
                "details": {"log_id": log_id}
            }
        )

    @app.get("/health", tags=["Health"])
    async def health_check():
        return {
            "status": "healthy",
            "version": __version__,
            "features": settings.flags.get_all_flags(),
        }

    app.include_router(tournaments.router)
    app.include_router(registrations.router)
    app.include_router(admin.registrations_router)
    app.include_router(admin.tournaments_router)
    app.include_router(admin.notifications_router)
    app.include_router(cs2_server.router)

    return app


app = create_app()
