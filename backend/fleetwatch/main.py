"""FastAPI application."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from .config import Settings, settings as default_settings
from .database import Database, build_database
from .domain_errors import DomainError
from .problem_details import build_problem_details_response
from .routers import audit, events, geofences, recipients
from .services.audit import AuditRecorder
from .use_cases.dispatch import Dispatcher

logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"


def create_app(
    *,
    config: Settings | None = None,
    database: Database | None = None,
    dispatcher: Dispatcher | None = None,
) -> FastAPI:
    """Build the API around an explicit store handle (tests inject their own)."""
    cfg = config or default_settings

    if cfg.ENV.lower() == "production" and any(origin.strip() == "*" for origin in cfg.cors_origins):
        raise RuntimeError("ALLOWED_ORIGINS must be explicit in production (no wildcard).")
    if cfg.ENV.lower() == "production" and cfg.DETECTOR_SHARED_SECRET.startswith("change-me"):
        raise RuntimeError("DETECTOR_SHARED_SECRET must be set in production.")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        db_handle = database or build_database(config=cfg)
        if database is None:
            db_handle.create_all()
        recorder = AuditRecorder(db_handle.SessionLocal)
        app.state.database = db_handle
        app.state.audit = recorder
        app.state.dispatcher = dispatcher or Dispatcher.from_settings(db_handle, recorder, cfg)
        logger.info("API started (env=%s)", cfg.ENV)
        try:
            yield
        finally:
            if dispatcher is None:
                app.state.dispatcher.shutdown(wait=True)
            if database is None:
                db_handle.dispose()

    app = FastAPI(
        title="Fleetwatch Geofence Alerts",
        version=API_VERSION,
        description="Geofence visibility, crossing ingestion and notification fan-out API",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type"] if cfg.ENV.lower() == "production" else ["*"],
    )

    @app.exception_handler(DomainError)
    async def domain_error_handler(request: Request, exc: DomainError):
        return build_problem_details_response(exc)

    app.include_router(geofences.router, prefix="/api/v1")
    app.include_router(recipients.router, prefix="/api/v1")
    app.include_router(events.router, prefix="/api/v1")
    app.include_router(audit.router, prefix="/api/v1")

    @app.get("/api/v1/system/health")
    def health_check(request: Request):
        """Health check endpoint."""
        database_status = "ok"
        try:
            with request.app.state.database.engine.connect() as connection:
                connection.execute(text("SELECT 1"))
        except Exception:
            logger.exception("Health check: database unavailable")
            database_status = "unavailable"
        return {
            "status": "ok" if database_status == "ok" else "degraded",
            "version": API_VERSION,
            "database": database_status,
        }

    return app


app = create_app()
