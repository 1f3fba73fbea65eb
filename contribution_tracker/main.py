"""FastAPI application wiring for the Contribution Tracker.

``create_app`` assembles the service:

- Configures logging, the uniform error envelope, CORS, Prometheus metrics
  and rate limiting on the login endpoints.
- Resolves the tenant of every request from ``/t/<prefix>/``, the
  ``X-Tenant-Prefix`` header or the configured default.
- Mounts the tenant-scoped routers under both ``/api`` and
  ``/t/{tenant_prefix}/api``; the operator and public routers only under
  ``/api``.
- Creates the :class:`~contribution_tracker.core.db.Database` client at
  startup, bootstraps the schema and seed rows and disposes the pool on
  shutdown. Startup never fails because of the database: the outcome is
  reported by the health endpoints instead.

Run with ``uvicorn contribution_tracker.main:app``.
"""

import datetime as dt
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from .__version__ import __build_date__, __commit_sha__, __version__
from .app_logging import init_logging
from .core.bootstrap import DatabaseMode, DatabaseStatus, initialize_database
from .core.config import Settings, get_settings
from .core.db import Database, safe_url
from .core.errors import install_error_handlers
from .core.rate_limit import build_limiter
from .core.tenant_middleware import TenantResolverMiddleware
from .routers import (
    auth_api,
    contributions,
    diagnostics,
    global_admin,
    public,
    reports,
    users,
)

load_dotenv()

logger = logging.getLogger(__name__)

APP_NAME = "Presale Contribution System"
TENANT_ROUTERS = (auth_api, users, contributions, reports, diagnostics)


def _open_database(settings: Settings) -> tuple[Database | None, DatabaseStatus]:
    try:
        database = Database.from_settings(settings)
    except Exception as exc:
        logger.exception("Could not create the database client; continuing in degraded mode.")
        return None, DatabaseStatus(DatabaseMode.DEGRADED, None, str(exc))
    return database, initialize_database(database, settings)


def create_app(settings: Settings | None = None, database: Database | None = None) -> FastAPI:
    """Build the application.

    ``database`` lets callers supply an already-constructed client; it is then
    initialized but not disposed on shutdown.
    """

    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if database is not None:
            db, db_status = database, initialize_database(database, settings)
        else:
            db, db_status = _open_database(settings)
        app.state.db = db
        app.state.db_status = db_status
        target = safe_url(settings.database_url) if settings.uses_postgres else settings.db_path
        logger.info("Startup complete: database %s (%s)", db_status.mode.value, target)
        try:
            yield
        finally:
            if db is not None and database is None:
                db.dispose()
            app.state.db = None

    app = FastAPI(title=APP_NAME, version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.db = database
    app.state.db_status = DatabaseStatus(DatabaseMode.UNINITIALIZED)

    init_logging(app)
    install_error_handlers(app)

    app.state.limiter = limiter = build_limiter(settings)
    app.state.self_check_history = diagnostics.new_history()
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)
    app.add_middleware(TenantResolverMiddleware, settings=settings)
    if settings.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=list(settings.cors_origins),
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    tenant_routers = [module.router for module in TENANT_ROUTERS]
    tenant_routers.append(auth_api.login_router(limiter, settings.login_rate_limit))
    for router in tenant_routers:
        app.include_router(router, prefix="/api")
        app.include_router(router, prefix="/t/{tenant_prefix}/api", include_in_schema=False)
    app.include_router(global_admin.login_router(limiter, settings.login_rate_limit), prefix="/api")
    app.include_router(global_admin.router, prefix="/api")
    app.include_router(public.router, prefix="/api")

    # Expose Prometheus metrics
    Instrumentator().instrument(app).expose(app, include_in_schema=False, endpoint="/api/metrics")

    def health_body(request: Request) -> dict:
        db_status: DatabaseStatus = request.app.state.db_status
        return {
            "status": "OK",
            "timestamp": dt.datetime.now(dt.timezone.utc).isoformat(),
            "environment": settings.environment,
            "app": APP_NAME,
            "version": __version__,
            "port": settings.port,
            "database": db_status.as_dict(),
        }

    @app.get("/")
    def root(request: Request) -> dict:
        """Platform health check; answers even when the database is degraded."""
        return health_body(request)

    @app.get("/api/health")
    def health(request: Request) -> dict:
        """Liveness and readiness check including the database status."""
        return health_body(request)

    @app.get("/api/version")
    def version() -> dict:
        """Return version information for the application."""
        return {
            "version": __version__,
            "buildDate": __build_date__,
            "commitSha": __commit_sha__,
        }

    return app


app = create_app()
