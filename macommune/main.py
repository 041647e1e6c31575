"""
Ma Commune document engine: FastAPI application.

Wires the configuration, the store, the headless renderer and the
lifecycle manager together for the life of the process.
"""

import logging
import sys
from contextlib import asynccontextmanager
from importlib.metadata import PackageNotFoundError, version
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse

from macommune.api.demandes import router as demandes_router
from macommune.api.verification import router as verification_router
from macommune.core.config import Settings, get_settings
from macommune.core.logging import configure_logging
from macommune.db.repository import DemandeRepository
from macommune.db.session import Database
from macommune.services.artifacts import ArtifactStore
from macommune.services.lifecycle import RequestLifecycleManager
from macommune.services.rasterizer import PlaywrightRasterizer, Rasterizer
from macommune.services.renderer import HtmlRenderer
from macommune.services.sealing import DocumentSealer
from macommune.services.tokens import TokenIssuer

logger = logging.getLogger("macommune.main")


def get_app_version() -> str:
    try:
        return version("macommune")
    except PackageNotFoundError:
        return "0.1.0"


def build_lifecycle(
    settings: Settings,
    database: Database,
    rasterizer: Rasterizer,
) -> RequestLifecycleManager:
    return RequestLifecycleManager(
        settings,
        repository=DemandeRepository(database),
        renderer=HtmlRenderer(settings),
        token_issuer=TokenIssuer(settings),
        rasterizer=rasterizer,
        artifact_store=ArtifactStore(settings),
        sealer=DocumentSealer(settings),
    )


def create_app(
    settings: Optional[Settings] = None,
    *,
    rasterizer: Optional[Rasterizer] = None,
) -> FastAPI:
    """
    Application factory.

    Args:
        settings:
            Explicit configuration; read from the environment when omitted.
            Resolved once, so an invalid configuration fails at import.
        rasterizer:
            Replacement HTML to PDF engine. Defaults to headless Chromium.
    """
    try:
        app_settings = settings or get_settings()
    except Exception:
        logger.exception("invalid_configuration")
        raise

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Guarantees:
        - Tables exist before the first request
        - Browser and engine released on shutdown
        """
        configure_logging(app_settings.log_level)
        logger.info(
            "document_engine_startup_begin",
            extra={"version": get_app_version()},
        )

        database = Database(app_settings.database_url)
        await database.init_db()

        engine = rasterizer or PlaywrightRasterizer(app_settings)
        if isinstance(engine, PlaywrightRasterizer):
            await engine.start()

        app.state.settings = app_settings
        app.state.database = database
        app.state.lifecycle = build_lifecycle(app_settings, database, engine)

        try:
            yield
        finally:
            logger.info("document_engine_shutdown_begin")
            if isinstance(engine, PlaywrightRasterizer):
                await engine.close()
            await database.close()

    app = FastAPI(
        title="macommune",
        description="Civic document generation and validation engine",
        version=get_app_version(),
        default_response_class=ORJSONResponse,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.cors_allow_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(demandes_router)
    app.include_router(verification_router)

    @app.get(
        "/health",
        tags=["Monitoring"],
        summary="Liveness and readiness probe",
    )
    async def health_check():
        database: Database = app.state.database
        database_ok = await database.health_check()
        return ORJSONResponse(
            status_code=200 if database_ok else 503,
            content={
                "status": "ok" if database_ok else "degraded",
                "service": "macommune",
                "version": app.version,
                "runtime": f"python {sys.version.split()[0]}",
                "database": "ok" if database_ok else "unavailable",
            },
        )

    return app


app = create_app()
