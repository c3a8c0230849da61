# src/app/main.py
from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.app.config import Settings, settings as default_settings
from src.app.deps import ServiceContainer, build_services
from src.app.routers.recipes import jobs_router, router as recipes_router

log = logging.getLogger("app")


def configure_logging(level: str) -> None:
    # Logging simples no stdout (bom para dev e containers)
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def create_app(
    settings: Optional[Settings] = None,
    services_factory: Optional[Callable[[Settings], ServiceContainer]] = None,
) -> FastAPI:
    settings = settings or default_settings
    services_factory = services_factory or build_services
    configure_logging(settings.LOG_LEVEL)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        services = services_factory(settings)
        app.state.services = services
        recovered = await services.ingestion.recover_interrupted_jobs()
        log.info("app.started env=%s store=%s recovered_jobs=%d", settings.APP_ENV, settings.STORE_BACKEND, recovered)
        try:
            yield
        finally:
            await services.ingestion.shutdown(settings.PIPELINE_SHUTDOWN_GRACE_SECONDS)
            services.close()
            app.state.services = None
            log.info("app.stopped")

    app = FastAPI(title="Recipe Ingestion API", version="0.3.0", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.FRONTEND_CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(recipes_router)
    app.include_router(jobs_router)

    @app.get("/health")
    def health():
        return {"ok": True}

    return app


app = create_app()
