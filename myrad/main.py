from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
import uvicorn
from fastapi import FastAPI

from myrad.api.routes.health import router as health_router
from myrad.api.routes.internal_contributions import router as internal_contributions_router
from myrad.api.routes.internal_users import router as internal_users_router
from myrad.core.config import get_settings
from myrad.core.logging import configure_logging
from myrad.db.session import Store, create_store
from myrad.services.admission import AdmissionGate

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    owns_store = getattr(app.state, "store", None) is None
    if owns_store:
        app.state.store = create_store(settings)
    if getattr(app.state, "admission_gate", None) is None:
        app.state.admission_gate = AdmissionGate(
            settings.submission_max_concurrent,
            max_queue=settings.submission_max_queue,
        )
    logger.info("api_started", database=app.state.store.url)
    try:
        yield
    finally:
        if owns_store:
            await app.state.store.dispose()
            app.state.store = None
        logger.info("api_stopped")


def create_app(
    *,
    store: Store | None = None,
    admission_gate: AdmissionGate | None = None,
) -> FastAPI:
    settings = get_settings()
    configure_logging(settings.log_level, app_env=getattr(settings, "app_env", "dev"))
    docs_enabled = bool(settings.enable_openapi_docs)

    app = FastAPI(
        title="MyRad Data Marketplace Store",
        version="0.1.0",
        docs_url="/docs" if docs_enabled else None,
        redoc_url="/redoc" if docs_enabled else None,
        openapi_url="/openapi.json" if docs_enabled else None,
        lifespan=_lifespan,
    )
    app.state.store = store
    app.state.admission_gate = admission_gate
    app.include_router(health_router)
    app.include_router(internal_users_router)
    app.include_router(internal_contributions_router)
    return app


app = create_app()


def run() -> None:
    settings = get_settings()
    uvicorn.run(
        "myrad.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=settings.app_env == "dev",
    )


if __name__ == "__main__":
    run()
