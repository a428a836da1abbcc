from typing import Optional
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import structlog

from caregiver_agent.application.api.route.agent import router as chat_router
from caregiver_agent.application.container import Container, build_container
from caregiver_agent.infrastructure.config.settings import Settings, get_settings
from caregiver_agent.infrastructure.observability.langfuse_tracing import configure_tracing
from caregiver_agent.infrastructure.observability.logging import metrics, setup_logging
from caregiver_agent.infrastructure.persistence.sql_store import SqlCareStore

logger = structlog.get_logger(__name__)


def create_app(container: Container, title: str = "Caregiver Agent API") -> FastAPI:
    """FastAPI app serving an already-built engine"""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if isinstance(container.store, SqlCareStore):
            await container.store.create_schema()
        logger.info("API server started")
        yield
        await container.close()
        logger.info("API server stopped")

    app = FastAPI(title=title, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.orchestrator = container.orchestrator
    app.state.history = container.history
    app.state.cache = container.cache

    app.include_router(chat_router)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.get("/metrics")
    async def metrics_summary():
        return metrics.get_metrics_summary()

    return app


def create_app_from_settings(settings: Optional[Settings] = None) -> FastAPI:
    """Entry point for ASGI servers"""

    settings = settings or get_settings()
    setup_logging(settings.LOG_LEVEL, settings.LOG_FORMAT, settings.SERVICE_NAME)
    configure_tracing(settings)
    return create_app(build_container(settings), title=settings.SERVICE_NAME)
