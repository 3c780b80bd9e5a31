from __future__ import annotations

from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from loguru import logger

from api.routes import router
from data.store import BaseStore, create_store
from providers.base import CandleProvider
from services.config_service import IntegritySettings
from services.orchestrator import EvaluatorOrchestrator, configure_logging


def create_app(
    settings: IntegritySettings | None = None,
    store: BaseStore | None = None,
    provider: CandleProvider | None = None,
) -> FastAPI:
    settings = settings or IntegritySettings()
    store = store or create_store(settings.DATABASE_URL, settings.DATABASE_PATH)
    orchestrator = EvaluatorOrchestrator(store, settings, provider=provider)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        orchestrator.start_schedule()
        logger.info("Integrity API ready")
        yield
        await orchestrator.stop()

    app = FastAPI(title="Trade Integrity Evaluator", lifespan=lifespan)
    app.state.settings = settings
    app.state.orchestrator = orchestrator
    app.include_router(router)
    return app


def main() -> None:
    settings = IntegritySettings()
    configure_logging(settings.LOG_LEVEL)
    uvicorn.run(create_app(settings), host=settings.API_HOST, port=settings.API_PORT)


if __name__ == "__main__":
    main()
