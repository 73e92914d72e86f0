"""
Main FastAPI application for the word-credit ledger.
Serves health, payments, words and metrics.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from wordledger.api.routes import health, payments, words
from wordledger.core.config import settings
from wordledger.core.logging import configure_logging
from wordledger.db.migrations import run_migrations
from wordledger.db.session import build_engine, build_session_factory
from wordledger.services.aggregator.client import LipiaClient
from wordledger.services.errors import LedgerError
from wordledger.utils.metrics import router as metrics_router


logger = logging.getLogger(__name__)


def create_app(
    engine: Engine | None = None,
    aggregator: LipiaClient | None = None,
    configure_logs: bool = True,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if configure_logs:
            configure_logging()
        app.state.engine = engine or build_engine()
        app.state.session_factory = build_session_factory(app.state.engine)
        app.state.aggregator = aggregator or LipiaClient()
        run_migrations(app.state.engine)
        logger.info("ledger_started")
        try:
            yield
        finally:
            app.state.aggregator.close()
            if engine is None:
                app.state.engine.dispose()

    app = FastAPI(
        title="Word Ledger API",
        description="M-Pesa word-credit purchases and balances",
        version="1.0.0",
        lifespan=lifespan,
    )

    origins = settings.cors_origins_list or ["http://localhost:3000", "http://127.0.0.1:3000"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(LedgerError)
    async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
        return JSONResponse(status_code=exc.http_status, content=exc.to_dict())

    @app.exception_handler(SQLAlchemyError)
    async def store_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
        logger.error("store_error", extra={"path": request.url.path, "error": type(exc).__name__})
        return JSONResponse(
            status_code=503,
            content={"error": "store_unavailable", "message": "Service temporarily unavailable"},
        )

    app.include_router(health.router, tags=["health"])
    app.include_router(payments.router)
    app.include_router(words.router)
    app.include_router(metrics_router)
    return app
