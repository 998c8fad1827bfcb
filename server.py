"""
Trade Escrow API Server
FastAPI application wiring the trade lifecycle engine, its routes and the expiry sweep
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from config import Config
from database import build_async_engine, build_session_factory, check_connection, create_tables
from jobs.scheduler import TradeScheduler
from routes.trade_routes import router as trade_router
from services.price_service import PriceService
from services.trade_expiry_service import TradeExpiryService
from services.trade_lifecycle import TradeLifecycleManager
from utils.error_handler import TradeEngineError

logging.basicConfig(
    level=getattr(logging, Config.LOG_LEVEL, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup: build engine, tables, lifecycle manager and expiry scheduler
    (skipped when a manager was injected).
    Shutdown: stop the scheduler and dispose the engine.
    """
    engine = None
    scheduler: Optional[TradeScheduler] = app.state.scheduler

    if app.state.trade_manager is None:
        Config.log_summary()
        engine = build_async_engine()
        await create_tables(engine)
        session_factory = build_session_factory(engine)
        app.state.session_factory = session_factory
        app.state.trade_manager = TradeLifecycleManager(session_factory, PriceService())

        if scheduler is None and Config.EXPIRY_SWEEP_ENABLED:
            expiry_service = TradeExpiryService(
                app.state.trade_manager, batch_size=Config.EXPIRY_SWEEP_BATCH_SIZE
            )
            scheduler = TradeScheduler(expiry_service)
            app.state.scheduler = scheduler

    if scheduler is not None:
        scheduler.start()

    logger.info("✅ Trade escrow API ready")
    yield

    if scheduler is not None:
        scheduler.shutdown()
    if engine is not None:
        await engine.dispose()
    logger.info("🔄 Trade escrow API shut down")


async def handle_trade_engine_error(request: Request, exc: TradeEngineError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.http_status,
        content=exc.to_standard_error().to_response(),
    )


def create_app(
    trade_manager: Optional[TradeLifecycleManager] = None,
    scheduler: Optional[TradeScheduler] = None,
) -> FastAPI:
    """Build the FastAPI app; pass a manager to skip database bootstrapping"""
    app = FastAPI(
        title="P2P Trade Escrow API",
        description="Trade lifecycle and escrow engine for peer-to-peer BTC trading",
        lifespan=lifespan,
    )
    app.state.trade_manager = trade_manager
    app.state.scheduler = scheduler
    app.state.session_factory = None

    app.add_exception_handler(TradeEngineError, handle_trade_engine_error)
    app.include_router(trade_router)

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        session_factory = app.state.session_factory
        database_ok = await check_connection(session_factory) if session_factory else None
        ready = app.state.trade_manager is not None and database_ok is not False
        return JSONResponse(
            status_code=200 if ready else 503,
            content={
                "status": "healthy" if ready else "starting",
                "service": "trade-escrow",
                "ready": ready,
                "database": database_ok,
            },
        )

    return app


def main():
    import uvicorn

    uvicorn.run(create_app(), host=Config.SERVER_HOST, port=Config.SERVER_PORT)


if __name__ == "__main__":
    main()
