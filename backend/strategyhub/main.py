"""StrategyHub FastAPI Application.

Multi-user strategy runner: wallets are assigned trading strategies that
run concurrently against one shared swap signer.
WebSocket support for real-time strategy, trade and oracle updates.
"""

import sys
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .routers import health, strategies, oracle
from .routers import websocket as ws_router
from .services.config import config_service, configure_logging, ConfigValidationException
from .services.oracle import oracle_service
from .services.strategy_manager import strategy_manager
from .services.websocket import notification_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup: Validate configuration
    try:
        config_service.load_and_validate()
        print("Configuration validated successfully")
    except ConfigValidationException as e:
        print(f"FATAL: {e}")
        print("Server cannot start with invalid configuration.")
        sys.exit(1)

    configure_logging(config_service)

    try:
        strategy_manager.configure(config_service)
    except ValueError as e:
        print(f"FATAL: {e}")
        sys.exit(1)
    print("Strategy manager configured")

    if config_service.get("ledger.restore_on_startup"):
        try:
            restored = strategy_manager.restore_from_ledger()
            if restored > 0:
                print(f"Restored {restored} session(s) from trade ledger")
        except Exception as e:
            print(f"WARNING: Failed to restore sessions: {e}")

    # Start notification delivery before anything publishes
    await notification_router.start()
    print("Notification router started")

    if config_service.get("oracle.enabled"):
        oracle_service.configure(config_service)
        await oracle_service.start()
        print("Oracle started")

    yield

    # Shutdown: stop strategies first so their final trades are delivered
    print("Initiating graceful shutdown...")

    try:
        stopped = await strategy_manager.shutdown()
        if stopped > 0:
            print(f"Stopped {stopped} strategy session(s)")
    except Exception as e:
        print(f"WARNING: Error during strategy manager shutdown: {e}")

    await oracle_service.stop()

    await notification_router.stop()
    print("Notification router stopped")

    print("Graceful shutdown complete")


app = FastAPI(
    title="StrategyHub API",
    description="Multi-user trading strategy runner",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router, prefix="/api", tags=["Health"])
app.include_router(strategies.router, prefix="/api", tags=["Strategies"])
app.include_router(oracle.router, prefix="/api/oracle", tags=["Oracle"])
app.include_router(ws_router.router, prefix="/api", tags=["WebSocket"])


@app.get("/")
async def root():
    """Root endpoint redirect to docs."""
    return {"message": "StrategyHub API", "docs": "/docs"}
