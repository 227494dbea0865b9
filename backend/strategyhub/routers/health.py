"""Health check router."""

from fastapi import APIRouter, Depends

from ..services.strategy_manager import MultiUserStrategyManager, get_strategy_manager

router = APIRouter()


@router.get("/health")
async def health_check(manager: MultiUserStrategyManager = Depends(get_strategy_manager)):
    """Health check endpoint."""
    return {
        "status": "ok",
        "service": "strategyhub",
        "version": "1.0.0",
        "activeSessions": len(manager.registry.active()),
    }
