"""Strategy assignment, control, performance and trade history router."""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field

from ..services.errors import StrategyManagerError
from ..services.strategy_manager import MultiUserStrategyManager, get_strategy_manager

router = APIRouter()


# Pydantic schemas
class StrategyAssignRequest(BaseModel):
    """Schema for assigning a strategy to a wallet."""
    model_config = ConfigDict(populate_by_name=True)

    wallet_address: str = Field(..., alias="walletAddress")
    strategy: str
    config: Optional[Dict[str, Any]] = None


class StrategyControlRequest(BaseModel):
    """Schema for starting or stopping a wallet's strategy."""
    action: str
    strategy: Optional[str] = None
    config: Optional[Dict[str, Any]] = None


def _http_error(error: StrategyManagerError) -> HTTPException:
    return HTTPException(status_code=error.status_code, detail=str(error))


@router.get("/strategies")
async def list_strategies(
    manager: MultiUserStrategyManager = Depends(get_strategy_manager),
):
    """List strategies available for assignment."""
    strategies = manager.get_available_strategies()
    return {"strategies": strategies, "count": len(strategies)}


@router.get("/strategies/sessions")
async def list_sessions(
    manager: MultiUserStrategyManager = Depends(get_strategy_manager),
):
    """Status snapshots of every known wallet session."""
    sessions = manager.get_all_user_statuses()
    return {
        "sessions": sessions,
        "total": len(sessions),
        "active": sum(1 for s in sessions if s["isActive"]),
    }


@router.post("/strategies/assign")
async def assign_strategy(
    request: StrategyAssignRequest,
    manager: MultiUserStrategyManager = Depends(get_strategy_manager),
):
    """Assign a strategy to a wallet and start it immediately."""
    try:
        session = await manager.assign_strategy(
            request.wallet_address, request.strategy, request.config
        )
    except StrategyManagerError as e:
        raise _http_error(e)

    return {
        "sessionId": session.session_id,
        "walletAddress": session.wallet_address,
        "strategy": session.selected_strategy,
        "status": session.status.value,
        "config": session.config.to_dict(),
    }


@router.post("/strategies/{wallet_address}/control")
async def control_strategy(
    wallet_address: str,
    request: StrategyControlRequest,
    manager: MultiUserStrategyManager = Depends(get_strategy_manager),
):
    """Start or stop a wallet's strategy.

    ``start`` without a strategy restarts the wallet's previous one.
    """
    if request.action == "stop":
        success = await manager.stop_user_strategy(wallet_address)
        return {"success": success, "walletAddress": wallet_address, "action": "stop"}

    if request.action != "start":
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid action '{request.action}'. Use 'start' or 'stop'."
        )

    strategy = request.strategy
    config = request.config
    if strategy is None:
        previous = manager.registry.get(wallet_address)
        if previous is None or previous.selected_strategy is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="A strategy is required to start"
            )
        strategy = previous.selected_strategy
        if config is None:
            config = previous.config.to_dict()

    try:
        session = await manager.assign_strategy(wallet_address, strategy, config)
    except StrategyManagerError as e:
        raise _http_error(e)

    return {
        "success": True,
        "sessionId": session.session_id,
        "walletAddress": wallet_address,
        "action": "start",
    }


@router.get("/strategies/{wallet_address}/status")
async def get_strategy_status(
    wallet_address: str,
    manager: MultiUserStrategyManager = Depends(get_strategy_manager),
):
    """Current session snapshot for a wallet."""
    snapshot = manager.get_user_status(wallet_address)
    if snapshot is None:
        return {"hasActiveStrategy": False, "walletAddress": wallet_address}
    return snapshot


@router.put("/strategies/{wallet_address}/config")
async def update_strategy_config(
    wallet_address: str,
    config: Dict[str, Any] = Body(...),
    manager: MultiUserStrategyManager = Depends(get_strategy_manager),
):
    """Merge a partial config into a wallet's session without restarting it."""
    try:
        updated = await manager.update_user_config(wallet_address, config)
    except StrategyManagerError as e:
        raise _http_error(e)
    return {"walletAddress": wallet_address, "config": updated.to_dict()}


@router.get("/performance/{wallet_address}")
async def get_performance(
    wallet_address: str,
    manager: MultiUserStrategyManager = Depends(get_strategy_manager),
):
    """Performance counters for a wallet."""
    performance = manager.get_performance(wallet_address)
    if performance is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No performance data for {wallet_address}"
        )
    return {"walletAddress": wallet_address, "performance": performance}


@router.get("/trades/{wallet_address}")
async def get_trades(
    wallet_address: str,
    limit: int = Query(default=50, ge=1, le=1000),
    manager: MultiUserStrategyManager = Depends(get_strategy_manager),
):
    """Most recent trades from the wallet's ledger, newest first."""
    return manager.get_trade_history(wallet_address, limit)


@router.get("/trades/{wallet_address}/errors")
async def get_trade_errors(
    wallet_address: str,
    limit: int = Query(default=50, ge=1, le=1000),
    manager: MultiUserStrategyManager = Depends(get_strategy_manager),
):
    """Most recent strategy errors for the wallet, newest first."""
    errors = manager.get_error_log(wallet_address, limit)
    return {"errors": errors, "walletAddress": wallet_address}
