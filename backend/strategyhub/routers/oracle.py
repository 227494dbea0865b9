"""Oracle countdown router."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from ..services.oracle import OracleService, get_oracle_service

router = APIRouter()


class OraclePreferencesUpdate(BaseModel):
    """Schema for updating a wallet's oracle schedule."""
    frequency: Optional[str] = None
    custom_interval: Optional[float] = Field(default=None, alias="customInterval")


@router.get("/status")
async def get_oracle_status(oracle: OracleService = Depends(get_oracle_service)):
    """Global oracle state."""
    return oracle.get_state()


@router.get("/wallets")
async def list_wallet_oracles(oracle: OracleService = Depends(get_oracle_service)):
    """Every wallet oracle created so far."""
    return {"walletOracles": oracle.all_wallets()}


@router.get("/wallet/{wallet_address}/status")
async def get_wallet_oracle_status(
    wallet_address: str,
    oracle: OracleService = Depends(get_oracle_service),
):
    """Wallet oracle state, created on first access."""
    return oracle.get_wallet_status(wallet_address)


@router.put("/wallet/{wallet_address}/preferences")
async def update_wallet_oracle_preferences(
    wallet_address: str,
    preferences: OraclePreferencesUpdate,
    oracle: OracleService = Depends(get_oracle_service),
):
    """Change a wallet's oracle transmission schedule."""
    try:
        wallet = oracle.update_wallet_preferences(
            wallet_address,
            frequency=preferences.frequency,
            custom_interval_seconds=preferences.custom_interval,
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return {
        "success": True,
        "message": "Oracle preferences updated",
        "oracle": oracle.get_wallet_status(wallet.wallet_address),
    }
