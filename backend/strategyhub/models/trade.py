"""Trade decision, swap and ledger record models."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class TradeAction(str, Enum):
    """Trade action enumeration."""
    BUY = "buy"
    SELL = "sell"
    HOLD = "hold"


@dataclass
class TradeDecision:
    """Strategy output for one tick.

    ``amount`` is the notional in the quote token (before sizing by the
    wallet's config). ``token_in``/``token_out`` follow the swap direction.
    """
    action: TradeAction
    amount: float = 0.0
    confidence: float = 0.0
    expected_profit_bps: float = 0.0
    token_in: str = ""
    token_out: str = ""
    reason: str = ""

    @property
    def is_trade(self) -> bool:
        return self.action != TradeAction.HOLD and self.amount > 0

    @classmethod
    def hold(cls, reason: str = "") -> "TradeDecision":
        return cls(action=TradeAction.HOLD, reason=reason)


@dataclass
class SwapQuote:
    """DEX quote result."""
    token_in: str
    token_out: str
    amount_in: float
    expected_out: float
    price: float
    fee_tier: int = 3000
    timestamp: Optional[datetime] = None


@dataclass
class SwapResult:
    """Swap execution result.

    ``beneficiary`` is the wallet the trade was executed on behalf of;
    ``executed_by`` is the shared signer account that actually signed it.
    """
    success: bool
    token_in: str
    token_out: str
    amount_in: float
    expected_out: float
    actual_out: float = 0.0
    beneficiary: str = ""
    executed_by: str = ""
    transaction_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class Balance:
    """Token balance held by the signer account."""
    token: str
    free: float
    locked: float = 0.0

    @property
    def total(self) -> float:
        return self.free + self.locked


@dataclass
class TradeLedgerEntry:
    """One line of a wallet's trade log."""
    timestamp: datetime
    wallet_address: str
    beneficiary: str
    executed_by: str
    session_id: Optional[str]
    strategy: Optional[str]
    action: str
    token_in: str
    token_out: str
    amount_in: float
    expected_out: float
    actual_out: float
    success: bool
    profit: float
    volume: float
    pool: str
    transaction_id: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "walletAddress": self.wallet_address,
            "beneficiary": self.beneficiary,
            "executedBy": self.executed_by,
            "sessionId": self.session_id,
            "strategy": self.strategy,
            "action": self.action,
            "tokenIn": self.token_in,
            "tokenOut": self.token_out,
            "amountIn": self.amount_in,
            "expectedOut": self.expected_out,
            "actualOut": self.actual_out,
            "success": self.success,
            "profit": self.profit,
            "volume": self.volume,
            "pool": self.pool,
            "transactionId": self.transaction_id,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TradeLedgerEntry":
        return cls(
            timestamp=datetime.fromisoformat(data["timestamp"]),
            wallet_address=data["walletAddress"],
            beneficiary=data.get("beneficiary", data["walletAddress"]),
            executed_by=data.get("executedBy", ""),
            session_id=data.get("sessionId"),
            strategy=data.get("strategy"),
            action=data.get("action", ""),
            token_in=data.get("tokenIn", ""),
            token_out=data.get("tokenOut", ""),
            amount_in=float(data.get("amountIn", 0.0)),
            expected_out=float(data.get("expectedOut", 0.0)),
            actual_out=float(data.get("actualOut", 0.0)),
            success=bool(data.get("success", False)),
            profit=float(data.get("profit", 0.0)),
            volume=float(data.get("volume", 0.0)),
            pool=data.get("pool", ""),
            transaction_id=data.get("transactionId"),
            error=data.get("error"),
        )
