# Domain Models

from .session import (
    UserSession,
    UserStrategyConfig,
    PerformanceMetrics,
    SessionStatus,
    RiskLevel,
    new_session_id,
)
from .trade import (
    TradeAction,
    TradeDecision,
    SwapQuote,
    SwapResult,
    Balance,
    TradeLedgerEntry,
)
from .oracle import (
    OracleState,
    OracleStatus,
    OracleFrequency,
    OraclePreferences,
    WalletOracleState,
)

__all__ = [
    "UserSession",
    "UserStrategyConfig",
    "PerformanceMetrics",
    "SessionStatus",
    "RiskLevel",
    "new_session_id",
    "TradeAction",
    "TradeDecision",
    "SwapQuote",
    "SwapResult",
    "Balance",
    "TradeLedgerEntry",
    "OracleState",
    "OracleStatus",
    "OracleFrequency",
    "OraclePreferences",
    "WalletOracleState",
]
