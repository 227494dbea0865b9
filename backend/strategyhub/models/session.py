"""User session model: one per wallet address."""

import uuid
from collections import deque
from dataclasses import dataclass, field, fields
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Deque, Dict, List, Optional, Tuple

from .schema import ConfigValidationError, validate_against_schema


class SessionStatus(str, Enum):
    """Session status enumeration."""
    CREATED = "created"
    ACTIVE = "active"
    PAUSED = "paused"
    STOPPED = "stopped"
    ERROR = "error"


class RiskLevel(str, Enum):
    """Position sizing profile."""
    CONSERVATIVE = "conservative"
    MODERATE = "moderate"
    AGGRESSIVE = "aggressive"


RISK_SCALE = {
    RiskLevel.CONSERVATIVE: 0.5,
    RiskLevel.MODERATE: 1.0,
    RiskLevel.AGGRESSIVE: 1.5,
}

# Wire keys are camelCase; validated with the same schema engine as config.yaml
USER_CONFIG_SCHEMA = {
    "minProfitBps": {"type": "int", "min": 0},
    "slippageBps": {"type": "int", "min": 0, "max": 10000},
    "maxTradeSize": {"type": "float", "exclusive_min": 0},
    "riskLevel": {"type": "str", "options": [r.value for r in RiskLevel]},
    "autoTrade": {"type": "bool"},
    "notifications": {"type": "bool"},
}

_WIRE_TO_FIELD = {
    "minProfitBps": "min_profit_bps",
    "slippageBps": "slippage_bps",
    "maxTradeSize": "max_trade_size",
    "riskLevel": "risk_level",
    "autoTrade": "auto_trade",
    "notifications": "notifications",
}

DAILY_WINDOW = timedelta(hours=24)
LOT_DUST = 1e-12


@dataclass
class UserStrategyConfig:
    """Per-wallet strategy parameters."""
    min_profit_bps: int = 50
    slippage_bps: int = 100
    max_trade_size: float = 50.0
    risk_level: RiskLevel = RiskLevel.MODERATE
    auto_trade: bool = True
    notifications: bool = True

    @staticmethod
    def validate(partial: Dict[str, Any]) -> List[ConfigValidationError]:
        """Validate a (partial) wire-format config. Returns all errors."""
        if not isinstance(partial, dict):
            return [ConfigValidationError(
                path="",
                message=f"Config must be a dictionary, got {type(partial).__name__}"
            )]
        return validate_against_schema(partial, USER_CONFIG_SCHEMA)

    def merged(self, partial: Dict[str, Any]) -> "UserStrategyConfig":
        """Return a copy with wire-format values applied. Assumes validated input."""
        values = {f.name: getattr(self, f.name) for f in fields(self)}
        for key, value in partial.items():
            name = _WIRE_TO_FIELD[key]
            if name == "risk_level":
                value = RiskLevel(value)
            elif name == "max_trade_size":
                value = float(value)
            values[name] = value
        return UserStrategyConfig(**values)

    @property
    def risk_scale(self) -> float:
        return RISK_SCALE[self.risk_level]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "minProfitBps": self.min_profit_bps,
            "slippageBps": self.slippage_bps,
            "maxTradeSize": self.max_trade_size,
            "riskLevel": self.risk_level.value,
            "autoTrade": self.auto_trade,
            "notifications": self.notifications,
        }


@dataclass
class PerformanceMetrics:
    """Running per-wallet counters.

    Everything except ``daily_profit`` only ever grows. ``daily_profit`` is
    recomputed from the trades completed in the trailing 24 hours.
    """
    total_trades: int = 0
    successful_trades: int = 0
    total_profit: float = 0.0
    total_loss: float = 0.0
    total_volume: float = 0.0
    daily_profit: float = 0.0
    last_updated: Optional[datetime] = None
    _recent: Deque[Tuple[datetime, float]] = field(
        default_factory=deque, repr=False, compare=False
    )

    @property
    def win_rate(self) -> float:
        if self.total_trades == 0:
            return 0.0
        return self.successful_trades / self.total_trades

    @property
    def average_profit(self) -> float:
        if self.successful_trades == 0:
            return 0.0
        return self.total_profit / self.successful_trades

    def record_trade(
        self,
        success: bool,
        profit: float = 0.0,
        volume: float = 0.0,
        at: Optional[datetime] = None,
    ) -> None:
        """Fold one trade outcome into the counters."""
        at = at or datetime.utcnow()
        self.total_trades += 1
        if success:
            self.successful_trades += 1
            if profit >= 0:
                self.total_profit += profit
            else:
                self.total_loss += -profit
            self.total_volume += volume
            self._recent.append((at, profit))
        self.last_updated = at
        self.refresh_daily(at)

    def refresh_daily(self, now: Optional[datetime] = None) -> float:
        """Drop trades older than the window and recompute daily profit."""
        now = now or datetime.utcnow()
        cutoff = now - DAILY_WINDOW
        while self._recent and self._recent[0][0] < cutoff:
            self._recent.popleft()
        self.daily_profit = sum(p for _, p in self._recent)
        return self.daily_profit

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalTrades": self.total_trades,
            "successfulTrades": self.successful_trades,
            "totalProfit": self.total_profit,
            "totalLoss": self.total_loss,
            "totalVolume": self.total_volume,
            "winRate": self.win_rate,
            "averageProfit": self.average_profit,
            "dailyProfit": self.daily_profit,
            "lastUpdated": self.last_updated.isoformat() if self.last_updated else None,
        }


@dataclass
class PositionLot:
    """Base tokens acquired by one buy."""
    quantity: float
    unit_cost: float  # quote paid per base unit, fees included


@dataclass
class Position:
    """Base-token holdings bought by a wallet's strategies.

    Buys open lots; sells consume them oldest first and realize
    ``proceeds - cost basis`` on the consumed quantity. Base sold beyond
    the held lots has no cost basis and realizes nothing.
    """
    lots: Deque[PositionLot] = field(default_factory=deque)

    @property
    def quantity(self) -> float:
        return sum(lot.quantity for lot in self.lots)

    @property
    def cost_basis(self) -> float:
        return sum(lot.quantity * lot.unit_cost for lot in self.lots)

    def buy(self, quantity: float, cost: float) -> None:
        if quantity <= 0:
            return
        self.lots.append(PositionLot(quantity=quantity, unit_cost=cost / quantity))

    def sell(self, quantity: float, proceeds: float) -> float:
        """Consume lots for a sell and return the realized profit."""
        if quantity <= 0:
            return 0.0

        remaining = quantity
        realized = 0.0
        while remaining > LOT_DUST and self.lots:
            lot = self.lots[0]
            consumed = min(lot.quantity, remaining)
            realized += proceeds * (consumed / quantity) - consumed * lot.unit_cost
            lot.quantity -= consumed
            remaining -= consumed
            if lot.quantity <= LOT_DUST:
                self.lots.popleft()
        return realized

    def to_dict(self) -> Dict[str, Any]:
        return {"quantity": self.quantity, "costBasis": self.cost_basis}


def new_session_id(wallet_address: str) -> str:
    """Generate a session token for a wallet."""
    return f"session_{wallet_address[-8:]}_{uuid.uuid4().hex}"


@dataclass
class UserSession:
    """A wallet's strategy assignment and live state."""
    wallet_address: str
    session_id: Optional[str] = None
    selected_strategy: Optional[str] = None
    is_active: bool = False
    status: SessionStatus = SessionStatus.CREATED
    config: UserStrategyConfig = field(default_factory=UserStrategyConfig)
    performance: PerformanceMetrics = field(default_factory=PerformanceMetrics)
    position: Position = field(default_factory=Position)
    start_time: Optional[datetime] = None
    last_activity: Optional[datetime] = None
    last_trade_time: Optional[datetime] = None
    consecutive_failures: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Status snapshot in wire format."""
        self.performance.refresh_daily()
        return {
            "hasActiveStrategy": self.is_active,
            "walletAddress": self.wallet_address,
            "strategy": self.selected_strategy,
            "selectedStrategy": self.selected_strategy,
            "isActive": self.is_active,
            "status": self.status.value,
            "startTime": self.start_time.isoformat() if self.start_time else None,
            "lastActivity": self.last_activity.isoformat() if self.last_activity else None,
            "lastTradeTime": self.last_trade_time.isoformat() if self.last_trade_time else None,
            "config": self.config.to_dict(),
            "performance": self.performance.to_dict(),
            "position": self.position.to_dict(),
        }

    def __repr__(self):
        return (
            f"<UserSession(wallet='{self.wallet_address}', "
            f"strategy={self.selected_strategy}, status={self.status.value})>"
        )
