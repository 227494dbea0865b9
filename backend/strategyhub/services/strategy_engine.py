"""Pluggable strategy engines and the registry of available strategies.

A strategy turns a market snapshot into a ``TradeDecision``. It does not
size, approve or execute trades; the runner does that using the wallet's
config. Each runner owns its own engine instance, so engines may keep
per-wallet state between ticks.
"""

import logging
import statistics
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Type

from ..models.session import UserStrategyConfig
from ..models.trade import SwapResult, TradeAction, TradeDecision
from .errors import UnknownStrategy
from .market_data import MarketCondition

logger = logging.getLogger(__name__)


class StrategyEngine(ABC):
    """Base class for decision makers."""

    name: str = ""
    description: str = ""
    # When False the runner skips the minProfitBps filter for this engine
    uses_profit_filter: bool = True

    def __init__(self, params: Optional[dict] = None, clock: Callable[[], datetime] = datetime.utcnow):
        self.params = params or {}
        self._clock = clock

    @abstractmethod
    async def decide(
        self,
        market: MarketCondition,
        config: UserStrategyConfig,
    ) -> TradeDecision:
        """Produce the decision for one tick."""

    def on_trade_result(self, decision: TradeDecision, result: SwapResult) -> None:
        """Called after a swap for this engine's decision completed."""


class TestStrategy(StrategyEngine):
    """Buys a small fixed notional on an interval and sells it back later.

    Parameters:
        amount: Quote notional per buy (default: 1.0)
        buy_interval_seconds: Time between buys (default: 900)
        sell_delay_seconds: Time a bought position is held (default: 300)
    """

    # Keep pytest from collecting this class
    __test__ = False

    name = "test-strategy"
    description = "Buys a fixed notional periodically and sells it back after a delay"
    uses_profit_filter = False

    def __init__(self, params: Optional[dict] = None, clock: Callable[[], datetime] = datetime.utcnow):
        super().__init__(params, clock)
        self.amount = self.params.get("amount", 1.0)
        self.buy_interval = timedelta(seconds=self.params.get("buy_interval_seconds", 900))
        self.sell_delay = timedelta(seconds=self.params.get("sell_delay_seconds", 300))
        self._last_buy: Optional[datetime] = None
        self._pending_sells: List[List] = []  # [due_at, base_amount]

    @property
    def pending_sells(self) -> int:
        return len(self._pending_sells)

    async def decide(self, market: MarketCondition, config: UserStrategyConfig) -> TradeDecision:
        now = self._clock()

        if self._pending_sells and self._pending_sells[0][0] <= now:
            base_amount = self._pending_sells[0][1]
            return TradeDecision(
                action=TradeAction.SELL,
                amount=base_amount * market.price,
                confidence=1.0,
                token_in=market.base_token,
                token_out=market.quote_token,
                reason="Test strategy: sell delay elapsed",
            )

        if self._last_buy is None or now - self._last_buy >= self.buy_interval:
            return TradeDecision(
                action=TradeAction.BUY,
                amount=self.amount,
                confidence=1.0,
                token_in=market.quote_token,
                token_out=market.base_token,
                reason="Test strategy: buy interval elapsed",
            )

        return TradeDecision.hold("Test strategy: waiting")

    def on_trade_result(self, decision: TradeDecision, result: SwapResult) -> None:
        if not result.success:
            return
        now = self._clock()
        if decision.action == TradeAction.BUY:
            self._last_buy = now
            self._pending_sells.append([now + self.sell_delay, result.actual_out])
        elif decision.action == TradeAction.SELL and self._pending_sells:
            remaining = self._pending_sells[0][1] - result.amount_in
            if remaining <= 1e-12:
                self._pending_sells.pop(0)
            else:
                self._pending_sells[0][1] = remaining


class MeanReversionStrategy(StrategyEngine):
    """Buys when price drops below its moving average, sells the position back
    when price recovers above it.

    Parameters:
        window: Moving average length in ticks (default: 20)
        entry_z: Z-score needed to act (default: 1.5)
    """

    name = "mean-reversion"
    description = "Trades deviations of price from its moving average"

    def __init__(self, params: Optional[dict] = None, clock: Callable[[], datetime] = datetime.utcnow):
        super().__init__(params, clock)
        self.window = self.params.get("window", 20)
        self.entry_z = self.params.get("entry_z", 1.5)
        self.position = 0.0  # base tokens held for this wallet

    async def decide(self, market: MarketCondition, config: UserStrategyConfig) -> TradeDecision:
        history = market.price_history[-self.window:]
        if len(history) < self.window:
            return TradeDecision.hold(
                f"Mean reversion: collecting prices ({len(history)}/{self.window})"
            )

        mean = statistics.fmean(history)
        std = statistics.pstdev(history)
        if std == 0 or mean <= 0:
            return TradeDecision.hold("Mean reversion: flat market")

        z = (market.price - mean) / std
        deviation_bps = abs(market.price - mean) / mean * 10000
        confidence = min(1.0, abs(z) / (2 * self.entry_z))

        if z <= -self.entry_z:
            return TradeDecision(
                action=TradeAction.BUY,
                amount=config.max_trade_size * confidence,
                confidence=confidence,
                expected_profit_bps=deviation_bps,
                token_in=market.quote_token,
                token_out=market.base_token,
                reason=f"Mean reversion: price {z:.2f} stdev below mean",
            )

        if z >= self.entry_z and self.position > 0:
            return TradeDecision(
                action=TradeAction.SELL,
                amount=self.position * market.price,
                confidence=confidence,
                expected_profit_bps=deviation_bps,
                token_in=market.base_token,
                token_out=market.quote_token,
                reason=f"Mean reversion: price {z:.2f} stdev above mean",
            )

        return TradeDecision.hold(f"Mean reversion: z={z:.2f}")

    def on_trade_result(self, decision: TradeDecision, result: SwapResult) -> None:
        if not result.success:
            return
        if decision.action == TradeAction.BUY:
            self.position += result.actual_out
        elif decision.action == TradeAction.SELL:
            self.position = max(0.0, self.position - result.amount_in)


STRATEGIES: Dict[str, Type[StrategyEngine]] = {
    TestStrategy.name: TestStrategy,
    MeanReversionStrategy.name: MeanReversionStrategy,
}


class StrategyRegistry:
    """Named strategy classes available for assignment."""

    def __init__(self, strategies: Optional[Dict[str, Type[StrategyEngine]]] = None):
        self._strategies = dict(strategies if strategies is not None else STRATEGIES)

    def names(self) -> List[str]:
        return sorted(self._strategies)

    def __contains__(self, name: str) -> bool:
        return name in self._strategies

    def describe(self) -> List[dict]:
        return [
            {"name": name, "description": self._strategies[name].description}
            for name in self.names()
        ]

    def register(self, strategy_class: Type[StrategyEngine]) -> None:
        self._strategies[strategy_class.name] = strategy_class
        logger.info(f"Registered strategy '{strategy_class.name}'")

    def create(self, name: str, params: Optional[dict] = None) -> StrategyEngine:
        """Instantiate a fresh engine for one session.

        Raises:
            UnknownStrategy: If no strategy is registered under ``name``
        """
        strategy_class = self._strategies.get(name)
        if strategy_class is None:
            raise UnknownStrategy(name, self.names())
        return strategy_class(params)
