"""Shared market snapshot consumed by every strategy runner."""

import asyncio
import logging
import statistics
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Deque, List, Optional, Tuple

from .errors import ExecutionFailure
from .swap_executor import SwapExecutor

logger = logging.getLogger(__name__)

VOLUME_WINDOW = timedelta(hours=1)


@dataclass
class MarketCondition:
    """Point-in-time view of the traded pair."""
    base_token: str
    quote_token: str
    price: float  # quote per base
    price_history: List[float] = field(default_factory=list)
    volatility: float = 0.0  # stdev of tick-to-tick returns
    volume: float = 0.0  # quote volume traded through this process in the last hour
    competition_level: str = "LOW"  # LOW, MEDIUM, HIGH
    time_of_day: int = 0
    recent_performance: float = 0.0  # relative change over the history window
    timestamp: Optional[datetime] = None


class MarketDataService:
    """Polls the executor for the pair price and derives simple statistics.

    One snapshot is cached for ``refresh_seconds`` so concurrent runners
    share a single quote request per refresh. The shared request is bounded
    by ``quote_timeout`` and no lock is held while it runs.
    """

    def __init__(
        self,
        executor: SwapExecutor,
        base_token: str = "GALA",
        quote_token: str = "GUSDC",
        history_size: int = 100,
        refresh_seconds: float = 5.0,
        quote_amount: float = 1.0,
        quote_timeout: float = 30.0,
    ):
        self.executor = executor
        self.base_token = base_token
        self.quote_token = quote_token
        self.refresh_seconds = refresh_seconds
        self.quote_amount = quote_amount
        self.quote_timeout = quote_timeout
        self._history: Deque[float] = deque(maxlen=history_size)
        self._volume: Deque[Tuple[datetime, float]] = deque()
        self._latest: Optional[MarketCondition] = None
        self._refresh: Optional[asyncio.Future] = None

    @property
    def latest(self) -> Optional[MarketCondition]:
        return self._latest

    def _is_fresh(self, now: datetime) -> bool:
        return (
            self._latest is not None
            and self._latest.timestamp is not None
            and (now - self._latest.timestamp).total_seconds() < self.refresh_seconds
        )

    async def snapshot(self) -> MarketCondition:
        """Return a fresh (or recently cached) market condition.

        Raises:
            ExecutionFailure: The price quote failed or timed out
        """
        if self._is_fresh(datetime.utcnow()):
            return self._latest

        if self._refresh is None or self._refresh.done():
            self._refresh = asyncio.ensure_future(self._fetch())
            self._refresh.add_done_callback(self._refresh_done)
        # Shielded so a stopping runner does not cancel the request others share
        return await asyncio.shield(self._refresh)

    def _refresh_done(self, refresh: asyncio.Future) -> None:
        # Waiters may all have been cancelled; consume the outcome here
        if not refresh.cancelled() and refresh.exception() is not None:
            logger.debug(f"Market refresh failed: {refresh.exception()}")

    async def _fetch(self) -> MarketCondition:
        try:
            quote = await asyncio.wait_for(
                self.executor.get_quote(self.base_token, self.quote_token, self.quote_amount),
                timeout=self.quote_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Price quote for {self.base_token}/{self.quote_token} timed out")
            raise ExecutionFailure(f"Price quote timed out after {self.quote_timeout}s")

        now = datetime.utcnow()
        price = quote.price or quote.expected_out / self.quote_amount
        self._history.append(price)
        self._latest = self._build(price, now)
        return self._latest

    def record_volume(self, amount: float, at: Optional[datetime] = None) -> None:
        """Count quote volume of an executed trade toward the hourly figure."""
        self._volume.append((at or datetime.utcnow(), amount))

    def _hourly_volume(self, now: datetime) -> float:
        cutoff = now - VOLUME_WINDOW
        while self._volume and self._volume[0][0] < cutoff:
            self._volume.popleft()
        return sum(v for _, v in self._volume)

    def _build(self, price: float, now: datetime) -> MarketCondition:
        history = list(self._history)
        returns = [
            (b - a) / a for a, b in zip(history, history[1:]) if a > 0
        ]
        volatility = statistics.pstdev(returns) if len(returns) >= 2 else 0.0
        if volatility > 0.02:
            competition = "HIGH"
        elif volatility > 0.005:
            competition = "MEDIUM"
        else:
            competition = "LOW"
        recent = (price / history[0] - 1) if history and history[0] > 0 else 0.0

        return MarketCondition(
            base_token=self.base_token,
            quote_token=self.quote_token,
            price=price,
            price_history=history,
            volatility=volatility,
            volume=self._hourly_volume(now),
            competition_level=competition,
            time_of_day=now.hour,
            recent_performance=recent,
            timestamp=now,
        )
