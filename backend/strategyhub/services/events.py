"""Change events and the in-process bus that carries them to WebSocket clients.

Wallet-scoped events are delivered only to connections authenticated for
that wallet; global events go to every open connection.
"""

import asyncio
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional

logger = logging.getLogger(__name__)


class EventScope(str, Enum):
    GLOBAL = "global"
    WALLET = "wallet"


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


class Event:
    """Mixin for event dataclasses: timestamping and wire format."""

    scope: ClassVar[EventScope] = EventScope.GLOBAL

    def __post_init__(self):
        if not self.timestamp:
            self.timestamp = datetime.utcnow().isoformat()

    def to_dict(self) -> Dict[str, Any]:
        """JSON message with camelCase keys."""
        return {_camel(key): value for key, value in asdict(self).items()}


@dataclass
class StrategyUpdate(Event):
    """Session state change for the owning wallet."""
    scope: ClassVar[EventScope] = EventScope.WALLET
    type: str = "strategy_update"
    wallet_address: str = ""
    session_id: Optional[str] = None
    strategy: Optional[str] = None
    status: str = ""
    performance: Dict[str, Any] = field(default_factory=dict)
    last_trade: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    timestamp: str = ""


@dataclass
class StrategyChange(Event):
    """Announcement to everyone that a wallet's assignment changed.

    Goes to unauthenticated connections too, so it never carries a session id.
    """
    type: str = "strategy_change"
    wallet_address: str = ""
    strategy: Optional[str] = None
    action: str = ""  # assigned, stopped, paused
    timestamp: str = ""


@dataclass
class TradeNotification(Event):
    """An executed (or failed) trade for the owning wallet."""
    scope: ClassVar[EventScope] = EventScope.WALLET
    type: str = "trade_notification"
    wallet_address: str = ""
    session_id: Optional[str] = None
    strategy: Optional[str] = None
    trade: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = ""


@dataclass
class PerformanceUpdate(Event):
    scope: ClassVar[EventScope] = EventScope.WALLET
    type: str = "performance_update"
    wallet_address: str = ""
    session_id: Optional[str] = None
    performance: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = ""


@dataclass
class OracleUpdate(Event):
    type: str = "oracle_update"
    oracle: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = ""


@dataclass
class WalletOracleUpdate(Event):
    scope: ClassVar[EventScope] = EventScope.WALLET
    type: str = "wallet_oracle_update"
    wallet_address: str = ""
    oracle: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = ""


@dataclass
class TradeApprovalRequest(Event):
    """Asks the wallet to approve a trade when auto-trading is off."""
    scope: ClassVar[EventScope] = EventScope.WALLET
    type: str = "trade_approval_request"
    wallet_address: str = ""
    session_id: Optional[str] = None
    trade_id: str = ""
    trade: Dict[str, Any] = field(default_factory=dict)
    expires_at: str = ""
    timestamp: str = ""


class EventBus:
    """FIFO queue between event producers and the notification router.

    ``publish`` never blocks, so producers keep the order in which they
    published and never wait on slow WebSocket clients.
    """

    def __init__(self):
        self._queue: "asyncio.Queue[Event]" = asyncio.Queue()
        self.published = 0

    def publish(self, event: Event) -> None:
        self._queue.put_nowait(event)
        self.published += 1
        logger.debug(f"Published {event.type} ({event.scope.value})")

    async def next_event(self) -> Event:
        return await self._queue.get()

    def task_done(self) -> None:
        self._queue.task_done()

    async def join(self) -> None:
        """Wait until every published event has been dispatched."""
        await self._queue.join()

    def pending(self) -> int:
        return self._queue.qsize()

    def drain(self) -> List[Event]:
        """Remove and return every queued event without dispatching it."""
        events = []
        while not self._queue.empty():
            events.append(self._queue.get_nowait())
            self._queue.task_done()
        return events


# Global event bus instance
event_bus = EventBus()
