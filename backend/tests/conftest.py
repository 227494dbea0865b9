"""Pytest configuration and fixtures."""

import asyncio
import pytest
from datetime import datetime, timedelta
from httpx import AsyncClient, ASGITransport

from strategyhub.main import app
from strategyhub.models.trade import TradeAction, TradeDecision
from strategyhub.services.approvals import ApprovalService
from strategyhub.services.events import EventBus
from strategyhub.services.oracle import OracleService, get_oracle_service
from strategyhub.services.session_registry import SessionRegistry
from strategyhub.services.strategy_engine import (
    MeanReversionStrategy,
    StrategyEngine,
    StrategyRegistry,
    TestStrategy,
)
from strategyhub.services.strategy_manager import MultiUserStrategyManager, get_strategy_manager
from strategyhub.services.strategy_runner import RunnerSettings
from strategyhub.services.swap_executor import SimulatedSwapExecutor
from strategyhub.services.trade_ledger import TradeLedger
from strategyhub.services.websocket import NotificationRouter, get_notification_router


class BuyEveryTick(StrategyEngine):
    """Buys one unit of quote notional on every tick."""

    name = "buy-every-tick"
    description = "Buys on every tick"
    uses_profit_filter = False

    async def decide(self, market, config):
        return TradeDecision(
            action=TradeAction.BUY,
            amount=1.0,
            confidence=1.0,
            token_in=market.quote_token,
            token_out=market.base_token,
            reason="every tick",
        )


class AlwaysHold(StrategyEngine):
    name = "always-hold"
    description = "Never trades"

    async def decide(self, market, config):
        return TradeDecision.hold("idle")


class SlowExecutor(SimulatedSwapExecutor):
    """Swaps take ``delay`` seconds; tracks how many run at once."""

    def __init__(self, delay: float, seed: int = 3):
        super().__init__(seed=seed)
        self.delay = delay
        self.swap_started = asyncio.Event()
        self.in_flight = 0
        self.max_in_flight = 0

    async def execute_swap(self, *args, **kwargs):
        self.swap_started.set()
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            return await super().execute_swap(*args, **kwargs)
        finally:
            self.in_flight -= 1


class FakeClock:
    """Manually advanced clock for time-dependent logic."""

    def __init__(self, start: datetime = datetime(2026, 1, 15, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def wait_until():
    """Poll a predicate until it holds or the timeout expires."""

    async def _wait(predicate, timeout: float = 2.0, interval: float = 0.01) -> bool:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while loop.time() < deadline:
            if predicate():
                return True
            await asyncio.sleep(interval)
        return predicate()

    return _wait


@pytest.fixture
def ledger(tmp_path):
    """Trade ledger writing to a per-test directory."""
    return TradeLedger(tmp_path / "multi-user")


@pytest.fixture
def executor():
    """Seeded simulated executor."""
    return SimulatedSwapExecutor(seed=42)


@pytest.fixture
def strategies():
    return StrategyRegistry({
        TestStrategy.name: TestStrategy,
        MeanReversionStrategy.name: MeanReversionStrategy,
        BuyEveryTick.name: BuyEveryTick,
        AlwaysHold.name: AlwaysHold,
    })


@pytest.fixture
def fast_settings():
    """Runner timings short enough for tests."""
    return RunnerSettings(
        poll_interval=0.01,
        error_backoff=0.01,
        swap_timeout=1.0,
        max_consecutive_failures=0,
    )


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
async def manager(bus, ledger, executor, strategies, fast_settings):
    """Strategy manager wired to test doubles; stops every session afterwards."""
    registry = SessionRegistry()
    manager = MultiUserStrategyManager(
        registry=registry,
        bus=bus,
        approvals=ApprovalService(bus, timeout_seconds=1.0),
        ledger=ledger,
        executor=executor,
        strategies=strategies,
        settings=fast_settings,
        stop_timeout=1.5,
    )
    yield manager
    await manager.shutdown()


@pytest.fixture
def oracle(bus, clock):
    return OracleService(bus, update_interval=0.01, transmission_interval=7200, clock=clock, seed=7)


@pytest.fixture
def notifier(manager, bus):
    return NotificationRouter(manager.registry, manager.approvals, bus)


@pytest.fixture
async def client(manager, oracle, notifier):
    """Create test client bound to the test manager, oracle and router."""
    app.dependency_overrides[get_strategy_manager] = lambda: manager
    app.dependency_overrides[get_oracle_service] = lambda: oracle
    app.dependency_overrides[get_notification_router] = lambda: notifier

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def slow_executor():
    """Factory for executors whose swaps take a given number of seconds."""
    return SlowExecutor
