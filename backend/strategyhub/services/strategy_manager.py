"""Multi-user strategy manager: one strategy session per wallet, many wallets
per process.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..models.schema import ConfigValidationError
from ..models.session import (
    PerformanceMetrics,
    SessionStatus,
    UserSession,
    UserStrategyConfig,
    new_session_id,
)
from ..models.trade import TradeAction
from .approvals import ApprovalService
from .errors import (
    AssignmentConflict,
    CapacityExceeded,
    InvalidConfig,
    NotFound,
    UnknownStrategy,
)
from .events import EventBus, StrategyChange, StrategyUpdate, event_bus
from .market_data import MarketDataService
from .session_registry import SessionRegistry
from .strategy_engine import StrategyRegistry
from .strategy_runner import RunnerSettings, StrategyRunner
from .swap_executor import SimulatedSwapExecutor, SwapExecutor, create_swap_executor
from .trade_ledger import TradeLedger

logger = logging.getLogger(__name__)


def _without_session_id(record: Dict[str, Any]) -> Dict[str, Any]:
    """Strip the session id, which doubles as the wallet's WebSocket token."""
    return {key: value for key, value in record.items() if key != "sessionId"}


class MultiUserStrategyManager:
    """Assigns, runs and stops wallet strategy sessions.

    Synchronous operations validate their input before touching any state.
    Changes to one wallet are serialized by that wallet's registry lock;
    different wallets never wait on each other.
    """

    def __init__(
        self,
        registry: Optional[SessionRegistry] = None,
        bus: Optional[EventBus] = None,
        approvals: Optional[ApprovalService] = None,
        ledger: Optional[TradeLedger] = None,
        executor: Optional[SwapExecutor] = None,
        strategies: Optional[StrategyRegistry] = None,
        market_data: Optional[MarketDataService] = None,
        settings: Optional[RunnerSettings] = None,
        stop_timeout: float = 45.0,
        max_active_sessions: int = 0,
        serialize_executions: bool = False,
    ):
        self.registry = registry or SessionRegistry()
        self.bus = bus or EventBus()
        self.approvals = approvals or ApprovalService(self.bus)
        self.ledger = ledger or TradeLedger()
        self.executor = executor or SimulatedSwapExecutor()
        self.strategies = strategies or StrategyRegistry()
        self.settings = settings or RunnerSettings()
        self.market_data = market_data or MarketDataService(
            self.executor, quote_timeout=self.settings.swap_timeout
        )
        self.stop_timeout = stop_timeout
        self.max_active_sessions = max_active_sessions
        self._execution_lock: Optional[asyncio.Lock] = asyncio.Lock() if serialize_executions else None
        self._runners: Dict[str, StrategyRunner] = {}
        self._trade_locks: Dict[str, asyncio.Lock] = {}

    def configure(self, config) -> None:
        """Apply a loaded ``ConfigService`` to this manager.

        Must be called before any session is assigned.
        """
        self.settings = RunnerSettings.from_config(config)
        self.stop_timeout = config.get("trading.stop_timeout_seconds")
        self.max_active_sessions = config.get("trading.max_active_sessions")
        self._execution_lock = asyncio.Lock() if config.get("trading.serialize_executions") else None
        self.approvals.timeout_seconds = config.get("trading.approval_timeout_seconds")
        self.ledger = TradeLedger(config.get("ledger.log_dir"))
        self.executor = create_swap_executor(config)
        self.market_data = MarketDataService(
            self.executor, quote_timeout=self.settings.swap_timeout
        )
        logger.info(
            f"Strategy manager configured: poll {self.settings.poll_interval}s, "
            f"max sessions {self.max_active_sessions or 'unlimited'}, "
            f"strategies {', '.join(self.strategies.names())}"
        )

    def _trade_lock(self, wallet_address: str) -> asyncio.Lock:
        lock = self._trade_locks.get(wallet_address)
        if lock is None:
            lock = asyncio.Lock()
            self._trade_locks[wallet_address] = lock
        return lock

    def _validate_config(self, partial: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        partial = {} if partial is None else partial
        errors = UserStrategyConfig.validate(partial)
        if errors:
            raise InvalidConfig(errors)
        return partial

    async def _stop_runner(self, wallet_address: str) -> bool:
        """Stop the wallet's runner if any. False if it had to be cancelled."""
        runner = self._runners.pop(wallet_address, None)
        self.approvals.cancel_wallet(wallet_address)
        if runner is None:
            return True
        return await runner.stop(self.stop_timeout)

    async def assign_strategy(
        self,
        wallet_address: str,
        strategy: str,
        config: Optional[Dict[str, Any]] = None,
    ) -> UserSession:
        """Assign ``strategy`` to a wallet and start it immediately.

        A wallet that already runs a strategy is stopped first; the new
        assignment gets a new session id and fresh performance counters.
        The wallet's position carries over, so a later sell still realizes
        against what earlier sessions bought.

        Raises:
            InvalidConfig: Empty wallet address or invalid config
            UnknownStrategy: Strategy is not registered
            CapacityExceeded: Too many active sessions
            AssignmentConflict: The previous runner did not stop in time
        """
        if not wallet_address or not wallet_address.strip():
            raise InvalidConfig([ConfigValidationError(
                path="walletAddress", message="Wallet address is required"
            )])
        if strategy not in self.strategies:
            raise UnknownStrategy(strategy, self.strategies.names())
        partial = self._validate_config(config)

        async with self.registry.lock_for(wallet_address):
            existing = self.registry.get(wallet_address)
            already_active = existing is not None and existing.is_active
            if (
                not already_active
                and self.max_active_sessions
                and len(self.registry.active()) >= self.max_active_sessions
            ):
                raise CapacityExceeded(
                    f"Maximum of {self.max_active_sessions} active sessions reached"
                )

            engine = self.strategies.create(strategy)
            session = self.registry.get_or_create(wallet_address)

            if not await self._stop_runner(wallet_address):
                session.is_active = False
                session.status = SessionStatus.STOPPED
                raise AssignmentConflict(
                    f"Previous strategy for {wallet_address} did not stop in time, retry"
                )

            now = datetime.utcnow()
            session.selected_strategy = strategy
            session.config = UserStrategyConfig().merged(partial)
            session.session_id = new_session_id(wallet_address)
            session.is_active = True
            session.status = SessionStatus.ACTIVE
            session.start_time = now
            session.last_activity = now
            session.last_trade_time = None
            session.performance = PerformanceMetrics()
            session.consecutive_failures = 0

            runner = StrategyRunner(
                session=session,
                strategy=engine,
                executor=self.executor,
                market_data=self.market_data,
                ledger=self.ledger,
                bus=self.bus,
                approvals=self.approvals,
                settings=self.settings,
                trade_lock=self._trade_lock(wallet_address),
                execution_lock=self._execution_lock,
            )
            self._runners[wallet_address] = runner

            self._publish_update(session)
            self.bus.publish(StrategyChange(
                wallet_address=wallet_address,
                strategy=strategy,
                action="assigned",
            ))
            runner.start()

        logger.info(f"Assigned {strategy} to {wallet_address} (session {session.session_id})")
        return session

    async def stop_user_strategy(self, wallet_address: str) -> bool:
        """Soft-stop a wallet's strategy, keeping its config and performance.

        Returns:
            False if the wallet has no active session
        """
        session = self.registry.get(wallet_address)
        if session is None or not session.is_active:
            return False

        async with self.registry.lock_for(wallet_address):
            if not session.is_active:
                return False

            if not await self._stop_runner(wallet_address):
                logger.warning(f"Runner for {wallet_address} was cancelled during stop")

            session.is_active = False
            session.status = SessionStatus.STOPPED
            session.last_activity = datetime.utcnow()

            self._publish_update(session)
            self.bus.publish(StrategyChange(
                wallet_address=wallet_address,
                strategy=session.selected_strategy,
                action="stopped",
            ))

        logger.info(f"Stopped strategy {session.selected_strategy} for {wallet_address}")
        return True

    async def update_user_config(
        self,
        wallet_address: str,
        config: Dict[str, Any],
    ) -> UserStrategyConfig:
        """Merge a partial config into the wallet's session without restarting.

        The running loop picks the new values up on its next tick.

        Raises:
            NotFound: Wallet has no session
            InvalidConfig: Config failed validation
        """
        session = self.registry.get(wallet_address)
        if session is None:
            raise NotFound(wallet_address)
        partial = self._validate_config(config)

        async with self.registry.lock_for(wallet_address):
            session.config = session.config.merged(partial)
            self._publish_update(session)

        logger.info(f"Updated config for {wallet_address}: {', '.join(partial) or 'no changes'}")
        return session.config

    def _publish_update(self, session: UserSession) -> None:
        self.bus.publish(StrategyUpdate(
            wallet_address=session.wallet_address,
            session_id=session.session_id,
            strategy=session.selected_strategy,
            status=session.status.value,
            performance=session.performance.to_dict(),
        ))

    def get_user_status(self, wallet_address: str) -> Optional[Dict[str, Any]]:
        session = self.registry.get(wallet_address)
        if session is None:
            return None
        return session.to_dict()

    def get_all_user_statuses(self) -> List[Dict[str, Any]]:
        return [session.to_dict() for session in self.registry.all()]

    def get_available_strategies(self) -> List[dict]:
        return self.strategies.describe()

    def get_performance(self, wallet_address: str) -> Optional[Dict[str, Any]]:
        session = self.registry.get(wallet_address)
        if session is None:
            return None
        session.performance.refresh_daily()
        return session.performance.to_dict()

    def get_trade_history(self, wallet_address: str, limit: int = 50) -> Dict[str, Any]:
        """Recent trades, newest first, without the session ids they were made under."""
        return {
            "trades": [
                _without_session_id(entry.to_dict())
                for entry in self.ledger.read(wallet_address, limit)
            ],
            "totalTrades": self.ledger.count(wallet_address),
            "walletAddress": wallet_address,
        }

    def get_error_log(self, wallet_address: str, limit: int = 50) -> List[Dict[str, Any]]:
        return [
            _without_session_id(record)
            for record in self.ledger.read_errors(wallet_address, limit)
        ]

    def get_runner(self, wallet_address: str) -> Optional[StrategyRunner]:
        return self._runners.get(wallet_address)

    def restore_from_ledger(self) -> int:
        """Rebuild inactive sessions, their performance and positions from trade logs.

        Strategies are not restarted; wallets must reassign.

        Returns:
            Number of sessions restored
        """
        restored = 0
        for wallet_address in self.ledger.wallets():
            if wallet_address in self.registry:
                continue
            session = self.registry.get_or_create(wallet_address)
            session.status = SessionStatus.STOPPED
            for entry in self.ledger.replay(wallet_address):
                session.performance.record_trade(
                    entry.success, entry.profit, entry.volume, entry.timestamp
                )
                if entry.success and entry.action == TradeAction.BUY.value:
                    session.position.buy(entry.actual_out, entry.amount_in)
                elif entry.success and entry.action == TradeAction.SELL.value:
                    session.position.sell(entry.amount_in, entry.actual_out)
                session.selected_strategy = entry.strategy
                if entry.success:
                    session.last_trade_time = entry.timestamp
            restored += 1

        if restored:
            logger.info(f"Restored {restored} session(s) from trade ledger")
        return restored

    async def shutdown(self) -> int:
        """Stop every running strategy.

        Returns:
            Number of sessions stopped
        """
        logger.info("Shutting down multi-user strategy manager...")
        addresses = [s.wallet_address for s in self.registry.active()]
        results = await asyncio.gather(
            *(self.stop_user_strategy(address) for address in addresses),
            return_exceptions=True,
        )
        stopped = 0
        for address, result in zip(addresses, results):
            if isinstance(result, Exception):
                logger.error(f"Failed to stop strategy for {address}: {result}")
            elif result:
                stopped += 1

        try:
            await self.executor.close()
        except Exception as e:
            logger.error(f"Failed to close swap executor: {e}")

        logger.info(f"Shutdown complete, stopped {stopped} session(s)")
        return stopped


# Global strategy manager instance
strategy_manager = MultiUserStrategyManager(bus=event_bus)


def get_strategy_manager() -> MultiUserStrategyManager:
    """FastAPI dependency returning the process-wide manager."""
    return strategy_manager
