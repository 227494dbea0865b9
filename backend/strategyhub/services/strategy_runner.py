"""Decision loop for one wallet session."""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from ..models.session import SessionStatus, UserSession
from ..models.trade import SwapResult, TradeAction, TradeDecision, TradeLedgerEntry
from .approvals import ApprovalService
from .errors import ExecutionFailure
from .events import EventBus, PerformanceUpdate, StrategyChange, StrategyUpdate, TradeNotification
from .market_data import MarketCondition, MarketDataService
from .strategy_engine import StrategyEngine
from .swap_executor import SwapExecutor
from .trade_ledger import TradeLedger

logger = logging.getLogger(__name__)


class RunnerState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPING = "stopping"


@dataclass
class RunnerSettings:
    """Timing and safety knobs from the ``trading`` config section."""
    poll_interval: float = 30
    error_backoff: float = 60
    swap_timeout: float = 30
    max_consecutive_failures: int = 0  # 0 disables the circuit breaker

    @classmethod
    def from_config(cls, config) -> "RunnerSettings":
        return cls(
            poll_interval=config.get("trading.poll_interval_seconds"),
            error_backoff=config.get("trading.error_backoff_seconds"),
            swap_timeout=config.get("trading.swap_timeout_seconds"),
            max_consecutive_failures=config.get("trading.max_consecutive_failures"),
        )


class StrategyRunner:
    """Runs one session's strategy as an asyncio task.

    The loop is stopped cooperatively: the stop flag is checked at the top
    of every tick and again after the strategy decides. A swap that is
    already in flight is never interrupted: it runs to completion or to the
    swap timeout and is written to the ledger before the loop exits, even
    when the task is cancelled.
    """

    def __init__(
        self,
        session: UserSession,
        strategy: StrategyEngine,
        executor: SwapExecutor,
        market_data: MarketDataService,
        ledger: TradeLedger,
        bus: EventBus,
        approvals: ApprovalService,
        settings: RunnerSettings,
        trade_lock: asyncio.Lock,
        execution_lock: Optional[asyncio.Lock] = None,
    ):
        self.session = session
        self.session_id = session.session_id
        self.strategy = strategy
        self.executor = executor
        self.market_data = market_data
        self.ledger = ledger
        self.bus = bus
        self.approvals = approvals
        self.settings = settings
        self.trade_lock = trade_lock
        self.execution_lock = execution_lock
        self.state = RunnerState.IDLE
        self._stop_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def wallet_address(self) -> str:
        return self.session.wallet_address

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        if self.is_running:
            return self._task
        self._stop_event.clear()
        self.state = RunnerState.RUNNING
        self._task = asyncio.create_task(self._run(), name=f"runner-{self.session_id}")
        return self._task

    async def stop(self, timeout: float = 45.0) -> bool:
        """Stop the loop and wait for it to exit.

        Safe to call repeatedly and concurrently.

        Returns:
            False if the loop did not exit within ``timeout`` and had to be
            cancelled. A cancelled loop still waits for its in-flight swap.
        """
        if not self.is_running:
            self.state = RunnerState.IDLE
            return True

        self.state = RunnerState.STOPPING
        self._stop_event.set()
        task = self._task
        try:
            await asyncio.wait_for(asyncio.shield(task), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            logger.warning(
                f"{self.wallet_address}: Runner did not stop within {timeout}s, cancelling"
            )
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            return False
        finally:
            self.state = RunnerState.IDLE

    async def _run(self) -> None:
        logger.info(
            f"{self.wallet_address}: Starting {self.strategy.name} loop "
            f"(session {self.session_id})"
        )
        try:
            while not self._stop_event.is_set():
                delay = self.settings.poll_interval
                try:
                    await self._tick()
                    self._on_tick_ok()
                except Exception as e:
                    delay = self.settings.error_backoff
                    if self._on_tick_error(e):
                        break
                await self._sleep(delay)
        finally:
            self.state = RunnerState.IDLE
            logger.info(f"{self.wallet_address}: Execution loop ended (session {self.session_id})")

    async def _sleep(self, delay: float) -> None:
        """Sleep between ticks, waking early on stop."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    async def _tick(self) -> None:
        session = self.session
        session.last_activity = datetime.utcnow()

        try:
            market = await self.market_data.snapshot()
        except Exception as e:
            raise ExecutionFailure(f"Market data unavailable: {e}") from e

        try:
            decision = await self.strategy.decide(market, session.config)
        except Exception as e:
            raise ExecutionFailure(f"Strategy decision failed: {e}") from e

        if self._stop_event.is_set() or not decision.is_trade:
            return

        config = session.config
        if self.strategy.uses_profit_filter and decision.expected_profit_bps < config.min_profit_bps:
            logger.debug(
                f"{self.wallet_address}: Skipping {decision.action.value}, expected "
                f"{decision.expected_profit_bps:.1f} bps < {config.min_profit_bps} bps"
            )
            return

        # Risk level scales entries only; exits unwind what was bought
        scale = config.risk_scale if decision.action == TradeAction.BUY else 1.0
        notional = min(decision.amount * scale, config.max_trade_size)
        if notional <= 0 or market.price <= 0:
            return

        if not config.auto_trade:
            approved = await self.approvals.request(
                self.wallet_address,
                self.session_id,
                self._describe(decision, notional, market),
            )
            if not approved:
                logger.info(f"{self.wallet_address}: Trade not approved, skipping")
                return
            if self._stop_event.is_set():
                return

        await self._execute(decision, notional, market)

    def _describe(self, decision: TradeDecision, notional: float, market: MarketCondition) -> Dict[str, Any]:
        return {
            "action": decision.action.value,
            "tokenIn": decision.token_in or market.quote_token,
            "tokenOut": decision.token_out or market.base_token,
            "notional": notional,
            "price": market.price,
            "expectedProfitBps": decision.expected_profit_bps,
            "reason": decision.reason,
        }

    @asynccontextmanager
    async def _execution_slot(self):
        async with self.trade_lock:
            if self.execution_lock is None:
                yield
            else:
                async with self.execution_lock:
                    yield

    async def _execute(self, decision: TradeDecision, notional: float, market: MarketCondition) -> None:
        if decision.action == TradeAction.BUY:
            token_in = decision.token_in or market.quote_token
            token_out = decision.token_out or market.base_token
            amount_in = notional
        else:
            token_in = decision.token_in or market.base_token
            token_out = decision.token_out or market.quote_token
            amount_in = notional / market.price

        timeout = self.settings.swap_timeout
        slippage_bps = self.session.config.slippage_bps

        async with self._execution_slot():
            try:
                quote = await asyncio.wait_for(
                    self.executor.get_quote(token_in, token_out, amount_in), timeout=timeout
                )
            except asyncio.TimeoutError:
                raise ExecutionFailure(f"Quote timed out after {timeout}s")
            except Exception as e:
                raise ExecutionFailure(f"Quote failed: {e}") from e

            min_amount_out = quote.expected_out * (1 - slippage_bps / 10000)
            failed = SwapResult(
                success=False,
                token_in=token_in,
                token_out=token_out,
                amount_in=amount_in,
                expected_out=quote.expected_out,
                beneficiary=self.wallet_address,
                executed_by=self.executor.signer_address,
            )

            swap = asyncio.ensure_future(
                self._swap(token_in, token_out, amount_in, min_amount_out, quote.fee_tier, failed)
            )
            try:
                result = await asyncio.shield(swap)
            except asyncio.CancelledError:
                # A submitted swap cannot be recalled; record how it settled
                logger.warning(f"{self.wallet_address}: Cancelled mid-swap, waiting for the swap to settle")
                result = await swap
                self._record(decision, result)
                raise

        self._record(decision, result)

        if not result.success:
            raise ExecutionFailure(result.error or "Swap failed", trade_attempted=True)

    async def _swap(
        self,
        token_in: str,
        token_out: str,
        amount_in: float,
        min_amount_out: float,
        fee_tier: int,
        failed: SwapResult,
    ) -> SwapResult:
        """Run one swap bounded by the swap timeout. Failures come back as ``failed``."""
        timeout = self.settings.swap_timeout
        try:
            return await asyncio.wait_for(
                self.executor.execute_swap(
                    token_in,
                    token_out,
                    amount_in,
                    min_amount_out,
                    fee_tier,
                    beneficiary=self.wallet_address,
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            failed.error = f"Swap timed out after {timeout}s"
        except Exception as e:
            failed.error = f"Swap failed: {e}"
        return failed

    def _record(self, decision: TradeDecision, result: SwapResult) -> None:
        """Ledger first, then counters, then events.

        Buys open cost-basis lots and realize nothing; sells realize profit
        against the oldest lots first.
        """
        session = self.session
        now = datetime.utcnow()

        profit = 0.0
        volume = 0.0
        if result.success and decision.action == TradeAction.BUY:
            volume = result.amount_in
            session.position.buy(result.actual_out, result.amount_in)
        elif result.success:
            volume = result.actual_out
            unmatched = max(result.amount_in - session.position.quantity, 0.0)
            if unmatched > 1e-8:
                logger.warning(
                    f"{self.wallet_address}: Selling {unmatched:.8f} {result.token_in} "
                    f"without cost basis, no profit realized on it"
                )
            profit = session.position.sell(result.amount_in, result.actual_out)

        entry = TradeLedgerEntry(
            timestamp=now,
            wallet_address=self.wallet_address,
            beneficiary=result.beneficiary or self.wallet_address,
            executed_by=result.executed_by or self.executor.signer_address,
            session_id=self.session_id,
            strategy=self.strategy.name,
            action=decision.action.value,
            token_in=result.token_in,
            token_out=result.token_out,
            amount_in=result.amount_in,
            expected_out=result.expected_out,
            actual_out=result.actual_out,
            success=result.success,
            profit=profit,
            volume=volume,
            pool=f"{result.token_in}/{result.token_out}",
            transaction_id=result.transaction_id,
            error=result.error,
        )
        self.ledger.append(entry)

        session.performance.record_trade(result.success, profit, volume, now)
        if result.success:
            session.last_trade_time = now
            self.market_data.record_volume(volume, now)
        self.strategy.on_trade_result(decision, result)

        trade = entry.to_dict()
        performance = session.performance.to_dict()
        if session.config.notifications:
            self.bus.publish(TradeNotification(
                wallet_address=self.wallet_address,
                session_id=self.session_id,
                strategy=self.strategy.name,
                trade=trade,
            ))
        self.bus.publish(PerformanceUpdate(
            wallet_address=self.wallet_address,
            session_id=self.session_id,
            performance=performance,
        ))
        self.bus.publish(StrategyUpdate(
            wallet_address=self.wallet_address,
            session_id=self.session_id,
            strategy=self.strategy.name,
            status=session.status.value,
            performance=performance,
            last_trade=trade,
        ))

        logger.info(
            f"{self.wallet_address}: {decision.action.value} {result.amount_in:.6f} "
            f"{result.token_in} -> {result.actual_out:.6f} {result.token_out} "
            f"{'ok' if result.success else 'FAILED'} (profit {profit:.6f})"
        )

    def _on_tick_ok(self) -> None:
        session = self.session
        session.consecutive_failures = 0
        if session.status == SessionStatus.ERROR and session.is_active:
            session.status = SessionStatus.ACTIVE
            self._publish_status()

    def _on_tick_error(self, error: Exception) -> bool:
        """Log and report a failed tick.

        Returns:
            True if the circuit breaker paused the session
        """
        session = self.session
        session.consecutive_failures += 1
        message = str(error)

        logger.error(f"{self.wallet_address}: Error in execution loop: {message}")
        self.ledger.log_error(self.wallet_address, message, self.session_id, self.strategy.name)

        if self._stop_event.is_set():
            return False

        session.status = SessionStatus.ERROR
        self._publish_status(error=message)

        limit = self.settings.max_consecutive_failures
        if limit and session.consecutive_failures >= limit:
            self._pause(f"{session.consecutive_failures} consecutive failures")
            return True
        return False

    def _pause(self, reason: str) -> None:
        session = self.session
        logger.warning(f"{self.wallet_address}: Pausing strategy due to {reason}")
        self._stop_event.set()
        session.is_active = False
        session.status = SessionStatus.PAUSED
        self.approvals.cancel_wallet(self.wallet_address)
        self._publish_status(error=reason)
        self.bus.publish(StrategyChange(
            wallet_address=self.wallet_address,
            strategy=self.strategy.name,
            action="paused",
        ))

    def _publish_status(self, error: Optional[str] = None) -> None:
        self.bus.publish(StrategyUpdate(
            wallet_address=self.wallet_address,
            session_id=self.session_id,
            strategy=self.strategy.name,
            status=self.session.status.value,
            performance=self.session.performance.to_dict(),
            error=error,
        ))
