"""Manual trade approval for wallets that turned auto-trading off."""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from .events import EventBus, TradeApprovalRequest

logger = logging.getLogger(__name__)


@dataclass
class PendingApproval:
    trade_id: str
    wallet_address: str
    session_id: Optional[str]
    trade: Dict[str, Any]
    created_at: datetime
    expires_at: datetime
    future: asyncio.Future


class ApprovalService:
    """Tracks trades waiting for a wallet's decision.

    A request that is not answered within the timeout counts as rejected.
    """

    def __init__(self, bus: EventBus, timeout_seconds: float = 120):
        self.bus = bus
        self.timeout_seconds = timeout_seconds
        self._pending: Dict[str, PendingApproval] = {}

    async def request(
        self,
        wallet_address: str,
        session_id: Optional[str],
        trade: Dict[str, Any],
    ) -> bool:
        """Ask the wallet to approve ``trade`` and wait for the answer.

        Returns:
            True only if the wallet approved before the timeout
        """
        now = datetime.utcnow()
        trade_id = f"trade_{uuid.uuid4().hex[:12]}"
        pending = PendingApproval(
            trade_id=trade_id,
            wallet_address=wallet_address,
            session_id=session_id,
            trade=trade,
            created_at=now,
            expires_at=now + timedelta(seconds=self.timeout_seconds),
            future=asyncio.get_running_loop().create_future(),
        )
        self._pending[trade_id] = pending

        self.bus.publish(TradeApprovalRequest(
            wallet_address=wallet_address,
            session_id=session_id,
            trade_id=trade_id,
            trade=trade,
            expires_at=pending.expires_at.isoformat(),
        ))
        logger.info(f"Requested approval {trade_id} from {wallet_address}")

        try:
            approved = await asyncio.wait_for(pending.future, timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning(f"Approval {trade_id} for {wallet_address} timed out")
            approved = False
        finally:
            self._pending.pop(trade_id, None)

        return approved

    def resolve(self, trade_id: str, wallet_address: str, approved: bool) -> bool:
        """Record the wallet's answer.

        Returns:
            False if the trade is unknown, already answered or belongs to
            another wallet
        """
        pending = self._pending.get(trade_id)
        if pending is None or pending.wallet_address != wallet_address:
            return False
        if pending.future.done():
            return False
        pending.future.set_result(bool(approved))
        logger.info(
            f"Approval {trade_id} for {wallet_address}: "
            f"{'approved' if approved else 'rejected'}"
        )
        return True

    def cancel_wallet(self, wallet_address: str) -> int:
        """Reject every pending request of a wallet (used when it stops)."""
        cancelled = 0
        for pending in list(self._pending.values()):
            if pending.wallet_address == wallet_address and not pending.future.done():
                pending.future.set_result(False)
                cancelled += 1
        return cancelled

    def pending_for(self, wallet_address: str) -> List[PendingApproval]:
        return [p for p in self._pending.values() if p.wallet_address == wallet_address]
