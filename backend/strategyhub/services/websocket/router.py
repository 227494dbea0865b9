"""
Notification router for frontend WebSocket clients.

Provides:
- Connection tracking, global and per wallet
- Session-token authentication binding a connection to a wallet
- Routing of bus events: global events to everyone, wallet events only to
  that wallet's connections
- Trade approval answers from clients
"""
import asyncio
import json
import logging
from datetime import datetime
from typing import Any, Dict, Optional, Set

from fastapi import WebSocket, WebSocketDisconnect

from ..approvals import ApprovalService
from ..events import EventBus, EventScope, Event, event_bus
from ..session_registry import SessionRegistry
from ..strategy_manager import strategy_manager

logger = logging.getLogger(__name__)


def server_message(message_type: str, **fields: Any) -> Dict[str, Any]:
    """Build a server-to-client message with ``type`` and ``timestamp``."""
    message = {"type": message_type}
    message.update(fields)
    message["timestamp"] = datetime.utcnow().isoformat()
    return message


class NotificationRouter:
    """
    Delivers change events to the WebSocket clients that should see them.

    Delivery is at-most-once: events for a wallet with no open connection
    are dropped, and a client that fails a send is unregistered.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        approvals: ApprovalService,
        bus: EventBus,
    ):
        self.registry = registry
        self.approvals = approvals
        self.bus = bus

        self._clients: Set[WebSocket] = set()
        self._wallet_clients: Dict[str, Set[WebSocket]] = {}
        self._client_wallet: Dict[WebSocket, str] = {}
        self._approval_clients: Set[WebSocket] = set()

        self._dispatch_task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        """Start consuming the event bus."""
        if self._dispatch_task is not None and not self._dispatch_task.done():
            return
        self._dispatch_task = asyncio.create_task(self._dispatch_loop())
        logger.info("NotificationRouter started")

    async def stop(self) -> None:
        """Stop dispatching and close all client connections."""
        if self._dispatch_task:
            self._dispatch_task.cancel()
            await asyncio.gather(self._dispatch_task, return_exceptions=True)
            self._dispatch_task = None

        for client in list(self._clients):
            try:
                await client.close()
            except Exception as e:
                logger.debug(f"Error closing client: {e}")
        self._clients.clear()
        self._wallet_clients.clear()
        self._client_wallet.clear()
        self._approval_clients.clear()

        logger.info("NotificationRouter stopped")

    @property
    def connection_count(self) -> int:
        return len(self._clients)

    def wallet_for(self, websocket: WebSocket) -> Optional[str]:
        return self._client_wallet.get(websocket)

    def connections_for(self, wallet_address: str) -> Set[WebSocket]:
        return set(self._wallet_clients.get(wallet_address, ()))

    # Connection handling
    async def connect_client(self, websocket: WebSocket) -> None:
        """Handle new frontend WebSocket connection."""
        await websocket.accept()
        self._clients.add(websocket)
        logger.info(f"Frontend client connected. Total clients: {len(self._clients)}")

    async def disconnect_client(self, websocket: WebSocket) -> None:
        """Handle frontend WebSocket disconnection."""
        self._clients.discard(websocket)
        self._approval_clients.discard(websocket)
        self._unbind(websocket)
        logger.info(f"Frontend client disconnected. Total clients: {len(self._clients)}")

    def _unbind(self, websocket: WebSocket) -> None:
        wallet_address = self._client_wallet.pop(websocket, None)
        if wallet_address is None:
            return
        clients = self._wallet_clients.get(wallet_address)
        if clients is not None:
            clients.discard(websocket)
            if not clients:
                del self._wallet_clients[wallet_address]

    async def authenticate(self, websocket: WebSocket, token: Optional[str]) -> bool:
        """Bind a connection to the wallet owning session ``token``.

        Only the current session id of an active session is accepted.
        """
        session = self.registry.find_by_session_id(token) if token else None
        if session is None or not session.is_active:
            logger.warning("WebSocket authentication rejected: unknown or stale session")
            await self.send(websocket, server_message(
                "auth_error", message="Invalid or expired session token"
            ))
            return False

        self._unbind(websocket)
        self._approval_clients.discard(websocket)
        self._client_wallet[websocket] = session.wallet_address
        self._wallet_clients.setdefault(session.wallet_address, set()).add(websocket)

        await self.send(websocket, server_message(
            "authenticated",
            walletAddress=session.wallet_address,
            sessionId=session.session_id,
        ))
        logger.info(f"Client authenticated for {session.wallet_address}")
        return True

    async def handle_client_message(self, websocket: WebSocket, message: str) -> None:
        """Handle message from frontend client."""
        try:
            data = json.loads(message)
        except json.JSONDecodeError:
            logger.warning(f"Invalid JSON from client: {message[:100]}")
            await self.send(websocket, server_message("error", message="Invalid JSON"))
            return

        if not isinstance(data, dict):
            await self.send(websocket, server_message("error", message="Message must be an object"))
            return

        msg_type = data.get("type")

        if msg_type == "authenticate":
            await self.authenticate(websocket, data.get("token"))

        elif msg_type == "ping":
            await self.send(websocket, server_message("pong"))

        elif msg_type == "subscribe_trade_approvals":
            wallet_address = self.wallet_for(websocket)
            if wallet_address is None:
                await self.send(websocket, server_message("error", message="Authentication required"))
                return
            self._approval_clients.add(websocket)
            await self.send(websocket, server_message(
                "trade_approvals_subscribed", walletAddress=wallet_address
            ))

        elif msg_type == "trade_approval":
            wallet_address = self.wallet_for(websocket)
            if wallet_address is None:
                await self.send(websocket, server_message("error", message="Authentication required"))
                return
            trade_id = data.get("tradeId")
            approved = bool(data.get("approved", False))
            success = self.approvals.resolve(trade_id, wallet_address, approved)
            await self.send(websocket, server_message(
                "approval_processed",
                tradeId=trade_id,
                approved=approved,
                success=success,
            ))

        else:
            await self.send(websocket, server_message(
                "error", message=f"Unknown message type: {msg_type}"
            ))

    # Delivery
    async def send(self, websocket: WebSocket, message: Dict[str, Any]) -> bool:
        """Send to one client, unregistering it on failure."""
        try:
            await websocket.send_json(message)
            return True
        except WebSocketDisconnect:
            await self.disconnect_client(websocket)
        except Exception as e:
            logger.error(f"Send error: {e}")
            await self.disconnect_client(websocket)
        return False

    async def broadcast_global(self, message: Dict[str, Any]) -> int:
        """Send to every open connection. Returns the number delivered."""
        delivered = 0
        for client in list(self._clients):
            if await self.send(client, message):
                delivered += 1
        return delivered

    async def notify_wallet(
        self,
        wallet_address: str,
        message: Dict[str, Any],
        approvals_only: bool = False,
    ) -> int:
        """Send to the wallet's connections. Returns the number delivered."""
        delivered = 0
        for client in self.connections_for(wallet_address):
            if approvals_only and client not in self._approval_clients:
                continue
            if await self.send(client, message):
                delivered += 1
        return delivered

    async def dispatch(self, event: Event) -> int:
        """Route one event by its scope."""
        message = event.to_dict()
        if event.scope == EventScope.GLOBAL:
            return await self.broadcast_global(message)
        return await self.notify_wallet(
            event.wallet_address,
            message,
            approvals_only=event.type == "trade_approval_request",
        )

    async def _dispatch_loop(self) -> None:
        """Background loop delivering bus events in publish order."""
        while True:
            try:
                event = await self.bus.next_event()
            except asyncio.CancelledError:
                break
            try:
                await self.dispatch(event)
            except Exception as e:
                logger.error(f"Dispatch error for {event.type}: {e}")
            finally:
                self.bus.task_done()


# Global notification router instance
notification_router = NotificationRouter(
    strategy_manager.registry, strategy_manager.approvals, event_bus
)


def get_notification_router() -> NotificationRouter:
    """FastAPI dependency returning the process-wide router."""
    return notification_router
