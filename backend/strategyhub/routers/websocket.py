"""WebSocket router for real-time updates."""

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
import logging

from ..services.websocket import NotificationRouter, get_notification_router

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    notifier: NotificationRouter = Depends(get_notification_router),
):
    """
    WebSocket endpoint for real-time updates.

    Messages from client:
    - {"type": "authenticate", "token": "<sessionId>"}
    - {"type": "ping"}
    - {"type": "subscribe_trade_approvals"}
    - {"type": "trade_approval", "tradeId": "...", "approved": true}

    Messages to client (every message has "type" and "timestamp"):
    - strategy_update, trade_notification, performance_update,
      wallet_oracle_update, trade_approval_request (authenticated wallet only)
    - strategy_change, oracle_update (every client)
    - authenticated, auth_error, pong, trade_approvals_subscribed,
      approval_processed, error (replies)
    """
    await notifier.connect_client(websocket)

    try:
        while True:
            message = await websocket.receive_text()
            await notifier.handle_client_message(websocket, message)

    except WebSocketDisconnect:
        await notifier.disconnect_client(websocket)
    except Exception as e:
        logger.error(f"WebSocket error: {e}")
        await notifier.disconnect_client(websocket)


@router.get("/ws/stats")
async def websocket_stats(notifier: NotificationRouter = Depends(get_notification_router)):
    """Connected client count."""
    return {"connections": notifier.connection_count}
