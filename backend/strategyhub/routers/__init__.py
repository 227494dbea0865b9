# API Routers

from . import health, strategies, oracle, websocket

__all__ = ["health", "strategies", "oracle", "websocket"]
