"""Error taxonomy for the multi-user strategy manager.

Synchronous API operations raise these before mutating any state. The
routers map each class to an HTTP status code via ``status_code``.
"""

from typing import List, Optional

from ..models.schema import ConfigValidationError


class StrategyManagerError(Exception):
    """Base class for all strategy manager errors."""
    status_code = 400


class UnknownStrategy(StrategyManagerError):
    """Assignment referenced a strategy name that is not registered."""
    status_code = 404

    def __init__(self, strategy: str, available: Optional[List[str]] = None):
        self.strategy = strategy
        self.available = available or []
        super().__init__(
            f"Strategy '{strategy}' not available. "
            f"Available: {', '.join(self.available)}"
        )


class InvalidConfig(StrategyManagerError):
    """Strategy config failed validation (unknown key or bad value)."""
    status_code = 400

    def __init__(self, errors: List[ConfigValidationError]):
        self.errors = errors
        messages = [f"{e.path}: {e.message}" for e in errors]
        super().__init__("Invalid strategy config: " + "; ".join(messages))


class NotFound(StrategyManagerError):
    """Operation referenced a wallet with no session."""
    status_code = 404

    def __init__(self, wallet_address: str):
        self.wallet_address = wallet_address
        super().__init__(f"User session not found for {wallet_address}")


class AssignmentConflict(StrategyManagerError):
    """A concurrent assign/stop could not complete in time. Retryable."""
    status_code = 409


class CapacityExceeded(AssignmentConflict):
    """The process-wide cap on active sessions has been reached."""


class ExecutionFailure(Exception):
    """Strategy decision or swap execution failed during a tick.

    Loop-internal only; never surfaced to an API caller.
    """

    def __init__(self, message: str, trade_attempted: bool = False):
        self.trade_attempted = trade_attempted
        super().__init__(message)
