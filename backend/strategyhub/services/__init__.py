# Business Logic Services

from .config import (
    ConfigService,
    config_service,
    configure_logging,
    ConfigValidationException,
)
from .errors import (
    StrategyManagerError,
    UnknownStrategy,
    InvalidConfig,
    NotFound,
    AssignmentConflict,
    CapacityExceeded,
    ExecutionFailure,
)
from .swap_executor import (
    SwapExecutor,
    SimulatedSwapExecutor,
    GatewaySwapExecutor,
    create_swap_executor,
)
from .market_data import (
    MarketCondition,
    MarketDataService,
)
from .strategy_engine import (
    StrategyEngine,
    StrategyRegistry,
    TestStrategy,
    MeanReversionStrategy,
)
from .trade_ledger import TradeLedger
from .session_registry import SessionRegistry
from .events import (
    EventBus,
    EventScope,
    event_bus,
)
from .approvals import ApprovalService
from .strategy_runner import (
    StrategyRunner,
    RunnerSettings,
    RunnerState,
)
from .strategy_manager import (
    MultiUserStrategyManager,
    strategy_manager,
    get_strategy_manager,
)
from .oracle import (
    OracleService,
    oracle_service,
    get_oracle_service,
)
from .websocket import (
    NotificationRouter,
    notification_router,
    get_notification_router,
)
