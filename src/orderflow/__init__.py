"""
orderflow - Order state machine and saga orchestration for Python.

This library provides:
- Order aggregate with a validated state machine and append-only audit trail
- Idempotent command handling keyed by caller-supplied reference ids
- Durable, resumable order workflow with retry and compensation
- In-memory, SQLite and PostgreSQL persistence backends
- In-memory and HTTP activity clients for stock, payment and loyalty services
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("orderflow-py")
except PackageNotFoundError:
    # Package not installed (running from source without install)
    __version__ = "0.0.0.dev0"

from orderflow.activities import (
    ActivityResult,
    HTTPLoyaltyActivity,
    HTTPPaymentActivity,
    HTTPStockActivity,
    InMemoryLoyaltyActivity,
    InMemoryPaymentActivity,
    InMemoryStockActivity,
    LoyaltyActivity,
    LoyaltyResult,
    PaymentActivity,
    PaymentResult,
    StockActivity,
    StockResult,
)
from orderflow.application import (
    CommandResult,
    OrderCommandUseCase,
    OrderService,
    TransitionOutcome,
    TransitionResult,
    TransitionUseCase,
)
from orderflow.config import (
    DuplicateMode,
    IdempotencyConfig,
    OrderflowSettings,
    WorkflowConfig,
)
from orderflow.domain import (
    TRANSITIONS,
    FulfillmentPolicy,
    LogResult,
    LoyaltyPolicy,
    LoyaltyStatus,
    LoyaltyTransactionType,
    NeverFulfilledPolicy,
    Order,
    OrderAggregate,
    OrderItem,
    OrderJourney,
    OrderLog,
    OrderLoyalty,
    OrderPayment,
    OrderState,
    OrderStock,
    PaymentMethod,
    PaymentStatus,
    RateLoyaltyPolicy,
    StockStatus,
    can_transition,
)
from orderflow.exceptions import (
    ActivityDeclinedError,
    ActivityError,
    ActivityTransientError,
    CompensationFailedError,
    ConcurrencyConflictError,
    CorruptCheckpointError,
    InvalidOrderError,
    InvalidTransitionError,
    OrderflowError,
    OrderNotFoundError,
    RequestInProgressError,
    WorkflowConflictError,
    WorkflowNotFoundError,
)
from orderflow.idempotency import (
    IdempotencyGuard,
    IdempotencyKey,
    IdempotencyOutcome,
    IdempotencyStore,
    InMemoryIdempotencyStore,
    PostgreSQLIdempotencyStore,
    SQLiteIdempotencyStore,
)
from orderflow.repositories import (
    InMemoryOrderRepository,
    OrderRepository,
    PostgreSQLOrderRepository,
)
from orderflow.retry import RetryConfig, RetryError, retry_async
from orderflow.workflow import (
    CheckpointStore,
    InMemoryCheckpointStore,
    OrderWorkflowEngine,
    PostgreSQLCheckpointStore,
    SQLiteCheckpointStore,
    WorkflowCheckpoint,
    WorkflowProgress,
    WorkflowRunner,
    WorkflowStatus,
    WorkflowStep,
    workflow_id_for,
)

# SQLite support is optional - only import if aiosqlite is available
try:
    from orderflow.repositories.sqlite import (  # noqa: F401
        SQLiteDatabase,
        SQLiteOrderRepository,
    )

    SQLITE_AVAILABLE = True
except ImportError:
    SQLITE_AVAILABLE = False

__all__ = [
    "__version__",
    "SQLITE_AVAILABLE",
    # Domain
    "OrderState",
    "TRANSITIONS",
    "can_transition",
    "OrderAggregate",
    "Order",
    "OrderItem",
    "OrderPayment",
    "OrderStock",
    "OrderLoyalty",
    "OrderJourney",
    "OrderLog",
    "PaymentMethod",
    "PaymentStatus",
    "StockStatus",
    "LoyaltyTransactionType",
    "LoyaltyStatus",
    "LogResult",
    "FulfillmentPolicy",
    "LoyaltyPolicy",
    "NeverFulfilledPolicy",
    "RateLoyaltyPolicy",
    # Exceptions
    "OrderflowError",
    "InvalidOrderError",
    "InvalidTransitionError",
    "ConcurrencyConflictError",
    "OrderNotFoundError",
    "ActivityError",
    "ActivityDeclinedError",
    "ActivityTransientError",
    "RequestInProgressError",
    "WorkflowNotFoundError",
    "WorkflowConflictError",
    "CorruptCheckpointError",
    "CompensationFailedError",
    # Configuration and retry
    "DuplicateMode",
    "IdempotencyConfig",
    "WorkflowConfig",
    "OrderflowSettings",
    "RetryConfig",
    "RetryError",
    "retry_async",
    # Repositories
    "OrderRepository",
    "InMemoryOrderRepository",
    "PostgreSQLOrderRepository",
    # Idempotency
    "IdempotencyGuard",
    "IdempotencyKey",
    "IdempotencyOutcome",
    "IdempotencyStore",
    "InMemoryIdempotencyStore",
    "SQLiteIdempotencyStore",
    "PostgreSQLIdempotencyStore",
    # Activities
    "ActivityResult",
    "StockResult",
    "PaymentResult",
    "LoyaltyResult",
    "StockActivity",
    "PaymentActivity",
    "LoyaltyActivity",
    "InMemoryStockActivity",
    "InMemoryPaymentActivity",
    "InMemoryLoyaltyActivity",
    "HTTPStockActivity",
    "HTTPPaymentActivity",
    "HTTPLoyaltyActivity",
    # Workflow
    "WorkflowStatus",
    "WorkflowStep",
    "WorkflowCheckpoint",
    "WorkflowProgress",
    "workflow_id_for",
    "CheckpointStore",
    "InMemoryCheckpointStore",
    "SQLiteCheckpointStore",
    "PostgreSQLCheckpointStore",
    "OrderWorkflowEngine",
    "WorkflowRunner",
    # Application
    "OrderService",
    "TransitionUseCase",
    "OrderCommandUseCase",
    "TransitionResult",
    "TransitionOutcome",
    "CommandResult",
]

if SQLITE_AVAILABLE:
    __all__.extend(["SQLiteDatabase", "SQLiteOrderRepository"])
