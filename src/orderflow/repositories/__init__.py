"""Order repository implementations."""

from orderflow.repositories.in_memory import InMemoryOrderRepository
from orderflow.repositories.interface import OrderRepository
from orderflow.repositories.postgresql import PostgreSQLOrderRepository

# SQLite support is optional - only import if aiosqlite is available
try:
    from orderflow.repositories.sqlite import (  # noqa: F401
        SQLiteDatabase,
        SQLiteOrderRepository,
    )

    _SQLITE_AVAILABLE = True
except ImportError:
    _SQLITE_AVAILABLE = False

__all__ = [
    "OrderRepository",
    "InMemoryOrderRepository",
    "PostgreSQLOrderRepository",
]

if _SQLITE_AVAILABLE:
    __all__.extend(["SQLiteDatabase", "SQLiteOrderRepository"])
