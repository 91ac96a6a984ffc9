"""Activity contracts and adapters for stock, payment and loyalty services."""

from orderflow.activities.http import (
    HTTPActivityClient,
    HTTPLoyaltyActivity,
    HTTPPaymentActivity,
    HTTPStockActivity,
)
from orderflow.activities.in_memory import (
    ActivityCall,
    InMemoryLoyaltyActivity,
    InMemoryPaymentActivity,
    InMemoryStockActivity,
    ScriptedActivity,
)
from orderflow.activities.interface import (
    ActivityResult,
    LoyaltyActivity,
    LoyaltyResult,
    PaymentActivity,
    PaymentResult,
    StockActivity,
    StockResult,
)

__all__ = [
    "ActivityResult",
    "StockResult",
    "PaymentResult",
    "LoyaltyResult",
    "StockActivity",
    "PaymentActivity",
    "LoyaltyActivity",
    "ActivityCall",
    "ScriptedActivity",
    "InMemoryStockActivity",
    "InMemoryPaymentActivity",
    "InMemoryLoyaltyActivity",
    "HTTPActivityClient",
    "HTTPStockActivity",
    "HTTPPaymentActivity",
    "HTTPLoyaltyActivity",
]
