"""
Order repository interface.

A repository persists the complete order snapshot together with the
journey and log rows appended since it was loaded. Both are written in
one atomic unit, guarded by an optimistic version check.
"""

from abc import ABC, abstractmethod
from uuid import UUID

from orderflow.domain.aggregate import OrderAggregate
from orderflow.domain.models import OrderJourney, OrderLog


class OrderRepository(ABC):
    """
    Abstract base class for order repositories.

    Concrete implementations:
    - InMemoryOrderRepository: For testing and development
    - SQLiteOrderRepository: aiosqlite backend
    - PostgreSQLOrderRepository: SQLAlchemy async backend

    Example:
        >>> aggregate = await repository.load(order_id)
        >>> aggregate.transition_to(OrderState.PAID, reference_id="pay-1")
        >>> new_version = await repository.save(aggregate)
    """

    @abstractmethod
    async def load(self, order_id: UUID) -> OrderAggregate:
        """
        Load an order with all of its child records.

        Raises:
            OrderNotFoundError: If the order does not exist
        """
        pass

    @abstractmethod
    async def save(
        self,
        aggregate: OrderAggregate,
        expected_version: int | None = None,
    ) -> int:
        """
        Persist the aggregate's changes.

        The stored version must equal ``expected_version`` (defaults to the
        version the aggregate was loaded at; 0 means the order must not exist
        yet). On success the version is incremented by one, uncommitted
        journey and log rows are appended, and the aggregate is marked
        committed. An aggregate without changes is not written.

        Returns:
            The new version

        Raises:
            ConcurrencyConflictError: If the stored version differs
        """
        pass

    @abstractmethod
    async def exists(self, order_id: UUID) -> bool:
        """Check whether an order exists."""
        pass

    @abstractmethod
    async def get_journey(self, order_id: UUID) -> list[OrderJourney]:
        """
        Get the transition history ordered by sequence.

        Raises:
            OrderNotFoundError: If the order does not exist
        """
        pass

    @abstractmethod
    async def get_logs(self, order_id: UUID) -> list[OrderLog]:
        """
        Get the action log ordered by sequence.

        Raises:
            OrderNotFoundError: If the order does not exist
        """
        pass


__all__ = ["OrderRepository"]
