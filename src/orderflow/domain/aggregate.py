"""
Order aggregate.

OrderAggregate wraps an immutable ``Order`` snapshot and exposes the
commands that change it. Each command validates first and then swaps in
a new snapshot, so a rejected command leaves the aggregate untouched.
Journey and log rows produced since the last save are tracked as
uncommitted until the repository persists them.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from orderflow.domain import transitions
from orderflow.domain.models import (
    LogResult,
    LoyaltyStatus,
    LoyaltyTransactionType,
    Order,
    OrderItem,
    OrderJourney,
    OrderLog,
    OrderLoyalty,
    OrderPayment,
    OrderStock,
    PaymentMethod,
    PaymentStatus,
    StockStatus,
    utc_now,
)
from orderflow.domain.policies import FulfillmentPolicy, NeverFulfilledPolicy
from orderflow.domain.states import MUTABLE_ITEM_STATES, OrderState
from orderflow.exceptions import InvalidOrderError

logger = logging.getLogger(__name__)


def _sum_items(items: Iterable[OrderItem]) -> Decimal:
    return sum((item.line_total for item in items), Decimal("0"))


class OrderAggregate:
    """
    Consistency boundary for one order.

    The aggregate tracks the version it was loaded at. Repositories save it
    with that version as the expected version and call ``mark_committed``
    with the new version afterwards.

    Example:
        >>> order = OrderAggregate.create([OrderItem(product_id="sku-1", quantity=2,
        ...                                          unit_price=Decimal("50"))])
        >>> await repository.save(order)
        >>> order.transition_to(OrderState.PENDING, reference_id="req-1")
        >>> await repository.save(order)
    """

    def __init__(
        self,
        order: Order,
        fulfillment_policy: FulfillmentPolicy | None = None,
    ) -> None:
        self._order = order
        self._policy = fulfillment_policy or NeverFulfilledPolicy()
        self._uncommitted_journeys: list[OrderJourney] = []
        self._uncommitted_logs: list[OrderLog] = []
        self._dirty = False

    @classmethod
    def create(
        cls,
        items: Iterable[OrderItem],
        order_id: UUID | None = None,
        fulfillment_policy: FulfillmentPolicy | None = None,
    ) -> OrderAggregate:
        """
        Create a new order in the Initial state.

        Raises:
            InvalidOrderError: If no items are given
        """
        item_list = list(items)
        if not item_list:
            raise InvalidOrderError("An order needs at least one item")
        now = utc_now()
        order = Order(
            order_id=order_id or uuid4(),
            items=item_list,
            total_amount=_sum_items(item_list),
            created_at=now,
            updated_at=now,
        )
        aggregate = cls(order, fulfillment_policy)
        aggregate._dirty = True
        return aggregate

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def order(self) -> Order:
        """Current snapshot, including uncommitted changes."""
        return self._order

    @property
    def order_id(self) -> UUID:
        return self._order.order_id

    @property
    def state(self) -> OrderState:
        return self._order.state

    @property
    def version(self) -> int:
        """Version of the last persisted snapshot (0 for a new order)."""
        return self._order.version

    @property
    def is_new(self) -> bool:
        return self._order.version == 0

    @property
    def has_changes(self) -> bool:
        return self._dirty

    @property
    def uncommitted_journeys(self) -> list[OrderJourney]:
        return self._uncommitted_journeys.copy()

    @property
    def uncommitted_logs(self) -> list[OrderLog]:
        return self._uncommitted_logs.copy()

    def mark_committed(self, version: int) -> None:
        """Record a successful save at ``version``."""
        self._order = self._order.model_copy(update={"version": version})
        self._uncommitted_journeys.clear()
        self._uncommitted_logs.clear()
        self._dirty = False

    def _replace(self, order: Order) -> None:
        self._order = order.model_copy(update={"updated_at": utc_now()})
        self._dirty = True

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def can_transition_to(self, target: OrderState) -> bool:
        """Check table membership and guards without changing anything."""
        return transitions.check_transition(self._order, target, self._policy) is None

    def valid_next_states(self) -> set[OrderState]:
        return transitions.valid_next_states(self._order, self._policy)

    def transition_to(
        self,
        target: OrderState,
        reference_id: str | None = None,
        actor: str | None = None,
    ) -> OrderJourney:
        """
        Move the order to ``target``.

        Raises:
            InvalidTransitionError: If the table or a guard rejects the move
        """
        updated, journey = transitions.transition(
            self._order,
            target,
            reference_id=reference_id,
            actor=actor,
            policy=self._policy,
        )
        self._order = updated
        self._dirty = True
        self._uncommitted_journeys.append(journey)
        logger.debug(
            "Order %s transitioned %s -> %s",
            self.order_id,
            journey.from_state.value,
            journey.to_state.value,
            extra={"order_id": str(self.order_id), "reference_id": reference_id},
        )
        return journey

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    def add_item(self, item: OrderItem) -> None:
        """
        Add a line to the order.

        Raises:
            InvalidOrderError: If the order is past Pending
        """
        if self._order.state not in MUTABLE_ITEM_STATES:
            raise InvalidOrderError(
                f"Items cannot be added to an order in state {self._order.state.value}"
            )
        items = [*self._order.items, item]
        self._replace(
            self._order.model_copy(update={"items": items, "total_amount": _sum_items(items)})
        )

    # ------------------------------------------------------------------
    # Payment
    # ------------------------------------------------------------------

    def record_payment(
        self,
        method: PaymentMethod,
        amount: Decimal,
        reference_id: str,
        status: PaymentStatus = PaymentStatus.CAPTURED,
    ) -> OrderPayment:
        """
        Record the order's payment.

        Recording the same reference id again returns the existing record.
        A refunded payment may be replaced by a new one.

        Raises:
            InvalidOrderError: If the order is past Pending, the amount is not
                positive, or another payment is still active
        """
        current = self._order.payment
        if current is not None and current.reference_id == reference_id:
            return current
        if self._order.state not in MUTABLE_ITEM_STATES:
            raise InvalidOrderError(
                f"Payments cannot be recorded for an order in state {self._order.state.value}"
            )
        if amount <= 0:
            raise InvalidOrderError(f"Payment amount must be positive, got {amount}")
        if current is not None and current.status != PaymentStatus.REFUNDED:
            raise InvalidOrderError(
                f"Order {self.order_id} already has an active payment ({current.reference_id})"
            )
        payment = OrderPayment(
            method=method,
            amount=Decimal(amount),
            status=status,
            reference_id=reference_id,
        )
        self._replace(self._order.model_copy(update={"payment": payment}))
        return payment

    def record_refund(self, reference_id: str) -> OrderPayment:
        """
        Mark the captured payment as refunded.

        Refunding an already refunded payment is a no-op.

        Raises:
            InvalidOrderError: If there is no captured payment
        """
        payment = self._order.payment
        if payment is None:
            raise InvalidOrderError(f"Order {self.order_id} has no payment to refund")
        if payment.status == PaymentStatus.REFUNDED:
            return payment
        if payment.status != PaymentStatus.CAPTURED:
            raise InvalidOrderError(
                f"Payment {payment.reference_id} is {payment.status.value}, not Captured"
            )
        refunded = payment.model_copy(update={"status": PaymentStatus.REFUNDED})
        self._replace(self._order.model_copy(update={"payment": refunded}))
        logger.debug(
            "Payment %s refunded (%s)",
            payment.reference_id,
            reference_id,
            extra={"order_id": str(self.order_id)},
        )
        return refunded

    # ------------------------------------------------------------------
    # Stock
    # ------------------------------------------------------------------

    def reserve_stock(self, reference_id: str) -> list[OrderStock]:
        """
        Reserve the part of each product's ordered quantity that no active
        record covers yet.

        Items added after an earlier reservation get a Reserved record for
        the difference only.

        Returns:
            The records created by this call (empty when already reserved)

        Raises:
            InvalidOrderError: If the order is past Pending
        """
        if self._order.state not in MUTABLE_ITEM_STATES:
            raise InvalidOrderError(
                f"Stock cannot be reserved for an order in state {self._order.state.value}"
            )
        held = self._order.stock_quantities(StockStatus.RESERVED, StockStatus.CONFIRMED)
        created = [
            OrderStock(
                product_id=product_id,
                quantity=quantity - held.get(product_id, 0),
                reference_id=reference_id,
            )
            for product_id, quantity in self._order.item_quantities.items()
            if quantity > held.get(product_id, 0)
        ]
        if created:
            self._replace(
                self._order.model_copy(update={"stocks": [*self._order.stocks, *created]})
            )
        return created

    def confirm_stock(self, reference_id: str) -> list[OrderStock]:
        """
        Confirm every Reserved record.

        Raises:
            InvalidOrderError: If there is no active stock to confirm
        """
        if not self._order.active_stocks:
            raise InvalidOrderError(f"Order {self.order_id} has no reserved stock to confirm")
        return self._restatus_stock(
            {StockStatus.RESERVED}, StockStatus.CONFIRMED, reference_id
        )

    def release_stock(self, reference_id: str) -> list[OrderStock]:
        """Release every Reserved or Confirmed record."""
        return self._restatus_stock(
            {StockStatus.RESERVED, StockStatus.CONFIRMED}, StockStatus.RELEASED, reference_id
        )

    def _restatus_stock(
        self,
        from_statuses: set[StockStatus],
        to_status: StockStatus,
        reference_id: str,
    ) -> list[OrderStock]:
        changed: list[OrderStock] = []
        stocks: list[OrderStock] = []
        for stock in self._order.stocks:
            if stock.status in from_statuses:
                stock = stock.model_copy(update={"status": to_status})
                changed.append(stock)
            stocks.append(stock)
        if changed:
            self._replace(self._order.model_copy(update={"stocks": stocks}))
            logger.debug(
                "Marked %d stock record(s) %s (%s)",
                len(changed),
                to_status.value,
                reference_id,
                extra={"order_id": str(self.order_id)},
            )
        return changed

    # ------------------------------------------------------------------
    # Loyalty
    # ------------------------------------------------------------------

    def find_loyalty(self, reference_id: str) -> OrderLoyalty | None:
        for entry in self._order.loyalty:
            if entry.reference_id == reference_id:
                return entry
        return None

    def apply_loyalty(
        self,
        transaction_type: LoyaltyTransactionType,
        points: int,
        reference_id: str,
    ) -> OrderLoyalty:
        """
        Append an applied Earn or Burn entry.

        Applying the same reference id again returns the existing entry.

        Raises:
            InvalidOrderError: If points is not positive
        """
        existing = self.find_loyalty(reference_id)
        if existing is not None:
            return existing
        if points <= 0:
            raise InvalidOrderError(f"Loyalty points must be positive, got {points}")
        entry = OrderLoyalty(
            transaction_type=transaction_type,
            points=points,
            status=LoyaltyStatus.APPLIED,
            reference_id=reference_id,
        )
        self._replace(self._order.model_copy(update={"loyalty": [*self._order.loyalty, entry]}))
        return entry

    def reverse_loyalty(self, original_reference_id: str, reference_id: str) -> OrderLoyalty:
        """
        Append an entry reversing the entry recorded under ``original_reference_id``.

        The original entry is left as it is. Reversing twice returns the
        first reversal.

        Raises:
            InvalidOrderError: If no entry exists for the original reference id
        """
        original = self.find_loyalty(original_reference_id)
        if original is None:
            raise InvalidOrderError(
                f"No loyalty entry with reference {original_reference_id} to reverse"
            )
        existing = self._order.reversal_of(original.entry_id)
        if existing is not None:
            return existing
        reversal = OrderLoyalty(
            transaction_type=original.transaction_type,
            points=original.points,
            status=LoyaltyStatus.REVERSED,
            reference_id=reference_id,
            reverses=original.entry_id,
        )
        self._replace(
            self._order.model_copy(update={"loyalty": [*self._order.loyalty, reversal]})
        )
        return reversal

    # ------------------------------------------------------------------
    # Logs
    # ------------------------------------------------------------------

    def log_action(
        self,
        action: str,
        result: LogResult,
        correlation_id: str | None = None,
        detail: dict[str, Any] | None = None,
    ) -> OrderLog:
        """Append a diagnostic log row."""
        entry = OrderLog(
            sequence=self._order.next_log_sequence,
            action=action,
            result=result,
            correlation_id=correlation_id,
            detail=detail or {},
        )
        self._order = self._order.model_copy(update={"logs": [*self._order.logs, entry]})
        self._dirty = True
        self._uncommitted_logs.append(entry)
        return entry

    def __repr__(self) -> str:
        return (
            f"OrderAggregate(order_id={self.order_id}, state={self.state.value}, "
            f"version={self.version})"
        )


__all__ = ["OrderAggregate"]
