"""
HTTP activity clients.

``httpx.AsyncClient`` adapters for remote stock, payment and loyalty
services. Every request sends the activity reference id in the
``Idempotency-Key`` header so the remote side can deduplicate retries.

Status mapping:
    2xx             -> ok result built from the JSON body
    402, 409, 422   -> declined result (business refusal)
    other 4xx       -> ActivityDeclinedError (request can never succeed)
    5xx             -> ActivityTransientError
    timeouts and transport errors -> ActivityTransientError
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, TypeVar
from uuid import UUID

import httpx

from orderflow.activities.interface import (
    ActivityResult,
    LoyaltyResult,
    PaymentResult,
    StockResult,
)
from orderflow.domain.models import OrderItem, PaymentMethod
from orderflow.exceptions import ActivityDeclinedError, ActivityTransientError
from orderflow.observability import (
    ATTR_ACTIVITY,
    ATTR_HTTP_METHOD,
    ATTR_HTTP_STATUS_CODE,
    ATTR_HTTP_URL,
    ATTR_ORDER_ID,
    ATTR_REFERENCE_ID,
    SpanKindEnum,
    Tracer,
    create_tracer,
)
from orderflow.serialization import json_dumps, json_loads

logger = logging.getLogger(__name__)

R = TypeVar("R", bound=ActivityResult)

IDEMPOTENCY_HEADER = "Idempotency-Key"

DECLINE_STATUS_CODES = frozenset({402, 409, 422})


def _reason_from(response: httpx.Response) -> str:
    """Extract a human-readable refusal reason from an error response."""
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        for key in ("reason", "detail", "message", "error"):
            value = body.get(key)
            if value:
                return str(value)
    return f"HTTP {response.status_code}"


class HTTPActivityClient:
    """
    Base class for the HTTP activity clients.

    Args:
        base_url: Root URL of the remote service
        client: Existing AsyncClient to use (the caller keeps ownership)
        timeout: Request timeout in seconds when the client is created here
        headers: Extra headers sent with every request
        tracer: Optional custom Tracer instance
        enable_tracing: If True and OpenTelemetry is available, emit traces
    """

    service = "activity"

    def __init__(
        self,
        base_url: str,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
        headers: dict[str, str] | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._headers = dict(headers or {})
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled

    async def __aenter__(self) -> HTTPActivityClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the underlying client if this instance created it."""
        if self._owns_client:
            await self._client.aclose()

    async def _post(
        self,
        operation: str,
        path: str,
        body: dict[str, Any],
        reference_id: str,
        result_type: type[R],
    ) -> R:
        activity = f"{self.service}.{operation}"
        url = f"{self._base_url}{path}"
        headers = {
            **self._headers,
            IDEMPOTENCY_HEADER: reference_id,
            "Content-Type": "application/json",
        }

        with self._tracer.span_with_kind(
            f"orderflow.activity.{activity}",
            SpanKindEnum.CLIENT,
            {
                ATTR_ACTIVITY: activity,
                ATTR_REFERENCE_ID: reference_id,
                ATTR_ORDER_ID: str(body.get("order_id", "")),
                ATTR_HTTP_METHOD: "POST",
                ATTR_HTTP_URL: url,
            },
        ) as span:
            try:
                response = await self._client.post(
                    url,
                    content=json_dumps(body),
                    headers=headers,
                )
            except httpx.TimeoutException as e:
                logger.warning("Timeout calling %s at %s", activity, url)
                raise ActivityTransientError(activity, f"timeout: {e}") from e
            except httpx.TransportError as e:
                logger.warning("Transport error calling %s at %s: %s", activity, url, e)
                raise ActivityTransientError(activity, f"network error: {e}") from e

            if span is not None:
                span.set_attribute(ATTR_HTTP_STATUS_CODE, response.status_code)

            status = response.status_code
            if status >= 500:
                raise ActivityTransientError(activity, f"HTTP {status}")
            if status in DECLINE_STATUS_CODES:
                reason = _reason_from(response)
                logger.info(
                    "%s declined: %s",
                    activity,
                    reason,
                    extra={"reference_id": reference_id, "status_code": status},
                )
                return result_type(ok=False, reason=reason)
            if status >= 400:
                raise ActivityDeclinedError(activity, f"HTTP {status}: {_reason_from(response)}")

            payload = json_loads(response.content) if response.content else {}
            if not isinstance(payload, dict):
                payload = {}
            payload.pop("ok", None)
            payload.pop("reason", None)
            fields = {k: v for k, v in payload.items() if k in result_type.model_fields}
            return result_type(ok=True, **fields)


class HTTPStockActivity(HTTPActivityClient):
    """
    Stock service client.

    Endpoints:
        POST /reservations
        POST /reservations/{order_id}/confirm
        POST /reservations/{order_id}/release
    """

    service = "stock"

    @staticmethod
    def _items(items: list[OrderItem]) -> list[dict[str, Any]]:
        return [{"product_id": i.product_id, "quantity": i.quantity} for i in items]

    async def reserve(
        self, order_id: UUID, items: list[OrderItem], reference_id: str
    ) -> StockResult:
        return await self._post(
            "reserve",
            "/reservations",
            {"order_id": order_id, "items": self._items(items)},
            reference_id,
            StockResult,
        )

    async def confirm(
        self, order_id: UUID, items: list[OrderItem], reference_id: str
    ) -> StockResult:
        return await self._post(
            "confirm",
            f"/reservations/{order_id}/confirm",
            {"order_id": order_id, "items": self._items(items)},
            reference_id,
            StockResult,
        )

    async def release(
        self, order_id: UUID, items: list[OrderItem], reference_id: str
    ) -> StockResult:
        return await self._post(
            "release",
            f"/reservations/{order_id}/release",
            {"order_id": order_id, "items": self._items(items)},
            reference_id,
            StockResult,
        )


class HTTPPaymentActivity(HTTPActivityClient):
    """
    Payment service client.

    Endpoints:
        POST /payments
        POST /payments/refunds
    """

    service = "payment"

    async def capture(
        self,
        order_id: UUID,
        method: PaymentMethod,
        amount: Decimal,
        reference_id: str,
    ) -> PaymentResult:
        return await self._post(
            "capture",
            "/payments",
            {"order_id": order_id, "method": method, "amount": amount},
            reference_id,
            PaymentResult,
        )

    async def refund(
        self,
        order_id: UUID,
        amount: Decimal,
        reference_id: str,
    ) -> PaymentResult:
        return await self._post(
            "refund",
            "/payments/refunds",
            {"order_id": order_id, "amount": amount},
            reference_id,
            PaymentResult,
        )


class HTTPLoyaltyActivity(HTTPActivityClient):
    """
    Loyalty service client.

    Endpoints:
        POST /loyalty/burn
        POST /loyalty/earn
        POST /loyalty/reverse
    """

    service = "loyalty"

    async def burn(self, order_id: UUID, points: int, reference_id: str) -> LoyaltyResult:
        return await self._post(
            "burn",
            "/loyalty/burn",
            {"order_id": order_id, "points": points},
            reference_id,
            LoyaltyResult,
        )

    async def earn(self, order_id: UUID, points: int, reference_id: str) -> LoyaltyResult:
        return await self._post(
            "earn",
            "/loyalty/earn",
            {"order_id": order_id, "points": points},
            reference_id,
            LoyaltyResult,
        )

    async def reverse(
        self,
        order_id: UUID,
        original_reference_id: str,
        points: int,
        reference_id: str,
    ) -> LoyaltyResult:
        return await self._post(
            "reverse",
            "/loyalty/reverse",
            {
                "order_id": order_id,
                "original_reference_id": original_reference_id,
                "points": points,
            },
            reference_id,
            LoyaltyResult,
        )


__all__ = [
    "IDEMPOTENCY_HEADER",
    "DECLINE_STATUS_CODES",
    "HTTPActivityClient",
    "HTTPStockActivity",
    "HTTPPaymentActivity",
    "HTTPLoyaltyActivity",
]
