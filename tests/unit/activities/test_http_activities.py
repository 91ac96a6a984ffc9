"""
Tests for the HTTP activity clients.

Requests are served by ``httpx.MockTransport``; no network access is made.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from decimal import Decimal
from uuid import uuid4

import httpx
import pytest

from orderflow.activities import (
    HTTPLoyaltyActivity,
    HTTPPaymentActivity,
    HTTPStockActivity,
    LoyaltyActivity,
    PaymentActivity,
    StockActivity,
)
from orderflow.activities.http import IDEMPOTENCY_HEADER
from orderflow.domain import PaymentMethod
from orderflow.exceptions import ActivityDeclinedError, ActivityTransientError
from orderflow.observability import MockTracer
from tests.fixtures import make_items

BASE_URL = "http://services.test"

Handler = Callable[[httpx.Request], httpx.Response]


class RecordingHandler:
    """MockTransport handler that records requests and returns a fixed response."""

    def __init__(self, status_code: int = 200, body: object | None = None) -> None:
        self.status_code = status_code
        self.body = body if body is not None else {}
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, json=self.body)

    @property
    def last_json(self) -> dict[str, object]:
        return json.loads(self.requests[-1].content)


def client_for(handler: Handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestProtocols:
    """The HTTP clients satisfy the activity protocols."""

    async def test_runtime_checkable(self) -> None:
        async with client_for(RecordingHandler()) as client:
            assert isinstance(HTTPStockActivity(BASE_URL, client=client), StockActivity)
            assert isinstance(HTTPPaymentActivity(BASE_URL, client=client), PaymentActivity)
            assert isinstance(HTTPLoyaltyActivity(BASE_URL, client=client), LoyaltyActivity)


class TestRequests:
    """Request shape."""

    async def test_capture_request(self) -> None:
        handler = RecordingHandler(body={"transaction_id": "tx-1", "amount": "99.50"})
        order_id = uuid4()
        async with client_for(handler) as client:
            payments = HTTPPaymentActivity(
                BASE_URL + "/", client=client, headers={"X-Api-Key": "k"}, enable_tracing=False
            )
            result = await payments.capture(
                order_id, PaymentMethod.CREDIT_CARD, Decimal("99.50"), "order-1:r1:capture"
            )

        request = handler.requests[0]
        assert request.method == "POST"
        assert str(request.url) == f"{BASE_URL}/payments"
        assert request.headers[IDEMPOTENCY_HEADER] == "order-1:r1:capture"
        assert request.headers["X-Api-Key"] == "k"
        assert handler.last_json == {
            "order_id": str(order_id),
            "method": "Credit Card",
            "amount": "99.50",
        }
        assert result.ok
        assert result.transaction_id == "tx-1"
        assert result.amount == Decimal("99.50")

    async def test_stock_confirm_path(self) -> None:
        handler = RecordingHandler()
        order_id = uuid4()
        async with client_for(handler) as client:
            stock = HTTPStockActivity(BASE_URL, client=client, enable_tracing=False)
            await stock.confirm(order_id, make_items(), "ref")

        assert handler.requests[0].url.path == f"/reservations/{order_id}/confirm"
        assert handler.last_json["items"] == [
            {"product_id": "sku-1", "quantity": 2},
            {"product_id": "sku-2", "quantity": 1},
        ]

    async def test_loyalty_reverse_body(self) -> None:
        handler = RecordingHandler(body={"points": 20})
        async with client_for(handler) as client:
            loyalty = HTTPLoyaltyActivity(BASE_URL, client=client, enable_tracing=False)
            result = await loyalty.reverse(uuid4(), "order-1:r1:burn", 20, "order-1:r1:undo-burn")

        assert handler.requests[0].url.path == "/loyalty/reverse"
        assert handler.last_json["original_reference_id"] == "order-1:r1:burn"
        assert result.points == 20

    async def test_unknown_response_fields_are_ignored(self) -> None:
        handler = RecordingHandler(body={"ok": False, "reason": "x", "extra": 1})
        async with client_for(handler) as client:
            loyalty = HTTPLoyaltyActivity(BASE_URL, client=client, enable_tracing=False)
            result = await loyalty.earn(uuid4(), 5, "ref")

        assert result.ok
        assert result.reason is None


class TestStatusMapping:
    """Response status to result/error mapping."""

    @pytest.mark.parametrize("status_code", [402, 409, 422])
    async def test_business_refusal_is_declined_result(self, status_code: int) -> None:
        handler = RecordingHandler(status_code, {"detail": "card declined"})
        async with client_for(handler) as client:
            payments = HTTPPaymentActivity(BASE_URL, client=client, enable_tracing=False)
            result = await payments.capture(uuid4(), PaymentMethod.CASH, Decimal("1"), "ref")

        assert not result.ok
        assert result.reason == "card declined"

    async def test_other_client_error_raises_declined(self) -> None:
        handler = RecordingHandler(404, {"error": "no such reservation"})
        async with client_for(handler) as client:
            stock = HTTPStockActivity(BASE_URL, client=client, enable_tracing=False)
            with pytest.raises(ActivityDeclinedError) as exc_info:
                await stock.release(uuid4(), make_items(), "ref")

        assert exc_info.value.activity == "stock.release"
        assert "no such reservation" in exc_info.value.reason

    async def test_server_error_is_transient(self) -> None:
        handler = RecordingHandler(503)
        async with client_for(handler) as client:
            stock = HTTPStockActivity(BASE_URL, client=client, enable_tracing=False)
            with pytest.raises(ActivityTransientError) as exc_info:
                await stock.reserve(uuid4(), make_items(), "ref")

        assert exc_info.value.reason == "HTTP 503"

    async def test_connection_error_is_transient(self) -> None:
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with client_for(refuse) as client:
            loyalty = HTTPLoyaltyActivity(BASE_URL, client=client, enable_tracing=False)
            with pytest.raises(ActivityTransientError) as exc_info:
                await loyalty.burn(uuid4(), 10, "ref")

        assert exc_info.value.reason.startswith("network error")

    async def test_timeout_is_transient(self) -> None:
        def slow(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        async with client_for(slow) as client:
            payments = HTTPPaymentActivity(BASE_URL, client=client, enable_tracing=False)
            with pytest.raises(ActivityTransientError) as exc_info:
                await payments.refund(uuid4(), Decimal("1"), "ref")

        assert exc_info.value.reason.startswith("timeout")


class TestClientOwnership:
    """close() only closes clients the activity created."""

    async def test_caller_client_stays_open(self) -> None:
        client = client_for(RecordingHandler())
        stock = HTTPStockActivity(BASE_URL, client=client, enable_tracing=False)

        await stock.close()

        assert not client.is_closed
        await client.aclose()

    async def test_owned_client_is_closed(self) -> None:
        async with HTTPStockActivity(BASE_URL, enable_tracing=False) as stock:
            client = stock._client

        assert client.is_closed


class TestTracing:
    """Client spans."""

    async def test_span_per_request(self) -> None:
        tracer = MockTracer()
        async with client_for(RecordingHandler()) as client:
            payments = HTTPPaymentActivity(BASE_URL, client=client, tracer=tracer)
            await payments.refund(uuid4(), Decimal("1"), "ref-9")

        assert tracer.span_names == ["orderflow.activity.payment.refund"]
        _, attributes = tracer.spans[0]
        assert attributes is not None
        assert attributes["orderflow.reference_id"] == "ref-9"
