"""Tests for the Stripe Checkout provider against mocked HTTP."""
from __future__ import annotations

from decimal import Decimal
from urllib.parse import parse_qs

import httpx
import pytest

from sardis_paygate import ProviderError, ProviderPaymentStatus, StripeProvider, SubscriptionStatus

API = "https://api.stripe.com/v1"


@pytest.fixture
async def stripe():
    provider = StripeProvider(api_key="sk_test_123")
    yield provider
    await provider.aclose()


def form(request: httpx.Request) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}


class TestStripeCheckout:
    """One-off payments through Checkout Sessions."""

    async def test_create_payment(self, stripe, httpx_mock):
        httpx_mock.add_response(
            method="POST",
            url=f"{API}/checkout/sessions",
            json={"id": "cs_test_1", "url": "https://checkout.stripe.com/c/pay/cs_test_1"},
        )

        created = await stripe.create_payment(Decimal("10.00"), "USD", "generate() execution fee")

        assert created.payment_id == "cs_test_1"
        assert created.payment_url == "https://checkout.stripe.com/c/pay/cs_test_1"
        body = form(httpx_mock.get_request())
        assert body["mode"] == "payment"
        assert body["line_items[0][price_data][currency]"] == "usd"
        assert body["line_items[0][price_data][unit_amount]"] == "1000"
        assert body["line_items[0][price_data][product_data][name]"] == "generate() execution fee"
        assert body["line_items[0][quantity]"] == "1"

    async def test_zero_decimal_currency(self, stripe, httpx_mock):
        httpx_mock.add_response(
            method="POST",
            url=f"{API}/checkout/sessions",
            json={"id": "cs_test_2", "url": "https://checkout.stripe.com/c/pay/cs_test_2"},
        )

        await stripe.create_payment(Decimal("500"), "JPY", "fee")

        assert form(httpx_mock.get_request())["line_items[0][price_data][unit_amount]"] == "500"

    async def test_invalid_amount_never_calls_stripe(self, stripe):
        with pytest.raises(ProviderError):
            await stripe.create_payment(Decimal("0"), "USD", "fee")

    @pytest.mark.parametrize(
        "session, expected",
        [
            ({"status": "complete", "payment_status": "paid"}, ProviderPaymentStatus.PAID),
            ({"status": "open", "payment_status": "unpaid"}, ProviderPaymentStatus.PENDING),
            ({"status": "expired", "payment_status": "unpaid"}, ProviderPaymentStatus.CANCELLED),
        ],
    )
    async def test_status_mapping(self, stripe, httpx_mock, session, expected):
        httpx_mock.add_response(method="GET", url=f"{API}/checkout/sessions/cs_1", json={"id": "cs_1", **session})

        assert await stripe.get_payment_status("cs_1") is expected

    async def test_error_response_becomes_provider_error(self, stripe, httpx_mock):
        httpx_mock.add_response(
            method="GET",
            url=f"{API}/checkout/sessions/cs_bad",
            status_code=404,
            json={"error": {"message": "No such checkout.session"}},
        )

        with pytest.raises(ProviderError) as exc_info:
            await stripe.get_payment_status("cs_bad")

        assert "No such checkout.session" in exc_info.value.reason
        assert exc_info.value.message == "Payment service unavailable"
        assert exc_info.value.provider == "stripe"

    async def test_transport_error_becomes_provider_error(self, stripe, httpx_mock):
        httpx_mock.add_exception(httpx.ConnectError("connection refused"), url=f"{API}/checkout/sessions/cs_1")

        with pytest.raises(ProviderError):
            await stripe.get_payment_status("cs_1")

    def test_requires_api_key(self):
        with pytest.raises(ValueError):
            StripeProvider(api_key="")


class TestStripeSubscriptions:
    """Subscription lookups and management."""

    def search_url(self, user_id: str) -> httpx.URL:
        return httpx.URL(f"{API}/customers/search", params={"query": f"metadata['user_id']:'{user_id}'"})

    async def test_get_subscriptions(self, stripe, httpx_mock):
        httpx_mock.add_response(method="GET", url=self.search_url("user-1"), json={"data": [{"id": "cus_1"}]})
        httpx_mock.add_response(
            method="GET",
            url=httpx.URL(f"{API}/subscriptions", params={"customer": "cus_1", "status": "all"}),
            json={
                "data": [
                    {
                        "id": "sub_1",
                        "status": "active",
                        "current_period_end": 1767225600,
                        "cancel_at_period_end": False,
                        "items": {"data": [{"price": {"id": "price_pro"}}]},
                    },
                    {
                        "id": "sub_2",
                        "status": "incomplete_expired",
                        "items": {"data": [{"price": {"id": "price_team"}}]},
                    },
                ]
            },
        )

        subscriptions = await stripe.get_subscriptions("user-1")

        assert [s.id for s in subscriptions] == ["sub_1", "sub_2"]
        assert subscriptions[0].plan_id == "price_pro"
        assert subscriptions[0].status is SubscriptionStatus.ACTIVE
        assert subscriptions[0].current_period_end.year == 2026
        assert subscriptions[1].status is SubscriptionStatus.CANCELED

    async def test_no_customer_means_no_subscriptions(self, stripe, httpx_mock):
        httpx_mock.add_response(method="GET", url=self.search_url("user-2"), json={"data": []})

        assert await stripe.get_subscriptions("user-2") == []

    async def test_start_subscription_creates_customer(self, stripe, httpx_mock):
        httpx_mock.add_response(method="GET", url=self.search_url("user-3"), json={"data": []})
        httpx_mock.add_response(method="POST", url=f"{API}/customers", json={"id": "cus_3"})
        httpx_mock.add_response(
            method="POST",
            url=f"{API}/checkout/sessions",
            json={"id": "cs_sub", "url": "https://checkout.stripe.com/c/pay/cs_sub"},
        )

        result = await stripe.start_subscription("price_pro", "user-3")

        assert result["payment_url"] == "https://checkout.stripe.com/c/pay/cs_sub"
        session_body = form(httpx_mock.get_requests()[-1])
        assert session_body["mode"] == "subscription"
        assert session_body["customer"] == "cus_3"
        assert session_body["line_items[0][price]"] == "price_pro"

    async def test_cancel_checks_ownership(self, stripe, httpx_mock):
        httpx_mock.add_response(method="GET", url=self.search_url("user-1"), json={"data": [{"id": "cus_1"}]})
        httpx_mock.add_response(
            method="GET",
            url=f"{API}/subscriptions/sub_other",
            json={"id": "sub_other", "customer": "cus_999"},
        )

        with pytest.raises(ProviderError):
            await stripe.cancel_subscription("sub_other", "user-1")

    async def test_cancel_subscription(self, stripe, httpx_mock):
        httpx_mock.add_response(method="GET", url=self.search_url("user-1"), json={"data": [{"id": "cus_1"}]})
        httpx_mock.add_response(
            method="GET",
            url=f"{API}/subscriptions/sub_1",
            json={"id": "sub_1", "customer": "cus_1"},
        )
        httpx_mock.add_response(
            method="DELETE",
            url=f"{API}/subscriptions/sub_1",
            json={"id": "sub_1", "status": "canceled"},
        )

        result = await stripe.cancel_subscription("sub_1", "user-1")

        assert result["status"] == "canceled"
