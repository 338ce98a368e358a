"""Stripe Checkout provider."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

import httpx

from sardis_paygate.exceptions import ProviderError
from sardis_paygate.models import (
    CreatedPayment,
    ProviderPaymentStatus,
    Subscription,
    SubscriptionStatus,
)
from sardis_paygate.providers.base import PaymentProvider, SubscriptionProvider

logger = logging.getLogger(__name__)

# Currencies Stripe charges without minor units
ZERO_DECIMAL_CURRENCIES = frozenset({
    "BIF", "CLP", "DJF", "GNF", "JPY", "KMF", "KRW", "MGA",
    "PYG", "RWF", "UGX", "VND", "VUV", "XAF", "XOF", "XPF",
})

_SUBSCRIPTION_STATUS_MAP = {
    "active": SubscriptionStatus.ACTIVE,
    "trialing": SubscriptionStatus.TRIALING,
    "past_due": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELED,
    "unpaid": SubscriptionStatus.PAST_DUE,
    "incomplete": SubscriptionStatus.INCOMPLETE,
    "incomplete_expired": SubscriptionStatus.CANCELED,
    "paused": SubscriptionStatus.PAST_DUE,
}


def _flatten(params: dict[str, Any], prefix: str = "") -> dict[str, str]:
    """Flatten nested params into Stripe's bracketed form encoding."""
    flat: dict[str, str] = {}
    for key, value in params.items():
        full_key = f"{prefix}[{key}]" if prefix else str(key)
        if isinstance(value, dict):
            flat.update(_flatten(value, full_key))
        elif isinstance(value, (list, tuple)):
            for index, item in enumerate(value):
                item_key = f"{full_key}[{index}]"
                if isinstance(item, dict):
                    flat.update(_flatten(item, item_key))
                else:
                    flat[item_key] = str(item)
        elif isinstance(value, bool):
            flat[full_key] = "true" if value else "false"
        elif value is not None:
            flat[full_key] = str(value)
    return flat


def to_minor_units(amount: Decimal, currency: str) -> int:
    if currency.upper() in ZERO_DECIMAL_CURRENCIES:
        return int(amount)
    return int((amount * 100).to_integral_value())


class StripeProvider(PaymentProvider, SubscriptionProvider):
    """Stripe payment provider backed by Checkout Sessions."""

    name = "stripe"

    def __init__(
        self,
        api_key: str,
        success_url: str = "https://paymcp.info/paymentsuccess/?session_id={CHECKOUT_SESSION_ID}",
        cancel_url: Optional[str] = "https://paymcp.info/paymentcanceled/",
        api_base: str = "https://api.stripe.com/v1",
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        if not api_key:
            raise ValueError("Stripe api_key is required")
        self.api_key = api_key
        self.success_url = success_url
        self.cancel_url = cancel_url
        self.api_base = api_base.rstrip("/")
        self._client = client or httpx.AsyncClient(
            base_url=self.api_base,
            auth=(api_key, ""),
            timeout=timeout,
        )

    async def _request(
        self,
        method: str,
        path: str,
        data: Optional[dict[str, Any]] = None,
        params: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        try:
            response = await self._client.request(
                method,
                f"{self.api_base}{path}",
                data=_flatten(data) if data else None,
                params=params,
            )
        except httpx.HTTPError as e:
            logger.error(f"Stripe {method} {path} failed: {e}")
            raise ProviderError(f"stripe transport error: {e}", provider=self.name) from e

        if response.status_code >= 400:
            try:
                message = response.json().get("error", {}).get("message", "")
            except ValueError:
                message = response.text
            logger.error(f"Stripe {method} {path} returned {response.status_code}: {message}")
            raise ProviderError(
                f"stripe returned {response.status_code}: {message}",
                provider=self.name,
            )
        return response.json()

    async def create_payment(
        self,
        amount: Decimal,
        currency: str,
        description: str,
    ) -> CreatedPayment:
        """Create a one-off Stripe Checkout session."""
        self._check_amount(amount, currency)
        payload: dict[str, Any] = {
            "mode": "payment",
            "success_url": self.success_url,
            "line_items": [
                {
                    "price_data": {
                        "currency": currency.lower(),
                        "product_data": {"name": description or "Tool execution"},
                        "unit_amount": to_minor_units(amount, currency),
                    },
                    "quantity": 1,
                }
            ],
        }
        if self.cancel_url:
            payload["cancel_url"] = self.cancel_url

        data = await self._request("POST", "/checkout/sessions", data=payload)
        logger.info(f"Stripe checkout session created: {data['id']}")
        return CreatedPayment(payment_id=data["id"], payment_url=data["url"])

    async def get_payment_status(self, payment_id: str) -> ProviderPaymentStatus:
        """Get Stripe checkout session status."""
        data = await self._request("GET", f"/checkout/sessions/{payment_id}")

        if data.get("payment_status") in ("paid", "no_payment_required"):
            return ProviderPaymentStatus.PAID
        if data.get("status") == "expired":
            return ProviderPaymentStatus.CANCELLED
        return ProviderPaymentStatus.PENDING

    # -- subscriptions --------------------------------------------------------

    async def _find_customer(self, user_id: str) -> Optional[str]:
        data = await self._request(
            "GET",
            "/customers/search",
            params={"query": f"metadata['user_id']:'{user_id}'"},
        )
        customers = data.get("data") or []
        return customers[0]["id"] if customers else None

    async def _ensure_customer(self, user_id: str) -> str:
        customer_id = await self._find_customer(user_id)
        if customer_id:
            return customer_id
        data = await self._request("POST", "/customers", data={"metadata": {"user_id": user_id}})
        return data["id"]

    async def get_subscriptions(self, user_id: str) -> list[Subscription]:
        customer_id = await self._find_customer(user_id)
        if not customer_id:
            return []
        data = await self._request(
            "GET",
            "/subscriptions",
            params={"customer": customer_id, "status": "all"},
        )
        subscriptions = []
        for item in data.get("data") or []:
            items = (item.get("items") or {}).get("data") or []
            plan_id = items[0]["price"]["id"] if items else ""
            period_end = item.get("current_period_end")
            subscriptions.append(
                Subscription(
                    id=item["id"],
                    plan_id=plan_id,
                    status=_SUBSCRIPTION_STATUS_MAP.get(item.get("status", ""), SubscriptionStatus.INCOMPLETE),
                    current_period_end=(
                        datetime.fromtimestamp(period_end, tz=timezone.utc) if period_end else None
                    ),
                    cancel_at_period_end=bool(item.get("cancel_at_period_end")),
                )
            )
        return subscriptions

    async def start_subscription(self, plan_id: str, user_id: str) -> dict[str, Any]:
        customer_id = await self._ensure_customer(user_id)
        payload: dict[str, Any] = {
            "mode": "subscription",
            "customer": customer_id,
            "success_url": self.success_url,
            "line_items": [{"price": plan_id, "quantity": 1}],
            "subscription_data": {"metadata": {"user_id": user_id}},
        }
        if self.cancel_url:
            payload["cancel_url"] = self.cancel_url
        data = await self._request("POST", "/checkout/sessions", data=payload)
        return {
            "message": "Complete the subscription checkout to activate the plan.",
            "payment_url": data["url"],
            "checkout_id": data["id"],
        }

    async def cancel_subscription(self, subscription_id: str, user_id: str) -> dict[str, Any]:
        customer_id = await self._find_customer(user_id)
        subscription = await self._request("GET", f"/subscriptions/{subscription_id}")
        if not customer_id or subscription.get("customer") != customer_id:
            raise ProviderError(
                f"subscription {subscription_id} does not belong to this user",
                provider=self.name,
            )
        data = await self._request("DELETE", f"/subscriptions/{subscription_id}")
        return {
            "message": f"Subscription {subscription_id} cancelled",
            "status": data.get("status", "canceled"),
        }

    async def aclose(self) -> None:
        """Close HTTP client."""
        await self._client.aclose()
