"""Simulated provider for development, demos and tests.

Payments live in process memory and only change status when told to
(``mark_paid``/``mark_failed``/``mark_cancelled``) or after a configured
number of status polls.
"""
from __future__ import annotations

import logging
import uuid
from datetime import timedelta
from decimal import Decimal
from typing import Any, Optional

from sardis_paygate.exceptions import ProviderError
from sardis_paygate.models import (
    CreatedPayment,
    ProviderPayment,
    ProviderPaymentStatus,
    Subscription,
    SubscriptionStatus,
    utcnow,
)
from sardis_paygate.providers.base import PaymentProvider, SubscriptionProvider

logger = logging.getLogger(__name__)


class SimulatedProvider(PaymentProvider, SubscriptionProvider):
    """In-memory payment provider."""

    name = "simulated"

    def __init__(
        self,
        checkout_base_url: str = "https://pay.sardis.local/checkout",
        auto_pay_after: Optional[int] = None,
        plans: Optional[list[str]] = None,
    ):
        self.checkout_base_url = checkout_base_url.rstrip("/")
        self.auto_pay_after = auto_pay_after
        self.plans = list(plans or [])
        self.payments: dict[str, ProviderPayment] = {}
        self.polls: dict[str, int] = {}
        self.subscriptions: dict[str, list[Subscription]] = {}
        self.status_checks = 0
        self._fail_next_status_checks = 0
        self._fail_next_create = False

    async def create_payment(
        self,
        amount: Decimal,
        currency: str,
        description: str,
    ) -> CreatedPayment:
        self._check_amount(amount, currency)
        if self._fail_next_create:
            self._fail_next_create = False
            raise ProviderError("simulated outage", provider=self.name)

        payment_id = f"sim_{uuid.uuid4().hex}"
        url = f"{self.checkout_base_url}/{payment_id}"
        self.payments[payment_id] = ProviderPayment(id=payment_id, status=ProviderPaymentStatus.PENDING, url=url)
        self.polls[payment_id] = 0
        logger.info(f"Simulated payment created: {payment_id} {amount} {currency}")
        return CreatedPayment(payment_id=payment_id, payment_url=url)

    async def get_payment_status(self, payment_id: str) -> ProviderPaymentStatus:
        self.status_checks += 1
        if self._fail_next_status_checks > 0:
            self._fail_next_status_checks -= 1
            raise ProviderError("simulated status outage", provider=self.name)

        payment = self.payments.get(payment_id)
        if payment is None:
            raise ProviderError(f"unknown payment {payment_id}", provider=self.name)

        self.polls[payment_id] += 1
        if (
            self.auto_pay_after is not None
            and payment.status is ProviderPaymentStatus.PENDING
            and self.polls[payment_id] >= self.auto_pay_after
        ):
            payment.status = ProviderPaymentStatus.PAID
        return payment.status

    # -- test/demo controls ---------------------------------------------------

    def mark_paid(self, payment_id: str) -> None:
        self.payments[payment_id].status = ProviderPaymentStatus.PAID

    def mark_failed(self, payment_id: str) -> None:
        self.payments[payment_id].status = ProviderPaymentStatus.FAILED

    def mark_cancelled(self, payment_id: str) -> None:
        self.payments[payment_id].status = ProviderPaymentStatus.CANCELLED

    def fail_next_status_checks(self, count: int) -> None:
        self._fail_next_status_checks = count

    def fail_next_create(self) -> None:
        self._fail_next_create = True

    # -- subscriptions --------------------------------------------------------

    async def get_subscriptions(self, user_id: str) -> list[Subscription]:
        return list(self.subscriptions.get(user_id, []))

    async def start_subscription(self, plan_id: str, user_id: str) -> dict[str, Any]:
        if self.plans and plan_id not in self.plans:
            raise ProviderError(f"unknown plan {plan_id}", provider=self.name)
        subscription = Subscription(
            id=f"sub_{uuid.uuid4().hex[:16]}",
            plan_id=plan_id,
            status=SubscriptionStatus.ACTIVE,
            current_period_end=utcnow() + timedelta(days=30),
        )
        self.subscriptions.setdefault(user_id, []).append(subscription)
        return {
            "message": f"Subscribed to {plan_id}",
            "subscription": subscription.to_dict(),
        }

    async def cancel_subscription(self, subscription_id: str, user_id: str) -> dict[str, Any]:
        for subscription in self.subscriptions.get(user_id, []):
            if subscription.id == subscription_id:
                subscription.status = SubscriptionStatus.CANCELED
                return {
                    "message": f"Subscription {subscription_id} cancelled",
                    "subscription": subscription.to_dict(),
                }
        raise ProviderError(f"subscription {subscription_id} not found", provider=self.name)
