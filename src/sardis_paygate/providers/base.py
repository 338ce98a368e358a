"""Base payment provider interface."""
from __future__ import annotations

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any

from sardis_paygate.exceptions import ProviderError
from sardis_paygate.models import (
    CreatedPayment,
    ProviderPaymentStatus,
    SettlementResult,
    Subscription,
)


class PaymentProvider(ABC):
    """Abstract interface every payment backend implements."""

    #: Registry key; overridden by concrete providers.
    name: str = "provider"

    #: True when create_payment returns an on-chain payment request.
    supports_x402: bool = False

    #: True when the provider can only serve x402 (no payment URLs).
    x402_only: bool = False

    @property
    def supports_subscriptions(self) -> bool:
        return isinstance(self, SubscriptionProvider)

    @abstractmethod
    async def create_payment(
        self,
        amount: Decimal,
        currency: str,
        description: str,
    ) -> CreatedPayment:
        """
        Initiate a charge.

        Args:
            amount: Price in major units (e.g., Decimal("1.00"))
            currency: ISO 4217-style code
            description: Shown to the payer

        Returns:
            CreatedPayment with the provider payment id and a URL or
            structured payment request

        Raises:
            ProviderError: On invalid amount/currency or network failure
        """
        pass

    @abstractmethod
    async def get_payment_status(self, payment_id: str) -> ProviderPaymentStatus:
        """
        Read the payment's status. Must be idempotent and side-effect free.

        Raises:
            ProviderError: If the provider cannot be reached
        """
        pass

    async def aclose(self) -> None:
        """Release network resources held by the provider."""
        return None

    def _check_amount(self, amount: Decimal, currency: str) -> None:
        if amount <= 0 or not amount.is_finite():
            raise ProviderError(f"invalid amount: {amount}", provider=self.name)
        if not currency or not currency.strip():
            raise ProviderError("currency is required", provider=self.name)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} name={self.name!r}>"


class SubscriptionProvider(ABC):
    """Optional subscription extension, mixed into a PaymentProvider."""

    @abstractmethod
    async def get_subscriptions(self, user_id: str) -> list[Subscription]:
        """List the user's subscriptions (any status)."""
        pass

    @abstractmethod
    async def start_subscription(self, plan_id: str, user_id: str) -> dict[str, Any]:
        """Begin a subscription. Returns at least ``message`` and, when the
        payer must act, ``payment_url``."""
        pass

    @abstractmethod
    async def cancel_subscription(self, subscription_id: str, user_id: str) -> dict[str, Any]:
        """Cancel one of the user's subscriptions."""
        pass


class X402Provider(PaymentProvider):
    """Provider settling x402 payment payloads through a facilitator."""

    supports_x402 = True

    @abstractmethod
    async def verify_payment(
        self,
        payment_request: dict[str, Any],
        payment_payload: dict[str, Any],
    ) -> SettlementResult:
        """Check a signed payload against the request it answers."""
        pass

    @abstractmethod
    async def settle_payment(
        self,
        payment_request: dict[str, Any],
        payment_payload: dict[str, Any],
    ) -> SettlementResult:
        """Submit a verified payload for settlement."""
        pass
