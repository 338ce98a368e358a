"""x402 on-chain payment provider.

Builds x402 v2 payment requests and settles signed payment payloads
through an x402 facilitator (``/verify`` then ``/settle``).

Reference: https://www.x402.org/
"""
from __future__ import annotations

import base64
import binascii
import json
import logging
import time
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Optional

import httpx

from sardis_paygate.exceptions import ProviderError
from sardis_paygate.models import CreatedPayment, ProviderPaymentStatus, SettlementResult
from sardis_paygate.providers.base import X402Provider

logger = logging.getLogger(__name__)

X402_VERSION = 2

# Where a client may deliver its signed payload
X402_SIGNATURE_HEADERS = ("payment-signature", "x-payment")
X402_META_KEY = "x402/payment"

# USDC on Base mainnet
BASE_USDC_ADDRESS = "0x833589fCD6eDb6E08f4c3C32D4f71b54bdA02913"


def decode_payment_signature(value: Any) -> dict[str, Any]:
    """Decode a signed x402 payload (base64 JSON, JSON text or a dict)."""
    if isinstance(value, dict):
        return value
    if not isinstance(value, str) or not value.strip():
        raise ValueError("empty x402 payment payload")

    text = value.strip()
    if not text.startswith("{"):
        try:
            text = base64.b64decode(text, validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as exc:
            raise ValueError(f"x402 payload is not valid base64: {exc}") from exc
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ValueError(f"x402 payload is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise ValueError("x402 payload must be a JSON object")
    return payload


def payload_payment_id(payload: dict[str, Any]) -> Optional[str]:
    """Payment id a signed payload claims to answer."""
    accepted = payload.get("accepted") or {}
    extra = accepted.get("extra") or {}
    return extra.get("paymentId") or payload.get("paymentId")


@dataclass
class _TrackedStatus:
    status: ProviderPaymentStatus
    expires_at: float


def _requirements(payment_request: dict[str, Any]) -> dict[str, Any]:
    accepts = payment_request.get("accepts") or []
    if not accepts:
        raise ValueError("payment request has no accepted requirements")
    return accepts[0]


class X402FacilitatorProvider(X402Provider):
    """x402 provider backed by a remote facilitator.

    Payment status is tracked per process and only as a hint: flows
    decide from the settlement result and the shared state store. An
    unsettled request reads as cancelled once its ``maxTimeoutSeconds``
    window has passed, and entries are pruned ``status_retention_seconds``
    after that on the next ``create_payment``.
    """

    name = "x402"
    x402_only = True

    def __init__(
        self,
        pay_to: str,
        facilitator_url: str = "https://x402.org/facilitator",
        network: str = "base",
        asset: str = BASE_USDC_ADDRESS,
        asset_decimals: int = 6,
        asset_name: str = "USD Coin",
        asset_version: str = "2",
        max_timeout_seconds: int = 300,
        status_retention_seconds: Optional[int] = None,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.time,
    ):
        if not pay_to:
            raise ValueError("x402 pay_to address is required")
        self.pay_to = pay_to
        self.facilitator_url = facilitator_url.rstrip("/")
        self.network = network
        self.asset = asset
        self.asset_decimals = asset_decimals
        self.asset_name = asset_name
        self.asset_version = asset_version
        self.max_timeout_seconds = max_timeout_seconds
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else None
        self._client = client or httpx.AsyncClient(timeout=timeout, headers=headers)
        self.status_retention_seconds = (
            max_timeout_seconds if status_retention_seconds is None else status_retention_seconds
        )
        self._clock = clock
        self._statuses: dict[str, _TrackedStatus] = {}

    def to_asset_units(self, amount: Decimal) -> int:
        return int((amount * (Decimal(10) ** self.asset_decimals)).to_integral_value())

    async def create_payment(
        self,
        amount: Decimal,
        currency: str,
        description: str,
    ) -> CreatedPayment:
        """Build an x402 payment request. No network call is made."""
        self._check_amount(amount, currency)
        units = self.to_asset_units(amount)
        if units <= 0:
            raise ProviderError(
                f"amount {amount} is below the asset's smallest unit",
                provider=self.name,
            )

        payment_id = f"x402_{uuid.uuid4().hex}"
        now = self._clock()
        request = {
            "x402Version": X402_VERSION,
            "error": "Payment required",
            "accepts": [
                {
                    "scheme": "exact",
                    "network": self.network,
                    "amount": str(units),
                    "asset": self.asset,
                    "payTo": self.pay_to,
                    "maxTimeoutSeconds": self.max_timeout_seconds,
                    "description": description,
                    "mimeType": "application/json",
                    "extra": {
                        "name": self.asset_name,
                        "version": self.asset_version,
                        "paymentId": payment_id,
                        "nonce": uuid.uuid4().hex,
                        "expiresAt": int(now) + self.max_timeout_seconds,
                    },
                }
            ],
        }
        self._prune(now)
        self._statuses[payment_id] = _TrackedStatus(ProviderPaymentStatus.PENDING, now + self.max_timeout_seconds)
        logger.info(f"x402 payment request created: {payment_id} ({units} units on {self.network})")
        return CreatedPayment(payment_id=payment_id, payment_request=request)

    async def get_payment_status(self, payment_id: str) -> ProviderPaymentStatus:
        tracked = self._statuses.get(payment_id)
        if tracked is None:
            return ProviderPaymentStatus.PENDING
        if tracked.status is ProviderPaymentStatus.PENDING and self._clock() >= tracked.expires_at:
            return ProviderPaymentStatus.CANCELLED
        return tracked.status

    def _prune(self, now: float) -> None:
        stale = [
            payment_id for payment_id, tracked in self._statuses.items()
            if now >= tracked.expires_at + self.status_retention_seconds
        ]
        for payment_id in stale:
            del self._statuses[payment_id]
        if stale:
            logger.debug(f"Pruned {len(stale)} x402 payment statuses")

    def _set_status(self, payment_id: str, status: ProviderPaymentStatus) -> None:
        tracked = self._statuses.get(payment_id)
        if tracked is not None:
            tracked.status = status

    def check_payload(
        self,
        payment_request: dict[str, Any],
        payment_payload: dict[str, Any],
        now: Optional[int] = None,
    ) -> Optional[str]:
        """Local checks before bothering the facilitator.

        Returns a failure reason, or None when the payload matches.
        """
        try:
            required = _requirements(payment_request)
        except ValueError as exc:
            return str(exc)
        expected_extra = required.get("extra") or {}
        accepted = payment_payload.get("accepted") or {}
        extra = accepted.get("extra") or {}
        current = now if now is not None else int(self._clock())

        if payload_payment_id(payment_payload) != expected_extra.get("paymentId"):
            return "x402_payment_id_mismatch"
        expires_at = expected_extra.get("expiresAt")
        if expires_at is not None and int(expires_at) <= current:
            return "x402_request_expired"
        if extra.get("nonce") != expected_extra.get("nonce"):
            return "x402_nonce_mismatch"
        if str(accepted.get("amount")) != str(required.get("amount")):
            return "x402_amount_mismatch"
        if str(accepted.get("payTo", "")).lower() != str(required.get("payTo", "")).lower():
            return "x402_payee_mismatch"
        if accepted.get("network") != required.get("network"):
            return "x402_network_mismatch"

        authorization = (payment_payload.get("payload") or {}).get("authorization") or {}
        if authorization:
            if str(authorization.get("to", "")).lower() != str(required.get("payTo", "")).lower():
                return "x402_payee_mismatch"
            if str(authorization.get("value")) != str(required.get("amount")):
                return "x402_amount_mismatch"
        return None

    async def _facilitator(
        self,
        endpoint: str,
        payment_request: dict[str, Any],
        payment_payload: dict[str, Any],
    ) -> dict[str, Any]:
        body = {
            "x402Version": payment_payload.get("x402Version", X402_VERSION),
            "paymentPayload": payment_payload,
            "paymentRequirements": _requirements(payment_request),
        }
        try:
            response = await self._client.post(f"{self.facilitator_url}/{endpoint}", json=body)
        except httpx.HTTPError as e:
            logger.error(f"x402 facilitator /{endpoint} unreachable: {e}")
            raise ProviderError(f"facilitator transport error: {e}", provider=self.name) from e
        if response.status_code >= 500:
            raise ProviderError(
                f"facilitator /{endpoint} returned {response.status_code}",
                provider=self.name,
            )
        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(
                f"facilitator /{endpoint} returned invalid JSON",
                provider=self.name,
            ) from e

    async def verify_payment(
        self,
        payment_request: dict[str, Any],
        payment_payload: dict[str, Any],
    ) -> SettlementResult:
        """Local checks then facilitator ``/verify``."""
        reason = self.check_payload(payment_request, payment_payload)
        if reason:
            return SettlementResult(success=False, reason=reason)

        data = await self._facilitator("verify", payment_request, payment_payload)
        if not data.get("isValid"):
            return SettlementResult(
                success=False,
                reason=data.get("invalidReason") or "x402_verification_rejected",
                payer=data.get("payer"),
            )
        return SettlementResult(success=True, payer=data.get("payer"), network=self.network)

    async def settle_payment(
        self,
        payment_request: dict[str, Any],
        payment_payload: dict[str, Any],
    ) -> SettlementResult:
        """Facilitator ``/settle``; a settled id then reports paid."""
        payment_id = payload_payment_id(payment_payload)
        data = await self._facilitator("settle", payment_request, payment_payload)
        if not data.get("success"):
            if payment_id:
                self._set_status(payment_id, ProviderPaymentStatus.FAILED)
            return SettlementResult(
                success=False,
                reason=data.get("errorReason") or "x402_settlement_failed",
                payer=data.get("payer"),
            )

        if payment_id:
            self._set_status(payment_id, ProviderPaymentStatus.PAID)
        logger.info(f"x402 payment settled: id={payment_id} tx={data.get('transaction')}")
        return SettlementResult(
            success=True,
            tx_hash=data.get("transaction"),
            network=data.get("network", self.network),
            payer=data.get("payer"),
        )

    async def aclose(self) -> None:
        await self._client.aclose()
