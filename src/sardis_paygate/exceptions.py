"""Exception hierarchy for the Sardis payment gate.

All gate errors inherit from PaygateError so hosts can map them to a
structured tool error in one place:

    try:
        result = await gate.call_tool(name, arguments, context)
    except PaygateError as exc:
        return {"isError": True, "structuredContent": exc.to_dict()}

Every exception carries:
- error_code: machine-readable code (e.g., "PAYMENT_REQUIRED")
- message: human-readable message
- details: optional additional context
- retryable: whether the caller may retry the same request unchanged
"""
from __future__ import annotations

from typing import Any, Optional


class PaygateError(Exception):
    """Base exception for all payment gate errors."""

    error_code: str = "PAYGATE_ERROR"
    retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to a structured tool error payload."""
        result: dict[str, Any] = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


# =============================================================================
# Configuration errors (raised at startup / registration)
# =============================================================================

class ConfigError(PaygateError):
    """Invalid gate or provider configuration."""

    error_code = "CONFIG_ERROR"


class UnknownProviderError(ConfigError):
    """Provider key is not registered and is not an importable class path."""

    error_code = "UNKNOWN_PROVIDER"

    def __init__(self, key: str, details: Optional[dict[str, Any]] = None) -> None:
        details = details or {}
        details["provider"] = key
        super().__init__(f"Unknown payment provider '{key}'", details=details)


class InvalidPriceSpec(ConfigError):
    """Tool price or subscription metadata is invalid."""

    error_code = "INVALID_PRICE_SPEC"


# =============================================================================
# Caller-side errors
# =============================================================================

class MissingContext(PaygateError):
    """A gated tool was called without the caller context it needs."""

    error_code = "MISSING_CONTEXT"


class ToolNotFound(PaygateError):
    """No tool registered under the requested name."""

    error_code = "TOOL_NOT_FOUND"

    def __init__(self, tool_name: str) -> None:
        super().__init__(f"Tool '{tool_name}' not found", details={"tool": tool_name})


# =============================================================================
# Provider errors
# =============================================================================

class ProviderError(PaygateError):
    """Payment provider failed on create or status check.

    The caller sees a generic message; the provider detail stays in
    ``details`` and the logs.
    """

    error_code = "PROVIDER_ERROR"
    retryable = True

    def __init__(
        self,
        reason: str,
        provider: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        details["reason"] = reason
        if provider:
            details["provider"] = provider
        super().__init__("Payment service unavailable", details=details)
        self.reason = reason
        self.provider = provider


# =============================================================================
# Payment flow errors
# =============================================================================

class PaymentRequired(PaygateError):
    """Call must be repeated with proof of payment (RESUBMIT style)."""

    error_code = "PAYMENT_REQUIRED"
    retryable = True

    def __init__(
        self,
        message: str,
        payment_id: str,
        payment_url: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        details["payment_id"] = payment_id
        if payment_url:
            details["payment_url"] = payment_url
        super().__init__(message, details=details)
        self.payment_id = payment_id
        self.payment_url = payment_url


class X402PaymentRequired(PaymentRequired):
    """Call must be repeated with a signed x402 payment payload."""

    error_code = "X402_PAYMENT_REQUIRED"

    def __init__(
        self,
        message: str,
        payment_id: str,
        payment_request: dict[str, Any],
    ) -> None:
        super().__init__(message, payment_id=payment_id)
        self.payment_request = payment_request

    def to_dict(self) -> dict[str, Any]:
        payload = dict(self.payment_request)
        payload.setdefault("error", self.message)
        payload["payment_id"] = self.payment_id
        return payload


class InvalidPaymentReference(PaygateError):
    """Supplied payment id is unknown, expired, terminal or mismatched."""

    error_code = "INVALID_PAYMENT_REFERENCE"

    def __init__(
        self,
        message: str,
        payment_id: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if payment_id:
            details["payment_id"] = payment_id
        super().__init__(message, details=details)


class PaymentVerificationFailed(PaygateError):
    """x402 signature did not verify or settle. Terminal for the attempt."""

    error_code = "PAYMENT_VERIFICATION_FAILED"

    def __init__(self, reason: str, payment_id: Optional[str] = None) -> None:
        details: dict[str, Any] = {"reason": reason}
        if payment_id:
            details["payment_id"] = payment_id
        super().__init__(f"Payment verification failed: {reason}", details=details)
        self.reason = reason


class PaymentTimeout(PaygateError):
    """Payment was not confirmed before the caller's deadline."""

    error_code = "PAYMENT_TIMEOUT"

    def __init__(self, payment_id: str, waited_seconds: Optional[float] = None) -> None:
        details: dict[str, Any] = {"payment_id": payment_id}
        if waited_seconds is not None:
            details["waited_seconds"] = round(waited_seconds, 2)
        super().__init__("Payment was not completed in time", details=details)
        self.payment_id = payment_id


class PaymentCancelled(PaygateError):
    """Payment was cancelled by the caller or the provider."""

    error_code = "PAYMENT_CANCELLED"

    def __init__(self, payment_id: str, message: str = "Payment was cancelled") -> None:
        super().__init__(message, details={"payment_id": payment_id})
        self.payment_id = payment_id


class PaymentFailed(PaygateError):
    """Provider reported the payment as failed."""

    error_code = "PAYMENT_FAILED"

    def __init__(self, payment_id: str, message: str = "Payment failed") -> None:
        super().__init__(message, details={"payment_id": payment_id})
        self.payment_id = payment_id


class SubscriptionRequired(PaygateError):
    """Caller has no active subscription to any accepted plan."""

    error_code = "SUBSCRIPTION_REQUIRED"

    def __init__(self, tool_name: str, accepted_plans: list[str]) -> None:
        super().__init__(
            f"An active subscription is required to use {tool_name}",
            details={"tool": tool_name, "accepted_plans": list(accepted_plans)},
        )
        self.accepted_plans = list(accepted_plans)


class AlreadyProcessed(PaygateError):
    """Finalization already happened for this payment id.

    Raised internally by the finalizer; flows turn it into the stored
    result so the caller never sees it as an error.
    """

    error_code = "ALREADY_PROCESSED"

    def __init__(self, payment_id: str, result: Any = None, has_result: bool = False) -> None:
        super().__init__(
            f"Payment '{payment_id}' was already processed",
            details={"payment_id": payment_id},
        )
        self.payment_id = payment_id
        self.result = result
        self.has_result = has_result


__all__ = [
    "PaygateError",
    "ConfigError",
    "UnknownProviderError",
    "InvalidPriceSpec",
    "MissingContext",
    "ToolNotFound",
    "ProviderError",
    "PaymentRequired",
    "X402PaymentRequired",
    "InvalidPaymentReference",
    "PaymentVerificationFailed",
    "PaymentTimeout",
    "PaymentCancelled",
    "PaymentFailed",
    "SubscriptionRequired",
    "AlreadyProcessed",
]
