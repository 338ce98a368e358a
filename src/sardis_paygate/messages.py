"""User-facing messages returned alongside payment-pending responses."""
from __future__ import annotations

from decimal import Decimal
from typing import Optional

from sardis_paygate.models import ToolPriceSpec


def description_with_price(description: str, spec: ToolPriceSpec) -> str:
    """Append the tool's price (or accepted plans) to its description."""
    description = (description or "").strip()
    if spec.is_subscription:
        suffix = (
            "This tool requires an active subscription to one of: "
            + ", ".join(spec.accepted_plans)
            + "."
        )
    else:
        suffix = (
            f"This is a paid function: {spec.amount} {spec.currency}. "
            "Payment will be requested during execution."
        )
    return f"{description}\n\n{suffix}" if description else suffix


def open_link_message(url: str, amount: Decimal, currency: str) -> str:
    return (
        f"To run this tool, please pay {amount} {currency} using the link below:\n\n"
        f"{url}\n\n"
        "After completing the payment, come back and confirm."
    )


def resubmit_message(url: str, amount: Decimal, currency: str) -> str:
    return (
        f"Payment of {amount} {currency} is required. Pay here: {url}\n\n"
        "Then call this tool again with the same arguments and the payment_id."
    )


def pending_message(url: Optional[str]) -> str:
    base = "Payment has not been completed yet."
    return f"{base} Pay here: {url}" if url else base


def elicitation_message(url: str, amount: Decimal, currency: str) -> str:
    return (
        f"Please pay {amount} {currency} to continue: {url}\n\n"
        "Accept once the payment is done, or decline to cancel."
    )


def progress_message(elapsed: float, timeout: float) -> str:
    return f"Waiting for payment confirmation ({int(elapsed)}s of {int(timeout)}s)"


def x402_message(amount: Decimal, currency: str) -> str:
    return f"Payment of {amount} {currency} required. Sign the x402 payment request and resend."
