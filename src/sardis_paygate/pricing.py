"""Price and subscription metadata for gated tools.

    @price(1.00, currency="USD")
    async def generate_image(prompt: str) -> str:
        ...

    @subscription(["pro", "team"])
    def premium_report(topic: str) -> dict:
        ...
"""
from __future__ import annotations

import inspect
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional, Union

from sardis_paygate.exceptions import InvalidPriceSpec
from sardis_paygate.models import ToolPriceSpec, parse_amount

PRICE_ATTR = "__paygate_price__"


def make_price_spec(amount: Any, currency: str = "USD") -> ToolPriceSpec:
    """Validate a price and return its immutable spec.

    Raises:
        InvalidPriceSpec: amount not a finite positive number, or empty currency
    """
    try:
        parsed = parse_amount(amount)
    except ValueError as e:
        raise InvalidPriceSpec(str(e), details={"amount": repr(amount)}) from e
    if parsed <= 0:
        raise InvalidPriceSpec("amount must be greater than zero", details={"amount": str(parsed)})
    if not isinstance(currency, str) or not currency.strip():
        raise InvalidPriceSpec("currency must be a non-empty code", details={"currency": repr(currency)})
    return ToolPriceSpec(amount=parsed, currency=currency.strip().upper())


def make_subscription_spec(plans: Union[str, Iterable[str]]) -> ToolPriceSpec:
    """Validate accepted plans and return their immutable spec."""
    if isinstance(plans, str):
        plans = [plans]
    accepted = tuple(p.strip() for p in plans if isinstance(p, str) and p.strip())
    if not accepted:
        raise InvalidPriceSpec("accepted plans must not be empty")
    return ToolPriceSpec(accepted_plans=accepted)


def price(amount: Any, currency: str = "USD") -> Callable[[Callable], Callable]:
    """Mark a tool as paid per call."""
    spec = make_price_spec(amount, currency)

    def decorator(func: Callable) -> Callable:
        setattr(func, PRICE_ATTR, spec)
        return func

    return decorator


def subscription(plans: Union[str, Iterable[str]]) -> Callable[[Callable], Callable]:
    """Mark a tool as available to subscribers of any of ``plans``."""
    spec = make_subscription_spec(plans)

    def decorator(func: Callable) -> Callable:
        setattr(func, PRICE_ATTR, spec)
        return func

    return decorator


def get_price_spec(func: Callable) -> Optional[ToolPriceSpec]:
    return getattr(func, PRICE_ATTR, None)


@dataclass(frozen=True)
class RegisteredTool:
    """A tool as known to the gate."""
    name: str
    func: Callable[..., Any]
    description: str = ""
    price: Optional[ToolPriceSpec] = None
    internal: bool = False
    listed: bool = True

    @property
    def is_gated(self) -> bool:
        return self.price is not None

    @property
    def is_subscription(self) -> bool:
        return self.price is not None and self.price.is_subscription

    async def invoke(self, arguments: dict[str, Any]) -> Any:
        """Run the tool body with keyword arguments."""
        result = self.func(**arguments)
        if inspect.isawaitable(result):
            result = await result
        return result

    def descriptor(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "price": (
                {"amount": str(self.price.amount), "currency": self.price.currency}
                if self.price and not self.price.is_subscription
                else None
            ),
            "accepted_plans": list(self.price.accepted_plans) if self.is_subscription else None,
        }

