"""Payment gate data models."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Optional


DEFAULT_PENDING_TTL_SECONDS = 3600


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CoordinationMode(str, Enum):
    """Interaction pattern used to gate a tool call behind payment."""
    AUTO = "auto"
    TWO_STEP = "two_step"
    RESUBMIT = "resubmit"
    ELICITATION = "elicitation"
    PROGRESS = "progress"
    DYNAMIC_TOOLS = "dynamic_tools"
    X402 = "x402"


class InvocationStatus(str, Enum):
    """Engine-local status of a pending invocation."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


TERMINAL_STATUSES = frozenset({
    InvocationStatus.CONFIRMED,
    InvocationStatus.FAILED,
    InvocationStatus.CANCELLED,
    InvocationStatus.EXPIRED,
})


class ProviderPaymentStatus(str, Enum):
    """Provider-side payment status."""
    PAID = "paid"
    PENDING = "pending"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not ProviderPaymentStatus.PENDING


class SubscriptionStatus(str, Enum):
    """Provider subscription status, normalized."""
    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    INCOMPLETE = "incomplete"

    @property
    def grants_access(self) -> bool:
        return self in (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING)


def parse_amount(value: Any) -> Decimal:
    """Parse a price amount into a Decimal, raising ValueError on junk."""
    if isinstance(value, bool):
        raise ValueError("amount must be a number")
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"amount is not a number: {value!r}") from exc
    if not amount.is_finite():
        raise ValueError("amount must be finite")
    return amount


@dataclass(frozen=True)
class ToolPriceSpec:
    """Static payment metadata attached to a tool.

    Either ``amount``/``currency`` (price gating) or ``accepted_plans``
    (subscription gating) is set.
    """
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    accepted_plans: tuple[str, ...] = ()

    @property
    def is_subscription(self) -> bool:
        return bool(self.accepted_plans)

    def describe(self) -> str:
        if self.is_subscription:
            return "subscription: " + ", ".join(self.accepted_plans)
        return f"{self.amount} {self.currency}"


@dataclass(slots=True)
class CreatedPayment:
    """What a provider returns when a payment is initiated."""
    payment_id: str
    payment_url: Optional[str] = None
    payment_request: Optional[dict[str, Any]] = None


@dataclass(slots=True)
class ProviderPayment:
    """Provider's view of a payment. Never persisted by the gate."""
    id: str
    status: ProviderPaymentStatus
    url: Optional[str] = None
    request: Optional[dict[str, Any]] = None


@dataclass(slots=True)
class SettlementResult:
    """Outcome of an x402 verify/settle round trip."""
    success: bool
    reason: Optional[str] = None
    tx_hash: Optional[str] = None
    network: Optional[str] = None
    payer: Optional[str] = None


@dataclass
class Subscription:
    """A caller's subscription to a plan."""
    id: str
    plan_id: str
    status: SubscriptionStatus
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "plan_id": self.plan_id,
            "status": self.status.value,
            "current_period_end": (
                self.current_period_end.isoformat() if self.current_period_end else None
            ),
            "cancel_at_period_end": self.cancel_at_period_end,
        }


@dataclass
class PendingInvocation:
    """A suspended tool call awaiting payment."""
    payment_id: str
    tool_name: str
    arguments: dict[str, Any]
    fingerprint: str
    amount: Decimal
    currency: str
    mode: CoordinationMode
    provider_name: str
    caller: dict[str, Any] = field(default_factory=dict)
    payment_url: Optional[str] = None
    payment_request: Optional[dict[str, Any]] = None
    status: InvocationStatus = InvocationStatus.PENDING
    created_at: datetime = field(default_factory=utcnow)
    expires_at: Optional[datetime] = None
    result: Any = None
    has_result: bool = False
    error: Optional[str] = None
    proof_hash: Optional[str] = None

    def __post_init__(self) -> None:
        if self.expires_at is None:
            self.expires_at = self.created_at + timedelta(seconds=DEFAULT_PENDING_TTL_SECONDS)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or utcnow()
        return self.expires_at is not None and self.expires_at <= now

    def ttl_seconds(self, now: Optional[datetime] = None) -> int:
        """Seconds until expiry, at least 1."""
        now = now or utcnow()
        remaining = int((self.expires_at - now).total_seconds()) if self.expires_at else 0
        return max(remaining, 1)

    def to_dict(self) -> dict[str, Any]:
        return {
            "payment_id": self.payment_id,
            "tool_name": self.tool_name,
            "arguments": self.arguments,
            "fingerprint": self.fingerprint,
            "amount": str(self.amount),
            "currency": self.currency,
            "mode": self.mode.value,
            "provider_name": self.provider_name,
            "caller": self.caller,
            "payment_url": self.payment_url,
            "payment_request": self.payment_request,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "result": self.result,
            "has_result": self.has_result,
            "error": self.error,
            "proof_hash": self.proof_hash,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PendingInvocation":
        expires_at = data.get("expires_at")
        return cls(
            payment_id=data["payment_id"],
            tool_name=data["tool_name"],
            arguments=dict(data.get("arguments") or {}),
            fingerprint=data["fingerprint"],
            amount=Decimal(data["amount"]),
            currency=data["currency"],
            mode=CoordinationMode(data["mode"]),
            provider_name=data["provider_name"],
            caller=dict(data.get("caller") or {}),
            payment_url=data.get("payment_url"),
            payment_request=data.get("payment_request"),
            status=InvocationStatus(data.get("status", InvocationStatus.PENDING.value)),
            created_at=datetime.fromisoformat(data["created_at"]),
            expires_at=datetime.fromisoformat(expires_at) if expires_at else None,
            result=data.get("result"),
            has_result=bool(data.get("has_result", False)),
            error=data.get("error"),
            proof_hash=data.get("proof_hash"),
        )
