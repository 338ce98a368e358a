"""
Sardis Paygate - payment gating for tool-calling servers.

Put a price or a subscription requirement on a tool and let the gate
collect payment through Stripe, x402 or any custom provider before the
tool body runs.
"""
from sardis_paygate.config import PaygateSettings, get_settings
from sardis_paygate.context import CallerContext, ElicitationResult
from sardis_paygate.exceptions import (
    AlreadyProcessed,
    ConfigError,
    InvalidPaymentReference,
    InvalidPriceSpec,
    MissingContext,
    PaygateError,
    PaymentCancelled,
    PaymentFailed,
    PaymentRequired,
    PaymentTimeout,
    PaymentVerificationFailed,
    ProviderError,
    SubscriptionRequired,
    ToolNotFound,
    UnknownProviderError,
    X402PaymentRequired,
)
from sardis_paygate.gate import PaymentGate
from sardis_paygate.host import ToolHost, ToolListChanged
from sardis_paygate.models import (
    CoordinationMode,
    InvocationStatus,
    PendingInvocation,
    ProviderPaymentStatus,
    Subscription,
    SubscriptionStatus,
    ToolPriceSpec,
)
from sardis_paygate.pricing import price, subscription
from sardis_paygate.providers import (
    PaymentProvider,
    ProviderRegistry,
    SimulatedProvider,
    StripeProvider,
    SubscriptionProvider,
    X402FacilitatorProvider,
    X402Provider,
    create_default_registry,
)
from sardis_paygate.state import InMemoryStateStore, RedisStateStore, StateStore

__version__ = "0.1.0"

__all__ = [
    "PaymentGate",
    "price",
    "subscription",
    "CallerContext",
    "ElicitationResult",
    "ToolHost",
    "ToolListChanged",
    "PaygateSettings",
    "get_settings",
    "CoordinationMode",
    "InvocationStatus",
    "PendingInvocation",
    "ProviderPaymentStatus",
    "Subscription",
    "SubscriptionStatus",
    "ToolPriceSpec",
    "PaymentProvider",
    "SubscriptionProvider",
    "X402Provider",
    "ProviderRegistry",
    "create_default_registry",
    "SimulatedProvider",
    "StripeProvider",
    "X402FacilitatorProvider",
    "StateStore",
    "InMemoryStateStore",
    "RedisStateStore",
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
