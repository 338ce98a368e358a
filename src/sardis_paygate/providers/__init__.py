"""Payment providers and the provider registry."""
from sardis_paygate.providers.base import PaymentProvider, SubscriptionProvider, X402Provider
from sardis_paygate.providers.registry import (
    ProviderClassPath,
    ProviderConfigEntry,
    ProviderInstance,
    ProviderRegistry,
    build_providers,
    create_default_registry,
)
from sardis_paygate.providers.simulated import SimulatedProvider
from sardis_paygate.providers.stripe import StripeProvider
from sardis_paygate.providers.x402 import X402FacilitatorProvider

__all__ = [
    "PaymentProvider",
    "SubscriptionProvider",
    "X402Provider",
    "ProviderRegistry",
    "ProviderInstance",
    "ProviderConfigEntry",
    "ProviderClassPath",
    "build_providers",
    "create_default_registry",
    "SimulatedProvider",
    "StripeProvider",
    "X402FacilitatorProvider",
]
