"""
Provider registry.

Maps provider keys to constructors and turns raw provider configuration
into live PaymentProvider instances. A configuration value is one of:

- an already-constructed PaymentProvider
- a mapping of constructor options for a registered key
- a mapping with a ``class`` entry naming ``package.module:ClassName``
  (or ``package.module.ClassName``) plus constructor options
"""
from __future__ import annotations

import importlib
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping, Optional, Union

from sardis_paygate.exceptions import ConfigError, UnknownProviderError
from sardis_paygate.providers.base import PaymentProvider

logger = logging.getLogger(__name__)

ProviderFactory = Callable[..., PaymentProvider]


@dataclass(frozen=True)
class ProviderInstance:
    """A provider object supplied directly by the host."""
    name: str
    provider: PaymentProvider


@dataclass(frozen=True)
class ProviderConfigEntry:
    """A registered provider key plus constructor options."""
    name: str
    key: str
    options: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ProviderClassPath:
    """A dotted import path to a PaymentProvider subclass plus options."""
    name: str
    path: str
    options: dict[str, Any] = field(default_factory=dict)


ProviderSpec = Union[ProviderInstance, ProviderConfigEntry, ProviderClassPath]


def _looks_like_class_path(value: str) -> bool:
    return ":" in value or "." in value


class ProviderRegistry:
    """Explicit, per-gate table of provider constructors."""

    def __init__(self) -> None:
        self._factories: dict[str, ProviderFactory] = {}

    def register(self, name: str, factory: ProviderFactory, replace: bool = False) -> None:
        """
        Bind a provider key to a constructor.

        Re-registering the same constructor is a no-op.

        Raises:
            ConfigError: If the name is empty or already bound to a
                different constructor and ``replace`` is False
        """
        key = (name or "").strip().lower()
        if not key:
            raise ConfigError("Provider name must not be empty")
        existing = self._factories.get(key)
        if existing is not None and existing is not factory and not replace:
            raise ConfigError(
                f"Provider '{key}' is already registered",
                details={"provider": key},
            )
        self._factories[key] = factory
        logger.debug(f"Registered payment provider '{key}'")

    def unregister(self, name: str) -> None:
        self._factories.pop(name.strip().lower(), None)

    def is_registered(self, name: str) -> bool:
        return name.strip().lower() in self._factories

    @property
    def keys(self) -> list[str]:
        return sorted(self._factories)

    def coerce_spec(self, name: str, value: Any) -> ProviderSpec:
        """Turn one raw configuration value into a typed spec."""
        if isinstance(value, PaymentProvider):
            return ProviderInstance(name=name, provider=value)

        if value is None:
            value = {}
        if isinstance(value, str):
            # Bare string: either a registered key or a class path
            if self.is_registered(value) or not _looks_like_class_path(value):
                return ProviderConfigEntry(name=name, key=value)
            return ProviderClassPath(name=name, path=value)

        if not isinstance(value, Mapping):
            raise ConfigError(
                f"Provider '{name}' configuration must be a mapping or provider instance",
                details={"provider": name, "type": type(value).__name__},
            )

        options = dict(value)
        class_path = options.pop("class", None)
        if class_path:
            return ProviderClassPath(name=name, path=str(class_path), options=options)
        key = str(options.pop("provider", name))
        return ProviderConfigEntry(name=name, key=key, options=options)

    def resolve(self, spec: ProviderSpec) -> PaymentProvider:
        """Build a provider from a spec.

        Raises:
            UnknownProviderError: Key not registered and not importable
            ConfigError: Class path does not name a PaymentProvider, or
                the constructor rejected the options
        """
        if isinstance(spec, ProviderInstance):
            return spec.provider

        if isinstance(spec, ProviderConfigEntry):
            factory = self._factories.get(spec.key.strip().lower())
            if factory is None:
                if _looks_like_class_path(spec.key):
                    return self.resolve(ProviderClassPath(spec.name, spec.key, spec.options))
                raise UnknownProviderError(spec.key)
            return self._construct(spec.name, factory, spec.options)

        if isinstance(spec, ProviderClassPath):
            return self._construct(spec.name, _import_provider_class(spec.path), spec.options)

        raise ConfigError(f"Unsupported provider spec: {spec!r}")

    def build_providers(
        self,
        config: Union[Mapping[str, Any], Iterable[Any], None],
    ) -> dict[str, PaymentProvider]:
        """
        Resolve a whole provider configuration.

        Accepts a mapping of ``name -> value`` or a list of provider
        instances / names. Configuration order is preserved.
        """
        if not config:
            return {}

        if isinstance(config, Mapping):
            items = list(config.items())
        else:
            items = []
            for value in config:
                if isinstance(value, PaymentProvider):
                    items.append((value.name, value))
                elif isinstance(value, str):
                    items.append((value, value))
                else:
                    raise ConfigError(
                        "Provider list entries must be provider instances or names",
                        details={"type": type(value).__name__},
                    )

        providers: dict[str, PaymentProvider] = {}
        for name, value in items:
            if name in providers:
                raise ConfigError(f"Duplicate provider name '{name}'", details={"provider": name})
            providers[name] = self.resolve(self.coerce_spec(name, value))
            logger.info(f"Payment provider '{name}' ready ({type(providers[name]).__name__})")
        return providers

    @staticmethod
    def _construct(
        name: str,
        factory: ProviderFactory,
        options: Mapping[str, Any],
    ) -> PaymentProvider:
        try:
            provider = factory(**dict(options))
        except TypeError as e:
            raise ConfigError(
                f"Provider '{name}' rejected its options: {e}",
                details={"provider": name, "options": sorted(options)},
            ) from e
        except ValueError as e:
            raise ConfigError(
                f"Provider '{name}' is misconfigured: {e}",
                details={"provider": name},
            ) from e
        if not isinstance(provider, PaymentProvider):
            raise ConfigError(
                f"Provider '{name}' factory did not return a PaymentProvider",
                details={"provider": name},
            )
        return provider


def _import_provider_class(path: str) -> type[PaymentProvider]:
    if ":" in path:
        module_name, _, attr = path.partition(":")
    else:
        module_name, _, attr = path.rpartition(".")
    if not module_name or not attr:
        raise UnknownProviderError(path)

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise UnknownProviderError(path, details={"import_error": str(e)}) from e

    cls = getattr(module, attr, None)
    if cls is None:
        raise UnknownProviderError(path)
    if not isinstance(cls, type) or not issubclass(cls, PaymentProvider):
        raise ConfigError(
            f"'{path}' is not a PaymentProvider subclass",
            details={"provider": path},
        )
    return cls


def create_default_registry() -> ProviderRegistry:
    """Fresh registry with the built-in providers."""
    from sardis_paygate.providers.simulated import SimulatedProvider
    from sardis_paygate.providers.stripe import StripeProvider
    from sardis_paygate.providers.x402 import X402FacilitatorProvider

    registry = ProviderRegistry()
    registry.register("simulated", SimulatedProvider)
    registry.register("stripe", StripeProvider)
    registry.register("x402", X402FacilitatorProvider)
    return registry


def build_providers(
    config: Union[Mapping[str, Any], Iterable[Any], None],
    registry: Optional[ProviderRegistry] = None,
) -> dict[str, PaymentProvider]:
    """Resolve provider configuration with the default registry."""
    return (registry if registry is not None else create_default_registry()).build_providers(config)
