"""Pending-invocation state stores."""
from __future__ import annotations

from typing import Optional

from sardis_paygate.config import PaygateSettings, get_settings
from sardis_paygate.state.base import StateStore
from sardis_paygate.state.memory import InMemoryStateStore
from sardis_paygate.state.redis import RedisStateStore


def build_state_store(settings: Optional[PaygateSettings] = None) -> StateStore:
    """Pick the state backend from configuration."""
    settings = settings if settings is not None else get_settings()
    if settings.state_store == "redis":
        return RedisStateStore.from_url(settings.redis_url, namespace=settings.redis_namespace)
    return InMemoryStateStore()


__all__ = [
    "StateStore",
    "InMemoryStateStore",
    "RedisStateStore",
    "build_state_store",
]
