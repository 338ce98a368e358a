"""
Pytest configuration and fixtures for sardis-paygate tests.
"""
from __future__ import annotations

from typing import Any, Callable

import fakeredis
import pytest

from sardis_paygate import (
    CallerContext,
    CoordinationMode,
    InMemoryStateStore,
    PaygateSettings,
    PaymentGate,
    SimulatedProvider,
    ToolListChanged,
)


class FakeHost:
    """Records tool-list change notifications."""

    def __init__(self) -> None:
        self.events: list[ToolListChanged] = []

    async def notify_tool_list_changed(self, event: ToolListChanged) -> None:
        self.events.append(event)


@pytest.fixture
def settings() -> PaygateSettings:
    """Fast settings: no backoff waits, short progress deadlines."""
    return PaygateSettings(
        _env_file=None,
        progress_poll_interval=0.01,
        progress_max_interval=0.02,
        progress_jitter=0.0,
        progress_timeout_seconds=0.2,
        elicitation_max_attempts=3,
        status_check_retries=1,
        status_check_base_delay=0.0,
    )


@pytest.fixture
def provider() -> SimulatedProvider:
    return SimulatedProvider(plans=["pro", "team"])


@pytest.fixture
def store() -> InMemoryStateStore:
    return InMemoryStateStore()


@pytest.fixture
def host() -> FakeHost:
    return FakeHost()


@pytest.fixture
async def fake_redis():
    """In-process Redis that runs Lua scripts."""
    client = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)
    yield client
    await client.aclose()


@pytest.fixture
def make_gate(settings, provider, store, host) -> Callable[..., PaymentGate]:
    """Build a gate with the simulated provider unless told otherwise."""

    def _make(mode: CoordinationMode = CoordinationMode.TWO_STEP, providers: Any = None) -> PaymentGate:
        return PaymentGate(
            providers=providers if providers is not None else {"simulated": provider},
            mode=mode,
            state_store=store,
            host=host,
            settings=settings,
        )

    return _make


@pytest.fixture
def make_context() -> Callable[..., CallerContext]:
    def _make(**overrides: Any) -> CallerContext:
        defaults: dict[str, Any] = {
            "caller_id": "client-1",
            "session_id": "session-1",
            "user_id": "user-1",
        }
        defaults.update(overrides)
        return CallerContext(**defaults)

    return _make


@pytest.fixture
def call_counter() -> dict[str, int]:
    """Shared counter tool bodies bump so tests can assert execution counts."""
    return {"calls": 0}

