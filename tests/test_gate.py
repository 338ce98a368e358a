"""Tests for tool registration, dispatch and listing on PaymentGate."""
from __future__ import annotations

from decimal import Decimal

import pytest

from sardis_paygate import (
    ConfigError,
    CoordinationMode,
    InMemoryStateStore,
    InvalidPriceSpec,
    MissingContext,
    PaygateError,
    PaygateSettings,
    PaymentGate,
    ToolNotFound,
    create_default_registry,
    price,
    subscription,
)
from sardis_paygate.pricing import get_price_spec, make_price_spec


def names(tools):
    return {tool["name"] for tool in tools}


class TestPriceMetadata:
    """@price / @subscription validation."""

    def test_price_attaches_spec(self):
        @price("1.50", currency="usd")
        def tool() -> None:
            pass

        spec = get_price_spec(tool)
        assert spec.amount == Decimal("1.50")
        assert spec.currency == "USD"
        assert not spec.is_subscription

    @pytest.mark.parametrize("amount", [0, -1, "abc", float("nan"), float("inf"), True, None])
    def test_invalid_amounts(self, amount):
        with pytest.raises(InvalidPriceSpec):
            make_price_spec(amount)

    @pytest.mark.parametrize("currency", ["", "   ", None])
    def test_invalid_currency(self, currency):
        with pytest.raises(InvalidPriceSpec):
            make_price_spec(1, currency=currency)

    def test_invalid_price_is_a_config_error(self):
        with pytest.raises(ConfigError):
            price(0)

    @pytest.mark.parametrize("plans", [[], [""], "", ["  "]])
    def test_empty_plans(self, plans):
        with pytest.raises(InvalidPriceSpec):
            subscription(plans)

    def test_single_plan_string(self):
        @subscription("pro")
        def tool() -> None:
            pass

        assert get_price_spec(tool).accepted_plans == ("pro",)


class TestRegistration:
    """register_tool / @gate.tool."""

    def test_free_tool_keeps_docstring(self, make_gate):
        gate = make_gate()

        @gate.tool()
        def echo(text: str) -> str:
            """Echo the text back."""
            return text

        assert gate.get_tool("echo").description == "Echo the text back."
        assert not gate.get_tool("echo").is_gated

    def test_priced_tool_description_mentions_price(self, make_gate):
        gate = make_gate()

        @gate.tool(description="Generate an image.")
        @price("1.00")
        def generate_image(prompt: str) -> str:
            return prompt

        description = gate.get_tool("generate_image").description
        assert description.startswith("Generate an image.")
        assert "1.00 USD" in description

    def test_duplicate_name(self, make_gate):
        gate = make_gate()

        @gate.tool()
        def echo() -> str:
            return ""

        with pytest.raises(ConfigError):
            gate.register_tool(echo)

    def test_custom_name(self, make_gate):
        gate = make_gate()

        @gate.tool(name="say_hello")
        def hello() -> str:
            return "hi"

        assert "say_hello" in names(gate.list_tools())

    def test_priced_tool_without_providers(self, settings, store):
        gate = PaymentGate(providers={}, mode=CoordinationMode.RESUBMIT, state_store=store, settings=settings)

        with pytest.raises(ConfigError):
            @gate.tool()
            @price(1)
            def paid() -> str:
                return "ok"

    def test_free_tool_without_providers(self, settings, store):
        gate = PaymentGate(providers={}, state_store=store, settings=settings)

        @gate.tool()
        def free() -> str:
            return "ok"

        assert names(gate.list_tools()) == {"free"}

    def test_register_with_explicit_price(self, make_gate):
        gate = make_gate(CoordinationMode.RESUBMIT)

        def lookup(key: str) -> str:
            return key

        tool = gate.register_tool(lookup, price=make_price_spec("0.10", "EUR"))

        assert tool.is_gated
        assert tool.descriptor()["price"] == {"amount": "0.10", "currency": "EUR"}

    def test_mode_from_string(self, settings, provider, store):
        gate = PaymentGate(providers={"simulated": provider}, mode="RESUBMIT", state_store=store, settings=settings)
        assert gate.mode is CoordinationMode.RESUBMIT

    def test_mode_from_settings(self, provider, store):
        settings = PaygateSettings(_env_file=None, coordination_mode="progress")
        gate = PaymentGate(providers={"simulated": provider}, state_store=store, settings=settings)
        assert gate.mode is CoordinationMode.PROGRESS

    def test_unknown_mode(self, settings, provider, store):
        with pytest.raises(ValueError):
            PaymentGate(providers={"simulated": provider}, mode="telepathy", state_store=store, settings=settings)

    def test_injected_dependencies_are_used(self, settings, provider):
        store = InMemoryStateStore()
        registry = create_default_registry()
        assert len(store) == 0

        gate = PaymentGate(
            providers={"simulated": provider}, state_store=store, settings=settings, registry=registry
        )

        assert gate.state_store is store
        assert gate.runtime.state_store is store
        assert gate.settings is settings
        assert gate.registry is registry


class TestDispatch:
    """call_tool routing."""

    @pytest.fixture
    def gate(self, make_gate, call_counter):
        gate = make_gate(CoordinationMode.RESUBMIT)

        @gate.tool()
        async def add(a: int, b: int) -> int:
            return a + b

        @gate.tool()
        @price(1)
        def paid(x: int) -> int:
            call_counter["calls"] += 1
            return x

        @gate.tool()
        def broken() -> None:
            raise RuntimeError("boom")

        return gate

    async def test_unknown_tool(self, gate, make_context):
        with pytest.raises(ToolNotFound) as exc_info:
            await gate.call_tool("nope", {}, make_context())
        assert exc_info.value.to_dict()["error"] == "TOOL_NOT_FOUND"

    async def test_free_tool_runs_without_context(self, gate):
        assert await gate.call_tool("add", {"a": 2, "b": 3}) == 5

    async def test_free_tool_errors_propagate(self, gate):
        with pytest.raises(RuntimeError):
            await gate.call_tool("broken")

    async def test_gated_tool_needs_context(self, gate, call_counter):
        with pytest.raises(MissingContext):
            await gate.call_tool("paid", {"x": 1})
        assert call_counter["calls"] == 0

    async def test_internal_tool_needs_context(self, make_gate):
        gate = make_gate(CoordinationMode.TWO_STEP)

        @gate.tool()
        @price(1)
        def paid() -> str:
            return "ok"

        with pytest.raises(MissingContext):
            await gate.call_tool("confirm_paid_payment", {"payment_id": "x"})

    async def test_errors_are_structured(self, gate, make_context):
        with pytest.raises(PaygateError) as exc_info:
            await gate.call_tool("paid", {"x": 1}, make_context())

        payload = exc_info.value.to_dict()
        assert payload["error"] == "PAYMENT_REQUIRED"
        assert payload["details"]["payment_id"]


class TestListing:
    """list_tools descriptors."""

    def test_descriptors(self, make_gate):
        gate = make_gate(CoordinationMode.TWO_STEP)

        @gate.tool()
        def free() -> str:
            return ""

        @gate.tool()
        @price("0.50")
        def paid() -> str:
            return ""

        tools = {t["name"]: t for t in gate.list_tools()}

        assert set(tools) == {"free", "paid", "confirm_paid_payment"}
        assert tools["free"]["price"] is None
        assert tools["paid"]["price"] == {"amount": "0.50", "currency": "USD"}


class TestLifecycle:
    """Resource cleanup."""

    async def test_aclose(self, settings, provider):
        store = InMemoryStateStore()
        gate = PaymentGate(providers={"simulated": provider}, state_store=store, settings=settings)
        await gate.aclose()
