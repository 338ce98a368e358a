"""Tests for the RESUBMIT coordination mode."""
from __future__ import annotations

import asyncio

import pytest

from sardis_paygate import (
    CoordinationMode,
    InvalidPaymentReference,
    InvocationStatus,
    PaymentFailed,
    PaymentRequired,
    ProviderError,
    price,
)


@pytest.fixture
def gate(make_gate, call_counter):
    gate = make_gate(CoordinationMode.RESUBMIT)

    @gate.tool()
    @price(1.00, currency="USD")
    async def generate_image(prompt: str) -> str:
        """Generate an image from a prompt."""
        call_counter["calls"] += 1
        await asyncio.sleep(0)
        return f"image of {prompt}"

    return gate


class TestResubmitScenario:
    """The pay-then-resubmit round trip."""

    async def test_a_dog(self, gate, provider, make_context, call_counter):
        """First call demands payment; resubmitting with the id runs the tool."""
        context = make_context()

        with pytest.raises(PaymentRequired) as exc_info:
            await gate.call_tool("generate_image", {"prompt": "a dog"}, context)

        required = exc_info.value
        assert required.payment_id.startswith("sim_")
        assert required.payment_url.endswith(required.payment_id)
        payload = required.to_dict()
        assert payload["error"] == "PAYMENT_REQUIRED"
        assert payload["details"]["payment_id"] == required.payment_id
        assert payload["details"]["payment_url"] == required.payment_url
        assert call_counter["calls"] == 0

        provider.mark_paid(required.payment_id)
        result = await gate.call_tool(
            "generate_image",
            {"prompt": "a dog", "payment_id": required.payment_id},
            context,
        )

        assert result == "image of a dog"
        assert call_counter["calls"] == 1

    async def test_each_unpaid_call_gets_fresh_payment(self, gate, make_context):
        """Calls without a payment reference never reuse a payment id."""
        context = make_context()
        ids = set()
        for _ in range(3):
            with pytest.raises(PaymentRequired) as exc_info:
                await gate.call_tool("generate_image", {"prompt": "a dog"}, context)
            ids.add(exc_info.value.payment_id)
        assert len(ids) == 3

    async def test_record_persisted_with_arguments(self, gate, store, make_context):
        with pytest.raises(PaymentRequired) as exc_info:
            await gate.call_tool("generate_image", {"prompt": "a dog"}, make_context())

        record = await store.get(exc_info.value.payment_id)
        assert record is not None
        assert record.status is InvocationStatus.PENDING
        assert record.arguments == {"prompt": "a dog"}
        assert record.mode is CoordinationMode.RESUBMIT
        assert record.caller["session_id"] == "session-1"


class TestResubmitValidation:
    """Tests for payment reference checks."""

    async def test_pending_payment_raises_again_with_same_id(self, gate, make_context, call_counter):
        context = make_context()
        with pytest.raises(PaymentRequired) as first:
            await gate.call_tool("generate_image", {"prompt": "a dog"}, context)

        with pytest.raises(PaymentRequired) as second:
            await gate.call_tool(
                "generate_image",
                {"prompt": "a dog", "payment_id": first.value.payment_id},
                context,
            )

        assert second.value.payment_id == first.value.payment_id
        assert second.value.payment_url == first.value.payment_url
        assert call_counter["calls"] == 0

    async def test_argument_drift_rejected(self, gate, provider, make_context, call_counter):
        context = make_context()
        with pytest.raises(PaymentRequired) as exc_info:
            await gate.call_tool("generate_image", {"prompt": "a dog"}, context)
        provider.mark_paid(exc_info.value.payment_id)

        with pytest.raises(InvalidPaymentReference):
            await gate.call_tool(
                "generate_image",
                {"prompt": "a cat", "payment_id": exc_info.value.payment_id},
                context,
            )
        assert call_counter["calls"] == 0

    async def test_unknown_payment_id(self, gate, make_context):
        with pytest.raises(InvalidPaymentReference):
            await gate.call_tool(
                "generate_image",
                {"prompt": "a dog", "payment_id": "sim_missing"},
                make_context(),
            )

    async def test_failed_payment_is_terminal(self, gate, provider, make_context, store):
        context = make_context()
        with pytest.raises(PaymentRequired) as exc_info:
            await gate.call_tool("generate_image", {"prompt": "a dog"}, context)
        payment_id = exc_info.value.payment_id
        provider.mark_failed(payment_id)

        args = {"prompt": "a dog", "payment_id": payment_id}
        with pytest.raises(PaymentFailed):
            await gate.call_tool("generate_image", args, context)

        record = await store.get(payment_id)
        assert record.status is InvocationStatus.FAILED

        with pytest.raises(InvalidPaymentReference):
            await gate.call_tool("generate_image", args, context)


class TestResubmitIdempotency:
    """Finalization runs the body once."""

    async def test_repeat_after_success_returns_stored_result(self, gate, provider, make_context, call_counter):
        context = make_context()
        with pytest.raises(PaymentRequired) as exc_info:
            await gate.call_tool("generate_image", {"prompt": "a dog"}, context)
        provider.mark_paid(exc_info.value.payment_id)
        args = {"prompt": "a dog", "payment_id": exc_info.value.payment_id}

        first = await gate.call_tool("generate_image", args, context)
        second = await gate.call_tool("generate_image", args, context)

        assert first == second == "image of a dog"
        assert call_counter["calls"] == 1

    async def test_concurrent_resubmits_execute_once(self, gate, provider, make_context, call_counter):
        context = make_context()
        with pytest.raises(PaymentRequired) as exc_info:
            await gate.call_tool("generate_image", {"prompt": "a dog"}, context)
        payment_id = exc_info.value.payment_id
        provider.mark_paid(payment_id)
        args = {"prompt": "a dog", "payment_id": payment_id}

        results = await asyncio.gather(
            gate.call_tool("generate_image", args, context),
            gate.call_tool("generate_image", args, context),
        )

        assert call_counter["calls"] == 1
        assert "image of a dog" in results
        for result in results:
            assert result == "image of a dog" or result == {
                "status": "already_processed",
                "payment_id": payment_id,
            }

    async def test_tool_error_surfaces_and_is_not_rerun(self, make_gate, provider, make_context, store):
        gate = make_gate(CoordinationMode.RESUBMIT)
        calls = []

        @gate.tool()
        @price("0.50")
        def flaky(x: int) -> int:
            calls.append(x)
            raise RuntimeError("boom")

        context = make_context()
        with pytest.raises(PaymentRequired) as exc_info:
            await gate.call_tool("flaky", {"x": 1}, context)
        payment_id = exc_info.value.payment_id
        provider.mark_paid(payment_id)

        with pytest.raises(RuntimeError, match="boom"):
            await gate.call_tool("flaky", {"x": 1, "payment_id": payment_id}, context)

        record = await store.get(payment_id)
        assert record.status is InvocationStatus.CONFIRMED
        assert "boom" in record.error

        again = await gate.call_tool("flaky", {"x": 1, "payment_id": payment_id}, context)
        assert again == {"status": "already_processed", "payment_id": payment_id}
        assert calls == [1]


class TestResubmitProviderErrors:
    """Provider failures never lose or re-create payments."""

    async def test_create_failure_leaves_no_record(self, gate, provider, store, make_context):
        provider.fail_next_create()
        with pytest.raises(ProviderError) as exc_info:
            await gate.call_tool("generate_image", {"prompt": "a dog"}, make_context())
        assert exc_info.value.message == "Payment service unavailable"
        assert len(store) == 0

    async def test_status_outage_keeps_record_pending(self, gate, provider, store, make_context, call_counter):
        context = make_context()
        with pytest.raises(PaymentRequired) as exc_info:
            await gate.call_tool("generate_image", {"prompt": "a dog"}, context)
        payment_id = exc_info.value.payment_id
        provider.mark_paid(payment_id)
        args = {"prompt": "a dog", "payment_id": payment_id}

        # settings allow one retry, so two failures exhaust it
        provider.fail_next_status_checks(2)
        with pytest.raises(ProviderError):
            await gate.call_tool("generate_image", args, context)

        record = await store.get(payment_id)
        assert record.status is InvocationStatus.PENDING
        assert call_counter["calls"] == 0

        assert await gate.call_tool("generate_image", args, context) == "image of a dog"
        assert len(provider.payments) == 1

    async def test_transient_status_failure_is_retried(self, gate, provider, make_context):
        context = make_context()
        with pytest.raises(PaymentRequired) as exc_info:
            await gate.call_tool("generate_image", {"prompt": "a dog"}, context)
        provider.mark_paid(exc_info.value.payment_id)

        provider.fail_next_status_checks(1)
        result = await gate.call_tool(
            "generate_image",
            {"prompt": "a dog", "payment_id": exc_info.value.payment_id},
            context,
        )
        assert result == "image of a dog"
