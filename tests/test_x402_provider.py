"""Tests for the x402 facilitator provider."""
from __future__ import annotations

import base64
import copy
import json
import time
from decimal import Decimal

import pytest

from sardis_paygate import ProviderError, ProviderPaymentStatus, X402FacilitatorProvider
from sardis_paygate.providers.x402 import decode_payment_signature, payload_payment_id

FACILITATOR = "https://facilitator.test"
PAY_TO = "0x1234567890abcdef1234567890abcdef12345678"


@pytest.fixture
async def x402():
    provider = X402FacilitatorProvider(pay_to=PAY_TO, facilitator_url=FACILITATOR)
    yield provider
    await provider.aclose()


def payload_for(request: dict, **overrides) -> dict:
    accepted = copy.deepcopy(request["accepts"][0])
    accepted.update(overrides)
    return {
        "x402Version": 2,
        "accepted": accepted,
        "payload": {
            "signature": "0xdeadbeef",
            "authorization": {
                "from": "0xabcdefabcdefabcdefabcdefabcdefabcdefabcd",
                "to": PAY_TO,
                "value": accepted["amount"],
            },
        },
    }


class TestPaymentRequest:
    """Tests for create_payment."""

    async def test_request_shape(self, x402):
        created = await x402.create_payment(Decimal("1.00"), "USD", "premium() execution fee")

        assert created.payment_url is None
        request = created.payment_request
        assert request["x402Version"] == 2
        accepted = request["accepts"][0]
        assert accepted["scheme"] == "exact"
        assert accepted["network"] == "base"
        assert accepted["amount"] == "1000000"
        assert accepted["payTo"] == PAY_TO
        assert accepted["extra"]["paymentId"] == created.payment_id
        assert accepted["extra"]["nonce"]
        assert await x402.get_payment_status(created.payment_id) is ProviderPaymentStatus.PENDING

    async def test_nonces_are_unique(self, x402):
        first = await x402.create_payment(Decimal("1"), "USD", "fee")
        second = await x402.create_payment(Decimal("1"), "USD", "fee")
        assert first.payment_request["accepts"][0]["extra"]["nonce"] != \
            second.payment_request["accepts"][0]["extra"]["nonce"]

    async def test_dust_amount_rejected(self, x402):
        with pytest.raises(ProviderError):
            await x402.create_payment(Decimal("0.0000001"), "USD", "fee")

    def test_requires_pay_to(self):
        with pytest.raises(ValueError):
            X402FacilitatorProvider(pay_to="")


class TestLocalChecks:
    """Payload checks done before calling the facilitator."""

    async def test_matching_payload_passes(self, x402):
        created = await x402.create_payment(Decimal("1"), "USD", "fee")
        request = created.payment_request
        assert x402.check_payload(request, payload_for(request)) is None

    @pytest.mark.parametrize(
        "overrides, reason",
        [
            ({"amount": "1"}, "x402_amount_mismatch"),
            ({"payTo": "0xattacker"}, "x402_payee_mismatch"),
            ({"network": "polygon"}, "x402_network_mismatch"),
        ],
    )
    async def test_mismatches(self, x402, overrides, reason):
        created = await x402.create_payment(Decimal("1"), "USD", "fee")
        request = created.payment_request
        assert x402.check_payload(request, payload_for(request, **overrides)) == reason

    async def test_nonce_mismatch(self, x402):
        created = await x402.create_payment(Decimal("1"), "USD", "fee")
        request = created.payment_request
        payload = payload_for(request)
        payload["accepted"]["extra"]["nonce"] = "other"
        assert x402.check_payload(request, payload) == "x402_nonce_mismatch"

    async def test_expired_request(self, x402):
        created = await x402.create_payment(Decimal("1"), "USD", "fee")
        request = created.payment_request
        later = int(time.time()) + x402.max_timeout_seconds + 1
        assert x402.check_payload(request, payload_for(request), now=later) == "x402_request_expired"

    async def test_local_failure_skips_facilitator(self, x402):
        created = await x402.create_payment(Decimal("1"), "USD", "fee")
        request = created.payment_request

        result = await x402.verify_payment(request, payload_for(request, amount="5"))

        assert not result.success
        assert result.reason == "x402_amount_mismatch"


class TestFacilitator:
    """Verify and settle round trips."""

    async def test_verify_and_settle(self, x402, httpx_mock):
        created = await x402.create_payment(Decimal("1"), "USD", "fee")
        request = created.payment_request
        payload = payload_for(request)
        httpx_mock.add_response(method="POST", url=f"{FACILITATOR}/verify", json={"isValid": True, "payer": "0xabc"})
        httpx_mock.add_response(
            method="POST",
            url=f"{FACILITATOR}/settle",
            json={"success": True, "transaction": "0xtx", "network": "base", "payer": "0xabc"},
        )

        verified = await x402.verify_payment(request, payload)
        settled = await x402.settle_payment(request, payload)

        assert verified.success and verified.payer == "0xabc"
        assert settled.success and settled.tx_hash == "0xtx"
        assert await x402.get_payment_status(created.payment_id) is ProviderPaymentStatus.PAID
        sent = json.loads(httpx_mock.get_requests()[0].content)
        assert sent["paymentRequirements"] == request["accepts"][0]
        assert sent["paymentPayload"] == payload

    async def test_facilitator_rejects(self, x402, httpx_mock):
        created = await x402.create_payment(Decimal("1"), "USD", "fee")
        request = created.payment_request
        httpx_mock.add_response(
            method="POST",
            url=f"{FACILITATOR}/verify",
            json={"isValid": False, "invalidReason": "invalid_exact_evm_payload_signature"},
        )

        result = await x402.verify_payment(request, payload_for(request))

        assert not result.success
        assert result.reason == "invalid_exact_evm_payload_signature"

    async def test_failed_settlement_reports_failed(self, x402, httpx_mock):
        created = await x402.create_payment(Decimal("1"), "USD", "fee")
        request = created.payment_request
        httpx_mock.add_response(
            method="POST",
            url=f"{FACILITATOR}/settle",
            json={"success": False, "errorReason": "insufficient_funds"},
        )

        result = await x402.settle_payment(request, payload_for(request))

        assert result.reason == "insufficient_funds"
        assert await x402.get_payment_status(created.payment_id) is ProviderPaymentStatus.FAILED

    async def test_facilitator_outage(self, x402, httpx_mock):
        created = await x402.create_payment(Decimal("1"), "USD", "fee")
        request = created.payment_request
        httpx_mock.add_response(method="POST", url=f"{FACILITATOR}/verify", status_code=503)

        with pytest.raises(ProviderError):
            await x402.verify_payment(request, payload_for(request))


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestStatusTracking:
    """Process-local status hints stay bounded."""

    @pytest.fixture
    async def clocked(self):
        clock = FakeClock()
        provider = X402FacilitatorProvider(
            pay_to=PAY_TO,
            facilitator_url=FACILITATOR,
            max_timeout_seconds=60,
            status_retention_seconds=30,
            clock=clock,
        )
        yield provider, clock
        await provider.aclose()

    async def test_unsettled_request_reads_cancelled_after_timeout(self, clocked):
        x402, clock = clocked
        created = await x402.create_payment(Decimal("1"), "USD", "fee")
        assert created.payment_request["accepts"][0]["extra"]["expiresAt"] == int(clock.now) + 60

        clock.now += 61

        assert await x402.get_payment_status(created.payment_id) is ProviderPaymentStatus.CANCELLED

    async def test_old_entries_pruned_on_create(self, clocked):
        x402, clock = clocked
        old = await x402.create_payment(Decimal("1"), "USD", "fee")
        clock.now += 50
        recent = await x402.create_payment(Decimal("1"), "USD", "fee")

        clock.now += 45
        await x402.create_payment(Decimal("1"), "USD", "fee")

        assert old.payment_id not in x402._statuses
        assert recent.payment_id in x402._statuses
        assert len(x402._statuses) == 2

    async def test_settled_status_survives_until_pruned(self, clocked, httpx_mock):
        x402, clock = clocked
        created = await x402.create_payment(Decimal("1"), "USD", "fee")
        request = created.payment_request
        httpx_mock.add_response(method="POST", url=f"{FACILITATOR}/settle", json={"success": True, "transaction": "0xtx"})
        await x402.settle_payment(request, payload_for(request))

        clock.now += 61
        assert await x402.get_payment_status(created.payment_id) is ProviderPaymentStatus.PAID

        clock.now += 30
        await x402.create_payment(Decimal("1"), "USD", "fee")
        assert created.payment_id not in x402._statuses


class TestSignatureDecoding:
    """Tests for decode_payment_signature."""

    def test_base64_json(self):
        raw = {"accepted": {"extra": {"paymentId": "x402_1"}}}
        encoded = base64.b64encode(json.dumps(raw).encode()).decode()
        payload = decode_payment_signature(encoded)
        assert payload_payment_id(payload) == "x402_1"

    def test_plain_json_and_dict(self):
        assert payload_payment_id(decode_payment_signature('{"paymentId": "x402_2"}')) == "x402_2"
        assert payload_payment_id(decode_payment_signature({"paymentId": "x402_3"})) == "x402_3"

    @pytest.mark.parametrize("value", ["", "!!!", base64.b64encode(b"[1, 2]").decode(), 42])
    def test_rejects_garbage(self, value):
        with pytest.raises(ValueError):
            decode_payment_signature(value)
