"""X402: resubmission with a signed on-chain payment payload as proof."""
from __future__ import annotations

import json
import logging
from typing import Any, Optional

from sardis_paygate.context import CallerContext
from sardis_paygate.exceptions import (
    ConfigError,
    InvalidPaymentReference,
    PaymentVerificationFailed,
    X402PaymentRequired,
)
from sardis_paygate.fingerprint import compute_fingerprint, hash_proof
from sardis_paygate.flows.base import PaymentFlow
from sardis_paygate.messages import x402_message
from sardis_paygate.models import CoordinationMode, InvocationStatus, PendingInvocation
from sardis_paygate.pricing import RegisteredTool
from sardis_paygate.providers.base import X402Provider
from sardis_paygate.providers.x402 import (
    X402_META_KEY,
    X402_SIGNATURE_HEADERS,
    decode_payment_signature,
    payload_payment_id,
)

logger = logging.getLogger(__name__)


def extract_signature(context: CallerContext) -> Optional[Any]:
    """Signed payload from the designated header or metadata field."""
    for header in X402_SIGNATURE_HEADERS:
        value = context.header(header)
        if value:
            return value
    return context.meta.get(X402_META_KEY) or None


class X402Flow(PaymentFlow):
    """
    First call raises X402PaymentRequired with the provider's payment
    request. The caller signs it and repeats the call; the signature is
    verified and settled through the facilitator before the body runs.
    A signature settles once; repeating the call with it after success
    returns the stored result.
    """

    mode = CoordinationMode.X402

    async def run(
        self,
        tool: RegisteredTool,
        arguments: dict[str, Any],
        context: CallerContext,
    ) -> Any:
        signature = extract_signature(context)
        if signature is None:
            record = await self.start(tool, arguments, context, self.select_provider(x402=True))
            raise X402PaymentRequired(
                x402_message(record.amount, record.currency),
                record.payment_id,
                record.payment_request or {},
            )

        try:
            payload = decode_payment_signature(signature)
        except ValueError as e:
            raise PaymentVerificationFailed(str(e)) from e
        payment_id = payload_payment_id(payload)
        if not payment_id:
            raise PaymentVerificationFailed("payment payload does not name a payment id")

        record = await self.load(payment_id, tool.name)
        if record.fingerprint != compute_fingerprint(tool.name, arguments):
            raise InvalidPaymentReference(
                "Arguments do not match the original call for this payment",
                record.payment_id,
            )

        proof = hash_proof(signature if isinstance(signature, str) else json.dumps(signature, sort_keys=True))
        if record.status is InvocationStatus.CONFIRMED and record.proof_hash == proof:
            logger.info(f"Repeated x402 call for settled payment {record.payment_id}; returning stored result")
            return self.stored_result(record)
        if record.proof_hash == proof:
            logger.warning(f"Replayed x402 signature for {record.payment_id}")
            raise PaymentVerificationFailed("payment signature already used", record.payment_id)
        if record.is_terminal:
            raise InvalidPaymentReference(
                f"Payment is {record.status.value}",
                record.payment_id,
                details={"status": record.status.value},
            )

        return await self._settle(record, payload, proof)

    async def _settle(self, record: PendingInvocation, payload: dict[str, Any], proof: str) -> Any:
        provider = self.provider_for(record)
        if not isinstance(provider, X402Provider):
            raise ConfigError(f"Provider '{record.provider_name}' cannot settle x402 payments")
        request = record.payment_request or {}

        verified = await provider.verify_payment(request, payload)
        if verified.success:
            settled = await provider.settle_payment(request, payload)
        else:
            settled = verified

        record.proof_hash = proof
        if not settled.success:
            reason = settled.reason or "rejected"
            logger.warning(f"x402 payment {record.payment_id} rejected: {reason}")
            await self.mark(record, InvocationStatus.FAILED, error=reason)
            raise PaymentVerificationFailed(reason, record.payment_id)

        logger.info(f"x402 payment {record.payment_id} settled (tx={settled.tx_hash})")
        return await self.finalize(record)
