"""RESUBMIT: the same tool is called again with the payment id as proof."""
from __future__ import annotations

import logging
from typing import Any

from sardis_paygate.context import CallerContext
from sardis_paygate.exceptions import (
    InvalidPaymentReference,
    PaymentCancelled,
    PaymentFailed,
    PaymentRequired,
)
from sardis_paygate.fingerprint import compute_fingerprint
from sardis_paygate.flows.base import PaymentFlow
from sardis_paygate.messages import pending_message, resubmit_message
from sardis_paygate.models import (
    CoordinationMode,
    InvocationStatus,
    PendingInvocation,
    ProviderPaymentStatus,
)
from sardis_paygate.pricing import RegisteredTool

logger = logging.getLogger(__name__)

PAYMENT_ID_ARG = "payment_id"


def split_proof(arguments: dict[str, Any]) -> tuple[dict[str, Any], Any]:
    """Separate the ``payment_id`` proof from the tool's own arguments."""
    tool_args = dict(arguments)
    return tool_args, tool_args.pop(PAYMENT_ID_ARG, None)


class ResubmitFlow(PaymentFlow):
    """
    First call fails with PaymentRequired. The caller pays, then repeats
    the call with identical arguments plus ``payment_id``. Arguments that
    differ from the original call are rejected rather than reconciled.
    """

    mode = CoordinationMode.RESUBMIT

    async def run(
        self,
        tool: RegisteredTool,
        arguments: dict[str, Any],
        context: CallerContext,
    ) -> Any:
        tool_args, payment_id = split_proof(arguments)
        if payment_id is None:
            record = await self.start(tool, tool_args, context, self.select_provider())
            raise self.payment_required(record)

        record = await self.load(payment_id, tool.name)
        if record.fingerprint != compute_fingerprint(tool.name, tool_args):
            logger.warning(f"Arguments changed between calls for payment {record.payment_id}")
            raise InvalidPaymentReference(
                "Arguments do not match the original call for this payment",
                record.payment_id,
            )
        return await self.resume(record)

    async def resume(self, record: PendingInvocation) -> Any:
        if record.status is InvocationStatus.CONFIRMED:
            return self.stored_result(record)
        if record.is_terminal:
            raise InvalidPaymentReference(
                f"Payment is {record.status.value}",
                record.payment_id,
                details={"status": record.status.value},
            )

        status = await self.check_status(record)
        if status is ProviderPaymentStatus.PAID:
            return await self.finalize(record)
        if status is ProviderPaymentStatus.PENDING:
            raise self.payment_required(record, pending=True)
        if status is ProviderPaymentStatus.CANCELLED:
            await self.mark(record, InvocationStatus.CANCELLED)
            raise PaymentCancelled(record.payment_id)
        await self.mark(record, InvocationStatus.FAILED, error="provider reported failure")
        raise PaymentFailed(record.payment_id)

    def payment_required(self, record: PendingInvocation, pending: bool = False) -> PaymentRequired:
        message = (
            pending_message(record.payment_url)
            if pending
            else resubmit_message(record.payment_url, record.amount, record.currency)
        )
        return PaymentRequired(message, record.payment_id, record.payment_url)
