"""TWO_STEP: the priced tool returns a payment link; a confirm tool runs it."""
from __future__ import annotations

import logging
from typing import Any, Optional

from sardis_paygate.context import CallerContext
from sardis_paygate.exceptions import InvalidPaymentReference, PaymentCancelled, PaymentFailed
from sardis_paygate.flows.base import PaymentFlow
from sardis_paygate.messages import open_link_message, pending_message
from sardis_paygate.models import (
    CoordinationMode,
    InvocationStatus,
    PendingInvocation,
    ProviderPaymentStatus,
)
from sardis_paygate.pricing import RegisteredTool

logger = logging.getLogger(__name__)


class TwoStepFlow(PaymentFlow):
    """Split a priced call into initiate and ``confirm_<tool>_payment``."""

    mode = CoordinationMode.TWO_STEP

    def confirm_tool_name(self, tool: RegisteredTool) -> Optional[str]:
        return f"confirm_{tool.name}_payment"

    async def run(
        self,
        tool: RegisteredTool,
        arguments: dict[str, Any],
        context: CallerContext,
    ) -> dict[str, Any]:
        provider = self.select_provider()
        record = await self.start(tool, arguments, context, provider)
        return self.payment_pending_payload(tool, record)

    def payment_pending_payload(self, tool: RegisteredTool, record: PendingInvocation) -> dict[str, Any]:
        return {
            "message": open_link_message(record.payment_url, record.amount, record.currency),
            "payment_url": record.payment_url,
            "payment_id": record.payment_id,
            "next_step": self.confirm_tool_name(tool),
        }

    async def confirm(
        self,
        payment_id: Any,
        context: CallerContext,
        tool_name: Optional[str] = None,
    ) -> Any:
        """Complete a payment started by ``run``.

        A pending payment is reported back with no side effects; a paid
        one runs the captured call once.
        """
        record = await self.load(payment_id, tool_name)
        if record.status is InvocationStatus.CONFIRMED:
            return self.stored_result(record)
        if record.is_terminal:
            raise InvalidPaymentReference(
                f"Payment is {record.status.value}",
                record.payment_id,
                details={"status": record.status.value},
            )

        status = await self.check_status(record)
        logger.info(f"Payment {record.payment_id} provider status: {status.value}")

        if status is ProviderPaymentStatus.PAID:
            return await self.complete(record)
        if status is ProviderPaymentStatus.PENDING:
            return {
                "status": "pending",
                "message": pending_message(record.payment_url),
                "payment_id": record.payment_id,
                "payment_url": record.payment_url,
            }

        await self.store.delete(record.payment_id)
        await self.released(record, context)
        if status is ProviderPaymentStatus.CANCELLED:
            raise PaymentCancelled(record.payment_id)
        raise PaymentFailed(record.payment_id)

    async def complete(self, record: PendingInvocation) -> Any:
        return await self.finalize(record)

    async def released(self, record: PendingInvocation, context: CallerContext) -> None:
        """Hook for modes that must undo per-session state on a terminal outcome."""
        return None
