"""ELICITATION: ask the caller to pay inside the same call."""
from __future__ import annotations

import asyncio
import logging
from typing import Any

from sardis_paygate.context import CallerContext
from sardis_paygate.exceptions import (
    MissingContext,
    PaymentCancelled,
    PaymentFailed,
    PaymentTimeout,
)
from sardis_paygate.flows.base import PaymentFlow
from sardis_paygate.messages import elicitation_message
from sardis_paygate.models import CoordinationMode, InvocationStatus, ProviderPaymentStatus
from sardis_paygate.pricing import RegisteredTool

logger = logging.getLogger(__name__)

ELICITATION_SCHEMA = {
    "type": "object",
    "properties": {
        "confirmed": {
            "type": "boolean",
            "title": "Payment completed",
            "description": "Accept after paying at the link, or decline to cancel.",
        }
    },
}


class ElicitationFlow(PaymentFlow):
    """Solicit payment with ``context.elicit`` until paid, declined or out of attempts."""

    mode = CoordinationMode.ELICITATION

    async def run(
        self,
        tool: RegisteredTool,
        arguments: dict[str, Any],
        context: CallerContext,
    ) -> Any:
        if context.elicit is None:
            raise MissingContext("Caller context has no elicitation channel")

        record = await self.start(tool, arguments, context, self.select_provider())
        message = elicitation_message(record.payment_url, record.amount, record.currency)
        attempts = self.settings.elicitation_max_attempts

        try:
            for attempt in range(1, attempts + 1):
                reply = await context.elicit(message, ELICITATION_SCHEMA)
                logger.debug(f"Elicitation {attempt}/{attempts} for {record.payment_id}: {reply.action}")
                if not reply.accepted:
                    await self.mark(record, InvocationStatus.CANCELLED)
                    raise PaymentCancelled(record.payment_id, "Payment was cancelled by the caller")

                status = await self.check_status(record)
                if status is ProviderPaymentStatus.PAID:
                    return await self.finalize(record)
                if status is ProviderPaymentStatus.CANCELLED:
                    await self.mark(record, InvocationStatus.CANCELLED)
                    raise PaymentCancelled(record.payment_id)
                if status is ProviderPaymentStatus.FAILED:
                    await self.mark(record, InvocationStatus.FAILED, error="provider reported failure")
                    raise PaymentFailed(record.payment_id)
        except asyncio.CancelledError:
            logger.info(f"Caller cancelled while waiting on {record.payment_id}")
            await self.mark(record, InvocationStatus.EXPIRED, error="caller cancelled")
            raise

        await self.mark(record, InvocationStatus.EXPIRED, error="elicitation attempts exhausted")
        raise PaymentTimeout(record.payment_id)
