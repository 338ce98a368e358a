"""PROGRESS: poll the provider inside the call, reporting progress as it waits."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from sardis_paygate.context import CallerContext
from sardis_paygate.exceptions import PaymentCancelled, PaymentFailed, PaymentTimeout
from sardis_paygate.flows.base import PaymentFlow
from sardis_paygate.messages import open_link_message, progress_message
from sardis_paygate.models import CoordinationMode, InvocationStatus, ProviderPaymentStatus
from sardis_paygate.pricing import RegisteredTool
from sardis_paygate.retry import RetryConfig

logger = logging.getLogger(__name__)


class ProgressFlow(PaymentFlow):
    """
    Poll ``get_payment_status`` with a capped, jittered, growing interval
    until a terminal status or the caller's deadline. Deadline is the
    caller's ``timeout`` or ``progress_timeout_seconds``.
    """

    mode = CoordinationMode.PROGRESS

    def _poll_schedule(self) -> RetryConfig:
        return RetryConfig(
            base_delay=self.settings.progress_poll_interval,
            max_delay=self.settings.progress_max_interval,
            exponential_base=1.5,
            jitter=self.settings.progress_jitter,
        )

    async def _report(
        self,
        context: CallerContext,
        progress: float,
        total: Optional[float],
        message: Optional[str],
    ) -> None:
        if context.report_progress is not None:
            await context.report_progress(progress, total, message)

    async def run(
        self,
        tool: RegisteredTool,
        arguments: dict[str, Any],
        context: CallerContext,
    ) -> Any:
        record = await self.start(tool, arguments, context, self.select_provider())
        timeout = context.timeout or self.settings.progress_timeout_seconds
        schedule = self._poll_schedule()
        loop = asyncio.get_running_loop()
        started = loop.time()

        try:
            await self._report(
                context, 0, timeout,
                open_link_message(record.payment_url, record.amount, record.currency),
            )
            attempt = 0
            while True:
                status = await self.check_status(record)
                if status is ProviderPaymentStatus.PAID:
                    await self._report(context, timeout, timeout, "Payment confirmed")
                    return await self.finalize(record)
                if status is ProviderPaymentStatus.CANCELLED:
                    await self.mark(record, InvocationStatus.CANCELLED)
                    raise PaymentCancelled(record.payment_id)
                if status is ProviderPaymentStatus.FAILED:
                    await self.mark(record, InvocationStatus.FAILED, error="provider reported failure")
                    raise PaymentFailed(record.payment_id)

                elapsed = loop.time() - started
                if elapsed >= timeout:
                    await self.mark(record, InvocationStatus.EXPIRED, error="payment timed out")
                    logger.info(f"Payment {record.payment_id} timed out after {elapsed:.1f}s")
                    raise PaymentTimeout(record.payment_id, elapsed)

                delay = min(schedule.calculate_delay(attempt), timeout - elapsed)
                attempt += 1
                await asyncio.sleep(max(delay, 0.0))
                elapsed = loop.time() - started
                await self._report(context, min(elapsed, timeout), timeout, progress_message(elapsed, timeout))
        except asyncio.CancelledError:
            logger.info(f"Caller cancelled while polling {record.payment_id}")
            await self.mark(record, InvocationStatus.EXPIRED, error="caller cancelled")
            raise
