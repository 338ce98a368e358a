"""DYNAMIC_TOOLS: TWO_STEP plus per-session tool visibility changes."""
from __future__ import annotations

import logging
from typing import Any, Optional

from sardis_paygate.context import CallerContext
from sardis_paygate.exceptions import InvalidPaymentReference
from sardis_paygate.flows.two_step import TwoStepFlow
from sardis_paygate.host import emit_tool_list_changed
from sardis_paygate.models import CoordinationMode, PendingInvocation
from sardis_paygate.pricing import RegisteredTool

logger = logging.getLogger(__name__)

CONFIRM_PAYMENT_TOOL = "confirm_payment"


class DynamicToolsFlow(TwoStepFlow):
    """
    After the first call the priced tool is hidden from the caller's
    session and a generic ``confirm_payment`` tool is shown in its place.
    Visibility flips back once the payment is confirmed, fails, or its
    record lapses.

    Hosts may deliver the change late, so the hidden tool stays callable
    and ``confirm_payment`` is accepted even if the caller never saw it.
    """

    mode = CoordinationMode.DYNAMIC_TOOLS

    def confirm_tool_name(self, tool: RegisteredTool) -> Optional[str]:
        return CONFIRM_PAYMENT_TOOL

    async def run(
        self,
        tool: RegisteredTool,
        arguments: dict[str, Any],
        context: CallerContext,
    ) -> dict[str, Any]:
        await self.release_lapsed()
        record = await self.start(tool, arguments, context, self.select_provider())
        event = self.runtime.visibility.hide(
            context.session_key,
            tool.name,
            CONFIRM_PAYMENT_TOOL,
            payment_id=record.payment_id,
            expires_at=record.expires_at,
        )
        logger.info(f"Hid {tool.name} for session {context.session_key} (v{event.version})")
        await emit_tool_list_changed(self.runtime.host, event)
        return self.payment_pending_payload(tool, record)

    async def confirm(
        self,
        payment_id: Any,
        context: CallerContext,
        tool_name: Optional[str] = None,
    ) -> Any:
        await self.release_lapsed()
        try:
            return await super().confirm(payment_id, context, tool_name)
        except InvalidPaymentReference:
            # record gone or finished; no later confirm releases this hold
            if isinstance(payment_id, str) and self.runtime.visibility.holds(payment_id):
                current = await self.store.get(payment_id)
                if current is None or current.is_terminal:
                    await self._release(payment_id)
            raise

    async def complete(self, record: PendingInvocation) -> Any:
        try:
            return await self.finalize(record)
        finally:
            await self._release(record.payment_id)

    async def released(self, record: PendingInvocation, context: CallerContext) -> None:
        await self._release(record.payment_id)

    async def release_lapsed(self) -> None:
        """Restore sessions whose pending payment expired without a confirm."""
        for event in self.runtime.visibility.expire():
            await emit_tool_list_changed(self.runtime.host, event)

    async def _release(self, payment_id: str) -> None:
        event = self.runtime.visibility.release(payment_id)
        if event is not None:
            logger.info(f"Restored visibility for session {event.session_id} after {payment_id} (v{event.version})")
        await emit_tool_list_changed(self.runtime.host, event)
