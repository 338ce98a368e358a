"""AUTO: pick a concrete mode per call from caller capabilities."""
from __future__ import annotations

import logging
from typing import Any, Mapping

from sardis_paygate.context import CallerContext
from sardis_paygate.flows.base import FlowRuntime, PaymentFlow
from sardis_paygate.flows.elicitation import ElicitationFlow
from sardis_paygate.flows.resubmit import ResubmitFlow
from sardis_paygate.flows.x402 import X402Flow
from sardis_paygate.models import CoordinationMode
from sardis_paygate.pricing import RegisteredTool
from sardis_paygate.providers.base import PaymentProvider

logger = logging.getLogger(__name__)

CAPABILITY_X402 = "x402"
CAPABILITY_ELICITATION = "elicitation"


class ModeResolver:
    """Resolution order: X402, then ELICITATION, then RESUBMIT."""

    def __init__(self, providers: Mapping[str, PaymentProvider]):
        self.providers = providers

    @property
    def has_x402_provider(self) -> bool:
        return any(p.supports_x402 for p in self.providers.values())

    @property
    def has_url_provider(self) -> bool:
        return any(not p.x402_only for p in self.providers.values())

    def resolve(self, context: CallerContext) -> CoordinationMode:
        if self.has_x402_provider and context.supports(CAPABILITY_X402):
            return CoordinationMode.X402
        if context.supports(CAPABILITY_ELICITATION) and context.elicit is not None:
            return CoordinationMode.ELICITATION
        return CoordinationMode.RESUBMIT


class AutoFlow(PaymentFlow):
    """Delegates each call to the mode its caller can handle."""

    mode = CoordinationMode.AUTO

    def __init__(self, runtime: FlowRuntime):
        super().__init__(runtime)
        self.resolver = ModeResolver(runtime.providers)
        self.flows: dict[CoordinationMode, PaymentFlow] = {
            CoordinationMode.X402: X402Flow(runtime),
            CoordinationMode.ELICITATION: ElicitationFlow(runtime),
            CoordinationMode.RESUBMIT: ResubmitFlow(runtime),
        }

    async def run(
        self,
        tool: RegisteredTool,
        arguments: dict[str, Any],
        context: CallerContext,
    ) -> Any:
        mode = self.resolver.resolve(context)
        logger.debug(f"AUTO resolved {tool.name} to {mode.value}")
        return await self.flows[mode].run(tool, arguments, context)
