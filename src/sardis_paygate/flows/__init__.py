"""Coordination-mode state machines."""
from __future__ import annotations

from sardis_paygate.flows.auto import AutoFlow, ModeResolver
from sardis_paygate.flows.base import FlowRuntime, PaymentFlow
from sardis_paygate.flows.dynamic_tools import CONFIRM_PAYMENT_TOOL, DynamicToolsFlow
from sardis_paygate.flows.elicitation import ElicitationFlow
from sardis_paygate.flows.progress import ProgressFlow
from sardis_paygate.flows.resubmit import ResubmitFlow
from sardis_paygate.flows.two_step import TwoStepFlow
from sardis_paygate.flows.x402 import X402Flow
from sardis_paygate.models import CoordinationMode

FLOWS: dict[CoordinationMode, type[PaymentFlow]] = {
    CoordinationMode.AUTO: AutoFlow,
    CoordinationMode.TWO_STEP: TwoStepFlow,
    CoordinationMode.RESUBMIT: ResubmitFlow,
    CoordinationMode.ELICITATION: ElicitationFlow,
    CoordinationMode.PROGRESS: ProgressFlow,
    CoordinationMode.DYNAMIC_TOOLS: DynamicToolsFlow,
    CoordinationMode.X402: X402Flow,
}


def make_flow(mode: CoordinationMode, runtime: FlowRuntime) -> PaymentFlow:
    return FLOWS[CoordinationMode(mode)](runtime)


__all__ = [
    "AutoFlow",
    "CONFIRM_PAYMENT_TOOL",
    "DynamicToolsFlow",
    "ElicitationFlow",
    "FLOWS",
    "FlowRuntime",
    "ModeResolver",
    "PaymentFlow",
    "ProgressFlow",
    "ResubmitFlow",
    "TwoStepFlow",
    "X402Flow",
    "make_flow",
]
