"""
Shared machinery for coordination-mode state machines.

Every flow moves a pending invocation through

    NotStarted -> AwaitingPayment -> Confirmed | Failed | Cancelled | Expired

The helpers here create and persist the record, read provider status
with retries, and finalize idempotently: only the caller that wins the
``pending -> confirmed`` compare-and-set runs the tool body.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import timedelta
from typing import Any, Mapping, Optional

from sardis_paygate.config import PaygateSettings
from sardis_paygate.context import CallerContext
from sardis_paygate.exceptions import (
    AlreadyProcessed,
    ConfigError,
    InvalidPaymentReference,
    ProviderError,
)
from sardis_paygate.fingerprint import compute_fingerprint
from sardis_paygate.host import ToolHost, ToolVisibility
from sardis_paygate.logging_config import bind_payment_id
from sardis_paygate.models import (
    CoordinationMode,
    InvocationStatus,
    PendingInvocation,
    ProviderPaymentStatus,
    utcnow,
)
from sardis_paygate.pricing import RegisteredTool
from sardis_paygate.providers.base import PaymentProvider
from sardis_paygate.retry import RetryConfig, RetryExhausted, retry_async
from sardis_paygate.state.base import StateStore

logger = logging.getLogger(__name__)

ALREADY_PROCESSED = "already_processed"


@dataclass
class FlowRuntime:
    """Collaborators shared by every flow of one gate."""
    providers: Mapping[str, PaymentProvider]
    state_store: StateStore
    settings: PaygateSettings
    tools: Mapping[str, RegisteredTool] = field(default_factory=dict)
    host: Optional[ToolHost] = None
    visibility: ToolVisibility = field(default_factory=ToolVisibility)


class PaymentFlow(ABC):
    """Base class for a coordination mode."""

    mode: CoordinationMode

    def __init__(self, runtime: FlowRuntime):
        self.runtime = runtime

    @property
    def store(self) -> StateStore:
        return self.runtime.state_store

    @property
    def settings(self) -> PaygateSettings:
        return self.runtime.settings

    @abstractmethod
    async def run(
        self,
        tool: RegisteredTool,
        arguments: dict[str, Any],
        context: CallerContext,
    ) -> Any:
        """Gate one call of a priced tool."""
        pass

    def confirm_tool_name(self, tool: RegisteredTool) -> Optional[str]:
        """Name of the extra tool that completes this mode, if any."""
        return None

    # -- provider selection ---------------------------------------------------

    def select_provider(self, x402: bool = False) -> PaymentProvider:
        """First provider in configuration order that can serve the mode."""
        for provider in self.runtime.providers.values():
            if x402 and provider.supports_x402:
                return provider
            if not x402 and not provider.x402_only:
                return provider
        kind = "x402-capable" if x402 else "URL-based"
        raise ConfigError(f"No {kind} payment provider configured")

    def provider_for(self, record: PendingInvocation) -> PaymentProvider:
        provider = self.runtime.providers.get(record.provider_name)
        if provider is None:
            raise ConfigError(
                f"Provider '{record.provider_name}' is no longer configured",
                details={"payment_id": record.payment_id},
            )
        return provider

    def provider_name(self, provider: PaymentProvider) -> str:
        for name, candidate in self.runtime.providers.items():
            if candidate is provider:
                return name
        return provider.name

    # -- record lifecycle -----------------------------------------------------

    async def start(
        self,
        tool: RegisteredTool,
        arguments: dict[str, Any],
        context: CallerContext,
        provider: PaymentProvider,
    ) -> PendingInvocation:
        """Create the payment and persist the pending invocation.

        A provider failure leaves no record behind.
        """
        spec = tool.price
        created = await provider.create_payment(spec.amount, spec.currency, f"{tool.name}() execution fee")
        bind_payment_id(created.payment_id)

        now = utcnow()
        record = PendingInvocation(
            payment_id=created.payment_id,
            tool_name=tool.name,
            arguments=dict(arguments),
            fingerprint=compute_fingerprint(tool.name, arguments),
            amount=spec.amount,
            currency=spec.currency,
            mode=self.mode,
            provider_name=self.provider_name(provider),
            caller=context.snapshot(),
            payment_url=created.payment_url,
            payment_request=created.payment_request,
            created_at=now,
            expires_at=now + timedelta(seconds=self.settings.pending_ttl_seconds),
        )
        await self.store.put(record.payment_id, record)
        logger.info(
            f"Payment {record.payment_id} created for {tool.name} "
            f"({spec.amount} {spec.currency} via {record.provider_name}, {self.mode.value})"
        )
        return record

    async def load(self, payment_id: Any, tool_name: Optional[str] = None) -> PendingInvocation:
        """Fetch a live record for a caller-supplied payment id.

        Stores never return lapsed records, so an expired reference reads
        the same as an unknown one.

        Raises:
            InvalidPaymentReference: Unknown, expired or for another tool
        """
        if not isinstance(payment_id, str) or not payment_id:
            raise InvalidPaymentReference("A payment_id string is required")
        bind_payment_id(payment_id)
        record = await self.store.get(payment_id)
        if record is None:
            raise InvalidPaymentReference("Unknown or expired payment reference", payment_id)
        if tool_name is not None and record.tool_name != tool_name:
            raise InvalidPaymentReference(
                f"Payment {payment_id} was not issued for {tool_name}",
                payment_id,
            )
        return record

    async def mark(
        self,
        record: PendingInvocation,
        status: InvocationStatus,
        error: Optional[str] = None,
    ) -> bool:
        """Move a pending record to a terminal status.

        Never overwrites a record another caller already finalized.
        """
        updated = replace(record, status=status, error=error)
        written = await self.store.compare_and_set_status(
            record.payment_id, InvocationStatus.PENDING, updated
        )
        if written:
            record.status = status
            record.error = error
            logger.info(f"Payment {record.payment_id} marked {status.value}")
        return written

    # -- provider status ------------------------------------------------------

    def _status_retry_config(self) -> RetryConfig:
        return RetryConfig(
            max_retries=self.settings.status_check_retries,
            base_delay=self.settings.status_check_base_delay,
        )

    async def check_status(self, record: PendingInvocation) -> ProviderPaymentStatus:
        """Read provider status, retrying transient failures.

        The record is left untouched when the provider stays unreachable.
        """
        provider = self.provider_for(record)
        try:
            return await retry_async(
                provider.get_payment_status,
                record.payment_id,
                config=self._status_retry_config(),
            )
        except RetryExhausted as e:
            original = e.original_exception
            logger.error(f"Status check for {record.payment_id} failed after {e.attempts} attempts: {original}")
            if isinstance(original, ProviderError):
                raise original
            raise ProviderError(str(original), provider=record.provider_name) from original

    # -- finalization ---------------------------------------------------------

    async def _claim(self, record: PendingInvocation) -> PendingInvocation:
        confirmed = replace(record, status=InvocationStatus.CONFIRMED)
        won = await self.store.compare_and_set_status(
            record.payment_id, InvocationStatus.PENDING, confirmed
        )
        if not won:
            current = await self.store.get(record.payment_id)
            if current is not None and current.status is InvocationStatus.CONFIRMED:
                raise AlreadyProcessed(record.payment_id, current.result, current.has_result)
            raise InvalidPaymentReference(
                "Payment reference is no longer pending",
                record.payment_id,
                details={"status": current.status.value if current else "missing"},
            )
        return confirmed

    async def finalize(self, record: PendingInvocation) -> Any:
        """Run the captured call exactly once and store its result.

        The caller that runs the body gets its return value as is. The
        stored copy is JSON, so later duplicates get values JSON cannot
        hold back as strings, whichever store is configured.
        """
        tool = self.tool_for(record)
        try:
            confirmed = await self._claim(record)
        except AlreadyProcessed as e:
            logger.info(f"Payment {record.payment_id} already processed; returning stored result")
            return self.prior_result(e)

        logger.info(f"Payment {record.payment_id} confirmed; running {tool.name}")
        try:
            result = await tool.invoke(confirmed.arguments)
        except Exception as e:
            confirmed.error = f"{type(e).__name__}: {e}"
            await self.store.put(confirmed.payment_id, confirmed)
            logger.error(f"Tool {tool.name} failed after payment {record.payment_id}: {e}")
            raise

        confirmed.result = result
        confirmed.has_result = True
        await self.store.put(confirmed.payment_id, confirmed)
        return result

    def stored_result(self, record: PendingInvocation) -> Any:
        return self.prior_result(AlreadyProcessed(record.payment_id, record.result, record.has_result))

    @staticmethod
    def prior_result(signal: AlreadyProcessed) -> Any:
        if signal.has_result:
            return signal.result
        return {"status": ALREADY_PROCESSED, "payment_id": signal.payment_id}

    def tool_for(self, record: PendingInvocation) -> RegisteredTool:
        tool = self.runtime.tools.get(record.tool_name)
        if tool is None:
            raise InvalidPaymentReference(
                f"Tool {record.tool_name} is no longer registered",
                record.payment_id,
            )
        return tool

