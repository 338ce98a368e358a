"""
Payment gate: the tool registry a host server dispatches calls through.

    gate = PaymentGate(providers={"stripe": {"api_key": "sk_test_..."}},
                       mode=CoordinationMode.RESUBMIT)

    @gate.tool()
    @price(1.00, currency="USD")
    async def generate_image(prompt: str) -> str:
        ...

    result = await gate.call_tool("generate_image", {"prompt": "a dog"}, context)

The gate validates price metadata at registration, requires a caller
context for gated tools, and routes each gated call to the configured
coordination mode. It never runs a gated tool body itself.
"""
from __future__ import annotations

import inspect
import logging
from typing import Any, Callable, Iterable, Mapping, Optional, Union

from sardis_paygate.config import PaygateSettings, get_settings
from sardis_paygate.context import CallerContext
from sardis_paygate.exceptions import ConfigError, MissingContext, ToolNotFound
from sardis_paygate.flows import CONFIRM_PAYMENT_TOOL, FlowRuntime, PaymentFlow, make_flow
from sardis_paygate.flows.two_step import TwoStepFlow
from sardis_paygate.host import ToolHost, ToolVisibility
from sardis_paygate.logging_config import payment_log_context
from sardis_paygate.messages import description_with_price
from sardis_paygate.models import CoordinationMode, ToolPriceSpec
from sardis_paygate.pricing import RegisteredTool, get_price_spec
from sardis_paygate.providers.base import PaymentProvider
from sardis_paygate.providers.registry import ProviderRegistry, create_default_registry
from sardis_paygate.state import StateStore, build_state_store
from sardis_paygate.subscriptions import SubscriptionManager

logger = logging.getLogger(__name__)


class PaymentGate:
    """Registers tools and gates priced ones behind payment."""

    def __init__(
        self,
        providers: Union[Mapping[str, Any], Iterable[Any], None] = None,
        mode: Union[CoordinationMode, str, None] = None,
        state_store: Optional[StateStore] = None,
        host: Optional[ToolHost] = None,
        settings: Optional[PaygateSettings] = None,
        registry: Optional[ProviderRegistry] = None,
    ):
        self.settings = settings if settings is not None else get_settings()
        self.registry = registry if registry is not None else create_default_registry()
        self.providers: dict[str, PaymentProvider] = self.registry.build_providers(
            providers if providers is not None else self.settings.providers
        )
        self.mode = CoordinationMode(
            mode.lower() if isinstance(mode, str) else (mode or self.settings.coordination_mode)
        )
        self.state_store = state_store if state_store is not None else build_state_store(self.settings)
        self.host = host
        self.visibility = ToolVisibility()
        self._tools: dict[str, RegisteredTool] = {}

        self.runtime = FlowRuntime(
            providers=self.providers,
            state_store=self.state_store,
            settings=self.settings,
            tools=self._tools,
            host=host,
            visibility=self.visibility,
        )
        self.flow: PaymentFlow = make_flow(self.mode, self.runtime)
        self.subscriptions = SubscriptionManager(self.providers)
        logger.info(
            f"Payment gate ready: mode={self.mode.value} "
            f"providers={list(self.providers)} store={type(self.state_store).__name__}"
        )

    # -- registration ---------------------------------------------------------

    def tool(
        self,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Callable[[Callable], Callable]:
        """Decorator form of ``register_tool``."""
        def decorator(func: Callable) -> Callable:
            self.register_tool(func, name=name, description=description)
            return func

        return decorator

    def register_tool(
        self,
        func: Callable,
        name: Optional[str] = None,
        description: Optional[str] = None,
        price: Optional[ToolPriceSpec] = None,
    ) -> RegisteredTool:
        """
        Register a tool, gated if it carries price or subscription metadata.

        Raises:
            ConfigError: Duplicate name, or no provider able to serve the gate
        """
        tool_name = name or func.__name__
        if tool_name in self._tools:
            raise ConfigError(f"Tool '{tool_name}' is already registered", details={"tool": tool_name})

        spec = price or get_price_spec(func)
        text = description if description is not None else (inspect.getdoc(func) or "")
        if spec is not None:
            self._check_providers(spec)
            text = description_with_price(text, spec)

        tool = RegisteredTool(name=tool_name, func=func, description=text, price=spec)
        self._tools[tool_name] = tool
        logger.debug(f"Registered tool {tool_name} ({spec.describe() if spec else 'free'})")

        if spec is not None and spec.is_subscription:
            self.subscriptions.add_plans(spec.accepted_plans)
            for internal in self.subscriptions.tools():
                self._add_internal(internal)
        elif spec is not None:
            self._add_confirm_tool(tool)
        return tool

    def _check_providers(self, spec: ToolPriceSpec) -> None:
        if not self.providers:
            raise ConfigError("Priced tools need at least one payment provider")
        if spec.is_subscription:
            self.subscriptions.require_provider()

    def _add_internal(self, tool: RegisteredTool) -> None:
        if tool.name not in self._tools:
            self._tools[tool.name] = tool

    def _add_confirm_tool(self, tool: RegisteredTool) -> None:
        if not isinstance(self.flow, TwoStepFlow):
            return
        flow = self.flow
        confirm_name = flow.confirm_tool_name(tool)

        if confirm_name == CONFIRM_PAYMENT_TOOL:
            async def confirm(arguments: dict[str, Any], context: CallerContext) -> Any:
                return await flow.confirm(arguments.get("payment_id"), context)

            self._add_internal(RegisteredTool(
                name=confirm_name,
                func=confirm,
                description="Confirm a pending payment and run the tool it unlocks. Arguments: payment_id.",
                internal=True,
                listed=False,
            ))
            return

        async def confirm_tool(arguments: dict[str, Any], context: CallerContext) -> Any:
            return await flow.confirm(arguments.get("payment_id"), context, tool_name=tool.name)

        self._add_internal(RegisteredTool(
            name=confirm_name,
            func=confirm_tool,
            description=f"Confirm payment and execute {tool.name}(). Arguments: payment_id.",
            internal=True,
        ))

    # -- dispatch -------------------------------------------------------------

    async def call_tool(
        self,
        name: str,
        arguments: Optional[dict[str, Any]] = None,
        context: Optional[CallerContext] = None,
    ) -> Any:
        """Dispatch one tool call.

        Raises:
            ToolNotFound: No tool with that name
            MissingContext: A gated or internal tool called without context
        """
        tool = self._tools.get(name)
        if tool is None:
            raise ToolNotFound(name)
        arguments = dict(arguments or {})
        payment_id = arguments.get("payment_id")

        with payment_log_context(
            tool_name=name,
            session_id=context.session_id if context else None,
            payment_id=payment_id if isinstance(payment_id, str) else None,
        ):
            if not tool.is_gated and not tool.internal:
                return await tool.invoke(arguments)
            if context is None:
                raise MissingContext(f"Tool '{name}' requires a caller context")
            if tool.internal:
                return await tool.func(arguments, context)
            if tool.is_subscription:
                await self.subscriptions.ensure_access(tool, context)
                return await tool.invoke(arguments)
            return await self.flow.run(tool, arguments, context)

    def list_tools(self, context: Optional[CallerContext] = None) -> list[dict[str, Any]]:
        """Tool descriptors as the caller's session should see them."""
        session_key = context.session_key if context else None
        # no notification: the caller is reading the list now
        self.visibility.expire()
        tools = []
        for tool in self._tools.values():
            if session_key is not None and self.visibility.is_hidden(session_key, tool.name):
                continue
            exposed = session_key is not None and self.visibility.is_exposed(session_key, tool.name)
            if not tool.listed and not exposed:
                continue
            tools.append(tool.descriptor())
        return tools

    def get_tool(self, name: str) -> RegisteredTool:
        tool = self._tools.get(name)
        if tool is None:
            raise ToolNotFound(name)
        return tool

    async def aclose(self) -> None:
        """Release provider HTTP clients and the state store connection."""
        for provider in self.providers.values():
            await provider.aclose()
        await self.state_store.close()
