"""Subscription gating and the subscription management tools."""
from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from sardis_paygate.context import CallerContext
from sardis_paygate.exceptions import (
    ConfigError,
    MissingContext,
    PaygateError,
    SubscriptionRequired,
)
from sardis_paygate.pricing import RegisteredTool
from sardis_paygate.providers.base import PaymentProvider, SubscriptionProvider

logger = logging.getLogger(__name__)

LIST_SUBSCRIPTIONS_TOOL = "list_subscriptions"
START_SUBSCRIPTION_TOOL = "start_subscription"
CANCEL_SUBSCRIPTION_TOOL = "cancel_subscription"


class SubscriptionManager:
    """Checks and manages a caller's subscriptions through the first
    subscription-capable provider."""

    def __init__(self, providers: Mapping[str, PaymentProvider]):
        self.providers = providers
        self.known_plans: list[str] = []

    @property
    def provider(self) -> Optional[SubscriptionProvider]:
        for provider in self.providers.values():
            if isinstance(provider, SubscriptionProvider):
                return provider
        return None

    def require_provider(self) -> SubscriptionProvider:
        provider = self.provider
        if provider is None:
            raise ConfigError("No subscription-capable payment provider configured")
        return provider

    def add_plans(self, plans: tuple[str, ...]) -> None:
        for plan in plans:
            if plan not in self.known_plans:
                self.known_plans.append(plan)

    @staticmethod
    def user_id(context: Optional[CallerContext]) -> str:
        if context is None or not context.user_id:
            raise MissingContext("Subscription tools require an authenticated user_id")
        return context.user_id

    async def ensure_access(self, tool: RegisteredTool, context: CallerContext) -> None:
        """Raise SubscriptionRequired unless the caller holds an accepted plan."""
        user_id = self.user_id(context)
        accepted = tool.price.accepted_plans
        subscriptions = await self.require_provider().get_subscriptions(user_id)
        for sub in subscriptions:
            if sub.plan_id in accepted and sub.status.grants_access:
                logger.debug(f"User {user_id} has {sub.plan_id} for {tool.name}")
                return
        logger.info(f"User {user_id} lacks a subscription for {tool.name}")
        raise SubscriptionRequired(tool.name, list(accepted))

    async def list_subscriptions(self, arguments: dict[str, Any], context: CallerContext) -> dict[str, Any]:
        user_id = self.user_id(context)
        subscriptions = await self.require_provider().get_subscriptions(user_id)
        return {
            "subscriptions": [sub.to_dict() for sub in subscriptions],
            "available_plans": list(self.known_plans),
        }

    async def start_subscription(self, arguments: dict[str, Any], context: CallerContext) -> dict[str, Any]:
        user_id = self.user_id(context)
        plan_id = arguments.get("plan_id")
        if not isinstance(plan_id, str) or not plan_id:
            raise PaygateError("plan_id is required", error_code="INVALID_ARGUMENTS")
        logger.info(f"Starting subscription {plan_id} for user {user_id}")
        return await self.require_provider().start_subscription(plan_id, user_id)

    async def cancel_subscription(self, arguments: dict[str, Any], context: CallerContext) -> dict[str, Any]:
        user_id = self.user_id(context)
        subscription_id = arguments.get("subscription_id")
        if not isinstance(subscription_id, str) or not subscription_id:
            raise PaygateError("subscription_id is required", error_code="INVALID_ARGUMENTS")
        logger.info(f"Cancelling subscription {subscription_id} for user {user_id}")
        return await self.require_provider().cancel_subscription(subscription_id, user_id)

    def tools(self) -> list[RegisteredTool]:
        """Internal tools the gate exposes once a subscription tool exists."""
        return [
            RegisteredTool(
                name=LIST_SUBSCRIPTIONS_TOOL,
                func=self.list_subscriptions,
                description="List your subscriptions and the plans available.",
                internal=True,
            ),
            RegisteredTool(
                name=START_SUBSCRIPTION_TOOL,
                func=self.start_subscription,
                description="Start a subscription to a plan. Arguments: plan_id.",
                internal=True,
            ),
            RegisteredTool(
                name=CANCEL_SUBSCRIPTION_TOOL,
                func=self.cancel_subscription,
                description="Cancel one of your subscriptions. Arguments: subscription_id.",
                internal=True,
            ),
        ]
