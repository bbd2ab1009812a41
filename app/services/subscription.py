"""Subscription resolution: billing state -> tier, limit and subscriber row.

Runs on session start and after returning from a billing redirect. The
resolver owns the billing fields of a Subscriber; it never touches the
daily message counter.
"""
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Protocol
import logging

from app.core.clock import to_iso
from app.core.errors import ProviderError
from app.core.security import AuthenticatedUser
from app.models.subscriber import (
    DEFAULT_LIMIT,
    DEFAULT_TIER,
    PRICE_TIERS,
    TIER_LIMITS,
    TIER_PRICES,
    Tier,
)
from app.services.billing import BillingSubscription
from app.services.persistence import PersistenceGateway
from app.services.quota import QuotaTracker

logger = logging.getLogger(__name__)


class BillingProvider(Protocol):
    def find_customer_id(self, email: str) -> Optional[str]: ...

    def active_subscription(self, customer_id: str) -> Optional[BillingSubscription]: ...

    def price_amount(self, price_id: str) -> int: ...

    def create_checkout_session(
        self,
        *,
        email: str,
        customer_id: Optional[str],
        plan_name: str,
        amount: int,
        success_url: str,
        cancel_url: str,
    ) -> str: ...

    def create_portal_session(self, customer_id: str, return_url: str) -> str: ...


@dataclass(frozen=True)
class SubscriberState:
    """What the client shows about plan and usage."""

    subscribed: bool
    subscription_tier: str
    subscription_end: Optional[datetime]
    daily_message_count: int
    daily_message_limit: int

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        if self.subscription_end is not None:
            data["subscription_end"] = to_iso(self.subscription_end)
        return data


def tier_for_amount(amount: int) -> Tier:
    """
    Map a recurring price (minor units) onto a tier.

    Unknown amounts fall back to Base with a warning so a new price point in
    the billing dashboard degrades to the free limit instead of failing.
    """
    tier = PRICE_TIERS.get(amount)
    if tier is None:
        logger.warning(f"Unmapped subscription price amount={amount}, defaulting to {DEFAULT_TIER.value}")
        return DEFAULT_TIER
    return tier


def parse_plan(plan: str) -> Tier:
    """Resolve a purchasable plan name ("Plus", "pro plus", "pro_plus")."""
    normalized = plan.strip().lower().replace("_", " ").replace("-", " ")
    for tier in TIER_PRICES:
        if tier.value.lower() == normalized:
            return tier
    raise ValueError(f"Unknown plan '{plan}'")


class SubscriptionResolver:
    """Keeps the Subscriber row in step with the billing provider."""

    def __init__(
        self,
        gateway: PersistenceGateway,
        billing: BillingProvider,
        quota: QuotaTracker,
    ):
        self.gateway = gateway
        self.billing = billing
        self.quota = quota

    def resolve(self, user: AuthenticatedUser) -> SubscriberState:
        """
        Look up the user's billing state and upsert it.

        Raises:
            ConfigError: If billing credentials are missing
            ProviderError: If a billing call fails
            PersistenceError: If the upsert fails
        """
        logger.info(f"Resolving subscription: user={user.id}")
        self.quota.reset_if_new_day(user)

        tier = DEFAULT_TIER
        subscribed = False
        subscription_end = None

        customer_id = self.billing.find_customer_id(user.email)
        if customer_id is None:
            logger.info(f"No billing customer: user={user.id}")
        else:
            logger.info(f"Found billing customer: user={user.id}, customer={customer_id}")
            subscription = self.billing.active_subscription(customer_id)
            if subscription is not None:
                subscribed = True
                subscription_end = subscription.current_period_end
                amount = self.billing.price_amount(subscription.price_id) if subscription.price_id else 0
                tier = tier_for_amount(amount)
                logger.info(
                    f"Active subscription: user={user.id}, subscription={subscription.id}, "
                    f"amount={amount}, tier={tier.value}"
                )

        subscriber = self.gateway.upsert_subscription(
            email=user.email,
            user_id=user.id,
            customer_id=customer_id,
            subscribed=subscribed,
            tier=tier.value,
            limit=TIER_LIMITS[tier],
            subscription_end=subscription_end,
        )

        return SubscriberState(
            subscribed=subscribed,
            subscription_tier=tier.value,
            subscription_end=subscription_end,
            daily_message_count=subscriber.daily_message_count if subscriber else 0,
            daily_message_limit=subscriber.daily_message_limit if subscriber else DEFAULT_LIMIT,
        )

    def create_checkout(self, user: AuthenticatedUser, plan: str, app_url: str) -> str:
        """
        Start a checkout for a paid plan. Returns the redirect URL.

        Raises:
            ValueError: If the plan is not purchasable
        """
        tier = parse_plan(plan)
        customer_id = self.billing.find_customer_id(user.email)
        url = self.billing.create_checkout_session(
            email=user.email,
            customer_id=customer_id,
            plan_name=tier.value,
            amount=TIER_PRICES[tier],
            success_url=f"{app_url}/success",
            cancel_url=f"{app_url}/",
        )
        logger.info(f"Checkout session created: user={user.id}, plan={tier.value}")
        return url

    def open_portal(self, user: AuthenticatedUser, app_url: str) -> str:
        """
        Open the billing portal for an existing customer. Returns the redirect URL.

        Raises:
            ProviderError: If the user has no billing customer
        """
        customer_id = self.billing.find_customer_id(user.email)
        if customer_id is None:
            raise ProviderError("No billing customer found for this account")
        url = self.billing.create_portal_session(customer_id, return_url=f"{app_url}/")
        logger.info(f"Customer portal session created: user={user.id}")
        return url
