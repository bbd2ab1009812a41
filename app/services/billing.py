"""Stripe billing provider.

Narrow wrapper around the calls the subscription resolver needs. Every
call is attempted once; Stripe failures surface as ProviderError.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional
import logging

import stripe

from app.core.errors import ConfigError, ProviderError

logger = logging.getLogger(__name__)

STRIPE_API_VERSION = "2023-10-16"


@dataclass(frozen=True)
class BillingSubscription:
    """Active subscription reduced to what tier resolution needs."""

    id: str
    price_id: Optional[str]
    current_period_end: Optional[datetime]


def _from_epoch(value: Optional[int]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


class StripeBillingProvider:
    """Customer, subscription and session lookups against Stripe."""

    def __init__(self, api_key: Optional[str], currency: str = "usd"):
        self.api_key = api_key
        self.currency = currency

    def _stripe(self):
        if not self.api_key:
            raise ConfigError("STRIPE_SECRET_KEY is not set")
        stripe.api_key = self.api_key
        stripe.api_version = STRIPE_API_VERSION
        return stripe

    def _call(self, action: str, fn, *args, **params) -> Any:
        try:
            return fn(*args, **params)
        except stripe.StripeError as e:
            logger.error(f"Stripe call failed: action={action}, error={str(e)}")
            raise ProviderError(f"Billing provider error during {action}", str(e)) from e

    def find_customer_id(self, email: str) -> Optional[str]:
        """First customer registered under `email`, if any."""
        client = self._stripe()
        customers = self._call("customer lookup", client.Customer.list, email=email, limit=1)
        if not customers.data:
            return None
        return customers.data[0].id

    def active_subscription(self, customer_id: str) -> Optional[BillingSubscription]:
        """First active subscription of the customer, if any."""
        client = self._stripe()
        subscriptions = self._call(
            "subscription lookup",
            client.Subscription.list,
            customer=customer_id,
            status="active",
            limit=1,
        )
        if not subscriptions.data:
            return None

        subscription = subscriptions.data[0]
        items = subscription["items"]["data"]
        first_item = items[0] if items else None
        price_id = first_item["price"]["id"] if first_item else None
        # Newer API versions moved the period end onto the subscription item
        period_end = subscription.get("current_period_end") or (
            first_item.get("current_period_end") if first_item else None
        )
        return BillingSubscription(
            id=subscription["id"],
            price_id=price_id,
            current_period_end=_from_epoch(period_end),
        )

    def price_amount(self, price_id: str) -> int:
        """Unit amount of a price in minor currency units (0 when unset)."""
        client = self._stripe()
        price = self._call("price lookup", client.Price.retrieve, price_id)
        return price.get("unit_amount") or 0

    def create_checkout_session(
        self,
        *,
        email: str,
        customer_id: Optional[str],
        plan_name: str,
        amount: int,
        success_url: str,
        cancel_url: str,
    ) -> str:
        """Monthly subscription checkout for `amount`. Returns the redirect URL."""
        client = self._stripe()
        params: dict[str, Any] = {
            "mode": "subscription",
            "line_items": [{
                "price_data": {
                    "currency": self.currency,
                    "product_data": {"name": f"{plan_name} Plan"},
                    "unit_amount": amount,
                    "recurring": {"interval": "month"},
                },
                "quantity": 1,
            }],
            "success_url": success_url,
            "cancel_url": cancel_url,
        }
        if customer_id:
            params["customer"] = customer_id
        else:
            params["customer_email"] = email

        session = self._call("checkout", client.checkout.Session.create, **params)
        return session.url

    def create_portal_session(self, customer_id: str, return_url: str) -> str:
        """Customer portal session. Returns the redirect URL."""
        client = self._stripe()
        session = self._call(
            "customer portal",
            client.billing_portal.Session.create,
            customer=customer_id,
            return_url=return_url,
        )
        return session.url
