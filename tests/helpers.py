from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlmodel import Session

from app.models.subscriber import Subscriber
from app.services.billing import BillingSubscription


class FakeCompletion:
    def __init__(self, reply: str = "Happy to help with that!", error: Optional[Exception] = None):
        self.reply = reply
        self.error = error
        self.calls: list[tuple] = []

    def ensure_configured(self):
        pass

    def complete(self, system_prompt, prior_messages, new_user_message):
        self.calls.append((system_prompt, list(prior_messages), new_user_message))
        if self.error is not None:
            raise self.error
        return self.reply


class FakeBilling:
    def __init__(
        self,
        customer_id: Optional[str] = None,
        subscription: Optional[BillingSubscription] = None,
        amount: int = 0,
        error: Optional[Exception] = None,
    ):
        self.customer_id = customer_id
        self.subscription = subscription
        self.amount = amount
        self.error = error
        self.checkouts: list[dict] = []
        self.portals: list[tuple] = []

    def find_customer_id(self, email):
        if self.error is not None:
            raise self.error
        return self.customer_id

    def active_subscription(self, customer_id):
        return self.subscription

    def price_amount(self, price_id):
        return self.amount

    def create_checkout_session(self, **params):
        self.checkouts.append(params)
        return "https://checkout.example.test/session"

    def create_portal_session(self, customer_id, return_url):
        self.portals.append((customer_id, return_url))
        return "https://billing.example.test/portal"


def paid_billing(amount: int, customer_id: str = "cus_123") -> FakeBilling:
    return FakeBilling(
        customer_id=customer_id,
        subscription=BillingSubscription(
            id="sub_123",
            price_id="price_123",
            current_period_end=datetime(2026, 11, 19, 12, 0, 0, tzinfo=timezone.utc),
        ),
        amount=amount,
    )


def set_usage(session: Session, email: str, count: int, updated_at: Optional[datetime] = None) -> None:
    subscriber = session.get(Subscriber, email)
    subscriber.daily_message_count = count
    if updated_at is not None:
        subscriber.updated_at = updated_at
    session.add(subscriber)
    session.commit()


