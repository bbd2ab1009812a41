"""Subscriber SQLModel and tier table.

One row per account email. Billing fields are owned by the subscription
resolver; daily_message_count is owned by the quota tracker.
"""
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlmodel import Field, SQLModel

from app.core.clock import utcnow
from app.models.types import UTCDateTime


class Tier(str, Enum):
    BASE = "Base"
    PLUS = "Plus"
    PRO_PLUS = "Pro Plus"


TIER_LIMITS: dict[Tier, int] = {
    Tier.BASE: 100,
    Tier.PLUS: 300,
    Tier.PRO_PLUS: 500,
}

# Recurring monthly price in minor currency units
TIER_PRICES: dict[Tier, int] = {
    Tier.PLUS: 500,
    Tier.PRO_PLUS: 800,
}

PRICE_TIERS: dict[int, Tier] = {amount: tier for tier, amount in TIER_PRICES.items()}

DEFAULT_TIER = Tier.BASE
DEFAULT_LIMIT = TIER_LIMITS[DEFAULT_TIER]


class Subscriber(SQLModel, table=True):
    """Subscription and usage state keyed by email."""
    __tablename__ = "subscribers"

    email: str = Field(primary_key=True, max_length=255)
    user_id: str = Field(index=True, nullable=False)
    stripe_customer_id: Optional[str] = Field(default=None, max_length=255)
    subscribed: bool = Field(default=False)
    subscription_tier: str = Field(default=DEFAULT_TIER.value, max_length=20)
    subscription_end: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    daily_message_count: int = Field(default=0, ge=0)
    daily_message_limit: int = Field(default=DEFAULT_LIMIT)
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
