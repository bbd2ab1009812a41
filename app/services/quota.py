"""Daily message quota bookkeeping.

The counter lives on the Subscriber row. Instead of a scheduled job, the
counter is zeroed lazily the first time a new UTC day is observed for a
user (reset_if_new_day). Two concurrent first-requests of the day may both
reset; the reset is idempotent so the only cost is a slightly off count.
Quota is advisory: check and increment are not serialized against each other.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Callable
import logging

from app.core.clock import start_of_day, utcnow
from app.core.security import AuthenticatedUser
from app.models.subscriber import DEFAULT_LIMIT, DEFAULT_TIER
from app.services.persistence import PersistenceGateway

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QuotaStatus:
    """Snapshot of a user's quota at check time."""

    allowed: bool
    remaining: int
    count: int
    limit: int
    tier: str


class QuotaTracker:
    """Per-user daily message counter against a tier-derived limit."""

    def __init__(self, gateway: PersistenceGateway, clock: Callable[[], datetime] = utcnow):
        self.gateway = gateway
        self.clock = clock

    def reset_if_new_day(self, user: AuthenticatedUser) -> None:
        """Zero the counter if it was last updated on an earlier day."""
        day_start = start_of_day(self.clock())
        if self.gateway.reset_count_if_stale(user.email, day_start):
            logger.info(f"Daily message count reset: user={user.id}")

    def check_quota(self, user: AuthenticatedUser) -> QuotaStatus:
        """
        Compare today's count with the limit.

        A user with no subscriber row yet gets the Base defaults.

        Returns:
            QuotaStatus with allowed=False once count >= limit
        """
        self.reset_if_new_day(user)
        subscriber = self.gateway.get_subscriber(user.email)

        if subscriber is None:
            count, limit, tier = 0, DEFAULT_LIMIT, DEFAULT_TIER.value
        else:
            count = subscriber.daily_message_count
            limit = subscriber.daily_message_limit
            tier = subscriber.subscription_tier

        return QuotaStatus(
            allowed=count < limit,
            remaining=max(limit - count, 0),
            count=count,
            limit=limit,
            tier=tier,
        )

    def increment_usage(self, user: AuthenticatedUser) -> None:
        """Count one accepted message."""
        self.gateway.increment_message_count(user.email, user.id)
