from datetime import timedelta

from app.core.clock import utcnow
from app.models.subscriber import Subscriber, Tier
from app.services.quota import QuotaTracker
from tests.helpers import set_usage


def _subscribe(gateway, user, tier=Tier.PLUS, limit=300):
    gateway.upsert_subscription(
        email=user.email,
        user_id=user.id,
        customer_id="cus_123",
        subscribed=True,
        tier=tier.value,
        limit=limit,
        subscription_end=None,
    )


def test_missing_subscriber_gets_base_defaults(quota, gateway, user):
    status = quota.check_quota(user)

    assert status.allowed is True
    assert status.count == 0
    assert status.limit == 100
    assert status.remaining == 100
    assert status.tier == "Base"
    # Nothing is written by a read
    assert gateway.get_subscriber(user.email) is None


def test_count_at_limit_is_denied(quota, gateway, session, user):
    _subscribe(gateway, user)
    set_usage(session, user.email, 300)

    status = quota.check_quota(user)

    assert status.allowed is False
    assert status.remaining == 0


def test_increment_from_one_below_limit_reaches_limit(quota, gateway, session, user):
    _subscribe(gateway, user)
    set_usage(session, user.email, 299)
    assert quota.check_quota(user).allowed is True

    quota.increment_usage(user)

    status = quota.check_quota(user)
    assert status.count == 300
    assert status.allowed is False


def test_first_increment_creates_base_subscriber(quota, gateway, user):
    quota.increment_usage(user)

    subscriber = gateway.get_subscriber(user.email)
    assert subscriber.daily_message_count == 1
    assert subscriber.daily_message_limit == 100
    assert subscriber.subscription_tier == "Base"
    assert subscriber.subscribed is False
    assert subscriber.user_id == user.id


def test_increment_adds_exactly_one(quota, gateway, user):
    for _ in range(3):
        quota.increment_usage(user)

    assert gateway.get_subscriber(user.email).daily_message_count == 3


def test_counter_resets_when_a_new_day_is_observed(gateway, user):
    today = QuotaTracker(gateway)
    for _ in range(5):
        today.increment_usage(user)

    tomorrow = QuotaTracker(gateway, clock=lambda: utcnow() + timedelta(days=1))
    status = tomorrow.check_quota(user)

    assert status.count == 0
    assert status.allowed is True


def test_counter_is_kept_within_the_same_day(quota, gateway, user):
    for _ in range(5):
        quota.increment_usage(user)

    quota.reset_if_new_day(user)

    assert gateway.get_subscriber(user.email).daily_message_count == 5


def test_reset_is_idempotent(gateway, session, user):
    quota = QuotaTracker(gateway)
    quota.increment_usage(user)
    set_usage(session, user.email, 42, updated_at=utcnow() - timedelta(days=2))

    quota.reset_if_new_day(user)
    quota.reset_if_new_day(user)

    assert gateway.get_subscriber(user.email).daily_message_count == 0


def test_reset_daily_counts_only_touches_stale_rows(gateway, session, user, other_user):
    quota = QuotaTracker(gateway)
    quota.increment_usage(user)
    quota.increment_usage(other_user)
    set_usage(session, user.email, 7, updated_at=utcnow() - timedelta(days=1))
    set_usage(session, other_user.email, 4)

    day_start = utcnow().replace(hour=0, minute=0, second=0, microsecond=0)
    reset = gateway.reset_daily_counts(day_start)

    assert reset == 1
    assert session.get(Subscriber, user.email).daily_message_count == 0
    assert session.get(Subscriber, other_user.email).daily_message_count == 4
