"""
Test plan registry, subscription resolution and the usage ledger.
"""
import pytest
from datetime import datetime, timedelta, timezone
from sqlalchemy.exc import OperationalError

from app.core.config import settings
from app.database.database import SessionLocal
from app.database.models import Plan, Subscription, SubscriptionStatus, UsageLog, UsageStatus, User
from app.models.schemas import UsageLogEntry
from app.services.plan_registry import PlanNotFoundError, PlanRegistry
from app.services.subscription_service import SubscriptionResolver
from app.services.usage_ledger import UsageLedger


NOW = datetime(2026, 3, 4, 15, 30, tzinfo=timezone.utc)


@pytest.fixture
def registry():
    registry = PlanRegistry(SessionLocal)
    registry.seed_default_plans()
    return registry


@pytest.fixture
def resolver(registry):
    return SubscriptionResolver(registry, SessionLocal)


@pytest.fixture
def user(db_session):
    user = User(username="alice", email="alice@example.com", hashed_password="x")
    db_session.add(user)
    db_session.commit()
    return user


def add_subscription(db, user_id, plan_id, created_at, end_date, status=SubscriptionStatus.ACTIVE):
    db.add(Subscription(
        user_id=user_id,
        plan_id=plan_id,
        start_date=created_at,
        end_date=end_date,
        status=status.value,
        created_at=created_at,
    ))
    db.commit()


class TestPlanRegistry:

    def test_get_plan(self, registry):
        plan = registry.get_plan("basic")
        assert plan.daily_limit == 5000
        assert plan.requests_per_minute == 30

    def test_unknown_plan_raises(self, registry):
        with pytest.raises(PlanNotFoundError) as exc_info:
            registry.get_plan("platinum")
        assert exc_info.value.plan_id == "platinum"

    def test_unknown_plan_falls_back_to_default(self, registry):
        plan = registry.get_plan_or_default("platinum")
        assert plan.daily_limit == settings.DEFAULT_DAILY_LIMIT
        assert plan.request_interval == settings.DEFAULT_REQUEST_INTERVAL
        assert plan.requests_per_minute == 5

    def test_enterprise_is_unlimited(self, registry):
        plan = registry.get_plan("enterprise")
        assert not plan.has_daily_limit
        assert plan.requests_per_minute is None

    def test_seed_is_idempotent(self, registry):
        assert registry.seed_default_plans() == 0
        assert [plan.id for plan in registry.list_plans()] == ["free", "basic", "pro", "enterprise"]


class TestSubscriptionResolver:

    def test_no_subscription_uses_free_plan(self, resolver, user):
        assert resolver.resolve_active_plan(user.id, NOW).id == "free"

    def test_most_recent_active_subscription_wins(self, resolver, user, db_session):
        add_subscription(db_session, user.id, "basic", NOW - timedelta(days=3), NOW + timedelta(days=10))
        add_subscription(db_session, user.id, "pro", NOW - timedelta(days=1), NOW + timedelta(days=10))

        assert resolver.resolve_active_plan(user.id, NOW).id == "pro"

    def test_lapsed_and_cancelled_subscriptions_are_ignored(self, resolver, user, db_session):
        add_subscription(db_session, user.id, "basic", NOW - timedelta(days=40), NOW - timedelta(days=10))
        add_subscription(
            db_session, user.id, "pro", NOW - timedelta(days=1), NOW + timedelta(days=10),
            status=SubscriptionStatus.CANCELLED,
        )

        assert resolver.resolve_active_plan(user.id, NOW).id == "free"

    def test_lookup_failure_degrades_to_default_plan(self, registry):
        def broken_session():
            raise OperationalError("SELECT", {}, Exception("connection refused"))

        resolver = SubscriptionResolver(registry, broken_session)
        plan = resolver.resolve_active_plan(1, NOW)

        assert plan.daily_limit == settings.DEFAULT_DAILY_LIMIT
        assert plan.request_interval == settings.DEFAULT_REQUEST_INTERVAL

    def test_subscribe_supersedes_active_subscription(self, resolver, user, db_session):
        resolver.subscribe(db_session, user.id, "basic")
        resolver.subscribe(db_session, user.id, "pro")

        rows = db_session.query(Subscription).filter(Subscription.user_id == user.id).all()
        active = [row for row in rows if row.status == SubscriptionStatus.ACTIVE.value]
        assert len(rows) == 2
        assert len(active) == 1
        assert active[0].plan_id == "pro"
        assert resolver.resolve_active_plan(user.id).id == "pro"

    def test_subscribe_to_unknown_plan(self, resolver, user, db_session):
        with pytest.raises(PlanNotFoundError):
            resolver.subscribe(db_session, user.id, "platinum")
        assert db_session.query(Subscription).count() == 0


class TestUsageLedger:

    @pytest.fixture
    def ledger(self):
        return UsageLedger(SessionLocal)

    def entry(self, timestamp, status=UsageStatus.SUCCESS, user_id=1):
        return UsageLogEntry(
            user_id=user_id, api_key_id=7, endpoint="/api/v1/companies",
            status=status, timestamp=timestamp,
        )

    def test_append_many_and_count(self, ledger, db_session):
        written = ledger.append_many([
            self.entry(NOW - timedelta(hours=20)),
            self.entry(NOW - timedelta(seconds=30)),
            self.entry(NOW - timedelta(seconds=10), UsageStatus.ERROR),
            self.entry(NOW, user_id=2),
        ])

        assert written == 4
        assert db_session.query(UsageLog).count() == 4
        assert ledger.count_since(1, NOW - timedelta(minutes=1)) == 2
        assert ledger.count_since(1, NOW - timedelta(minutes=1), [UsageStatus.SUCCESS]) == 1
        assert ledger.count_since(1, NOW - timedelta(days=1)) == 3

    def test_count_without_quota_denials(self, ledger):
        ledger.append_many([
            self.entry(NOW),
            self.entry(NOW, UsageStatus.ERROR),
            UsageLogEntry(
                user_id=1, api_key_id=7, endpoint="/api/v1/companies",
                status=UsageStatus.ERROR, timestamp=NOW, quota_denied=True,
            ),
        ])

        assert ledger.count_since(1, NOW) == 3
        assert ledger.count_since(1, NOW, include_denied=False) == 2

    def test_append_nothing(self, ledger):
        assert ledger.append_many([]) == 0

    @pytest.mark.asyncio
    async def test_write_batch(self, ledger):
        await ledger.write_batch([self.entry(NOW), self.entry(NOW)])
        assert ledger.count_since(1, NOW) == 2

    def test_usage_series_by_hour(self, ledger):
        ledger.append_many([
            self.entry(NOW.replace(hour=9)),
            self.entry(NOW.replace(hour=9, minute=45)),
            self.entry(NOW.replace(hour=14)),
            self.entry(NOW - timedelta(days=1)),
        ])

        series = ledger.usage_series(1, "day", NOW)

        assert [(bucket.name, bucket.total) for bucket in series] == [("9h", 2), ("14h", 1)]

    def test_usage_series_by_weekday(self, ledger):
        # 2026-03-04 is a Wednesday
        ledger.append_many([
            self.entry(NOW),
            self.entry(NOW - timedelta(days=2)),
            self.entry(NOW - timedelta(days=2)),
        ])

        series = ledger.usage_series(1, "week", NOW)

        assert [(bucket.name, bucket.total) for bucket in series] == [("Mon", 2), ("Wed", 1)]

    def test_unknown_period(self, ledger):
        with pytest.raises(ValueError):
            ledger.usage_series(1, "decade", NOW)
