"""
Quota evaluation: daily cap and per-minute rate window.
"""
import logging
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional

from starlette.concurrency import run_in_threadpool

from app.database.models import utcnow
from app.models.schemas import ApiError, PlanInfo, QuotaDecision, UsageLogEntry, UsageSummary
from app.services.subscription_service import SubscriptionResolver
from app.services.usage_ledger import UsageLedger, start_of_day

logger = logging.getLogger(__name__)

RATE_WINDOW = timedelta(seconds=60)

PendingSource = Callable[[], Iterable[UsageLogEntry]]


class QuotaEvaluator:
    """
    Decides whether a user may make another call.

    Usage is the user's rows in the ledger plus the entries the log queue
    has accepted but not yet written (``pending``). Both are read fresh on
    every call, so the check is read-then-act: concurrent requests from
    one user can overrun a limit by up to (concurrency - 1) calls. Limits
    are soft.

    Every logged call consumes quota, successful or not, except calls the
    quota check itself rejected; otherwise a throttled client retrying
    would keep itself locked out.
    """

    def __init__(
        self,
        resolver: SubscriptionResolver,
        ledger: UsageLedger,
        clock: Callable[[], datetime] = utcnow,
        pending: Optional[PendingSource] = None,
    ):
        self.resolver = resolver
        self.ledger = ledger
        self.clock = clock
        self.pending = pending

    def count_usage(self, user_id: int, since: datetime) -> int:
        """Calls by a user since a point in time, written or still queued."""
        count = self.ledger.count_since(user_id, since, include_denied=False)
        if self.pending is not None:
            count += sum(
                1 for entry in self.pending()
                if entry.user_id == user_id and entry.timestamp >= since and not entry.quota_denied
            )
        return count

    def evaluate(self, user_id: int, now: Optional[datetime] = None) -> QuotaDecision:
        """
        Evaluate both checks synchronously.

        Args:
            user_id: User ID
            now: Evaluation time (defaults to the evaluator clock)

        Returns:
            QuotaDecision; read failures yield RATE_LIMIT_CHECK_ERROR
        """
        now = now or self.clock()
        try:
            plan = self.resolver.resolve_active_plan(user_id, now)

            if plan.has_daily_limit:
                daily_count = self.count_usage(user_id, start_of_day(now))
                logger.debug(f"User {user_id}: {daily_count} calls today (plan '{plan.id}')")
                if daily_count >= plan.daily_limit:
                    logger.info(f"Daily limit reached for user {user_id} ({plan.daily_limit})")
                    return QuotaDecision.deny(ApiError.DAILY_LIMIT_REACHED, plan.daily_limit)

            requests_per_minute = plan.requests_per_minute
            if requests_per_minute is not None:
                recent_count = self.count_usage(user_id, now - RATE_WINDOW)
                logger.debug(f"User {user_id}: {recent_count} calls in the last minute")
                if recent_count >= requests_per_minute:
                    logger.info(f"Rate limit reached for user {user_id} ({requests_per_minute}/min)")
                    return QuotaDecision.deny(ApiError.RATE_LIMIT_REACHED, requests_per_minute)

            return QuotaDecision.allow()

        except Exception as e:
            logger.error(f"Unexpected error during rate limit check for user {user_id}: {e}")
            return QuotaDecision.deny(ApiError.RATE_LIMIT_CHECK_ERROR)

    async def check_quota(self, user_id: int, now: Optional[datetime] = None) -> QuotaDecision:
        """Evaluate the quota without blocking the event loop."""
        return await run_in_threadpool(self.evaluate, user_id, now)

    def summary(self, user_id: int, now: Optional[datetime] = None) -> UsageSummary:
        """Current consumption against the user's plan."""
        now = now or self.clock()
        plan: PlanInfo = self.resolver.resolve_active_plan(user_id, now)
        calls_today = self.count_usage(user_id, start_of_day(now))
        calls_last_minute = self.count_usage(user_id, now - RATE_WINDOW)

        daily_remaining = None
        if plan.has_daily_limit:
            daily_remaining = max(0, plan.daily_limit - calls_today)

        return UsageSummary(
            plan=plan,
            calls_today=calls_today,
            calls_last_minute=calls_last_minute,
            daily_remaining=daily_remaining,
            requests_per_minute=plan.requests_per_minute,
        )
