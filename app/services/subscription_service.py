"""
Subscription resolution and plan changes.
"""
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.database.models import Subscription, SubscriptionStatus, utcnow
from app.models.schemas import PlanInfo, SubscriptionResponse
from app.services.plan_registry import PlanRegistry

logger = logging.getLogger(__name__)


class SubscriptionResolver:
    """Finds the plan that governs a user's quota."""

    def __init__(self, plan_registry: PlanRegistry, session_factory: Callable[[], Session]):
        self.plan_registry = plan_registry
        self.session_factory = session_factory

    def find_active_subscription(
        self, db: Session, user_id: int, now: datetime
    ) -> Optional[Subscription]:
        """Most recently created active subscription that has not lapsed."""
        return (
            db.query(Subscription)
            .filter(
                Subscription.user_id == user_id,
                Subscription.status == SubscriptionStatus.ACTIVE.value,
                Subscription.end_date >= now,
            )
            .order_by(Subscription.created_at.desc(), Subscription.id.desc())
            .first()
        )

    def resolve_active_plan(self, user_id: int, now: Optional[datetime] = None) -> PlanInfo:
        """
        Resolve the plan for a user.

        Lookup failures never propagate: the default plan is returned
        instead, so the caller is still metered against a finite quota.

        Args:
            user_id: User ID
            now: Evaluation time (defaults to current UTC time)

        Returns:
            PlanInfo of the active subscription, or the default plan
        """
        now = now or utcnow()
        try:
            with self.session_factory() as db:
                subscription = self.find_active_subscription(db, user_id, now)
                if subscription is None:
                    return self.plan_registry.get_plan_or_default(settings.DEFAULT_PLAN_ID, db)
                return self.plan_registry.get_plan_or_default(subscription.plan_id, db)
        except SQLAlchemyError as e:
            logger.error(f"Error resolving subscription for user {user_id}: {e}")
            return self.plan_registry.default_plan()

    def current_subscription(self, db: Session, user_id: int) -> SubscriptionResponse:
        """Describe the user's current subscription, falling back to the default plan."""
        subscription = self.find_active_subscription(db, user_id, utcnow())
        if subscription is None:
            plan = self.plan_registry.get_plan_or_default(settings.DEFAULT_PLAN_ID, db)
            return SubscriptionResponse(
                plan_id=plan.id, status=SubscriptionStatus.ACTIVE, plan=plan
            )

        plan = self.plan_registry.get_plan_or_default(subscription.plan_id, db)
        return SubscriptionResponse(
            plan_id=subscription.plan_id,
            status=SubscriptionStatus(subscription.status),
            start_date=subscription.start_date,
            end_date=subscription.end_date,
            plan=plan,
        )

    def subscribe(self, db: Session, user_id: int, plan_id: str) -> Subscription:
        """
        Move a user to a plan.

        Existing active subscriptions are superseded (marked cancelled)
        before the new one is inserted, so at most one row is active.

        Raises:
            PlanNotFoundError: If the plan does not exist
        """
        self.plan_registry.get_plan(plan_id, db)

        now = utcnow()
        superseded = (
            db.query(Subscription)
            .filter(
                Subscription.user_id == user_id,
                Subscription.status == SubscriptionStatus.ACTIVE.value,
            )
            .update({Subscription.status: SubscriptionStatus.CANCELLED.value})
        )

        subscription = Subscription(
            user_id=user_id,
            plan_id=plan_id,
            start_date=now,
            end_date=now + timedelta(days=settings.SUBSCRIPTION_PERIOD_DAYS),
            status=SubscriptionStatus.ACTIVE.value,
            created_at=now,
        )
        db.add(subscription)
        db.commit()
        db.refresh(subscription)

        logger.info(
            f"User {user_id} subscribed to plan '{plan_id}' ({superseded} subscription(s) superseded)"
        )
        return subscription
