"""
Plan registry service.
"""
import logging
from typing import Callable, List

from sqlalchemy.orm import Session

from app.core.config import settings
from app.database.models import Plan
from app.models.schemas import PlanInfo

logger = logging.getLogger(__name__)


class PlanNotFoundError(LookupError):
    """Raised when a plan identifier is unknown."""

    def __init__(self, plan_id: str):
        self.plan_id = plan_id
        super().__init__(f"Plan '{plan_id}' not found")


DEFAULT_PLANS = [
    {
        "id": "free",
        "name": "Free",
        "daily_limit": 500,
        "request_interval": 12,
        "price": 0,
        "description": "Discover the API: 500 calls per day, 5 requests per minute",
    },
    {
        "id": "basic",
        "name": "Basic",
        "daily_limit": 5000,
        "request_interval": 2,
        "price": 9.99,
        "description": "5,000 calls per day, 30 requests per minute",
    },
    {
        "id": "pro",
        "name": "Pro",
        "daily_limit": 50000,
        "request_interval": 0.5,
        "price": 29.99,
        "description": "50,000 calls per day, 120 requests per minute",
    },
    {
        "id": "enterprise",
        "name": "Enterprise",
        "daily_limit": None,
        "request_interval": 0,
        "price": 99.99,
        "description": "Unlimited calls, no per-minute cap",
    },
]


class PlanRegistry:
    """Read access to plan reference data."""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    @staticmethod
    def default_plan() -> PlanInfo:
        """Hard-coded plan used when the data layer cannot provide one."""
        return PlanInfo(
            id=settings.DEFAULT_PLAN_ID,
            name="Default",
            daily_limit=settings.DEFAULT_DAILY_LIMIT,
            request_interval=settings.DEFAULT_REQUEST_INTERVAL,
        )

    def get_plan(self, plan_id: str, db: Session = None) -> PlanInfo:
        """
        Get a plan by identifier.

        Args:
            plan_id: Plan identifier
            db: Optional open session to reuse

        Returns:
            PlanInfo for the plan

        Raises:
            PlanNotFoundError: If no plan has this identifier
        """
        if db is None:
            with self.session_factory() as session:
                return self.get_plan(plan_id, session)

        plan = db.get(Plan, plan_id)
        if plan is None:
            raise PlanNotFoundError(plan_id)
        return PlanInfo.model_validate(plan)

    def get_plan_or_default(self, plan_id: str, db: Session = None) -> PlanInfo:
        """Get a plan, substituting the default plan when it is unknown."""
        try:
            return self.get_plan(plan_id, db)
        except PlanNotFoundError:
            logger.warning(f"Plan '{plan_id}' not found, using default plan")
            return self.default_plan()

    def list_plans(self) -> List[PlanInfo]:
        """List all plans, cheapest first."""
        with self.session_factory() as session:
            plans = session.query(Plan).order_by(Plan.price, Plan.id).all()
            return [PlanInfo.model_validate(plan) for plan in plans]

    def seed_default_plans(self) -> int:
        """Insert the built-in plans when the plans table is empty."""
        with self.session_factory() as session:
            if session.query(Plan).count() > 0:
                return 0
            session.add_all([Plan(**plan) for plan in DEFAULT_PLANS])
            session.commit()
            logger.info(f"Seeded {len(DEFAULT_PLANS)} default plans")
            return len(DEFAULT_PLANS)
