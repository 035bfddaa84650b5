"""
Plans and subscriptions router.
"""
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from typing import List
import logging

from app.database.database import get_db
from app.database.models import User
from app.auth.dependencies import get_current_user
from app.core.exceptions import ApiException
from app.models.schemas import ApiError, PlanInfo, SubscriptionCreate, SubscriptionResponse
from app.services.container import ServiceContainer, get_services
from app.services.plan_registry import PlanNotFoundError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["subscriptions"])


@router.get("/plans", response_model=List[PlanInfo])
async def list_plans(services: ServiceContainer = Depends(get_services)):
    """List available plans."""
    return services.plan_registry.list_plans()


@router.get("/subscriptions/current", response_model=SubscriptionResponse)
async def get_current_subscription(
    current_user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
    db: Session = Depends(get_db)
):
    """Get the current user's subscription (the default plan when there is none)."""
    return services.resolver.current_subscription(db, current_user.id)


@router.post("/subscriptions", response_model=SubscriptionResponse, status_code=status.HTTP_201_CREATED)
async def change_subscription(
    subscription_data: SubscriptionCreate,
    current_user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
    db: Session = Depends(get_db)
):
    """Subscribe the current user to a plan, superseding any active subscription."""
    try:
        services.resolver.subscribe(db, current_user.id, subscription_data.plan_id)
    except PlanNotFoundError as e:
        raise ApiException(status.HTTP_404_NOT_FOUND, ApiError.PLAN_NOT_FOUND, plan_id=e.plan_id)

    return services.resolver.current_subscription(db, current_user.id)
