"""
Process-wide service wiring.
"""
import logging
from typing import Callable

from fastapi import Request
from sqlalchemy.orm import Session

from app.core.config import Settings
from app.services.cache_service import ResponseCache
from app.services.log_queue import AsyncLogQueue
from app.services.plan_registry import PlanRegistry
from app.services.quota_service import QuotaEvaluator
from app.services.subscription_service import SubscriptionResolver
from app.services.usage_ledger import UsageLedger

logger = logging.getLogger(__name__)


class ServiceContainer:
    """Holds the single instance of each metering service."""

    def __init__(
        self,
        plan_registry: PlanRegistry,
        resolver: SubscriptionResolver,
        ledger: UsageLedger,
        quota_evaluator: QuotaEvaluator,
        log_queue: AsyncLogQueue,
        response_cache: ResponseCache,
        settings: Settings,
    ):
        self.plan_registry = plan_registry
        self.resolver = resolver
        self.ledger = ledger
        self.quota_evaluator = quota_evaluator
        self.log_queue = log_queue
        self.response_cache = response_cache
        self.settings = settings

    @classmethod
    def from_settings(
        cls, settings: Settings, session_factory: Callable[[], Session]
    ) -> "ServiceContainer":
        """Build every service from configuration."""
        plan_registry = PlanRegistry(session_factory)
        resolver = SubscriptionResolver(plan_registry, session_factory)
        ledger = UsageLedger(session_factory)
        log_queue = AsyncLogQueue(
            ledger.write_batch,
            batch_size=settings.LOG_BATCH_SIZE,
            flush_interval=settings.LOG_FLUSH_INTERVAL,
            max_queue_size=settings.LOG_MAX_QUEUE_SIZE,
        )
        return cls(
            plan_registry=plan_registry,
            resolver=resolver,
            ledger=ledger,
            # queued calls count toward quota before they reach the ledger
            quota_evaluator=QuotaEvaluator(resolver, ledger, pending=log_queue.pending),
            log_queue=log_queue,
            response_cache=ResponseCache(
                max_size=settings.CACHE_MAX_SIZE,
                default_ttl=settings.CACHE_TTL_SECONDS,
                eviction_ratio=settings.CACHE_EVICTION_RATIO,
            ),
            settings=settings,
        )

    async def start(self) -> None:
        self.plan_registry.seed_default_plans()
        self.log_queue.start()

    async def shutdown(self) -> None:
        await self.log_queue.stop()


def get_services(request: Request) -> ServiceContainer:
    """Dependency returning the application's service container."""
    return request.app.state.services
