"""
Usage ledger: append-only storage of metered calls.
"""
import calendar
import logging
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, List, Optional, Sequence

from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from app.database.models import UsageLog, UsageStatus, utcnow
from app.models.schemas import UsageBucket, UsageLogEntry

logger = logging.getLogger(__name__)

USAGE_PERIODS = ("day", "week", "month", "year")


def start_of_day(now: datetime) -> datetime:
    """Midnight of the (UTC) day containing now."""
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class UsageLedger:
    """Reads and bulk-writes usage log rows."""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def append_many(self, entries: Sequence[UsageLogEntry]) -> int:
        """
        Insert a batch of entries in a single transaction.

        Args:
            entries: Entries to write, in order

        Returns:
            Number of rows written
        """
        if not entries:
            return 0

        with self.session_factory() as db:
            db.add_all([
                UsageLog(
                    user_id=entry.user_id,
                    api_key_id=entry.api_key_id,
                    endpoint=entry.endpoint,
                    status=entry.status.value,
                    quota_denied=entry.quota_denied,
                    timestamp=entry.timestamp,
                )
                for entry in entries
            ])
            db.commit()

        logger.debug(f"Wrote {len(entries)} usage log entries")
        return len(entries)

    async def write_batch(self, entries: Sequence[UsageLogEntry]) -> None:
        """Async bulk write used by the log queue."""
        await run_in_threadpool(self.append_many, entries)

    def count_since(
        self,
        user_id: int,
        since: datetime,
        statuses: Optional[Iterable[UsageStatus]] = None,
        include_denied: bool = True,
    ) -> int:
        """
        Count a user's entries with timestamp >= since.

        Args:
            user_id: User ID
            since: Lower bound (inclusive)
            statuses: Restrict to these outcomes (all when None)
            include_denied: Also count calls rejected by the quota check

        Returns:
            Exact row count
        """
        with self.session_factory() as db:
            query = db.query(UsageLog).filter(
                UsageLog.user_id == user_id,
                UsageLog.timestamp >= since,
            )
            if statuses is not None:
                query = query.filter(UsageLog.status.in_([s.value for s in statuses]))
            if not include_denied:
                query = query.filter(UsageLog.quota_denied.is_(False))
            return query.count()

    def timestamps_since(self, user_id: int, since: datetime) -> List[datetime]:
        """Timestamps of a user's entries since a point in time, oldest first."""
        with self.session_factory() as db:
            rows = (
                db.query(UsageLog.timestamp)
                .filter(UsageLog.user_id == user_id, UsageLog.timestamp >= since)
                .order_by(UsageLog.timestamp.asc())
                .all()
            )
            return [_as_utc(row[0]) for row in rows]

    def usage_series(
        self, user_id: int, period: str = "week", now: Optional[datetime] = None
    ) -> List[UsageBucket]:
        """
        Bucket a user's calls for the usage chart.

        Buckets are hours for ``day``, weekdays for ``week``, days of the
        month for ``month`` and months for ``year``; only non-empty buckets
        are returned, in calendar order.
        """
        if period not in USAGE_PERIODS:
            raise ValueError(f"Unknown period '{period}'")

        now = now or utcnow()
        if period == "day":
            since = start_of_day(now)
        elif period == "week":
            since = now - timedelta(days=7)
        elif period == "month":
            since = now - timedelta(days=30)
        else:
            since = now - timedelta(days=365)

        counts = Counter(_bucket_key(ts, period) for ts in self.timestamps_since(user_id, since))
        return [
            UsageBucket(name=_bucket_label(key, period), total=total)
            for key, total in sorted(counts.items())
        ]


def _bucket_key(timestamp: datetime, period: str) -> int:
    if period == "day":
        return timestamp.hour
    if period == "week":
        return timestamp.weekday()
    if period == "month":
        return timestamp.day
    return timestamp.month


def _bucket_label(key: int, period: str) -> str:
    if period == "day":
        return f"{key}h"
    if period == "week":
        return calendar.day_abbr[key]
    if period == "month":
        return f"{key:02d}"
    return calendar.month_abbr[key]
