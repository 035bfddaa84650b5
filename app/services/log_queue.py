"""
Asynchronous, batched usage log queue.

Request handlers enqueue usage entries without waiting on the database.
A background task writes them to the usage ledger in batches of
``batch_size``, either as soon as a full batch is waiting or every
``flush_interval`` seconds. Failed batches go back to the front of the
queue and are retried on the next trigger. The queue never holds more
than ``max_queue_size`` entries: the oldest ones are dropped first.
"""
import asyncio
import logging
import threading
from collections import deque
from datetime import datetime
from typing import Awaitable, Callable, Deque, List, Optional, Sequence

from app.database.models import UsageStatus, utcnow
from app.models.schemas import UsageLogEntry

logger = logging.getLogger(__name__)

BatchWriter = Callable[[Sequence[UsageLogEntry]], Awaitable[None]]


def _is_valid_id(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


class AsyncLogQueue:
    """Process-wide buffer in front of the usage ledger."""

    def __init__(
        self,
        writer: BatchWriter,
        batch_size: int = 10,
        flush_interval: float = 5.0,
        max_queue_size: int = 1000,
        clock: Callable[[], datetime] = utcnow,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if max_queue_size < batch_size:
            raise ValueError("max_queue_size must be at least batch_size")

        self.writer = writer
        self.batch_size = batch_size
        self.flush_interval = flush_interval
        self.max_queue_size = max_queue_size
        self.clock = clock

        self._entries: Deque[UsageLogEntry] = deque()
        self._in_flight: List[UsageLogEntry] = []
        # enqueue may be called from threadpool workers as well as the loop
        self._lock = threading.Lock()
        self._flush_lock = asyncio.Lock()
        self._wakeup: Optional[asyncio.Event] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._task: Optional[asyncio.Task] = None

        self.dropped = 0
        self.written = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def snapshot(self) -> List[UsageLogEntry]:
        """Copy of the pending entries, oldest first."""
        with self._lock:
            return list(self._entries)

    def pending(self) -> List[UsageLogEntry]:
        """
        Entries not yet known to be in the ledger, oldest first.

        Unlike snapshot() this includes the batch a flush is currently
        writing, so callers counting usage see every accepted call.
        """
        with self._lock:
            return self._in_flight + list(self._entries)

    def enqueue(
        self,
        user_id: int,
        key_id: int,
        endpoint: str,
        status: UsageStatus = UsageStatus.SUCCESS,
        timestamp: Optional[datetime] = None,
        quota_denied: bool = False,
    ) -> bool:
        """
        Queue a usage entry. Never blocks and never raises.

        Args:
            user_id: User ID
            key_id: API key ID
            endpoint: Endpoint path
            status: Call outcome
            timestamp: Time of the call (defaults to now)
            quota_denied: The call was rejected by the quota check

        Returns:
            True if queued, False if the entry was rejected as malformed
        """
        try:
            if not _is_valid_id(user_id) or not _is_valid_id(key_id):
                logger.warning(f"Rejected usage log with malformed ids: user={user_id!r} key={key_id!r}")
                return False
            if not isinstance(endpoint, str) or not endpoint:
                logger.warning(f"Rejected usage log with empty endpoint for user {user_id}")
                return False

            entry = UsageLogEntry(
                user_id=user_id,
                api_key_id=key_id,
                endpoint=endpoint,
                status=UsageStatus(status),
                timestamp=timestamp or self.clock(),
                quota_denied=quota_denied,
            )

            with self._lock:
                if len(self._entries) >= self.max_queue_size:
                    self._entries.popleft()
                    self.dropped += 1
                    logger.warning(
                        f"Log queue is full ({self.max_queue_size} items). Dropping oldest log."
                    )
                self._entries.append(entry)
                size = len(self._entries)

            logger.debug(f"Log queued: {endpoint} for user {user_id}. Queue size: {size}")

            if size >= self.batch_size:
                self._signal()
            return True

        except Exception as e:
            logger.error(f"Error queueing usage log for user {user_id}: {e}")
            return False

    def _signal(self) -> None:
        """Wake the background flusher from any thread."""
        loop, wakeup = self._loop, self._wakeup
        if loop is None or wakeup is None or loop.is_closed():
            return
        try:
            running_loop = asyncio.get_running_loop()
        except RuntimeError:
            running_loop = None

        if running_loop is loop:
            wakeup.set()
        else:
            loop.call_soon_threadsafe(wakeup.set)

    def _take_batch(self) -> List[UsageLogEntry]:
        with self._lock:
            count = min(self.batch_size, len(self._entries))
            self._in_flight = [self._entries.popleft() for _ in range(count)]
            return list(self._in_flight)

    def _requeue(self, batch: List[UsageLogEntry]) -> None:
        with self._lock:
            self._in_flight = []
            self._entries.extendleft(reversed(batch))
            overflow = len(self._entries) - self.max_queue_size
            for _ in range(max(0, overflow)):
                self._entries.popleft()
                self.dropped += 1
            if overflow > 0:
                logger.warning(f"Dropped {overflow} oldest logs after failed flush")

    async def flush(self) -> int:
        """
        Write one batch of the oldest entries.

        Only one flush runs at a time. On failure the batch is put back at
        the front of the queue, in order.

        Returns:
            Number of entries written (0 when empty or on failure)
        """
        async with self._flush_lock:
            batch = self._take_batch()
            if not batch:
                return 0

            logger.debug(f"Processing {len(batch)} logs from queue. Remaining: {len(self)}")
            try:
                await self.writer(batch)
            except Exception as e:
                logger.error(f"Error inserting log batch of {len(batch)}: {e}")
                self._requeue(batch)
                return 0

            with self._lock:
                self._in_flight = []
            self.written += len(batch)
            logger.debug(f"Successfully inserted {len(batch)} logs")
            return len(batch)

    async def drain(self) -> int:
        """Flush until the queue is empty or a write fails."""
        total = 0
        while len(self) > 0:
            written = await self.flush()
            if written == 0:
                break
            total += written
        return total

    async def _run(self) -> None:
        while True:
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=self.flush_interval)
            except asyncio.TimeoutError:
                pass
            self._wakeup.clear()

            written = await self.flush()
            # keep going while full batches are waiting
            while written and len(self) >= self.batch_size:
                written = await self.flush()

    def start(self) -> None:
        """Start the background flusher on the running event loop."""
        if self.running:
            return
        self._loop = asyncio.get_running_loop()
        self._wakeup = asyncio.Event()
        self._task = self._loop.create_task(self._run(), name="usage-log-flusher")
        logger.info(
            f"Usage log queue started (batch={self.batch_size}, "
            f"interval={self.flush_interval}s, max={self.max_queue_size})"
        )

    async def stop(self) -> None:
        """Stop the flusher and make a best-effort final flush."""
        if self._task is not None:
            # never cancel the flusher in the middle of a write
            async with self._flush_lock:
                self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        written = await self.drain()
        remaining = len(self)
        if remaining:
            logger.warning(f"Usage log queue stopped with {remaining} unwritten entries")
        else:
            logger.info(f"Usage log queue stopped ({written} entries written on shutdown)")
        self._loop = None
        self._wakeup = None
