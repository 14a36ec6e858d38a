"""
Archive Change Feed

Pushes every archive record to the open subscribers of the owning user once
the unit of work that wrote it has committed. Any ledger surface can observe
reconciliations performed elsewhere without polling.

Usage:
    async with archive_feed.subscribe(user_id) as subscription:
        async for record in subscription:
            ...
"""

import asyncio
import logging
from collections import defaultdict
from typing import Dict, Optional, Set

from models.schemas import DeletedTransaction

logger = logging.getLogger(__name__)


_CLOSED = object()

DEFAULT_MAX_PENDING = 256


class ArchiveSubscription:
    """
    Async iterator over archive records for one user.

    A subscriber that lets more than max_pending records pile up is closed
    and flagged as lagged; it keeps the records already queued and must
    reload the archive to catch up.
    """

    def __init__(self, feed: "ArchiveFeed", user_id: str, max_pending: int = DEFAULT_MAX_PENDING):
        self.feed = feed
        self.user_id = user_id
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_pending)
        self.closed = False
        self.lagged = False

    def push(self, record: DeletedTransaction) -> bool:
        if self.closed:
            return False
        try:
            self._queue.put_nowait(record)
        except asyncio.QueueFull:
            logger.warning(
                f"Archive feed subscriber for user {self.user_id} fell behind "
                f"({self._queue.maxsize} records pending), closing"
            )
            self.lagged = True
            self.close()
            return False
        return True

    def close(self):
        if self.closed:
            return
        self.closed = True
        self.feed.unsubscribe(self)
        # A full queue has no waiting reader; the iterator stops once drained
        if not self._queue.full():
            self._queue.put_nowait(_CLOSED)

    def pending(self) -> int:
        """Records delivered but not yet consumed"""
        return self._queue.qsize()

    def __aiter__(self):
        return self

    async def next(self) -> Optional[DeletedTransaction]:
        """Wait for the next record; None once the subscription is closed and drained"""
        if self.closed and self._queue.empty():
            return None
        item = await self._queue.get()
        if item is _CLOSED:
            return None
        return item

    async def __anext__(self) -> DeletedTransaction:
        record = await self.next()
        if record is None:
            raise StopAsyncIteration
        return record

    async def __aenter__(self) -> "ArchiveSubscription":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.close()


class ArchiveFeed:
    """
    In-process fan-out of archive inserts, keyed by user.
    """

    def __init__(self):
        self._subscribers: Dict[str, Set[ArchiveSubscription]] = defaultdict(set)

    def subscribe(self, user_id: str, max_pending: int = DEFAULT_MAX_PENDING) -> ArchiveSubscription:
        subscription = ArchiveSubscription(self, user_id, max_pending=max_pending)
        self._subscribers[user_id].add(subscription)
        logger.debug(f"Archive feed subscriber added for user {user_id}")
        return subscription

    def unsubscribe(self, subscription: ArchiveSubscription):
        subscribers = self._subscribers.get(subscription.user_id)
        if not subscribers:
            return
        subscribers.discard(subscription)
        if not subscribers:
            del self._subscribers[subscription.user_id]

    def publish(self, record: DeletedTransaction) -> int:
        """
        Deliver a committed archive record to the owner's subscribers.

        Returns:
            Number of subscribers the record was delivered to
        """
        subscribers = list(self._subscribers.get(record.user_id, ()))
        return sum(1 for subscription in subscribers if subscription.push(record))

    def subscriber_count(self, user_id: str) -> int:
        return len(self._subscribers.get(user_id, ()))


# Global instance
archive_feed = ArchiveFeed()
