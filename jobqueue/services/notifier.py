import asyncio
import logging
from collections import defaultdict
from typing import AsyncIterator, Optional

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

from jobqueue.api.v1.metrics import EVENTS_DROPPED
from jobqueue.domain.models import JobChangeEvent
from jobqueue.settings import settings

logger = logging.getLogger(__name__)

_STAGED_KEY = "jobqueue.staged_events"


class Subscription:
    """A bounded per-subscriber buffer on one owner's topic."""

    def __init__(self, broker: "EventBroker", owner_id: str, maxsize: int):
        self.broker = broker
        self.owner_id = owner_id
        self.queue: asyncio.Queue[JobChangeEvent] = asyncio.Queue(maxsize=maxsize)

    async def get(self) -> JobChangeEvent:
        return await self.queue.get()

    async def __aiter__(self) -> AsyncIterator[JobChangeEvent]:
        while True:
            yield await self.queue.get()

    def close(self):
        self.broker.unsubscribe(self)


class EventBroker:
    """
    In-process pub/sub keyed by owner_id.

    Delivery is at-most-once: publish never blocks, and an event that does not
    fit in a subscriber's buffer is dropped for that subscriber. Consumers
    reconcile by re-reading the job.
    """

    def __init__(self):
        self._topics: dict[str, set[Subscription]] = defaultdict(set)

    def subscribe(self, owner_id: str, maxsize: Optional[int] = None) -> Subscription:
        sub = Subscription(self, owner_id, maxsize or settings.EVENT_QUEUE_SIZE)
        self._topics[owner_id].add(sub)
        return sub

    def unsubscribe(self, sub: Subscription):
        subs = self._topics.get(sub.owner_id)
        if subs is None:
            return
        subs.discard(sub)
        if not subs:
            del self._topics[sub.owner_id]

    def subscriber_count(self, owner_id: str) -> int:
        return len(self._topics.get(owner_id, ()))

    def publish(self, evt: JobChangeEvent) -> int:
        delivered = 0
        for sub in list(self._topics.get(evt.owner_id, ())):
            try:
                sub.queue.put_nowait(evt)
                delivered += 1
            except asyncio.QueueFull:
                EVENTS_DROPPED.inc()
                logger.debug("Dropped event for job %s (subscriber full)", evt.job_id)
        return delivered


broker = EventBroker()


def stage_event(session: AsyncSession, job) -> None:
    """
    Queue a change event for `job`; it is published only if the surrounding
    transaction commits. The payload is captured now, so later mutations in
    the same transaction produce their own events.
    """
    session.info.setdefault(_STAGED_KEY, []).append(JobChangeEvent.from_job(job))


@event.listens_for(Session, "after_commit")
def _publish_staged(session: Session):
    staged = session.info.pop(_STAGED_KEY, None)
    if not staged:
        return
    for evt in staged:
        try:
            broker.publish(evt)
        except Exception:
            # Notification is best-effort; the commit already happened.
            logger.exception("Failed to publish event for job %s", evt.job_id)


@event.listens_for(Session, "after_transaction_end")
def _discard_staged(session: Session, transaction):
    # Fires after after_commit on success; on rollback or close the staged
    # events describe state that never became visible.
    if transaction.parent is None:
        session.info.pop(_STAGED_KEY, None)
