"""
Mutation Queue: every local change waiting to reach the server.

One row per (entity type, offline GUID). Re-enqueueing an entity replaces
the pending payload instead of appending, so the server only ever sees
the latest local state of a record.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional
import logging

from sqlalchemy import select, delete, func
from sqlalchemy.ext.asyncio import AsyncSession

from fieldtracker.client.policies import (
    EvictionPolicy,
    FailureKind,
    RetryClassifier,
    calculate_backoff_delay,
)
from fieldtracker.client.records import FailedItem, QueueItem
from fieldtracker.client.store import OfflineStore
from fieldtracker.sync.timeutils import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FailureOutcome:
    kind: FailureKind
    retry_count: int
    evicted: bool
    next_attempt_at: Optional[datetime] = None


class MutationQueue:
    def __init__(
        self,
        store: OfflineStore,
        classifier: Optional[RetryClassifier] = None,
        eviction: Optional[EvictionPolicy] = None,
        backoff_base: float = 1.0,
    ):
        self.store = store
        self.classifier = classifier or RetryClassifier()
        self.eviction = eviction or EvictionPolicy()
        self.backoff_base = backoff_base

    async def enqueue(
        self,
        entity_type: str,
        entity_guid: str,
        payload: dict,
        session: Optional[AsyncSession] = None,
    ) -> QueueItem:
        """
        Queue an entity for upload, coalescing with any pending item for it.

        A coalesced item keeps its original position in the queue, takes
        the new payload and starts its retry count over.
        """
        now = utcnow()
        async with self.store.session_scope(session) as s:
            result = await s.execute(
                select(QueueItem).where(
                    QueueItem.entity_type == entity_type,
                    QueueItem.entity_guid == str(entity_guid),
                )
            )
            item = result.scalar_one_or_none()
            if item is None:
                item = QueueItem(
                    entity_type=entity_type,
                    entity_guid=str(entity_guid),
                    payload=payload,
                    retry_count=0,
                    version=1,
                    created_at=now,
                    updated_at=now,
                )
                s.add(item)
            else:
                item.payload = payload
                item.retry_count = 0
                item.last_error = None
                item.next_attempt_at = None
                item.version = item.version + 1
                item.updated_at = now
            await s.flush()
            return item

    async def dequeue_batch(
        self,
        max_items: int,
        now: Optional[datetime] = None,
        exclude_ids=(),
    ) -> list[QueueItem]:
        """
        Oldest items first, across all entity types.

        Items stay in the queue until ``remove``; items still backing off
        are skipped.
        """
        now = now or utcnow()
        query = (
            select(QueueItem)
            .where((QueueItem.next_attempt_at.is_(None)) | (QueueItem.next_attempt_at <= now))
            .order_by(QueueItem.created_at, QueueItem.id)
            .limit(max_items)
        )
        if exclude_ids:
            query = query.where(QueueItem.id.notin_(list(exclude_ids)))
        async with self.store.session_scope(None) as s:
            return list((await s.execute(query)).scalars().all())

    async def record_failure(
        self,
        item: QueueItem,
        error,
        session: Optional[AsyncSession] = None,
    ) -> Optional[FailureOutcome]:
        """
        Count a failed attempt; evict the item if the policy says so.

        Evicted items are copied to the failed-items list before they leave
        the queue. Returns None if the item is gone or was replaced by a
        newer payload while it was in flight.
        """
        kind = self.classifier.classify(error)
        message = getattr(error, "message", None) or str(error) or type(error).__name__
        now = utcnow()

        async with self.store.session_scope(session) as s:
            current = await s.get(QueueItem, item.id)
            if current is None:
                return None
            if current.version != item.version:
                # The payload that failed is no longer the one queued
                return None

            current.retry_count = current.retry_count + 1
            current.last_error = message
            current.updated_at = now

            if self.eviction.should_evict(current.retry_count, kind):
                s.add(FailedItem(
                    entity_type=current.entity_type,
                    entity_guid=current.entity_guid,
                    payload=current.payload,
                    retry_count=current.retry_count,
                    last_error=message,
                    failure_kind=kind.value,
                    created_at=current.created_at,
                    failed_at=now,
                ))
                await s.delete(current)
                await s.flush()
                logger.warning(
                    f"Evicted {current.entity_type} {current.entity_guid} after "
                    f"{current.retry_count} attempt(s) ({kind.value}): {message}"
                )
                return FailureOutcome(kind=kind, retry_count=current.retry_count, evicted=True)

            delay = calculate_backoff_delay(current.retry_count, self.backoff_base)
            current.next_attempt_at = now + timedelta(seconds=delay)
            await s.flush()
            return FailureOutcome(
                kind=kind,
                retry_count=current.retry_count,
                evicted=False,
                next_attempt_at=current.next_attempt_at,
            )

    async def remove(self, item: QueueItem, session: Optional[AsyncSession] = None) -> bool:
        """
        Drop an acknowledged item.

        Only the exact version that was sent is removed; if the entity was
        edited again meanwhile, the newer payload stays queued.
        """
        async with self.store.session_scope(session) as s:
            result = await s.execute(
                delete(QueueItem).where(QueueItem.id == item.id, QueueItem.version == item.version)
            )
            return result.rowcount > 0

    async def contains(self, entity_type: str, entity_guid: str, session: Optional[AsyncSession] = None) -> bool:
        async with self.store.session_scope(session) as s:
            result = await s.execute(
                select(QueueItem.id).where(
                    QueueItem.entity_type == entity_type,
                    QueueItem.entity_guid == str(entity_guid),
                )
            )
            return result.scalar_one_or_none() is not None

    async def has_failed(self, entity_type: str, entity_guid: str, session: Optional[AsyncSession] = None) -> bool:
        async with self.store.session_scope(session) as s:
            result = await s.execute(
                select(FailedItem.id).where(
                    FailedItem.entity_type == entity_type,
                    FailedItem.entity_guid == str(entity_guid),
                ).limit(1)
            )
            return result.scalar_one_or_none() is not None

    async def pending_count(self) -> int:
        async with self.store.session_scope(None) as s:
            return (await s.execute(select(func.count(QueueItem.id)))).scalar_one()

    async def failed_items(self) -> list[FailedItem]:
        async with self.store.session_scope(None) as s:
            result = await s.execute(select(FailedItem).order_by(FailedItem.failed_at, FailedItem.id))
            return list(result.scalars().all())

    async def retry_failed(self, failed_id: int) -> QueueItem:
        """Put an evicted item back in the queue with a fresh retry count."""
        async with self.store.transaction() as s:
            failed = await s.get(FailedItem, failed_id)
            if failed is None:
                raise LookupError(f"Failed item {failed_id} not found")
            item = await self.enqueue(failed.entity_type, failed.entity_guid, failed.payload, session=s)
            await s.delete(failed)
            await s.flush()
        logger.info(f"Re-queued failed {item.entity_type} {item.entity_guid}")
        return item

    async def clear_failed(self) -> int:
        async with self.store.transaction() as s:
            result = await s.execute(delete(FailedItem))
            return result.rowcount
