import uuid
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Set, Tuple

from fastapi import Depends
from sqlalchemy import and_, delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from pick_alerts.db.models import ChannelType, ScheduledNotification
from pick_alerts.db.session import get_async_session
from pick_alerts.schemas.notification_schemas import (
    NotificationStatsResponse,
    ScheduledNotificationCreate,
    ScheduledNotificationItem,
)
from pick_alerts.utils.datetime_utils import to_naive_utc, to_utc, utc_now
from pick_alerts.utils.errors import StoreUnavailableError
from pick_alerts.utils.logging import get_logger

logger = get_logger()

RecordKey = Tuple[str, str, ChannelType]


def _unique_by_key(
    records: Sequence[ScheduledNotificationCreate],
) -> Dict[RecordKey, ScheduledNotificationCreate]:
    unique: Dict[RecordKey, ScheduledNotificationCreate] = {}
    for record in records:
        unique.setdefault(record.key, record)
    return unique


class ScheduledNotificationStore:
    """Durable scheduled-notification records; the source of truth for every session.

    Database failures surface as StoreUnavailableError so schedulers can retry
    on their next tick.
    """

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    @staticmethod
    def _to_item(row: ScheduledNotification) -> ScheduledNotificationItem:
        return ScheduledNotificationItem(
            id=row.id,
            event_id=row.event_id,
            user_id=row.user_id,
            channel_type=row.channel_type,
            scheduled_time=to_utc(row.scheduled_time),
            sent=row.sent,
            dedup_tag=row.dedup_tag,
            title=row.title,
            body=row.body,
            created_at=row.created_at,
        )

    @staticmethod
    def _to_row(record: ScheduledNotificationCreate) -> ScheduledNotification:
        return ScheduledNotification(
            event_id=record.event_id,
            user_id=record.user_id,
            channel_type=record.channel_type,
            scheduled_time=to_naive_utc(record.scheduled_time),
            sent=False,
            dedup_tag=record.dedup_tag,
            title=record.title,
            body=record.body,
        )

    async def _existing_unsent_keys(
        self, records: Sequence[ScheduledNotificationCreate]
    ) -> Set[RecordKey]:
        event_ids = {record.event_id for record in records}
        user_ids = {record.user_id for record in records}
        result = await self.db.execute(
            select(
                ScheduledNotification.event_id,
                ScheduledNotification.user_id,
                ScheduledNotification.channel_type,
            ).where(
                and_(
                    ScheduledNotification.sent == False,
                    ScheduledNotification.event_id.in_(event_ids),
                    ScheduledNotification.user_id.in_(user_ids),
                )
            )
        )
        return {(row[0], row[1], row[2]) for row in result.all()}

    async def create_many(self, records: Sequence[ScheduledNotificationCreate]) -> int:
        """
        Insert records, skipping any (event, user, channel) that already has an
        unsent row. Returns the number of rows actually inserted.
        """
        if not records:
            return 0

        try:
            unique = _unique_by_key(records)
            existing = await self._existing_unsent_keys(list(unique.values()))
            to_insert = [
                record for key, record in unique.items() if key not in existing
            ]
            if not to_insert:
                return 0

            try:
                self.db.add_all([self._to_row(record) for record in to_insert])
                await self.db.commit()
                created = len(to_insert)
            except IntegrityError:
                # A concurrent writer won part of the batch; insert what is left one by one
                await self.db.rollback()
                created = await self._insert_individually(to_insert)

        except SQLAlchemyError as e:
            await self.db.rollback()
            raise StoreUnavailableError(f"Failed to create scheduled notifications: {e}")

        logger.info(
            f"Created {created} scheduled notifications ({len(records) - created} skipped)"
        )
        return created

    async def _insert_individually(
        self, records: Sequence[ScheduledNotificationCreate]
    ) -> int:
        created = 0
        for record in records:
            self.db.add(self._to_row(record))
            try:
                await self.db.commit()
                created += 1
            except IntegrityError:
                await self.db.rollback()
        return created

    async def list_pending(
        self, user_id: Optional[str] = None, now: Optional[datetime] = None
    ) -> List[ScheduledNotificationItem]:
        """Unsent records whose fire time is still ahead, optionally for one user"""
        now = to_naive_utc(now or utc_now())
        conditions = [
            ScheduledNotification.sent == False,
            ScheduledNotification.scheduled_time > now,
        ]
        if user_id is not None:
            conditions.append(ScheduledNotification.user_id == user_id)
        return await self._list(conditions)

    async def list_overdue(
        self, user_id: Optional[str] = None, now: Optional[datetime] = None
    ) -> List[ScheduledNotificationItem]:
        """Unsent records whose fire time has already passed"""
        now = to_naive_utc(now or utc_now())
        conditions = [
            ScheduledNotification.sent == False,
            ScheduledNotification.scheduled_time <= now,
        ]
        if user_id is not None:
            conditions.append(ScheduledNotification.user_id == user_id)
        return await self._list(conditions)

    async def _list(self, conditions):
        try:
            query = (
                select(ScheduledNotification)
                .where(*conditions)
                .order_by(ScheduledNotification.scheduled_time)
            )
            result = await self.db.execute(query)
            return [self._to_item(row) for row in result.scalars().all()]
        except SQLAlchemyError as e:
            raise StoreUnavailableError(f"Failed to list scheduled notifications: {e}")

    async def mark_sent(self, notification_id: str) -> bool:
        """
        Flip sent to true. Safe to call any number of times: an already sent
        or since-deleted record counts as done.
        """
        try:
            result = await self.db.execute(
                update(ScheduledNotification)
                .where(
                    and_(
                        ScheduledNotification.id == notification_id,
                        ScheduledNotification.sent == False,
                    )
                )
                .values(sent=True)
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise StoreUnavailableError(
                f"Failed to mark notification {notification_id} as sent: {e}"
            )

        if result.rowcount == 0:
            logger.debug(f"Notification {notification_id} already sent or removed")
        return True

    async def delete_by_event(self, event_id: str) -> List[str]:
        """Remove the unsent records of a cancelled event; sent history stays."""
        try:
            result = await self.db.execute(
                select(ScheduledNotification.id).where(
                    and_(
                        ScheduledNotification.event_id == event_id,
                        ScheduledNotification.sent == False,
                    )
                )
            )
            ids = list(result.scalars().all())
            if ids:
                await self.db.execute(
                    delete(ScheduledNotification)
                    .where(ScheduledNotification.id.in_(ids))
                    .execution_options(synchronize_session=False)
                )
                await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise StoreUnavailableError(
                f"Failed to delete notifications of event {event_id}: {e}"
            )

        logger.info(f"Deleted {len(ids)} pending notifications of event {event_id}")
        return ids

    async def get_stats(self, now: Optional[datetime] = None) -> NotificationStatsResponse:
        now = to_naive_utc(now or utc_now())
        try:
            total = await self._count()
            sent = await self._count(ScheduledNotification.sent == True)
            pending = await self._count(
                ScheduledNotification.sent == False,
                ScheduledNotification.scheduled_time > now,
            )
        except SQLAlchemyError as e:
            raise StoreUnavailableError(f"Failed to compute notification stats: {e}")

        return NotificationStatsResponse(
            total=total, pending=pending, overdue=total - sent - pending, sent=sent
        )

    async def _count(self, *conditions) -> int:
        query = select(func.count(ScheduledNotification.id))
        if conditions:
            query = query.where(*conditions)
        result = await self.db.execute(query)
        return result.scalar() or 0


class InMemoryNotificationStore:
    """Non-durable store with the same contract as ScheduledNotificationStore.

    Used as the degraded client-only mode when no database is reachable;
    records vanish with the process.
    """

    def __init__(self):
        self._records: Dict[str, ScheduledNotificationItem] = {}

    async def create_many(self, records: Sequence[ScheduledNotificationCreate]) -> int:
        existing = {
            record.key for record in self._records.values() if not record.sent
        }
        created = 0
        for key, record in _unique_by_key(records).items():
            if key in existing:
                continue
            item = ScheduledNotificationItem(
                id=str(uuid.uuid4()),
                created_at=utc_now(),
                **record.model_dump(),
            )
            self._records[item.id] = item
            created += 1
        return created

    def _select(self, user_id: Optional[str], predicate) -> List[ScheduledNotificationItem]:
        items = [
            record
            for record in self._records.values()
            if not record.sent
            and (user_id is None or record.user_id == user_id)
            and predicate(record)
        ]
        return sorted(items, key=lambda record: record.scheduled_time)

    async def list_pending(
        self, user_id: Optional[str] = None, now: Optional[datetime] = None
    ) -> List[ScheduledNotificationItem]:
        now = to_utc(now or utc_now())
        return self._select(user_id, lambda record: record.scheduled_time > now)

    async def list_overdue(
        self, user_id: Optional[str] = None, now: Optional[datetime] = None
    ) -> List[ScheduledNotificationItem]:
        now = to_utc(now or utc_now())
        return self._select(user_id, lambda record: record.scheduled_time <= now)

    async def mark_sent(self, notification_id: str) -> bool:
        record = self._records.get(notification_id)
        if record is not None and not record.sent:
            self._records[notification_id] = record.model_copy(update={"sent": True})
        return True

    async def delete_by_event(self, event_id: str) -> List[str]:
        ids = [
            record.id
            for record in self._records.values()
            if record.event_id == event_id and not record.sent
        ]
        for notification_id in ids:
            del self._records[notification_id]
        return ids


def get_scheduled_notification_store(
    db: AsyncSession = Depends(get_async_session),
) -> ScheduledNotificationStore:
    return ScheduledNotificationStore(db)
