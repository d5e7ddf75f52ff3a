from fastapi import Depends
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from pick_alerts.db.models import NotificationPreferences
from pick_alerts.db.session import get_async_session
from pick_alerts.schemas.notification_schemas import (
    NotificationPreferencesSchema,
    UpdateNotificationPreferencesRequest,
)
from pick_alerts.utils.errors import StoreUnavailableError
from pick_alerts.utils.logging import get_logger

logger = get_logger()


class PreferenceService:
    """Per-user channel flags, created with every flag on at first access"""

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    @staticmethod
    def _to_schema(row: NotificationPreferences) -> NotificationPreferencesSchema:
        return NotificationPreferencesSchema(
            master=row.master,
            thirty_min=row.thirty_min,
            five_min=row.five_min,
            live=row.live,
        )

    async def _get_or_create(self, user_id: str) -> NotificationPreferences:
        result = await self.db.execute(
            select(NotificationPreferences).where(
                NotificationPreferences.user_id == user_id
            )
        )
        row = result.scalar_one_or_none()
        if row:
            return row

        row = NotificationPreferences(user_id=user_id)
        self.db.add(row)
        try:
            await self.db.commit()
        except IntegrityError:
            # Another request created the defaults first
            await self.db.rollback()
            result = await self.db.execute(
                select(NotificationPreferences).where(
                    NotificationPreferences.user_id == user_id
                )
            )
            return result.scalar_one()

        logger.info(f"Created default notification preferences for user {user_id}")
        return row

    async def get_preferences(self, user_id: str) -> NotificationPreferencesSchema:
        try:
            row = await self._get_or_create(user_id)
            return self._to_schema(row)
        except SQLAlchemyError as e:
            raise StoreUnavailableError(
                f"Failed to load notification preferences for {user_id}: {e}"
            )

    async def update_preferences(
        self, user_id: str, changes: UpdateNotificationPreferencesRequest
    ) -> NotificationPreferencesSchema:
        """
        Apply the provided flags only.

        Existing scheduled notifications are not touched: preferences gate
        future creation, not what is already scheduled.
        """
        try:
            row = await self._get_or_create(user_id)
            for field, value in changes.model_dump(exclude_none=True).items():
                setattr(row, field, value)
            await self.db.commit()
            await self.db.refresh(row)
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise StoreUnavailableError(
                f"Failed to update notification preferences for {user_id}: {e}"
            )

        logger.info(f"Updated notification preferences for user {user_id}")
        return self._to_schema(row)


class DefaultPreferenceSource:
    """All channels on; used when no durable store is reachable"""

    async def get_preferences(self, user_id: str) -> NotificationPreferencesSchema:
        return NotificationPreferencesSchema()


def get_preference_service(
    db: AsyncSession = Depends(get_async_session),
) -> PreferenceService:
    return PreferenceService(db)
