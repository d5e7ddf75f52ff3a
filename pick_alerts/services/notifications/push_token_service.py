import json
from typing import List

from fastapi import Depends
from sqlalchemy import and_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from pick_alerts.db.models import PushToken
from pick_alerts.db.session import get_async_session
from pick_alerts.schemas.notification_schemas import RegisterPushTokenRequest
from pick_alerts.utils.errors import StoreUnavailableError
from pick_alerts.utils.logging import get_logger

logger = get_logger()


class PushTokenService:
    """One active token per install; its holders are the bulk scheduling recipients"""

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    async def _find(self, provider: str, token: str):
        result = await self.db.execute(
            select(PushToken).where(
                and_(PushToken.provider == provider, PushToken.token == token)
            )
        )
        return result.scalar_one_or_none()

    async def register(self, request: RegisterPushTokenRequest) -> PushToken:
        """Upsert on (provider, token); a re-registered token moves to the new user."""
        device_info = json.dumps(request.device_info) if request.device_info else None
        try:
            row = await self._find(request.provider, request.token)
            if row is None:
                row = PushToken(
                    user_id=request.user_id,
                    provider=request.provider,
                    token=request.token,
                    device_info=device_info,
                    is_active=True,
                )
                self.db.add(row)
            else:
                row.user_id = request.user_id
                row.device_info = device_info
                row.is_active = True

            try:
                await self.db.commit()
            except IntegrityError:
                # Same token registered concurrently; update the winner's row
                await self.db.rollback()
                row = await self._find(request.provider, request.token)
                row.user_id = request.user_id
                row.device_info = device_info
                row.is_active = True
                await self.db.commit()

            await self.db.refresh(row)
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise StoreUnavailableError(f"Failed to register push token: {e}")

        logger.info(f"Registered {request.provider} push token for user {request.user_id}")
        return row

    async def deactivate_for_user(self, user_id: str) -> int:
        try:
            result = await self.db.execute(
                update(PushToken)
                .where(and_(PushToken.user_id == user_id, PushToken.is_active == True))
                .values(is_active=False)
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise StoreUnavailableError(f"Failed to deactivate push tokens: {e}")

        logger.info(f"Deactivated {result.rowcount} push tokens of user {user_id}")
        return result.rowcount

    async def list_active_user_ids(self) -> List[str]:
        try:
            result = await self.db.execute(
                select(PushToken.user_id)
                .where(PushToken.is_active == True)
                .distinct()
                .order_by(PushToken.user_id)
            )
        except SQLAlchemyError as e:
            raise StoreUnavailableError(f"Failed to list push token holders: {e}")
        return list(result.scalars().all())


def get_push_token_service(
    db: AsyncSession = Depends(get_async_session),
) -> PushTokenService:
    return PushTokenService(db)
