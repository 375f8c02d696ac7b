from __future__ import annotations

from datetime import datetime
from typing import Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from ..database import SessionFactory, transaction
from ..errors import StoreUnavailable
from ..logging_config import logger
from ..models.schemas import BotUser
from ..models.tables import UserRecord
from ..utils.clock import to_db


class UserStore:
    def __init__(self, sessions: SessionFactory) -> None:
        self._sessions = sessions

    async def get(self, user_id: int) -> Optional[BotUser]:
        statement = select(UserRecord).where(UserRecord.telegram_id == user_id)
        async with transaction(self._sessions, "users") as session:
            record = (await session.execute(statement)).scalar_one_or_none()
            return BotUser.model_validate(record) if record is not None else None

    async def get_or_create(self, user_id: int) -> BotUser:
        existing = await self.get(user_id)
        if existing is not None:
            return existing
        record = UserRecord(telegram_id=user_id, signal_count=0)
        try:
            async with transaction(self._sessions, "users") as session:
                session.add(record)
                await session.flush()
        except IntegrityError as exc:
            # lost an insert race; the winner's row is the record
            logger.debug("user.create_race", user_id=user_id)
            winner = await self.get(user_id)
            if winner is None:
                logger.error("user.create_failed", user_id=user_id, reason=str(exc.orig))
                raise StoreUnavailable("users store unavailable") from exc
            return winner
        logger.info("user.created", user_id=user_id)
        return BotUser.model_validate(record)

    async def bind_key(self, user_id: int, key_id: int) -> bool:
        return await self._update(user_id, current_key_id=key_id)

    async def unbind_key(self, user_id: int, key_id: Optional[int] = None) -> bool:
        """Clear the binding; with ``key_id`` only if that key is still the bound one."""
        conditions = [UserRecord.telegram_id == user_id]
        if key_id is not None:
            conditions.append(UserRecord.current_key_id == key_id)
        return await self._execute_update(conditions, current_key_id=None)

    async def record_usage(
        self,
        user_id: int,
        window_start: datetime,
        count: int,
        expected: Optional[Tuple[Optional[datetime], int]] = None,
    ) -> bool:
        """Overwrite the usage window.

        With ``expected=(window_start, count)`` the write only happens if the
        stored counters still hold those values, which makes the caller's
        read-evaluate-write a compare-and-set. Returns whether a row changed.
        """
        conditions = [UserRecord.telegram_id == user_id]
        if expected is not None:
            expected_start, expected_count = expected
            if expected_start is None:
                conditions.append(UserRecord.last_signal_timestamp.is_(None))
            else:
                conditions.append(UserRecord.last_signal_timestamp == to_db(expected_start))
            conditions.append(UserRecord.signal_count == expected_count)
        return await self._execute_update(
            conditions,
            last_signal_timestamp=to_db(window_start),
            signal_count=count,
        )

    async def set_language(self, user_id: int, language: str) -> bool:
        return await self._update(user_id, language_code=language)

    async def _update(self, user_id: int, **values) -> bool:
        return await self._execute_update([UserRecord.telegram_id == user_id], **values)

    async def _execute_update(self, conditions, **values) -> bool:
        statement = (
            update(UserRecord)
            .where(*conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        async with transaction(self._sessions, "users") as session:
            result = await session.execute(statement)
            return result.rowcount == 1
