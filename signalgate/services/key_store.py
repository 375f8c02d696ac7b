from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from ..database import SessionFactory, transaction
from ..errors import DuplicateKey
from ..logging_config import key_fingerprint, logger
from ..models.schemas import AccessKey, ClaimOutcome
from ..models.tables import AccessKeyRecord
from ..utils.clock import to_db


class KeyStore:
    """Owns access key records.

    ``claim`` is the only operation with a concurrency contract: it is a
    single conditional UPDATE, so of any number of concurrent claims for
    the same key at most one changes the row.
    """

    def __init__(self, sessions: SessionFactory) -> None:
        self._sessions = sessions

    async def create(self, value: str, expires_at: Optional[datetime], created_by: Optional[int]) -> AccessKey:
        record = AccessKeyRecord(
            key_value=value,
            expires_at=to_db(expires_at),
            created_by_admin_id=created_by,
            is_active=True,
        )
        try:
            async with transaction(self._sessions, "keys") as session:
                session.add(record)
                await session.flush()
        except IntegrityError as exc:
            logger.info("key.duplicate", key_fingerprint=key_fingerprint(value))
            raise DuplicateKey("key value already exists") from exc
        return AccessKey.model_validate(record)

    async def find_by_value(self, value: str) -> Optional[AccessKey]:
        statement = select(AccessKeyRecord).where(AccessKeyRecord.key_value == value)
        return await self._fetch_one(statement)

    async def find_by_id(self, key_id: int) -> Optional[AccessKey]:
        statement = select(AccessKeyRecord).where(AccessKeyRecord.id == key_id)
        return await self._fetch_one(statement)

    async def claim(self, key_id: int, user_id: int) -> ClaimOutcome:
        statement = (
            update(AccessKeyRecord)
            .where(
                AccessKeyRecord.id == key_id,
                AccessKeyRecord.user_id.is_(None),
                AccessKeyRecord.is_active,
            )
            .values(user_id=user_id)
            .execution_options(synchronize_session=False)
        )
        async with transaction(self._sessions, "keys") as session:
            result = await session.execute(statement)
            changed = result.rowcount == 1
        if changed:
            return ClaimOutcome.CLAIMED

        current = await self.find_by_id(key_id)
        if current is None or not current.active:
            return ClaimOutcome.INACTIVE
        if current.owner_user_id == user_id:
            # a previous claim by this user whose binding never completed
            return ClaimOutcome.CLAIMED
        return ClaimOutcome.ALREADY_CLAIMED

    async def deactivate(self, key_id: int) -> bool:
        statement = (
            update(AccessKeyRecord)
            .where(AccessKeyRecord.id == key_id)
            .values(is_active=False)
            .execution_options(synchronize_session=False)
        )
        async with transaction(self._sessions, "keys") as session:
            result = await session.execute(statement)
            return result.rowcount == 1

    async def _fetch_one(self, statement) -> Optional[AccessKey]:
        async with transaction(self._sessions, "keys") as session:
            record = (await session.execute(statement)).scalar_one_or_none()
            if record is None:
                return None
            return AccessKey.model_validate(record)
