from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class UserRecord(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    telegram_id: Mapped[int] = mapped_column(BigInteger, unique=True, nullable=False)
    current_key_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    last_signal_timestamp: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    signal_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    language_code: Mapped[str | None] = mapped_column(String(8), nullable=True)


class AccessKeyRecord(Base):
    __tablename__ = "access_keys"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    key_value: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    created_by_admin_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    # telegram id of the owner; NULL until claimed
    user_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True, index=True)
