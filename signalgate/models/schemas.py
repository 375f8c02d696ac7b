from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from ..utils.clock import as_utc


class BaseSchema(BaseModel):
    """Base schema with attribute extraction enabled."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class AccessKey(BaseSchema):
    id: int
    value: str = Field(validation_alias=AliasChoices("key_value", "value"))
    expires_at: Optional[datetime] = None
    created_by: Optional[int] = Field(default=None, validation_alias=AliasChoices("created_by_admin_id", "created_by"))
    active: bool = Field(default=True, validation_alias=AliasChoices("is_active", "active"))
    owner_user_id: Optional[int] = Field(default=None, validation_alias=AliasChoices("user_id", "owner_user_id"))

    @field_validator("expires_at", mode="after")
    @classmethod
    def _utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)

    @property
    def claimed(self) -> bool:
        return self.owner_user_id is not None and self.active

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now > self.expires_at


class BotUser(BaseSchema):
    id: int = Field(validation_alias=AliasChoices("telegram_id", "id"))
    bound_key_id: Optional[int] = Field(default=None, validation_alias=AliasChoices("current_key_id", "bound_key_id"))
    usage_window_start: Optional[datetime] = Field(
        default=None, validation_alias=AliasChoices("last_signal_timestamp", "usage_window_start")
    )
    usage_count: int = Field(default=0, validation_alias=AliasChoices("signal_count", "usage_count"))
    language: Optional[str] = Field(default=None, validation_alias=AliasChoices("language_code", "language"))

    @field_validator("usage_window_start", mode="after")
    @classmethod
    def _utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)


class ClaimOutcome(str, Enum):
    CLAIMED = "claimed"
    ALREADY_CLAIMED = "already_claimed"
    INACTIVE = "inactive"


class AccessResult(str, Enum):
    NO_KEY = "no_key"
    KEY_EXPIRED = "key_expired"
    KEY_INACTIVE = "key_inactive"
    QUOTA_EXCEEDED = "quota_exceeded"
    ADMITTED = "admitted"
    ACTIVE = "active"
    UNAVAILABLE = "unavailable"


class ClaimResult(str, Enum):
    CLAIMED = "claimed"
    ALREADY_BOUND = "already_bound"
    INVALID_KEY = "invalid_key"
    UNAVAILABLE = "unavailable"


class IssueResult(str, Enum):
    ISSUED = "issued"
    FORBIDDEN = "forbidden"
    INVALID_DURATION = "invalid_duration"
    UNAVAILABLE = "unavailable"


class RevokeResult(str, Enum):
    REVOKED = "revoked"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    UNAVAILABLE = "unavailable"


class AccessDecision(BaseSchema):
    result: AccessResult
    user: Optional[BotUser] = None
    key: Optional[AccessKey] = None
    usage_count: Optional[int] = None

    @property
    def allowed(self) -> bool:
        return self.result in (AccessResult.ADMITTED, AccessResult.ACTIVE)


class ClaimDecision(BaseSchema):
    result: ClaimResult
    key_id: Optional[int] = None


class IssuedKey(BaseSchema):
    result: IssueResult
    value: Optional[str] = None
    expires_at: Optional[datetime] = None
    key_id: Optional[int] = None


# ----------------------------------------------------------------------
# Telegram Bot API payloads (only the fields the bot reads)
# ----------------------------------------------------------------------
class TelegramUser(BaseSchema):
    model_config = ConfigDict(extra="ignore")

    id: int
    is_bot: bool = False
    first_name: Optional[str] = None
    language_code: Optional[str] = None


class TelegramChat(BaseSchema):
    model_config = ConfigDict(extra="ignore")

    id: int
    type: str = "private"


class TelegramMessage(BaseSchema):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    message_id: int
    from_user: Optional[TelegramUser] = Field(default=None, alias="from")
    chat: TelegramChat
    date: Optional[int] = None
    text: Optional[str] = None


class TelegramCallbackQuery(BaseSchema):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    from_user: TelegramUser = Field(alias="from")
    message: Optional[TelegramMessage] = None
    data: Optional[str] = None


class TelegramUpdate(BaseSchema):
    model_config = ConfigDict(extra="ignore")

    update_id: int
    message: Optional[TelegramMessage] = None
    callback_query: Optional[TelegramCallbackQuery] = None


# ----------------------------------------------------------------------
# HTTP responses
# ----------------------------------------------------------------------
class SystemHealth(BaseSchema):
    status: str
    components: Dict[str, str] = Field(default_factory=dict)


class WebhookAck(BaseSchema):
    ok: bool = True
    handled: List[str] = Field(default_factory=list)
