"""Inbound chat events.

Free text is not overloaded as "maybe a key": the parser classifies every
update into exactly one event type before any handler sees it.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Tuple, Union

from ..models.schemas import TelegramUpdate


@dataclass(frozen=True)
class CommandEvent:
    user_id: int
    chat_id: int
    name: str
    args: Tuple[str, ...] = field(default_factory=tuple)
    kind: str = "command"


@dataclass(frozen=True)
class CallbackEvent:
    user_id: int
    chat_id: int
    callback_id: str
    data: str
    message_id: Optional[int] = None
    kind: str = "callback"


@dataclass(frozen=True)
class KeySubmissionAttempt:
    user_id: int
    chat_id: int
    text: str
    kind: str = "key_submission"


InboundEvent = Union[CommandEvent, CallbackEvent, KeySubmissionAttempt]


def parse_command(text: str) -> Tuple[str, Tuple[str, ...]]:
    head, *args = text.strip().split()
    # "/generate_key@SomeBot week" addresses a bot in group chats
    name = head[1:].split("@", 1)[0].lower()
    return name, tuple(args)


def parse_update(update: TelegramUpdate) -> Optional[InboundEvent]:
    callback = update.callback_query
    if callback is not None:
        if callback.from_user.is_bot or not callback.data:
            return None
        chat_id = callback.message.chat.id if callback.message else callback.from_user.id
        message_id = callback.message.message_id if callback.message else None
        return CallbackEvent(
            user_id=callback.from_user.id,
            chat_id=chat_id,
            callback_id=callback.id,
            data=callback.data,
            message_id=message_id,
        )

    message = update.message
    if message is None or message.from_user is None or message.from_user.is_bot:
        return None
    text = (message.text or "").strip()
    if not text:
        return None
    if text.startswith("/") and len(text) > 1:
        name, args = parse_command(text)
        return CommandEvent(user_id=message.from_user.id, chat_id=message.chat.id, name=name, args=args)
    return KeySubmissionAttempt(user_id=message.from_user.id, chat_id=message.chat.id, text=text)
