from __future__ import annotations

import asyncio
from typing import Optional

from pydantic import ValidationError

from ..logging_config import logger
from ..models.schemas import TelegramUpdate
from .bot import BotDispatcher
from .events import parse_update
from .telegram import TelegramClient, TelegramError


class UpdatePoller:
    """Long-polls ``getUpdates`` and feeds each update to the dispatcher."""

    def __init__(self, client: TelegramClient, dispatcher: BotDispatcher, timeout: int = 25, idle_backoff: float = 5.0) -> None:
        self.client = client
        self.dispatcher = dispatcher
        self.timeout = timeout
        self.idle_backoff = idle_backoff
        self._offset: Optional[int] = None
        self._task: Optional[asyncio.Task] = None

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self.run(), name="telegram-poller")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def run(self) -> None:
        logger.info("poller.start", timeout=self.timeout)
        while True:
            try:
                updates = await self.client.get_updates(self._offset, self.timeout)
            except TelegramError as exc:
                logger.warning("poller.fetch_failed", error=str(exc))
                await asyncio.sleep(self.idle_backoff)
                continue
            for raw in updates:
                await self.handle(raw)

    async def handle(self, raw: dict) -> None:
        update_id = raw.get("update_id")
        if isinstance(update_id, int):
            self._offset = update_id + 1
        try:
            update = TelegramUpdate.model_validate(raw)
        except ValidationError as exc:
            logger.warning("poller.invalid_update", update_id=update_id, error=str(exc))
            return
        event = parse_update(update)
        if event is not None:
            await self.dispatcher.dispatch(event)
