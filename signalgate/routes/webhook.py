from __future__ import annotations

import secrets
from typing import Optional

from fastapi import APIRouter, Header, HTTPException, Request

from ..logging_config import logger
from ..models.schemas import TelegramUpdate, WebhookAck
from ..services.events import parse_update

router = APIRouter(prefix="/telegram", tags=["telegram"])


@router.post("/webhook", response_model=WebhookAck)
async def receive_update(
    update: TelegramUpdate,
    request: Request,
    secret_token: Optional[str] = Header(default=None, alias="X-Telegram-Bot-Api-Secret-Token"),
) -> WebhookAck:
    expected = request.app.state.settings.webhook_secret
    if expected and not secrets.compare_digest(secret_token or "", expected):
        logger.warning("webhook.bad_secret", update_id=update.update_id)
        raise HTTPException(status_code=401, detail={"error_code": "AUTH_INVALID", "message": "Invalid webhook secret"})

    event = parse_update(update)
    if event is None:
        return WebhookAck(handled=[])
    await request.app.state.dispatcher.dispatch(event)
    return WebhookAck(handled=[event.kind])
