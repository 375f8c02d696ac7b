from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

import httpx

from ..config import Settings
from ..logging_config import logger

Keyboard = Dict[str, Any]


class TelegramError(Exception):
    pass


class ChatTransport(Protocol):
    async def send_text(self, chat_id: int, text: str, keyboard: Optional[Keyboard] = None, parse_mode: Optional[str] = None) -> None: ...

    async def send_photo(self, chat_id: int, image_path: Path, caption: str, keyboard: Optional[Keyboard] = None) -> None: ...

    async def edit_text(self, chat_id: int, message_id: int, text: str, keyboard: Optional[Keyboard] = None) -> None: ...

    async def answer_callback(self, callback_id: str) -> None: ...


class TelegramClient:
    """Bot API client. Outbound deliveries are fire-and-forget: failures are logged, never raised."""

    def __init__(
        self,
        token: Optional[str],
        base_url: str = "https://api.telegram.org",
        timeout: float = 10.0,
        max_retries: int = 2,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._token = token
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._max_retries = max_retries
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "TelegramClient":
        return cls(
            settings.bot_token,
            base_url=settings.telegram_api_base,
            timeout=settings.request_timeout_seconds,
            max_retries=settings.request_max_retries,
        )

    @property
    def enabled(self) -> bool:
        return bool(self._token)

    async def send_text(self, chat_id: int, text: str, keyboard: Optional[Keyboard] = None, parse_mode: Optional[str] = None) -> None:
        payload: Dict[str, Any] = {"chat_id": chat_id, "text": text}
        if keyboard:
            payload["reply_markup"] = keyboard
        if parse_mode:
            payload["parse_mode"] = parse_mode
        await self._deliver("sendMessage", payload)

    async def send_photo(self, chat_id: int, image_path: Path, caption: str, keyboard: Optional[Keyboard] = None) -> None:
        try:
            content = Path(image_path).read_bytes()
        except OSError as exc:
            logger.warning("telegram.photo_unreadable", path=str(image_path), error=str(exc))
            await self.send_text(chat_id, caption, keyboard)
            return
        form: Dict[str, Any] = {"chat_id": str(chat_id), "caption": caption}
        if keyboard:
            form["reply_markup"] = json.dumps(keyboard)
        files = {"photo": (Path(image_path).name, content, "image/png")}
        await self._deliver("sendPhoto", form, files=files)

    async def edit_text(self, chat_id: int, message_id: int, text: str, keyboard: Optional[Keyboard] = None) -> None:
        payload: Dict[str, Any] = {"chat_id": chat_id, "message_id": message_id, "text": text}
        if keyboard:
            payload["reply_markup"] = keyboard
        await self._deliver("editMessageText", payload)

    async def answer_callback(self, callback_id: str) -> None:
        await self._deliver("answerCallbackQuery", {"callback_query_id": callback_id})

    async def get_updates(self, offset: Optional[int], timeout: int) -> List[Dict[str, Any]]:
        payload: Dict[str, Any] = {"timeout": timeout, "allowed_updates": ["message", "callback_query"]}
        if offset is not None:
            payload["offset"] = offset
        result = await self._call_with_retry("getUpdates", payload, request_timeout=self._timeout + timeout)
        return list(result or [])

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _deliver(self, method: str, payload: Dict[str, Any], files: Optional[Dict[str, Any]] = None) -> None:
        if not self.enabled:
            logger.info("telegram.disabled", method=method)
            return
        try:
            await self._call_with_retry(method, payload, files=files)
        except TelegramError as exc:
            logger.warning("telegram.send_failed", method=method, error=str(exc))

    async def _call_with_retry(
        self,
        method: str,
        payload: Dict[str, Any],
        files: Optional[Dict[str, Any]] = None,
        request_timeout: Optional[float] = None,
    ) -> Any:
        if not self.enabled:
            raise TelegramError("bot token not configured")
        backoff = 0.5
        last_error: Exception | None = None
        for attempt in range(self._max_retries + 1):
            try:
                return await self._call_api(method, payload, files, request_timeout)
            except httpx.HTTPStatusError as exc:
                last_error = exc
                status = exc.response.status_code
                if status < 500 and status != 429:
                    break
            except (httpx.TransportError, ValueError) as exc:
                last_error = exc
            if attempt == self._max_retries:
                break
            await asyncio.sleep(backoff)
            backoff *= 2
        raise TelegramError(f"{method} failed: {_describe(last_error)}") from last_error

    async def _call_api(
        self,
        method: str,
        payload: Dict[str, Any],
        files: Optional[Dict[str, Any]],
        request_timeout: Optional[float],
    ) -> Any:
        client = self._get_client()
        url = f"{self._base_url}/bot{self._token}/{method}"
        timeout = request_timeout or self._timeout
        if files:
            response = await client.post(url, data=payload, files=files, timeout=timeout)
        else:
            response = await client.post(url, json=payload, timeout=timeout)
        response.raise_for_status()
        body = response.json()
        if not body.get("ok"):
            raise ValueError(body.get("description") or "Bot API returned ok=false")
        return body.get("result")

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client


def _describe(exc: Exception | None) -> str:
    # httpx messages embed the request URL, which carries the bot token
    if isinstance(exc, httpx.HTTPStatusError):
        return f"HTTP {exc.response.status_code}"
    if isinstance(exc, ValueError):
        return str(exc)
    return type(exc).__name__
