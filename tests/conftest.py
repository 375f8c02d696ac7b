from __future__ import annotations

from itertools import count
from typing import Any, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

from signalgate.app import create_app
from signalgate.config import Settings
from signalgate.database import build_engine, build_sessionmaker, init_models
from signalgate.services.access_controller import AccessController
from signalgate.services.key_store import KeyStore
from signalgate.services.quota_policy import WindowKind
from signalgate.services.user_store import UserStore

ADMIN_ID = 7263932570


class RecordingTransport:
    enabled = True

    def __init__(self) -> None:
        self.messages: List[Dict[str, Any]] = []

    async def send_text(self, chat_id, text, keyboard=None, parse_mode=None) -> None:
        self.messages.append({"type": "text", "chat_id": chat_id, "text": text, "keyboard": keyboard, "parse_mode": parse_mode})

    async def send_photo(self, chat_id, image_path, caption, keyboard=None) -> None:
        self.messages.append({"type": "photo", "chat_id": chat_id, "text": caption, "path": str(image_path), "keyboard": keyboard})

    async def edit_text(self, chat_id, message_id, text, keyboard=None) -> None:
        self.messages.append({"type": "edit", "chat_id": chat_id, "message_id": message_id, "text": text, "keyboard": keyboard})

    async def answer_callback(self, callback_id) -> None:
        self.messages.append({"type": "answer", "callback_id": callback_id})

    def texts(self) -> List[str]:
        return [entry["text"] for entry in self.messages if "text" in entry]

    def last_text(self) -> Optional[str]:
        texts = self.texts()
        return texts[-1] if texts else None

    def clear(self) -> None:
        self.messages.clear()


class WebhookDriver:
    """Builds Telegram updates and posts them to the webhook."""

    def __init__(self, client: TestClient) -> None:
        self.client = client
        self._ids = count(1)

    def _user(self, user_id: int) -> Dict[str, Any]:
        return {"id": user_id, "is_bot": False, "first_name": "Tester"}

    def message(self, user_id: int, text: str, headers: Optional[Dict[str, str]] = None):
        update_id = next(self._ids)
        payload = {
            "update_id": update_id,
            "message": {
                "message_id": update_id,
                "from": self._user(user_id),
                "chat": {"id": user_id, "type": "private"},
                "date": 0,
                "text": text,
            },
        }
        return self.client.post("/telegram/webhook", json=payload, headers=headers or {})

    def callback(self, user_id: int, data: str):
        update_id = next(self._ids)
        payload = {
            "update_id": update_id,
            "callback_query": {
                "id": f"cb-{update_id}",
                "from": self._user(user_id),
                "message": {"message_id": 500 + update_id, "chat": {"id": user_id, "type": "private"}, "date": 0},
                "data": data,
            },
        }
        return self.client.post("/telegram/webhook", json=payload)


@pytest.fixture()
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'signalgate.db'}",
        admin_ids=[ADMIN_ID],
        telegram_mode="off",
        bot_token=None,
        signal_delay_seconds=0,
        images_dir=str(tmp_path / "images"),
        quota_limit=100,
    )


@pytest.fixture()
async def sessions(settings: Settings):
    engine = build_engine(settings.database_url)
    await init_models(engine)
    yield build_sessionmaker(engine)
    await engine.dispose()


@pytest.fixture()
def key_store(sessions) -> KeyStore:
    return KeyStore(sessions)


@pytest.fixture()
def user_store(sessions) -> UserStore:
    return UserStore(sessions)


@pytest.fixture()
def controller(key_store: KeyStore, user_store: UserStore) -> AccessController:
    return AccessController(
        key_store,
        user_store,
        limit=100,
        window_kind=WindowKind.CALENDAR_DAY,
        admin_ids=[ADMIN_ID],
    )


@pytest.fixture()
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture()
def client(settings: Settings, transport: RecordingTransport):
    app = create_app(settings, transport=transport)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture()
def telegram(client: TestClient) -> WebhookDriver:
    return WebhookDriver(client)
