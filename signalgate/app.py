from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .config import Settings, get_settings
from .database import build_engine, build_sessionmaker, init_models
from .errors import StoreUnavailable
from .logging_config import logger, setup_logging
from .routes import health, webhook
from .services.access_controller import AccessController
from .services.bot import BotDispatcher
from .services.key_store import KeyStore
from .services.poller import UpdatePoller
from .services.telegram import ChatTransport, TelegramClient
from .services.user_store import UserStore


def create_app(settings: Optional[Settings] = None, transport: Optional[ChatTransport] = None) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        engine = build_engine(settings.database_url)
        await init_models(engine)
        sessions = build_sessionmaker(engine)
        controller = AccessController.from_settings(KeyStore(sessions), UserStore(sessions), settings)
        chat = transport or TelegramClient.from_settings(settings)
        dispatcher = BotDispatcher.from_settings(controller, chat, settings)

        app.state.settings = settings
        app.state.engine = engine
        app.state.controller = controller
        app.state.transport = chat
        app.state.dispatcher = dispatcher

        poller: Optional[UpdatePoller] = None
        if settings.telegram_mode == "polling" and isinstance(chat, TelegramClient) and chat.enabled:
            poller = UpdatePoller(chat, dispatcher, timeout=settings.poll_timeout_seconds)
            poller.start()
        logger.info("app.start", mode=settings.telegram_mode, quota_window=settings.quota_window, limit=settings.quota_limit)
        try:
            yield
        finally:
            if poller is not None:
                await poller.stop()
            if isinstance(chat, TelegramClient):
                await chat.aclose()
            await engine.dispose()
            logger.info("app.stop")

    app = FastAPI(title=settings.app_name, version="1.0.0", lifespan=lifespan)

    @app.exception_handler(StoreUnavailable)
    async def store_unavailable_handler(request: Request, exc: StoreUnavailable) -> JSONResponse:  # pragma: no cover - wiring
        logger.error("store.unavailable", path=str(request.url.path), reason=str(exc))
        return JSONResponse(status_code=503, content={"error_code": "STORE_UNAVAILABLE", "message": "Try again later"})

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:  # pragma: no cover - wiring
        logger.warning("value.error", path=str(request.url.path), reason=str(exc))
        return JSONResponse(status_code=400, content={"error_code": "VALUE_ERROR", "message": str(exc)})

    app.include_router(health.router)
    app.include_router(webhook.router)

    @app.get("/", include_in_schema=False)
    async def root() -> JSONResponse:  # pragma: no cover - simple endpoint
        return JSONResponse({"message": f"{settings.app_name} is running."})

    return app


app = create_app()
