from __future__ import annotations

import asyncio
import random
from typing import Awaitable, Callable, Dict, Iterable, Optional

from ..config import Settings
from ..errors import StoreUnavailable
from ..logging_config import logger
from ..models.schemas import AccessDecision, AccessResult, ClaimResult, IssueResult, RevokeResult
from ..utils.clock import format_expiry
from .access_controller import AccessController
from .assets import ImageLibrary
from .events import CallbackEvent, CommandEvent, InboundEvent, KeySubmissionAttempt
from .keyboards import contact_admin_keyboard, language_keyboard, main_keyboard
from .localization import PhraseCatalog
from .signals import generate_signal
from .telegram import ChatTransport

LANGUAGE_CALLBACK_PREFIX = "set_lang_"

# access results that end in a "get a new key" prompt
_DENIAL_PHRASES = {
    AccessResult.KEY_EXPIRED: "key_expired",
    AccessResult.KEY_INACTIVE: "key_invalid_not_active",
}


class BotDispatcher:
    """Routes inbound events through the AccessController and renders replies."""

    def __init__(
        self,
        controller: AccessController,
        transport: ChatTransport,
        catalog: PhraseCatalog,
        images: ImageLibrary,
        *,
        contact_url: str,
        locales: Optional[Iterable[str]] = None,
        signal_delay: float = 0.0,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.controller = controller
        self.transport = transport
        self.catalog = catalog
        self.images = images
        self.contact_url = contact_url
        self.locales = [code for code in (locales or catalog.locales) if catalog.supports(code)]
        self.signal_delay = signal_delay
        self.rng = rng or random.Random()
        self._commands: Dict[str, Callable[[CommandEvent, Optional[str]], Awaitable[None]]] = {
            "start": self._on_start,
            "give_signal": self._on_give_signal,
            "subscription_info": self._on_subscription_info,
            "generate_key": self._on_generate_key,
            "revoke_key": self._on_revoke_key,
        }

    @classmethod
    def from_settings(cls, controller: AccessController, transport: ChatTransport, settings: Settings) -> "BotDispatcher":
        catalog = PhraseCatalog.load(settings.supported_locales, default_locale=settings.default_locale)
        return cls(
            controller,
            transport,
            catalog,
            ImageLibrary(settings.images_dir),
            contact_url=settings.contact_admin_url,
            locales=settings.supported_locales,
            signal_delay=settings.signal_delay_seconds,
        )

    @property
    def default_locale(self) -> str:
        return self.catalog.default_locale

    async def dispatch(self, event: InboundEvent) -> None:
        locale: Optional[str] = None
        try:
            stored = await self.controller.preferred_language(event.user_id)
            locale = stored if stored in self.locales else None
            if isinstance(event, CallbackEvent):
                await self.transport.answer_callback(event.callback_id)
            if locale is None and not self._language_exempt(event):
                await self._ask_language(event.chat_id, "please_choose_language")
                return
            if isinstance(event, CommandEvent):
                handler = self._commands.get(event.name)
                if handler is None:
                    await self._show_home(event.chat_id, event.user_id, locale)
                else:
                    await handler(event, locale)
            elif isinstance(event, CallbackEvent):
                await self._on_callback(event, locale)
            elif isinstance(event, KeySubmissionAttempt):
                await self._on_key_submission(event, locale)
        except StoreUnavailable:
            logger.error("bot.store_unavailable", user_id=event.user_id, kind=event.kind)
            await self._say(event.chat_id, locale, "error_general")

    def _language_exempt(self, event: InboundEvent) -> bool:
        if isinstance(event, CommandEvent):
            return event.name == "start"
        if isinstance(event, CallbackEvent):
            return event.data.startswith(LANGUAGE_CALLBACK_PREFIX)
        return False

    # ------------------------------------------------------------------
    # Rendering helpers
    # ------------------------------------------------------------------
    def _t(self, locale: Optional[str], key: str, /, **params) -> str:
        return self.catalog.localize(locale or self.default_locale, key, params)

    async def _say(self, chat_id: int, locale: Optional[str], key: str, keyboard=None, **params) -> None:
        await self.transport.send_text(chat_id, self._t(locale, key, **params), keyboard)

    async def _ask_language(self, chat_id: int, key: str) -> None:
        await self._say(chat_id, None, key, language_keyboard(self.locales))

    def _main(self, locale: str):
        return main_keyboard(self.catalog, locale)

    def _contact(self, locale: str):
        return contact_admin_keyboard(self.catalog, locale, self.contact_url)

    async def _show_home(self, chat_id: int, user_id: int, locale: str, decision: Optional[AccessDecision] = None) -> None:
        decision = decision or await self.controller.inspect_binding(user_id)
        if decision.result == AccessResult.ACTIVE:
            await self._say(chat_id, locale, "start_has_key", self._main(locale))
            await self._say(chat_id, locale, "commands_info")
        elif decision.result == AccessResult.UNAVAILABLE:
            await self._say(chat_id, locale, "error_general")
        else:
            await self._say(chat_id, locale, "start_welcome", self._contact(locale))

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------
    async def _on_start(self, event: CommandEvent, locale: Optional[str]) -> None:
        if locale is None:
            await self._ask_language(event.chat_id, "start_welcome_initial_prompt")
            return
        await self._show_home(event.chat_id, event.user_id, locale)

    async def _on_give_signal(self, event: CommandEvent | CallbackEvent, locale: str) -> None:
        chat_id = event.chat_id
        decision = await self.controller.check_access(event.user_id)
        if decision.result == AccessResult.NO_KEY:
            await self._say(chat_id, locale, "no_active_key", self._contact(locale))
            return
        if decision.result in _DENIAL_PHRASES:
            await self._say(chat_id, locale, _DENIAL_PHRASES[decision.result], self._contact(locale))
            return
        if decision.result == AccessResult.QUOTA_EXCEEDED:
            await self._say(chat_id, locale, "limit_exceeded", limit=self.controller.limit)
            return
        if decision.result != AccessResult.ADMITTED:
            await self._say(chat_id, locale, "error_general")
            return

        await self._say(chat_id, locale, "generating_signal")
        if self.signal_delay > 0:
            await asyncio.sleep(self.signal_delay)
        signal = generate_signal(self.rng)
        caption = self._t(locale, "signal_message_format", steps=signal.steps, level=self._t(locale, f"level_{signal.level}"))
        image = self.images.lookup_image(locale, signal.steps)
        if image is not None:
            await self.transport.send_photo(chat_id, image, caption)
        else:
            await self.transport.send_text(chat_id, caption)
        logger.info("signal.sent", user_id=event.user_id, level=signal.level, steps=signal.steps, usage=decision.usage_count)
        await self._say(chat_id, locale, "start_has_key", self._main(locale))

    async def _on_subscription_info(self, event: CommandEvent | CallbackEvent, locale: str) -> None:
        chat_id = event.chat_id
        decision = await self.controller.subscription_status(event.user_id)
        if decision.result == AccessResult.NO_KEY:
            await self._say(chat_id, locale, "subscription_no_active", self._contact(locale))
        elif decision.result in _DENIAL_PHRASES:
            await self._say(chat_id, locale, _DENIAL_PHRASES[decision.result], self._contact(locale))
        elif decision.result == AccessResult.ACTIVE and decision.key is not None:
            if decision.key.expires_at is not None:
                await self._say(
                    chat_id,
                    locale,
                    "subscription_active_expires",
                    self._main(locale),
                    expiryDate=format_expiry(decision.key.expires_at),
                )
            else:
                await self._say(chat_id, locale, "subscription_active_lifetime", self._main(locale))
        else:
            await self._say(chat_id, locale, "error_general")

    async def _on_generate_key(self, event: CommandEvent, locale: str) -> None:
        duration = event.args[0] if event.args else None
        issued = await self.controller.issue_key(event.user_id, duration)
        if issued.result == IssueResult.FORBIDDEN:
            await self._say(event.chat_id, locale, "admin_no_permission")
        elif issued.result == IssueResult.INVALID_DURATION:
            await self._say(event.chat_id, locale, "admin_generate_key_format")
        elif issued.result == IssueResult.ISSUED:
            expires = format_expiry(issued.expires_at) if issued.expires_at else self._t(locale, "admin_key_generated_never")
            text = self._t(locale, "admin_key_generated", key=issued.value, expiresAt=expires)
            await self.transport.send_text(event.chat_id, text, None, "Markdown")
        else:
            await self._say(event.chat_id, locale, "error_general")

    async def _on_revoke_key(self, event: CommandEvent, locale: str) -> None:
        if self.controller.is_admin(event.user_id) and not event.args:
            await self._say(event.chat_id, locale, "admin_revoke_key_format")
            return
        result = await self.controller.revoke_key(event.user_id, event.args[0] if event.args else None)
        phrase = {
            RevokeResult.REVOKED: "admin_key_revoked",
            RevokeResult.FORBIDDEN: "admin_no_permission",
            RevokeResult.NOT_FOUND: "admin_key_not_found",
        }.get(result, "error_general")
        await self._say(event.chat_id, locale, phrase)

    # ------------------------------------------------------------------
    # Callbacks
    # ------------------------------------------------------------------
    async def _on_callback(self, event: CallbackEvent, locale: Optional[str]) -> None:
        if event.data.startswith(LANGUAGE_CALLBACK_PREFIX):
            await self._on_set_language(event, event.data[len(LANGUAGE_CALLBACK_PREFIX):])
        elif event.data == "give_signal":
            await self._on_give_signal(event, locale)
        elif event.data == "subscription_info":
            await self._on_subscription_info(event, locale)
        elif event.data == "change_language":
            text = self._t(locale, "change_lang_message")
            await self._edit_or_send(event, text, language_keyboard(self.locales))
        else:
            logger.debug("bot.unknown_callback", data=event.data)

    async def _on_set_language(self, event: CallbackEvent, code: str) -> None:
        if code not in self.locales:
            logger.info("bot.unsupported_language", user_id=event.user_id, language=code)
            return
        await self.controller.set_language(event.user_id, code)
        await self._edit_or_send(event, self._t(code, "language_set"))
        await self._show_home(event.chat_id, event.user_id, code)

    async def _edit_or_send(self, event: CallbackEvent, text: str, keyboard=None) -> None:
        if event.message_id is not None:
            await self.transport.edit_text(event.chat_id, event.message_id, text, keyboard)
        else:
            await self.transport.send_text(event.chat_id, text, keyboard)

    # ------------------------------------------------------------------
    # Free text
    # ------------------------------------------------------------------
    async def _on_key_submission(self, event: KeySubmissionAttempt, locale: str) -> None:
        decision = await self.controller.inspect_binding(event.user_id)
        if decision.result != AccessResult.NO_KEY:
            if decision.result in _DENIAL_PHRASES:
                await self._say(event.chat_id, locale, _DENIAL_PHRASES[decision.result], self._contact(locale))
            else:
                await self._show_home(event.chat_id, event.user_id, locale, decision)
            return

        claim = await self.controller.claim_key(event.user_id, event.text)
        if claim.result == ClaimResult.CLAIMED:
            await self._say(event.chat_id, locale, "key_activated", self._main(locale))
            await self._say(event.chat_id, locale, "commands_info")
        elif claim.result == ClaimResult.ALREADY_BOUND:
            await self._show_home(event.chat_id, event.user_id, locale)
        elif claim.result == ClaimResult.INVALID_KEY:
            await self._say(event.chat_id, locale, "invalid_key_or_used")
        else:
            await self._say(event.chat_id, locale, "error_general")
