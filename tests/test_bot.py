import random
from datetime import timedelta

import pytest
from sqlalchemy import update

from signalgate.errors import StoreUnavailable
from signalgate.models.tables import AccessKeyRecord
from signalgate.services.access_controller import AccessController
from signalgate.services.assets import ImageLibrary
from signalgate.services.bot import BotDispatcher
from signalgate.services.events import CallbackEvent, CommandEvent, KeySubmissionAttempt
from signalgate.services.localization import PhraseCatalog
from signalgate.utils.clock import utcnow

from conftest import ADMIN_ID

USER = 2001


@pytest.fixture()
def catalog():
    return PhraseCatalog.load(["it", "de", "fr"])


@pytest.fixture()
def dispatcher(controller, transport, catalog, tmp_path):
    return BotDispatcher(
        controller,
        transport,
        catalog,
        ImageLibrary(tmp_path / "images"),
        contact_url="https://t.me/admin",
        rng=random.Random(3),
    )


async def _activate(dispatcher, controller, user_id=USER, duration="week"):
    await controller.set_language(user_id, "it")
    issued = await controller.issue_key(ADMIN_ID, duration)
    await dispatcher.dispatch(KeySubmissionAttempt(user_id=user_id, chat_id=user_id, text=issued.value))
    return issued


async def test_unset_language_gates_everything_but_start(dispatcher, transport, catalog):
    await dispatcher.dispatch(CommandEvent(user_id=USER, chat_id=USER, name="give_signal"))
    assert transport.last_text() == catalog.localize("it", "please_choose_language")
    keyboard = transport.messages[-1]["keyboard"]
    assert [button["callback_data"] for button in keyboard["inline_keyboard"][0]] == ["set_lang_it", "set_lang_de", "set_lang_fr"]

    transport.clear()
    await dispatcher.dispatch(CommandEvent(user_id=USER, chat_id=USER, name="start"))
    assert transport.last_text() == catalog.localize("it", "start_welcome_initial_prompt")


async def test_language_choice_then_welcome(dispatcher, transport, catalog, user_store):
    await dispatcher.dispatch(CallbackEvent(user_id=USER, chat_id=USER, callback_id="cb", data="set_lang_de", message_id=9))
    assert transport.messages[0] == {"type": "answer", "callback_id": "cb"}
    assert transport.messages[1]["type"] == "edit"
    assert transport.messages[1]["text"] == catalog.localize("de", "language_set")
    assert transport.last_text() == catalog.localize("de", "start_welcome")
    assert (await user_store.get(USER)).language == "de"


async def test_unsupported_language_callback_is_ignored(dispatcher, transport, user_store):
    await dispatcher.dispatch(CallbackEvent(user_id=USER, chat_id=USER, callback_id="cb", data="set_lang_xx"))
    assert transport.texts() == []
    assert (await user_store.get(USER)).language is None


async def test_key_submission_activates_and_signal_is_sent(dispatcher, controller, transport, catalog):
    await _activate(dispatcher, controller)
    assert catalog.localize("it", "key_activated") in transport.texts()

    transport.clear()
    await dispatcher.dispatch(CommandEvent(user_id=USER, chat_id=USER, name="give_signal"))
    texts = transport.texts()
    assert texts[0] == catalog.localize("it", "generating_signal")
    assert "PASSAGGI DI CASSA" in texts[1]
    assert texts[-1] == catalog.localize("it", "start_has_key")


async def test_signal_uses_image_when_present(controller, transport, catalog, tmp_path):
    images = tmp_path / "images" / "it"
    images.mkdir(parents=True)
    for steps in range(1, 31):
        (images / f"{steps}.png").write_bytes(b"\x89PNG")
    dispatcher = BotDispatcher(controller, transport, catalog, ImageLibrary(tmp_path / "images"), contact_url="https://t.me/admin")
    await _activate(dispatcher, controller)
    transport.clear()

    await dispatcher.dispatch(CallbackEvent(user_id=USER, chat_id=USER, callback_id="cb", data="give_signal"))
    photos = [entry for entry in transport.messages if entry["type"] == "photo"]
    assert len(photos) == 1
    assert photos[0]["path"].startswith(str(images))


async def test_quota_exhaustion_replies_with_limit(key_store, user_store, transport, catalog, tmp_path):
    controller = AccessController(key_store, user_store, limit=1, admin_ids=[ADMIN_ID])
    dispatcher = BotDispatcher(controller, transport, catalog, ImageLibrary(tmp_path), contact_url="https://t.me/admin")
    await _activate(dispatcher, controller)

    await dispatcher.dispatch(CommandEvent(user_id=USER, chat_id=USER, name="give_signal"))
    transport.clear()
    await dispatcher.dispatch(CommandEvent(user_id=USER, chat_id=USER, name="give_signal"))
    assert transport.texts() == [catalog.localize("it", "limit_exceeded", {"limit": 1})]


async def test_no_key_and_invalid_key(dispatcher, controller, transport, catalog):
    await controller.set_language(USER, "it")
    await dispatcher.dispatch(CommandEvent(user_id=USER, chat_id=USER, name="give_signal"))
    assert transport.last_text() == catalog.localize("it", "no_active_key")
    assert transport.messages[-1]["keyboard"]["inline_keyboard"][0][0]["url"] == "https://t.me/admin"

    await dispatcher.dispatch(KeySubmissionAttempt(user_id=USER, chat_id=USER, text="not-a-key"))
    assert transport.last_text() == catalog.localize("it", "invalid_key_or_used")


async def test_subscription_info_formats_expiry(dispatcher, controller, transport, catalog):
    issued = await _activate(dispatcher, controller)
    transport.clear()
    await dispatcher.dispatch(CommandEvent(user_id=USER, chat_id=USER, name="subscription_info"))
    expected = issued.expires_at.strftime("%d.%m.%Y %H:%M UTC")
    assert transport.texts() == [catalog.localize("it", "subscription_active_expires", {"expiryDate": expected})]


async def test_subscription_info_lifetime(dispatcher, controller, transport, catalog):
    await _activate(dispatcher, controller, duration="forever")
    transport.clear()
    await dispatcher.dispatch(CommandEvent(user_id=USER, chat_id=USER, name="subscription_info"))
    assert transport.texts() == [catalog.localize("it", "subscription_active_lifetime")]


async def test_expired_key_asks_for_a_new_one(dispatcher, controller, sessions, transport, catalog):
    issued = await _activate(dispatcher, controller, duration="2days")
    # age the key past its expiry
    async with sessions() as session:
        await session.execute(
            update(AccessKeyRecord)
            .where(AccessKeyRecord.id == issued.key_id)
            .values(expires_at=(utcnow() - timedelta(minutes=1)).replace(tzinfo=None))
        )
        await session.commit()
    transport.clear()
    await dispatcher.dispatch(CommandEvent(user_id=USER, chat_id=USER, name="give_signal"))
    assert transport.last_text() == catalog.localize("it", "key_expired")


async def test_admin_commands(dispatcher, controller, transport, catalog):
    await controller.set_language(ADMIN_ID, "it")
    await dispatcher.dispatch(CommandEvent(user_id=ADMIN_ID, chat_id=ADMIN_ID, name="generate_key", args=("month",)))
    generated = transport.messages[-1]
    assert generated["parse_mode"] == "Markdown"
    assert generated["text"].startswith("Nuova chiave generata: `")

    await dispatcher.dispatch(CommandEvent(user_id=ADMIN_ID, chat_id=ADMIN_ID, name="generate_key"))
    assert transport.last_text() == catalog.localize("it", "admin_generate_key_format")
    await dispatcher.dispatch(CommandEvent(user_id=ADMIN_ID, chat_id=ADMIN_ID, name="revoke_key"))
    assert transport.last_text() == catalog.localize("it", "admin_revoke_key_format")
    await dispatcher.dispatch(CommandEvent(user_id=ADMIN_ID, chat_id=ADMIN_ID, name="revoke_key", args=("missing",)))
    assert transport.last_text() == catalog.localize("it", "admin_key_not_found")

    await controller.set_language(USER, "it")
    await dispatcher.dispatch(CommandEvent(user_id=USER, chat_id=USER, name="generate_key", args=("week",)))
    assert transport.last_text() == catalog.localize("it", "admin_no_permission")


async def test_store_failure_replies_generic_error(controller, transport, catalog, tmp_path):
    class FlakyController:
        async def preferred_language(self, user_id):
            return "it"

        async def set_language(self, user_id, language):
            raise StoreUnavailable("down")

    dispatcher = BotDispatcher(FlakyController(), transport, catalog, ImageLibrary(tmp_path), contact_url="https://t.me/admin")
    await dispatcher.dispatch(CallbackEvent(user_id=USER, chat_id=USER, callback_id="cb", data="set_lang_fr"))
    assert transport.last_text() == catalog.localize("it", "error_general")
