from signalgate.models.schemas import TelegramUpdate
from signalgate.services.events import CallbackEvent, CommandEvent, KeySubmissionAttempt, parse_command, parse_update


def _message(text, is_bot=False):
    return TelegramUpdate.model_validate(
        {
            "update_id": 1,
            "message": {
                "message_id": 10,
                "from": {"id": 42, "is_bot": is_bot},
                "chat": {"id": 4242, "type": "private"},
                "text": text,
            },
        }
    )


def test_parse_command_strips_bot_suffix_and_case():
    assert parse_command("/Generate_Key@SignalBot week") == ("generate_key", ("week",))
    assert parse_command("/start") == ("start", ())


def test_command_message():
    event = parse_update(_message("/give_signal"))
    assert event == CommandEvent(user_id=42, chat_id=4242, name="give_signal")
    assert event.kind == "command"


def test_free_text_is_a_key_submission():
    event = parse_update(_message("  abc123  "))
    assert isinstance(event, KeySubmissionAttempt)
    assert event.text == "abc123"
    assert event.kind == "key_submission"


def test_ignored_updates():
    assert parse_update(_message("   ")) is None
    assert parse_update(_message("hello", is_bot=True)) is None
    assert parse_update(TelegramUpdate(update_id=5)) is None


def test_callback_query():
    update = TelegramUpdate.model_validate(
        {
            "update_id": 2,
            "callback_query": {
                "id": "cb-1",
                "from": {"id": 42},
                "message": {"message_id": 77, "chat": {"id": 4242}},
                "data": "set_lang_de",
            },
        }
    )
    event = parse_update(update)
    assert event == CallbackEvent(user_id=42, chat_id=4242, callback_id="cb-1", data="set_lang_de", message_id=77)


def test_callback_without_data_is_ignored():
    update = TelegramUpdate.model_validate({"update_id": 3, "callback_query": {"id": "cb-2", "from": {"id": 42}}})
    assert parse_update(update) is None
