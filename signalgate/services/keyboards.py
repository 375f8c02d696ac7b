from __future__ import annotations

from typing import Any, Dict, Iterable

from .localization import PhraseCatalog

LANGUAGE_NAMES = {"it": "Italiano", "de": "Deutsch", "fr": "Français"}

Keyboard = Dict[str, Any]


def main_keyboard(catalog: PhraseCatalog, locale: str) -> Keyboard:
    return {
        "inline_keyboard": [
            [
                {"text": catalog.localize(locale, "main_menu_button_signal"), "callback_data": "give_signal"},
                {"text": catalog.localize(locale, "main_menu_button_subscription"), "callback_data": "subscription_info"},
            ],
            [{"text": catalog.localize(locale, "main_menu_button_change_lang"), "callback_data": "change_language"}],
        ]
    }


def contact_admin_keyboard(catalog: PhraseCatalog, locale: str, url: str) -> Keyboard:
    return {"inline_keyboard": [[{"text": catalog.localize(locale, "contact_admin_button"), "url": url}]]}


def language_keyboard(locales: Iterable[str]) -> Keyboard:
    row = [{"text": LANGUAGE_NAMES.get(code, code), "callback_data": f"set_lang_{code}"} for code in locales]
    return {"inline_keyboard": [row]}
