from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional

from ..logging_config import logger

LOCALES_DIR = Path(__file__).resolve().parent.parent / "locales"


class PhraseCatalog:
    """Per-locale phrase tables loaded from ``<locale>.json`` files."""

    def __init__(self, phrases: Mapping[str, Mapping[str, str]], default_locale: str = "it") -> None:
        self._phrases: Dict[str, Dict[str, str]] = {locale: dict(table) for locale, table in phrases.items()}
        self.default_locale = default_locale

    @classmethod
    def load(cls, locales: Iterable[str], default_locale: str = "it", directory: Path = LOCALES_DIR) -> "PhraseCatalog":
        phrases: Dict[str, Dict[str, str]] = {}
        for locale in locales:
            path = directory / f"{locale}.json"
            try:
                phrases[locale] = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as exc:
                logger.warning("locale.load_failed", locale=locale, error=str(exc))
        return cls(phrases, default_locale=default_locale)

    @property
    def locales(self) -> list[str]:
        return list(self._phrases)

    def supports(self, locale: Optional[str]) -> bool:
        return locale in self._phrases

    def localize(self, locale: Optional[str], key: str, params: Optional[Mapping[str, Any]] = None) -> str:
        phrase = self._phrases.get(locale or "", {}).get(key)
        if phrase is None:
            phrase = self._phrases.get(self.default_locale, {}).get(key)
        if phrase is None:
            logger.warning("locale.missing_phrase", locale=locale, key=key)
            return f"[Missing phrase: {key}]"
        for name, value in (params or {}).items():
            phrase = phrase.replace("{{" + name + "}}", str(value))
        return phrase
