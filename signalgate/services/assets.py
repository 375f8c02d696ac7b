from __future__ import annotations

from pathlib import Path
from typing import Optional

from ..logging_config import logger


class ImageLibrary:
    """Signal images laid out as ``<root>/<locale>/<steps>.png``."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def lookup_image(self, locale: str, steps: int) -> Optional[Path]:
        candidate = self.root / locale / f"{steps}.png"
        if candidate.is_file():
            return candidate
        logger.debug("image.missing", locale=locale, steps=steps, path=str(candidate))
        return None
