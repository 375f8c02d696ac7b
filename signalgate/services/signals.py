from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Dict, Tuple

LEVEL_WEIGHTS: Dict[str, int] = {"easy": 5, "medium": 4, "hard": 1, "extra_hard": 1}
STEP_RANGES: Dict[str, Tuple[int, int]] = {
    "easy": (10, 30),
    "medium": (5, 9),
    "hard": (1, 4),
    "extra_hard": (1, 3),
}


@dataclass(frozen=True)
class Signal:
    level: str
    steps: int


def generate_signal(rng: random.Random | None = None) -> Signal:
    rng = rng or random.Random()
    levels = list(LEVEL_WEIGHTS)
    level = rng.choices(levels, weights=[LEVEL_WEIGHTS[name] for name in levels], k=1)[0]
    low, high = STEP_RANGES[level]
    return Signal(level=level, steps=rng.randint(low, high))
