from __future__ import annotations

import secrets
from datetime import datetime, timedelta
from typing import Dict, Optional

from ..utils.clock import add_months

# duration selector -> days; "month" and "forever" are handled separately
_DAY_DURATIONS: Dict[str, int] = {"2days": 2, "4days": 4, "week": 7}
DURATIONS = ("2days", "4days", "week", "month", "forever")


def is_valid_duration(duration: Optional[str]) -> bool:
    return duration in DURATIONS


def compute_expiry(duration: str, now: datetime) -> Optional[datetime]:
    if duration in _DAY_DURATIONS:
        return now + timedelta(days=_DAY_DURATIONS[duration])
    if duration == "month":
        return add_months(now, 1)
    if duration == "forever":
        return None
    raise ValueError(f"Unknown key duration: {duration}")


def generate_key_value(token_bytes: int = 16) -> str:
    """Hex token from the OS CSPRNG; ``token_bytes * 8`` bits of entropy."""
    return secrets.token_hex(token_bytes)
