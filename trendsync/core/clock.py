"""Wall-clock helpers. All stored instants are integer epoch milliseconds."""

from __future__ import annotations

import time
from typing import Callable

Clock = Callable[[], int]


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return time.time_ns() // 1_000_000
