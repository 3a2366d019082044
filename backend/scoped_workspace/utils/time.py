"""Time helpers."""

from __future__ import annotations

import time
from typing import Callable

Clock = Callable[[], float]


def now_s() -> float:
    """Return current epoch time in seconds."""
    return time.time()
