"""Progress event throttling shared by the sending and receiving side."""

import time
from typing import Callable

from localshare.config import PROGRESS_INTERVAL


class ProgressThrottle:
    """Lets at most one progress update through per `interval` seconds."""

    def __init__(
        self,
        interval: float = PROGRESS_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._interval = interval
        self._clock = clock
        self._last = clock()

    def ready(self) -> bool:
        now = self._clock()
        if now - self._last >= self._interval:
            self._last = now
            return True
        return False
