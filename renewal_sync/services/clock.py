"""Injectable clock for "now" in reconciliation and sweeps.

Responsibilities:
- Report current time in Unix milliseconds
- Freeze time at a fixed instant (tests, replays)
- Advance frozen time (days, hours, minutes)
"""

import threading
import time
from typing import Optional

from renewal_sync.logging_config import get_logger
from renewal_sync.utils.time_utils import DAY_MILLIS, HOUR_MILLIS, MINUTE_MILLIS

logger = get_logger(__name__)


class Clock:
    """Wall clock that can be frozen and advanced.

    Unfrozen, ``now_millis`` follows the system clock.

    Args:
        frozen_at_millis: optional instant to freeze at from the start
    """

    def __init__(self, frozen_at_millis: Optional[int] = None) -> None:
        self._lock = threading.RLock()
        self._frozen_at_millis = frozen_at_millis

    def now_millis(self) -> int:
        """Get the current time in milliseconds."""
        with self._lock:
            if self._frozen_at_millis is not None:
                return self._frozen_at_millis
        return int(time.time() * 1000)

    @property
    def is_frozen(self) -> bool:
        with self._lock:
            return self._frozen_at_millis is not None

    def freeze(self, at_millis: Optional[int] = None) -> int:
        """Freeze time at ``at_millis`` (defaults to now).

        Returns:
            The frozen instant
        """
        with self._lock:
            self._frozen_at_millis = at_millis if at_millis is not None else int(time.time() * 1000)
            logger.debug("clock_frozen", frozen_at_millis=self._frozen_at_millis)
            return self._frozen_at_millis

    def unfreeze(self) -> None:
        with self._lock:
            self._frozen_at_millis = None

    def advance(self, days: int = 0, hours: int = 0, minutes: int = 0) -> int:
        """Advance frozen time.

        Args:
            days: number of days to advance
            hours: number of hours to advance
            minutes: number of minutes to advance

        Returns:
            New frozen instant

        Raises:
            ValueError: if values are negative or the clock is not frozen
        """
        if days < 0 or hours < 0 or minutes < 0:
            raise ValueError("Cannot advance time backwards, negative values are not allowed.")

        with self._lock:
            if self._frozen_at_millis is None:
                raise ValueError("Only a frozen clock can be advanced.")
            old_time = self._frozen_at_millis
            self._frozen_at_millis += days * DAY_MILLIS + hours * HOUR_MILLIS + minutes * MINUTE_MILLIS
            logger.info(
                "clock_advanced",
                old_time_millis=old_time,
                new_time_millis=self._frozen_at_millis,
            )
            return self._frozen_at_millis
