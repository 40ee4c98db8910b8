"""Unit tests for Clock."""
import time

import pytest

from renewal_sync.services.clock import Clock
from renewal_sync.utils.time_utils import DAY_MILLIS, HOUR_MILLIS, MINUTE_MILLIS, days_to_millis, millis_to_iso

NOW = 1_700_000_000_000


class TestClock:
    """Frozen and system time."""

    def test_unfrozen_follows_system_time(self):
        clock = Clock()
        before = int(time.time() * 1000)

        now = clock.now_millis()

        assert not clock.is_frozen
        assert before <= now <= int(time.time() * 1000)

    def test_frozen_at_construction(self):
        clock = Clock(frozen_at_millis=NOW)

        assert clock.is_frozen
        assert clock.now_millis() == NOW

    def test_freeze_and_unfreeze(self):
        clock = Clock()

        assert clock.freeze(NOW) == NOW
        assert clock.now_millis() == NOW

        clock.unfreeze()
        assert not clock.is_frozen

    def test_advance(self):
        clock = Clock(frozen_at_millis=NOW)

        new_time = clock.advance(days=1, hours=2, minutes=3)

        assert new_time == NOW + DAY_MILLIS + 2 * HOUR_MILLIS + 3 * MINUTE_MILLIS
        assert clock.now_millis() == new_time

    def test_advance_negative_rejected(self):
        clock = Clock(frozen_at_millis=NOW)

        with pytest.raises(ValueError, match="negative"):
            clock.advance(days=-1)

    def test_advance_unfrozen_rejected(self):
        with pytest.raises(ValueError, match="frozen"):
            Clock().advance(days=1)


class TestTimeUtils:
    def test_days_to_millis(self):
        assert days_to_millis(7) == 7 * 24 * 60 * 60 * 1000

    def test_millis_to_iso(self):
        assert millis_to_iso(0) == "1970-01-01T00:00:00+00:00"
