"""Per-key smoothed average over a fixed window of reporting intervals.

No sample history is kept: each update folds one value into the running
average with ``avg - avg/N + value/N``.  That is not the arithmetic mean of
the last N samples; a single spike of size S lifts the average by S/N
immediately and then decays.  A constant input converges towards itself
after roughly N updates.

The tracker also remembers which keys were touched since the last alarm
cycle.  ``take_snapshot()`` hands that set (with current averages) to the
alarm evaluator and starts a fresh one, so a key that goes quiet drops out
of the next snapshot while its average entry stays put.
"""

import logging
import math

from aggregator.errors import InvalidConfiguration

log = logging.getLogger(__name__)


def rolling_average(average: float, value: float, window_size: int) -> float:
    """Fold one sample into a running average over ``window_size`` samples."""
    if window_size <= 0:
        raise InvalidConfiguration(f"window_size must be > 0, got {window_size}")
    average -= average / window_size
    average += value / window_size
    return average


class RollingAverage:
    __slots__ = ("window_size", "_averages", "_updated")

    def __init__(self, window_size: int):
        # Guard here so update() can never divide by zero.
        if isinstance(window_size, bool) or not isinstance(window_size, int):
            raise InvalidConfiguration(f"window_size must be an int, got {window_size!r}")
        if window_size <= 0:
            raise InvalidConfiguration(f"window_size must be > 0, got {window_size}")
        self.window_size = window_size
        self._averages: dict[str, float] = {}
        self._updated: set[str] = set()

    def update(self, key: str, value: float) -> float:
        """Apply one observation to ``key`` and return the new average.

        An observation that would make the average non-finite is dropped and
        the current average is returned unchanged.
        """
        current = self._averages.get(key, 0.0)
        try:
            new = rolling_average(current, value, self.window_size)
        except OverflowError:
            new = math.inf
        if not math.isfinite(new):
            log.warning("Dropping observation %r for %s: average would not be finite", value, key)
            new = current
        self._averages[key] = new
        self._updated.add(key)
        return new

    def get(self, key: str) -> float | None:
        """Current average, or None if ``key`` has never been observed."""
        return self._averages.get(key)

    def take_snapshot(self) -> dict[str, float]:
        """Averages of keys updated since the previous call; resets that set."""
        updated, self._updated = self._updated, set()
        return {key: self._averages[key] for key in updated}

    def averages(self) -> dict[str, float]:
        return dict(self._averages)

    def __contains__(self, key: str) -> bool:
        return key in self._averages

    def __len__(self) -> int:
        return len(self._averages)
