"""Aggregation scheduler — owns the shared state and the two periodic cycles.

Producers call ``feed`` at any rate.  One daemon thread drives both cycles,
waking every reporting interval:

  reporting tick  swap out the raw accumulator, fold every count into the
                  rolling averages, rank the raw counts into a Report
  alarm tick      after every N-th reporting tick, take the averages
                  snapshot and run the Alarm over it

so every alarm cycle covers exactly N reporting folds.

Accumulator, tracker and alarm state all live behind one lock, so an
observation lands entirely before or entirely after a swap.  Handlers
(alarm subscribers and report handlers) always run outside the lock, which
lets them call ``feed`` or ``stop`` themselves.

Both ticks are public so callers can drive cycles by hand (tests do this
with ``configure`` instead of ``start``).
"""

import logging
import math
import threading
import time
from dataclasses import dataclass, field
from typing import Callable

from aggregator.alarm import Alarm, AlarmEvent, Handler
from aggregator.config import validate_intervals
from aggregator.errors import InvalidConfiguration
from aggregator.rolling_average import RollingAverage
from aggregator.topk import Entry, finite_value, top_k

log = logging.getLogger(__name__)


@dataclass
class ReportEntry:
    key: str
    value: float
    breakdown: list[Entry] = field(default_factory=list)


@dataclass
class Report:
    timestamp: float
    top: list[ReportEntry]

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "top": [
                {
                    "key": e.key,
                    "value": e.value,
                    "breakdown": [{"key": b.key, "value": b.value} for b in e.breakdown],
                }
                for e in self.top
            ],
        }


class _RepeatingTask:
    """Calls ``fn`` every ``interval`` seconds on a daemon thread until cancelled.

    Ticks follow a monotonic deadline, so time spent inside ``fn`` does not
    stretch the period.  If a tick overruns the next deadline the missed
    ticks are skipped rather than fired back to back.
    """

    def __init__(
        self,
        name: str,
        interval: float,
        fn: Callable[[], object],
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.interval = interval
        self._fn = fn
        self._monotonic = monotonic
        self._stopped = threading.Event()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)

    def start(self) -> None:
        self._thread.start()

    def cancel(self) -> None:
        self._stopped.set()

    def join(self, timeout: float | None = None) -> None:
        # stop() may be called from a handler running on this very thread.
        if self._thread is threading.current_thread():
            return
        self._thread.join(timeout)

    def _run(self) -> None:
        deadline = self._monotonic() + self.interval
        while not self._stopped.wait(max(0.0, deadline - self._monotonic())):
            try:
                self._fn()
            except Exception:
                log.exception("%s tick failed", self._thread.name)
            deadline += self.interval
            now = self._monotonic()
            if deadline <= now:
                log.warning("%s fell behind; skipping missed ticks", self._thread.name)
                deadline = now + self.interval


class Aggregator:

    def __init__(
        self,
        top_k: int = 10,
        breakdown_k: int = 10,
        clock: Callable[[], float] = time.time,
    ):
        for name, value in (("top_k", top_k), ("breakdown_k", breakdown_k)):
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise InvalidConfiguration(f"{name} must be a positive int, got {value!r}")
        self.top_k = top_k
        self.breakdown_k = breakdown_k
        self._clock = clock

        # Guards everything below it.  _lifecycle only guards _task.
        self._lock = threading.Lock()
        self._counts: dict[str, float] = {}
        self._details: dict[str, dict[str, float]] = {}
        self._tracker: RollingAverage | None = None
        self._reports_since_alarm = 0
        self.alarm = Alarm(clock=clock)

        self._lifecycle = threading.Lock()
        self._task: _RepeatingTask | None = None
        self._report_handlers: list[Callable[[Report], None]] = []

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def configure(self, alarm_interval_ms: int, reporting_interval_ms: int, threshold: float) -> int:
        """Validate settings and prepare state without scheduling anything.

        Returns the window size.  Existing averages and active alarms are
        kept across reconfiguration.
        """
        window_size = validate_intervals(alarm_interval_ms, reporting_interval_ms, threshold)
        with self._lock:
            if self._tracker is None:
                self._tracker = RollingAverage(window_size)
            else:
                self._tracker.window_size = window_size
            self._reports_since_alarm = 0
            self.alarm.threshold = threshold
        return window_size

    def start(self, alarm_interval_ms: int, reporting_interval_ms: int, threshold: float) -> None:
        """Validate, then run both cycles from one thread.

        The thread wakes every reporting interval and runs ``report_tick``;
        every N-th wake-up it follows with ``alarm_tick``.  Each alarm cycle
        therefore sees exactly N reporting folds.
        """
        with self._lifecycle:
            if self._task is not None:
                raise RuntimeError("Aggregator is already running")
            window_size = self.configure(alarm_interval_ms, reporting_interval_ms, threshold)
            self._task = _RepeatingTask("aggregator-cycle", reporting_interval_ms / 1000, self._cycle)
            self._task.start()
        log.info(
            "Aggregator started  alarm=%dms  reporting=%dms  window=%d  threshold=%s",
            alarm_interval_ms, reporting_interval_ms, window_size, threshold,
        )

    def stop(self) -> None:
        """Cancel the cycle thread.  Idempotent; safe from inside a handler."""
        with self._lifecycle:
            task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        task.join()
        log.info("Aggregator stopped")

    @property
    def running(self) -> bool:
        return self._task is not None

    # ------------------------------------------------------------------
    # Producer / consumer API
    # ------------------------------------------------------------------

    def feed(self, key: str, value: float = 1, detail: str | None = None) -> bool:
        """Add ``value`` to ``key`` for the current reporting interval.

        ``detail`` (e.g. a page section) is counted under ``key`` for the
        report breakdown.  Returns False if the value was rejected.
        """
        amount = finite_value(value)
        if amount is None:
            log.debug("Ignoring observation for %s with value %r", key, value)
            return False
        with self._lock:
            total = self._counts.get(key, 0.0) + amount
            per_key = self._details.get(key, {}) if detail is not None else {}
            detail_total = per_key.get(detail, 0.0) + amount
            if not (math.isfinite(total) and math.isfinite(detail_total)):
                log.warning("Ignoring observation for %s: interval total would overflow", key)
                return False
            self._counts[key] = total
            if detail is not None:
                self._details.setdefault(key, per_key)[detail] = detail_total
        return True

    def get(self, key: str) -> float | None:
        """Smoothed average for ``key``, or None if never observed."""
        with self._lock:
            if self._tracker is None:
                return None
            return self._tracker.get(key)

    def subscribe(self, kind: str, handler: Handler) -> None:
        self.alarm.subscribe(kind, handler)

    def unsubscribe(self, kind: str, handler: Handler) -> None:
        self.alarm.unsubscribe(kind, handler)

    def on_report(self, handler: Callable[[Report], None]) -> None:
        self._report_handlers.append(handler)

    # ------------------------------------------------------------------
    # Cycles
    # ------------------------------------------------------------------

    def report_tick(self) -> Report:
        with self._lock:
            tracker = self._require_tracker()
            counts, self._counts = self._counts, {}
            details, self._details = self._details, {}
            for key, value in counts.items():
                tracker.update(key, value)

        # counts/details are private to this cycle now; rank without the lock.
        report = Report(
            timestamp=self._clock(),
            top=[
                ReportEntry(entry.key, entry.value, top_k(details.get(entry.key, {}), self.breakdown_k))
                for entry in top_k(counts, self.top_k)
            ],
        )
        for handler in list(self._report_handlers):
            try:
                handler(report)
            except Exception:
                log.exception("Report handler failed")
        return report

    def alarm_tick(self) -> list[AlarmEvent]:
        with self._lock:
            tracker = self._require_tracker()
            events = self.alarm.evaluate(tracker.take_snapshot())
        self.alarm.emit(events)
        return events

    def _cycle(self) -> None:
        """One reporting interval; every N-th one also closes an alarm cycle."""
        self.report_tick()
        with self._lock:
            self._reports_since_alarm += 1
            due = self._reports_since_alarm >= self._require_tracker().window_size
            if due:
                self._reports_since_alarm = 0
        if due:
            self.alarm_tick()

    def _require_tracker(self) -> RollingAverage:
        if self._tracker is None:
            raise RuntimeError("Aggregator is not configured; call start() or configure() first")
        return self._tracker
