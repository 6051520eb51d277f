"""Threshold alarm with hysteresis and silent-key expiry.

State per key is either Normal (absent from ``active``) or Triggered.
Each alarm cycle ranks the averages snapshot and walks it from the top:

  value >= threshold and Normal     -> trigger
  value <  threshold and Triggered  -> resolve
  anything else                     -> no event (hysteresis)

Because the walk is in descending order, the first value under threshold
while nothing is active means nothing further down can trigger either, so
the walk stops there.

Keys that were active but did not show up in the snapshot at all produced
no traffic this cycle.  They would never see a fresh average to compare,
so they are resolved after the walk.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Mapping

from aggregator.topk import to_ranked

log = logging.getLogger(__name__)

TRIGGERED = "triggered"
RESOLVED = "resolved"
EVENT_KINDS = (TRIGGERED, RESOLVED)

Handler = Callable[[str, str, float], None]


@dataclass
class ActiveAlarm:
    key: str
    last_value: float
    triggered_at: float


@dataclass
class AlarmEvent:
    kind: str
    key: str
    value: float
    timestamp: float
    message: str

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "key": self.key,
            "value": self.value,
            "timestamp": self.timestamp,
            "message": self.message,
        }


def _format_time(ts: float) -> str:
    return datetime.fromtimestamp(ts).isoformat(sep=" ", timespec="seconds")


class Alarm:

    def __init__(self, threshold: float | None = None, clock: Callable[[], float] = time.time):
        self.threshold = threshold
        self._clock = clock
        self._active: dict[str, ActiveAlarm] = {}
        self.number_of_active = 0
        self._handlers: dict[str, list[Handler]] = {kind: [] for kind in EVENT_KINDS}

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, kind: str, handler: Handler) -> None:
        """Register ``handler(message, key, value)`` for ``kind`` events."""
        if kind not in self._handlers:
            raise ValueError(f"Unknown event kind: {kind}. Must be one of: {list(EVENT_KINDS)}")
        self._handlers[kind].append(handler)

    def unsubscribe(self, kind: str, handler: Handler) -> None:
        if kind not in self._handlers:
            raise ValueError(f"Unknown event kind: {kind}. Must be one of: {list(EVENT_KINDS)}")
        if handler in self._handlers[kind]:
            self._handlers[kind].remove(handler)

    def emit(self, events: list[AlarmEvent]) -> None:
        """Deliver events to subscribers in order.

        A failing handler is logged and skipped; other handlers still get
        the event and alarm state is already settled by then.
        """
        for event in events:
            for handler in list(self._handlers[event.kind]):
                try:
                    handler(event.message, event.key, event.value)
                except Exception:
                    log.exception("%s handler failed for key %s", event.kind, event.key)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def is_active(self, key: str) -> bool:
        return key in self._active

    def has_active_alarms(self) -> bool:
        return self.number_of_active > 0

    @property
    def active(self) -> dict[str, ActiveAlarm]:
        return dict(self._active)

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def evaluate(self, snapshot: Mapping[str, float]) -> list[AlarmEvent]:
        """Run one alarm cycle over ``snapshot`` and return the transitions.

        Only updates state; call ``emit`` (or use ``check``) to notify
        subscribers.
        """
        if self.threshold is None:
            raise RuntimeError("Alarm threshold is not set")

        now = self._clock()
        threshold = self.threshold
        events: list[AlarmEvent] = []

        # Non-finite averages are dropped by the ranking, which makes them
        # absent below as well.
        ranked = to_ranked(snapshot)
        seen: set[str] = set()
        while ranked:
            entry = ranked.pop_max()
            seen.add(entry.key)
            currently_active = self.is_active(entry.key)

            if entry.value < threshold and not self.has_active_alarms():
                break
            elif entry.value < threshold and currently_active:
                events.append(self._resolve(entry.key, entry.value, now))
            elif entry.value >= threshold and not currently_active:
                events.append(self._trigger(entry.key, entry.value, now))
            elif currently_active:
                self._active[entry.key].last_value = entry.value

        for key in list(self._active):
            if key not in seen:
                events.append(self._resolve(key, self._active[key].last_value, now))

        return events

    def check(self, snapshot: Mapping[str, float]) -> list[AlarmEvent]:
        """``evaluate`` followed by ``emit``."""
        events = self.evaluate(snapshot)
        self.emit(events)
        return events

    def _trigger(self, key: str, value: float, now: float) -> AlarmEvent:
        self._active[key] = ActiveAlarm(key=key, last_value=value, triggered_at=now)
        self.number_of_active += 1
        message = (
            f"High traffic generated an alert for {key} - hits = {value:g}, "
            f"triggered at {_format_time(now)}"
        )
        log.info("%s", message)
        return AlarmEvent(TRIGGERED, key, value, now, message)

    def _resolve(self, key: str, value: float, now: float) -> AlarmEvent:
        del self._active[key]
        self.number_of_active -= 1
        message = f"Traffic has returned to normal for site {key} at {_format_time(now)}"
        log.info("%s", message)
        return AlarmEvent(RESOLVED, key, value, now, message)
