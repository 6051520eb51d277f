"""Tests for the exporter's active-alarm bookkeeping."""

from prometheus_client import REGISTRY

from exporter.main import AlarmTracker


def _active():
    return REGISTRY.get_sample_value("agg_active_alarms")


def _transitions(kind, host):
    return REGISTRY.get_sample_value(
        "agg_alarm_transitions_total", {"kind": kind, "host": host},
    ) or 0


class TestAlarmTracker:
    def setup_method(self):
        self.tracker = AlarmTracker()

    def test_trigger_and_resolve(self):
        self.tracker.process({"kind": "triggered", "key": "a.example.com", "value": 30})
        self.tracker.process({"kind": "triggered", "key": "b.example.com", "value": 25})
        assert _active() == 2

        self.tracker.process({"kind": "resolved", "key": "a.example.com", "value": 4})
        assert _active() == 1
        assert self.tracker.active == {"b.example.com"}

    def test_replayed_trigger_counted_once_in_gauge(self):
        for _ in range(3):
            self.tracker.process({"kind": "triggered", "key": "c.example.com", "value": 30})
        assert _active() == 1

    def test_resolve_for_unknown_host_does_not_go_negative(self):
        self.tracker.process({"kind": "resolved", "key": "d.example.com", "value": 1})
        assert _active() == 0

    def test_transitions_are_counted(self):
        before = _transitions("triggered", "e.example.com")
        self.tracker.process({"kind": "triggered", "key": "e.example.com", "value": 30})
        assert _transitions("triggered", "e.example.com") == before + 1

    def test_latest_value_per_host(self):
        self.tracker.process({"kind": "triggered", "key": "f.example.com", "value": 42.5})
        assert REGISTRY.get_sample_value("agg_alarm_value", {"host": "f.example.com"}) == 42.5
