"""Tests for RollingAverage: recurrence, convergence, snapshots, config guard."""

import math

import pytest

from aggregator.errors import InvalidConfiguration
from aggregator.rolling_average import RollingAverage, rolling_average


class TestRecurrence:
    def test_single_observation_is_value_over_window(self):
        avg = RollingAverage(3)
        assert avg.update("k", 90) == pytest.approx(30)
        assert avg.get("k") == pytest.approx(30)

    def test_three_sequential_updates(self):
        avg = RollingAverage(3)
        values = [avg.update("k", 30) for _ in range(3)]
        assert values == pytest.approx([10, 16.6667, 21.1111], abs=1e-4)

    def test_spike_raises_average_by_spike_over_window(self):
        avg = RollingAverage(4)
        for _ in range(20):
            avg.update("k", 8)
        before = avg.get("k")
        after = avg.update("k", 408)
        # 408 = 8 + 400: the extra 400 shows up as 400/4
        assert after - before == pytest.approx(100, rel=1e-2)

    def test_constant_input_converges(self):
        """Each update strictly shrinks the distance to the constant input."""
        avg = RollingAverage(4)
        distance = abs(0 - 50)
        for _ in range(30):
            new_distance = abs(avg.update("k", 50) - 50)
            assert new_distance < distance
            distance = new_distance
        assert avg.get("k") == pytest.approx(50, abs=0.1)

    def test_window_of_one_tracks_last_value(self):
        avg = RollingAverage(1)
        avg.update("k", 5)
        assert avg.update("k", 12) == 12

    def test_keys_are_independent(self):
        avg = RollingAverage(2)
        avg.update("a", 10)
        avg.update("b", 100)
        assert avg.get("a") == 5
        assert avg.get("b") == 50

    def test_pure_function_matches_tracker(self):
        assert rolling_average(10, 30, 3) == pytest.approx(10 - 10 / 3 + 10)


class TestNonFiniteObservations:
    @pytest.mark.parametrize("value", [math.inf, -math.inf, math.nan, 10**400])
    def test_observation_is_dropped_and_average_kept(self, value):
        avg = RollingAverage(3)
        avg.update("k", 90)
        assert avg.update("k", value) == pytest.approx(30)
        assert avg.get("k") == pytest.approx(30)

    def test_first_observation_non_finite_leaves_zero(self):
        avg = RollingAverage(3)
        assert avg.update("k", math.inf) == 0.0
        assert avg.take_snapshot() == {"k": 0.0}


class TestAbsentKeys:
    def test_unobserved_key_returns_none(self):
        assert RollingAverage(3).get("nope") is None

    def test_contains_and_len(self):
        avg = RollingAverage(3)
        avg.update("a", 1)
        assert "a" in avg
        assert "b" not in avg
        assert len(avg) == 1


class TestSnapshot:
    def test_snapshot_contains_only_updated_keys(self):
        avg = RollingAverage(2)
        avg.update("a", 10)
        avg.update("b", 20)
        assert avg.take_snapshot() == {"a": 5, "b": 10}

        avg.update("a", 10)
        assert avg.take_snapshot() == {"a": 7.5}

    def test_snapshot_resets_but_averages_persist(self):
        avg = RollingAverage(2)
        avg.update("a", 10)
        avg.take_snapshot()
        assert avg.take_snapshot() == {}
        assert avg.get("a") == 5
        assert avg.averages() == {"a": 5}


class TestConfigGuard:
    @pytest.mark.parametrize("window", [0, -1, -10])
    def test_non_positive_window_rejected_at_construction(self, window):
        with pytest.raises(InvalidConfiguration):
            RollingAverage(window)

    @pytest.mark.parametrize("window", [1.5, "3", None, True])
    def test_non_int_window_rejected(self, window):
        with pytest.raises(InvalidConfiguration):
            RollingAverage(window)

    def test_pure_function_rejects_zero_window(self):
        with pytest.raises(InvalidConfiguration):
            rolling_average(1, 1, 0)

    def test_invalid_configuration_is_a_value_error(self):
        with pytest.raises(ValueError):
            RollingAverage(0)
