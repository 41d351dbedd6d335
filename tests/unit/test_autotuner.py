"""Unit tests for the closed-loop AutoTuner."""

import math

import pytest

from pidsim.control.autotuner import AutoTuner, TuneState
from pidsim.control.tuning import Gains

DT = 0.04


def _oscillate(tuner, period=2.0, amplitude=2.0, offset=10.0, max_time=30.0):
    """Feed a sustained sine oscillation until the tuner stops searching."""
    steps = []
    k = 0
    while tuner.is_active and k * DT <= max_time:
        t = k * DT
        pv = offset + amplitude * math.sin(2.0 * math.pi * t / period)
        steps.append(tuner.advance(pv, t))
        k += 1
    return steps


class TestLifecycle:
    def test_idle_until_started(self):
        tuner = AutoTuner(setpoint=10.0)
        assert tuner.state == TuneState.IDLE
        assert not tuner.is_active
        assert tuner.advance(5.0, 0.0).state == TuneState.IDLE

    def test_start_returns_p_only_gains(self):
        tuner = AutoTuner(setpoint=10.0, initial_kp=2.5)
        assert tuner.start() == Gains(2.5, 0.0, 0.0)
        assert tuner.state == TuneState.SEARCHING
        assert tuner.is_active
        assert tuner.events[-1]["to_state"] == "searching"


class TestIdentification:
    def test_sustained_oscillation(self):
        tuner = AutoTuner(setpoint=10.0, initial_kp=3.0)
        tuner.start()
        steps = _oscillate(tuner)

        assert steps[-2].state == TuneState.IDENTIFIED
        assert steps[-1].state == TuneState.DONE
        assert tuner.is_done()
        assert tuner.ultimate_gain == pytest.approx(3.0)
        assert tuner.oscillation_period == pytest.approx(2.0, abs=0.05)

        gains = steps[-1].gains
        assert gains == tuner.result
        assert gains.kp == pytest.approx(1.8)
        assert gains.ki == pytest.approx(1.8, abs=0.05)
        assert gains.kd == pytest.approx(0.45, abs=0.02)

    def test_kp_not_raised_once_oscillation_is_steady(self):
        tuner = AutoTuner(setpoint=10.0, initial_kp=3.0)
        tuner.start()
        _oscillate(tuner)
        assert tuner.kp == 3.0

    def test_one_peak_per_cycle(self):
        tuner = AutoTuner(setpoint=10.0, initial_kp=3.0)
        tuner.start()
        _oscillate(tuner)
        intervals = [b.time - a.time for a, b in zip(tuner.peaks, tuner.peaks[1:])]
        assert all(interval > 1.5 for interval in intervals)

    def test_equal_amplitude_peaks_recorded(self):
        """Peaks no higher than the previous one still count toward identification."""
        tuner = AutoTuner(setpoint=10.0, initial_kp=3.0)
        tuner.start()
        _oscillate(tuner)
        assert len(tuner.peaks) == 5
        assert [p.value for p in tuner.peaks] == pytest.approx([12.0] * 5, abs=0.01)

    def test_transitions_recorded(self):
        tuner = AutoTuner(setpoint=10.0, initial_kp=3.0)
        tuner.start()
        _oscillate(tuner)
        assert [e["to_state"] for e in tuner.events] == ["searching", "identified", "done"]


class TestKpSearch:
    def test_kp_raised_each_window_without_oscillation(self):
        tuner = AutoTuner(setpoint=10.0, initial_kp=1.0, kp_step=0.5)
        tuner.start()
        for k in range(130):  # up to t = 5.16
            step = tuner.advance(10.0, k * DT)
        assert tuner.kp == pytest.approx(1.5)
        assert step.gains == Gains(1.5, 0.0, 0.0)

        for k in range(130, 260):  # up to t = 10.36
            tuner.advance(10.0, k * DT)
        assert tuner.kp == pytest.approx(2.0)
        assert tuner.state == TuneState.SEARCHING


class TestFailure:
    def test_max_kp_exceeded(self):
        tuner = AutoTuner(setpoint=10.0, initial_kp=1.0, kp_step=0.5, max_kp=2.0)
        tuner.start()
        step = None
        for k in range(500):
            step = tuner.advance(10.0, k * DT)
            if not tuner.is_active:
                break
        assert step.state == TuneState.FAILED
        assert step.gains is None
        assert tuner.result is None
        assert "kp" in step.message

    def test_non_positive_ultimate_gain(self, caplog):
        tuner = AutoTuner(setpoint=10.0, initial_kp=0.0)
        tuner.start()
        with caplog.at_level("WARNING", logger="pidsim.control.autotuner"):
            steps = _oscillate(tuner)
        assert steps[-1].state == TuneState.FAILED
        assert tuner.result is None
        assert "Auto-tune failed" in caplog.text

    def test_restart_clears_session(self):
        tuner = AutoTuner(setpoint=10.0, initial_kp=3.0)
        tuner.start()
        _oscillate(tuner)
        assert tuner.is_done()

        tuner.start()
        assert tuner.state == TuneState.SEARCHING
        assert tuner.peaks == []
        assert tuner.ultimate_gain is None
        assert tuner.result is None


class TestState:
    def test_get_state(self):
        tuner = AutoTuner(setpoint=10.0, initial_kp=3.0)
        tuner.start()
        state = tuner.get_state()
        assert state["state"] == "searching"
        assert state["kp"] == 3.0
        assert state["peaks"] == 0
