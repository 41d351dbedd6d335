"""Integration tests for the SimulationLoop."""

import logging

import pytest

from pidsim.analysis.performance import PerformanceAnalyzer
from pidsim.control.autotuner import AutoTuner, TuneState
from pidsim.control.pid_controller import AntiWindup, PIDController
from pidsim.core.orchestrator import SimulationLoop, TickResult
from pidsim.physics import MechanicalPlant, ThermalPlant


def _mechanical_loop(**kwargs):
    return SimulationLoop(
        plant=MechanicalPlant(),
        controller=PIDController(kp=2.0, ki=0.5),
        analyzer=PerformanceAnalyzer(),
        setpoint=80.0,
        **kwargs,
    )


class TestStepping:
    def test_step_returns_tick_result(self):
        loop = _mechanical_loop()
        result = loop.step()
        assert isinstance(result, TickResult)
        assert result.time == 0.0
        assert result.setpoint == 80.0
        assert result.tune_state is None
        assert result.output == loop.controller.output
        assert loop.tick == 1

    def test_tick_time_follows_index(self):
        loop = _mechanical_loop()
        results = loop.run_steps(5)
        assert [r.time for r in results] == pytest.approx([0.0, 0.04, 0.08, 0.12, 0.16])
        assert loop.simulation_time == pytest.approx(0.2)

    def test_plant_advances_twice_per_tick(self):
        loop = _mechanical_loop()
        loop.run_steps(10)
        assert loop.plant.time == pytest.approx(0.8)

    def test_analyzer_receives_every_tick(self):
        loop = _mechanical_loop()
        loop.run_steps(25)
        assert loop.analyzer.sample_count == 25

    def test_reaches_steady_state(self):
        """Kp=2, Ki=0.5 on the loaded mechanical plant settles on SP=80."""
        loop = _mechanical_loop()
        loop.run_steps(2000)
        sse = loop.analyzer.metrics.steady_state_error
        assert sse is not None
        assert abs(sse) < 1.0

    def test_output_within_limits(self):
        loop = _mechanical_loop()
        for result in loop.run_steps(500):
            assert -100.0 <= result.output <= 100.0

    def test_deterministic(self):
        a = [r.process_variable for r in _mechanical_loop().run_steps(300)]
        b = [r.process_variable for r in _mechanical_loop().run_steps(300)]
        assert a == b

    def test_invalid_dt(self):
        with pytest.raises(ValueError):
            _mechanical_loop(dt=-0.01)


class TestAntiWindup:
    @staticmethod
    def _peak_temperature(method):
        plant = ThermalPlant({"thermal_capacity": 10.0, "thermal_resistance": 1.0})
        controller = PIDController(kp=2.0, ki=1.0, output_min=0.0, output_max=50.0,
                                   anti_windup=method)
        loop = SimulationLoop(plant, controller, setpoint=60.0)
        peak = plant.temperature
        for _ in range(1500):
            loop.step()
            peak = max(peak, plant.temperature)
        return peak

    def test_anti_windup_reduces_overshoot(self):
        unprotected = self._peak_temperature(AntiWindup.NONE)
        assert self._peak_temperature(AntiWindup.CLAMPING) < unprotected
        assert self._peak_temperature(AntiWindup.BACK_CALCULATION) < unprotected


class TestAdvance:
    def test_accumulates_partial_steps(self):
        loop = _mechanical_loop()
        assert len(loop.advance(0.1)) == 2
        assert len(loop.advance(0.03)) == 1
        assert loop.tick == 3

    def test_non_positive_elapsed(self):
        loop = _mechanical_loop()
        assert loop.advance(0.0) == []
        assert loop.advance(-1.0) == []
        assert loop.tick == 0

    def test_catch_up_is_capped(self, caplog):
        loop = _mechanical_loop(max_catch_up_steps=10)
        with caplog.at_level(logging.WARNING, logger="pidsim.core.orchestrator"):
            results = loop.advance(5.0)
        assert len(results) == 10
        assert "fell behind" in caplog.text
        # Backlog dropped
        assert loop.advance(0.01) == []


class TestSimPyRun:
    def test_run_executes_whole_ticks(self):
        loop = _mechanical_loop()
        records = loop.run(1.0)
        assert len(records) == 25
        assert loop.tick == 25
        assert loop.is_running

    def test_consecutive_runs_continue(self):
        loop = _mechanical_loop()
        loop.run(1.0)
        records = loop.run(0.4)
        assert len(records) == 10
        assert records[0].time == pytest.approx(1.0)
        assert loop.tick == 35

    def test_run_matches_manual_stepping(self):
        stepped = [r.process_variable for r in _mechanical_loop().run_steps(50)]
        simulated = [r.process_variable for r in _mechanical_loop().run(2.0)]
        assert simulated == stepped

    def test_stop(self):
        loop = _mechanical_loop()
        loop.run(0.4)
        loop.stop()
        assert not loop.is_running
        loop.env.run(until=loop.env.now + 1.0)
        assert loop.tick == 10

    def test_restart_after_stop_does_not_double_step(self):
        loop = _mechanical_loop()
        loop.run(0.4)
        loop.stop()
        records = loop.run(0.4)
        assert len(records) == 10
        assert loop.tick == 20


class TestControl:
    def test_setpoint_change(self):
        loop = _mechanical_loop()
        loop.run_steps(10)
        loop.set_setpoint(20.0)
        assert loop.step().setpoint == 20.0
        assert loop.analyzer.in_step_episode

    def test_reset(self):
        loop = _mechanical_loop()
        loop.run(0.4)
        loop.reset()
        assert loop.tick == 0
        assert not loop.is_running
        assert loop.plant.time == 0.0
        assert loop.analyzer.sample_count == 0
        assert loop.controller.output == 0.0
        assert loop.last_result is None

    def test_reset_then_run_is_reproducible(self):
        loop = _mechanical_loop()
        first = [r.process_variable for r in loop.run_steps(40)]
        loop.reset()
        second = [r.process_variable for r in loop.run_steps(40)]
        assert first == second

    def test_get_state(self):
        loop = _mechanical_loop()
        loop.run_steps(3)
        state = loop.get_state()
        assert state["tick"] == 3
        assert state["plant"]["plant"] == "mechanical"
        assert state["controller"]["initialized"] is True
        assert state["tuner"] is None
        assert "summary" in state["performance"]


class TestAutoTune:
    def test_start_applies_search_gains(self):
        loop = _mechanical_loop()
        loop.start_auto_tune(AutoTuner(setpoint=80.0, initial_kp=1.5))
        cfg = loop.controller.get_configuration()
        assert (cfg.kp, cfg.ki, cfg.kd) == (1.5, 0.0, 0.0)

    def test_tuner_state_reported(self):
        loop = _mechanical_loop()
        loop.start_auto_tune(AutoTuner(setpoint=80.0))
        assert loop.step().tune_state == TuneState.SEARCHING

    def test_failed_tuner_leaves_gains(self):
        loop = _mechanical_loop()
        tuner = AutoTuner(setpoint=80.0, initial_kp=1.0, kp_step=0.5, max_kp=1.2)
        loop.start_auto_tune(tuner)
        loop.set_setpoint(0.0)
        loop.plant.set_disturbance("force", 20.0)
        results = loop.run_steps(200)

        assert tuner.state == TuneState.FAILED
        assert results[-1].tune_state == TuneState.FAILED
        cfg = loop.controller.get_configuration()
        assert (cfg.kp, cfg.ki, cfg.kd) == (2.0, 0.5, 0.0)

    def test_reset_mid_search_restores_gains(self):
        loop = _mechanical_loop()
        loop.start_auto_tune(AutoTuner(setpoint=80.0, initial_kp=1.0))
        loop.run_steps(20)
        loop.reset()
        cfg = loop.controller.get_configuration()
        assert (cfg.kp, cfg.ki, cfg.kd) == (2.0, 0.5, 0.0)
        assert loop.tuner is None

    def test_restarting_search_keeps_original_gains(self):
        loop = _mechanical_loop()
        loop.start_auto_tune(AutoTuner(setpoint=80.0, initial_kp=1.0))
        loop.run_steps(5)
        loop.start_auto_tune(AutoTuner(setpoint=80.0, initial_kp=1.5))
        loop.reset()
        assert loop.controller.get_configuration().kp == 2.0

    def test_tuned_gains_do_not_kick_output(self):
        """The integral built during the P-only search is not carried into the tuned ki."""
        loop = SimulationLoop(
            plant=MechanicalPlant(),
            controller=PIDController(kp=2.0, ki=0.5, anti_windup="back-calculation"),
            setpoint=80.0,
        )
        loop.start_auto_tune(AutoTuner(setpoint=80.0, initial_kp=0.5, kp_step=0.0))

        previous = result = None
        for _ in range(20000):
            previous, result = result, loop.step()
            if result.tune_state == TuneState.DONE:
                break

        assert result.tune_state == TuneState.DONE
        assert loop.controller.get_configuration().ki > 0.0
        assert abs(result.output - previous.output) < 1.0
        assert result.output < 100.0
