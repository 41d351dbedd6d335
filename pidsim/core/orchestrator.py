"""SimPy-based closed-loop simulation driver.

Sequences one tick as:
    plant (held MV) -> PV -> [auto-tuner] -> controller -> plant (fresh MV) -> analyzer

and offers three ways to drive it: single steps, a wall-clock accumulator
(advance) and a SimPy process (run).
"""

import logging
from dataclasses import asdict, dataclass

import simpy

from pidsim.analysis.performance import PerformanceAnalyzer
from pidsim.control.autotuner import AutoTuner, TuneState
from pidsim.control.pid_controller import ControllerConfig, ControllerTerms, PIDController
from pidsim.core.config import settings
from pidsim.physics.base import PlantModel

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TickResult:
    time: float
    setpoint: float
    process_variable: float
    output: float
    terms: ControllerTerms
    tune_state: TuneState | None = None


class SimulationLoop:
    """Fixed-timestep loop over one plant / controller / analyzer set."""

    def __init__(
        self,
        plant: PlantModel,
        controller: PIDController,
        analyzer: PerformanceAnalyzer | None = None,
        setpoint: float = 0.0,
        dt: float | None = None,
        max_catch_up_steps: int | None = None,
    ):
        self.plant = plant
        self.controller = controller
        self.analyzer = analyzer
        self.setpoint = setpoint
        self.dt = dt or settings.SIMULATION_TIMESTEP_S
        if self.dt <= 0:
            raise ValueError(f"dt must be positive, got {self.dt}")
        self.max_catch_up_steps = max_catch_up_steps or settings.MAX_CATCH_UP_STEPS

        self.env = simpy.Environment()
        self.tuner: AutoTuner | None = None
        self._running = False
        self._generation = 0
        self._process: simpy.Process | None = None
        self._records: list[TickResult] = []
        self._run_target: tuple[int, simpy.Event] | None = None
        self._pre_tune_config: ControllerConfig | None = None
        self._clear_clock()

    def _clear_clock(self):
        self.tick = 0
        self._accumulator = 0.0
        self._output = 0.0
        self._last: TickResult | None = None

    @property
    def simulation_time(self) -> float:
        return self.tick * self.dt

    @property
    def last_result(self) -> TickResult | None:
        return self._last

    def set_setpoint(self, setpoint: float):
        self.setpoint = setpoint

    # ------------------------------------------------------------------
    # Auto-tune
    # ------------------------------------------------------------------
    def start_auto_tune(self, tuner: AutoTuner):
        """Attach a tuner and switch the controller to its search gains."""
        if self._pre_tune_config is None:
            self._pre_tune_config = self.controller.get_configuration()
        self.tuner = tuner
        gains = tuner.start()
        self.controller.set_gains(gains.kp, gains.ki, gains.kd)

    def _restore_gains(self):
        """Put back the gains the controller had before auto-tuning started."""
        cfg = self._pre_tune_config
        if cfg is None:
            return
        self._pre_tune_config = None
        self.controller.set_gains(cfg.kp, cfg.ki, cfg.kd)
        self.controller.align_integral()
        logger.info("Restored pre-tune gains kp=%.4f ki=%.4f kd=%.4f", cfg.kp, cfg.ki, cfg.kd)

    def _advance_tuner(self, pv: float, time: float) -> TuneState | None:
        if self.tuner is None:
            return None
        if not self.tuner.is_active:
            return self.tuner.state

        result = self.tuner.advance(pv, time)
        if result.gains is not None:
            self.controller.set_gains(result.gains.kp, result.gains.ki, result.gains.kd)
        if result.state == TuneState.DONE:
            # Accumulator was built under the ki=0 search gains
            self.controller.align_integral()
            self._pre_tune_config = None
        elif result.state == TuneState.FAILED:
            self._restore_gains()
        return result.state

    # ------------------------------------------------------------------
    # Stepping
    # ------------------------------------------------------------------
    def step(self) -> TickResult:
        """Run exactly one fixed timestep."""
        t = self.simulation_time

        measurement = self.plant.update(self._output, self.dt)
        pv = measurement.process_variable

        tune_state = self._advance_tuner(pv, t)

        mv = self.controller.update(self.setpoint, pv, self.dt)
        self.plant.update(mv, self.dt)

        if self.analyzer is not None:
            self.analyzer.update(t, self.setpoint, pv, mv)

        self._output = mv
        self.tick += 1
        self._last = TickResult(
            time=t,
            setpoint=self.setpoint,
            process_variable=pv,
            output=mv,
            terms=self.controller.get_terms(),
            tune_state=tune_state,
        )
        return self._last

    def run_steps(self, count: int) -> list[TickResult]:
        return [self.step() for _ in range(count)]

    def advance(self, elapsed: float) -> list[TickResult]:
        """Consume `elapsed` real time in whole timesteps.

        Leftover time is carried to the next call. If more than
        max_catch_up_steps are due, the excess is dropped.
        """
        if elapsed <= 0:
            return []

        self._accumulator += elapsed
        results = []
        while self._accumulator >= self.dt:
            if len(results) >= self.max_catch_up_steps:
                logger.warning("Simulation fell behind by %.3f s, dropping backlog",
                               self._accumulator)
                self._accumulator = 0.0
                break
            results.append(self.step())
            self._accumulator -= self.dt
        return results

    # ------------------------------------------------------------------
    # SimPy process
    # ------------------------------------------------------------------
    def _simulation_loop(self, env: simpy.Environment, generation: int):
        """Main simulation loop process."""
        while self._running and generation == self._generation:
            self._records.append(self.step())
            if self._run_target is not None and self.tick >= self._run_target[0]:
                done = self._run_target[1]
                self._run_target = None
                done.succeed()
            yield env.timeout(self.dt)

    def start(self):
        """Start the SimPy loop process."""
        if self._running:
            return
        self._running = True
        self._generation += 1
        self._process = self.env.process(self._simulation_loop(self.env, self._generation))
        logger.info("Simulation started (plant=%s, dt=%.4f)", self.plant.name, self.dt)

    def stop(self):
        """Stop the loop after the current tick."""
        if self._running:
            logger.info("Simulation stopped at t=%.2f", self.simulation_time)
        self._running = False
        self._process = None

    @property
    def is_running(self) -> bool:
        return self._running

    def run(self, duration: float) -> list[TickResult]:
        """Run the SimPy process for `duration` simulated time units.

        The process is left running, so consecutive calls continue the
        same loop. Returns the ticks executed during this call.
        """
        steps = int(round(duration / self.dt))
        if steps <= 0:
            return []
        self._records = []
        done = self.env.event()
        self._run_target = (self.tick + steps, done)
        self.start()
        self.env.run(until=done)
        records, self._records = self._records, []
        return records

    def get_state(self) -> dict:
        """Combined snapshot of every component."""
        return {
            "time": self.simulation_time,
            "tick": self.tick,
            "running": self._running,
            "setpoint": self.setpoint,
            "output": self._output,
            "plant": self.plant.get_state(),
            "controller": asdict(self.controller.get_state()),
            "tuner": self.tuner.get_state() if self.tuner is not None else None,
            "performance": (self.analyzer.generate_report()
                            if self.analyzer is not None else None),
        }

    def reset(self):
        """Reset every component and the loop clock."""
        self.stop()
        if self.tuner is not None and self.tuner.is_active:
            self._restore_gains()
        self._pre_tune_config = None
        self.plant.reset()
        self.controller.reset()
        if self.analyzer is not None:
            self.analyzer.reset()
        self.tuner = None
        self._run_target = None
        self._clear_clock()
