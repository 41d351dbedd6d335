"""
Closed-loop performance analyzer.

Consumes (time, setpoint, pv, output) samples and maintains:
  - Error integrals IAE / ISE / ITAE / ITSE (rectangular rule)
  - Steady-state error and value over a rolling window
  - Step-response descriptors (overshoot, undershoot, rise, settling, peak time)
  - Control effort and variability
  - A bounded 0-100 performance index
"""

from collections import deque
from dataclasses import asdict, dataclass
from typing import NamedTuple

import numpy as np

from pidsim.core.config import settings


class Sample(NamedTuple):
    time: float
    setpoint: float
    pv: float
    output: float
    error: float


@dataclass(frozen=True)
class PerformanceMetrics:
    iae: float = 0.0
    ise: float = 0.0
    itae: float = 0.0
    itse: float = 0.0

    overshoot: float | None = None
    undershoot: float | None = None
    settling_time: float | None = None
    rise_time: float | None = None
    peak_time: float | None = None

    steady_state_error: float | None = None
    steady_state_value: float | None = None

    control_effort: float = 0.0
    control_variability: float = 0.0

    performance_index: float = 100.0


QUALITY_GRADES = [
    (90.0, "excellent"),
    (80.0, "very good"),
    (70.0, "good"),
    (60.0, "acceptable"),
    (50.0, "poor"),
]


class PerformanceAnalyzer:
    """Incremental metrics over a bounded sample history."""

    def __init__(self,
                 history_size: int | None = None,
                 steady_state_window: int | None = None,
                 step_threshold: float | None = None,
                 settling_band: float | None = None,
                 min_step_samples: int | None = None,
                 default_dt: float | None = None):
        self.history_size = history_size or settings.HISTORY_SIZE
        self.steady_state_window = steady_state_window or settings.STEADY_STATE_WINDOW
        self.step_threshold = step_threshold if step_threshold is not None else settings.STEP_CHANGE_THRESHOLD
        self.settling_band = settling_band if settling_band is not None else settings.SETTLING_BAND
        self.min_step_samples = min_step_samples or settings.MIN_STEP_SAMPLES
        self.default_dt = default_dt or settings.SIMULATION_TIMESTEP_S

        self._history: deque[Sample] = deque(maxlen=self.history_size)
        self.reset()

    def reset(self):
        """Clear history, metrics and the current step episode."""
        self._history.clear()
        self._m: dict = asdict(PerformanceMetrics())
        self._step_start_time: float | None = None
        self._step_start_value: float | None = None
        self._step_end_value: float | None = None

    # ------------------------------------------------------------------
    # Sampling
    # ------------------------------------------------------------------
    def update(self, time: float, setpoint: float, pv: float, output: float):
        """Record one sample and refresh every metric."""
        previous = self._history[-1] if self._history else None
        self._history.append(Sample(time, setpoint, pv, output, setpoint - pv))

        self._detect_step(previous, time, setpoint, pv)
        self._update_continuous(previous, time)
        if self._step_start_time is not None:
            self._update_step_response()
        self._update_performance_index()

    def _detect_step(self, previous: Sample | None, time: float, setpoint: float, pv: float):
        if previous is None:
            return
        if abs(setpoint - previous.setpoint) > self.step_threshold:
            self._step_start_time = time
            self._step_start_value = pv
            self._step_end_value = setpoint
            for key in ("overshoot", "undershoot", "settling_time", "rise_time", "peak_time"):
                self._m[key] = None

    def _update_continuous(self, previous: Sample | None, time: float):
        current = self._history[-1]
        dt = time - previous.time if previous is not None else self.default_dt
        e = current.error
        m = self._m

        m["iae"] += abs(e) * dt
        m["ise"] += e * e * dt
        m["itae"] += time * abs(e) * dt
        m["itse"] += time * e * e * dt

        m["control_effort"] += abs(current.output) * dt
        if previous is not None:
            m["control_variability"] += abs(current.output - previous.output)

        if len(self._history) >= self.steady_state_window:
            window = list(self._history)[-self.steady_state_window:]
            m["steady_state_error"] = float(np.mean([s.error for s in window]))
            m["steady_state_value"] = float(np.mean([s.pv for s in window]))

    # ------------------------------------------------------------------
    # Step response
    # ------------------------------------------------------------------
    def _step_samples(self) -> list[Sample]:
        return [s for s in self._history if s.time >= self._step_start_time]

    def _update_step_response(self):
        samples = self._step_samples()
        if len(samples) < self.min_step_samples:
            return

        start, final = self._step_start_value, self._step_end_value
        step_size = final - start
        if abs(step_size) < self.step_threshold:
            return

        pvs = np.array([s.pv for s in samples])
        times = np.array([s.time for s in samples])

        if step_size > 0:
            peak = int(np.argmax(pvs))
            self._m["overshoot"] = max(0.0, float((pvs[peak] - final) / step_size * 100.0))
        else:
            peak = int(np.argmin(pvs))
            self._m["undershoot"] = max(0.0, float((final - pvs[peak]) / abs(step_size) * 100.0))
        self._m["peak_time"] = float(times[peak] - self._step_start_time)

        self._m["rise_time"] = self._rise_time(samples, start, step_size)
        self._m["settling_time"] = self._settling_time(samples, final, step_size)

    def _rise_time(self, samples: list[Sample], start: float, step_size: float) -> float | None:
        target10 = start + 0.1 * step_size
        target90 = start + 0.9 * step_size

        def reached(pv: float, target: float) -> bool:
            return pv >= target if step_size > 0 else pv <= target

        t10 = None
        for s in samples:
            if t10 is None and reached(s.pv, target10):
                t10 = s.time
            if reached(s.pv, target90):
                return s.time - t10 if t10 is not None else None
        return None

    def _settling_time(self, samples: list[Sample], final: float, step_size: float) -> float | None:
        band = abs(final) * self.settling_band
        if band == 0.0:
            band = abs(step_size) * self.settling_band

        if abs(samples[-1].pv - final) > band:
            return None  # still outside the band
        for s in reversed(samples):
            if abs(s.pv - final) > band:
                return s.time - self._step_start_time
        return None

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------
    def _update_performance_index(self):
        m = self._m
        score = 100.0

        if m["overshoot"] is not None and m["overshoot"] > 20.0:
            score -= (m["overshoot"] - 20.0) * 2.0
        if m["steady_state_error"] is not None:
            score -= abs(m["steady_state_error"]) * 10.0
        if m["settling_time"] is not None and m["settling_time"] > 10.0:
            score -= (m["settling_time"] - 10.0) * 2.0
        if m["control_variability"] > 50.0:
            score -= (m["control_variability"] - 50.0) * 0.5

        m["performance_index"] = max(0.0, min(100.0, score))

    def quality(self) -> str:
        score = self._m["performance_index"]
        for threshold, grade in QUALITY_GRADES:
            if score >= threshold:
                return grade
        return "very poor"

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------
    @property
    def metrics(self) -> PerformanceMetrics:
        return PerformanceMetrics(**self._m)

    @property
    def sample_count(self) -> int:
        return len(self._history)

    @property
    def in_step_episode(self) -> bool:
        return self._step_start_time is not None

    def generate_report(self) -> dict:
        m = self._m
        return {
            "summary": {
                "performance_index": m["performance_index"],
                "quality": self.quality(),
            },
            "error_metrics": {
                "iae": m["iae"],
                "ise": m["ise"],
                "itae": m["itae"],
                "itse": m["itse"],
                "steady_state_error": m["steady_state_error"],
                "steady_state_value": m["steady_state_value"],
            },
            "response_metrics": {
                "overshoot": m["overshoot"],
                "undershoot": m["undershoot"],
                "settling_time": m["settling_time"],
                "rise_time": m["rise_time"],
                "peak_time": m["peak_time"],
            },
            "control_metrics": {
                "control_effort": m["control_effort"],
                "control_variability": m["control_variability"],
            },
        }

    def export_data(self) -> dict:
        """History as column arrays plus the current metrics."""
        columns = {name: np.array([getattr(s, name) for s in self._history])
                   for name in Sample._fields}
        return {"data": columns, "metrics": asdict(self.metrics)}
