"""
Closed-loop auto-tuner (ultimate gain search).

Sequence:
  1. SEARCHING  - P-only control at initial_kp; peaks of the PV are recorded
                  and kp is raised by kp_step once per 5-time-unit window until
                  the oscillation amplitude holds steady
  2. IDENTIFIED - ultimate gain Ku and period Tu are known
  3. DONE       - Ziegler-Nichols gains computed and handed to the caller
  FAILED        - Ku or Tu non-positive, or kp exceeded max_kp

The tuner never touches a controller: each advance() returns the gains the
caller must run with.
"""

import logging
import math
from collections import deque
from dataclasses import dataclass
from enum import Enum

from pidsim.control.tuning import Gains, ziegler_nichols
from pidsim.core.config import settings

logger = logging.getLogger(__name__)


class TuneState(str, Enum):
    IDLE = "idle"
    SEARCHING = "searching"
    IDENTIFIED = "identified"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class Peak:
    value: float
    time: float


@dataclass(frozen=True)
class TuneStep:
    """Outcome of one advance() call."""

    state: TuneState
    gains: Gains | None = None
    message: str = ""


class AutoTuner:
    """Searches for sustained oscillation and derives Ziegler-Nichols gains."""

    def __init__(self,
                 setpoint: float,
                 initial_kp: float = 1.0,
                 kp_step: float = 0.5,
                 max_kp: float | None = None,
                 step_interval: float | None = None,
                 min_peaks: int | None = None,
                 amplitude_tolerance: float | None = None):
        self.setpoint = setpoint
        self.initial_kp = initial_kp
        self.kp_step = kp_step
        self.max_kp = max_kp
        self.step_interval = step_interval or settings.AUTOTUNE_KP_STEP_INTERVAL
        self.min_peaks = min_peaks or settings.AUTOTUNE_MIN_PEAKS
        self.amplitude_tolerance = (amplitude_tolerance if amplitude_tolerance is not None
                                    else settings.AUTOTUNE_AMPLITUDE_TOLERANCE)

        self.state = TuneState.IDLE
        self.events: list[dict] = []
        self._clear_session()

    def _clear_session(self):
        self.kp = self.initial_kp
        self.peaks: list[Peak] = []
        self.ultimate_gain: float | None = None
        self.oscillation_period: float | None = None
        self.result: Gains | None = None
        self._window: deque[tuple[float, float]] = deque(maxlen=3)
        self._start_time: float | None = None
        self._last_step_window = 0
        self._time = 0.0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    @property
    def is_active(self) -> bool:
        return self.state in (TuneState.SEARCHING, TuneState.IDENTIFIED)

    def is_done(self) -> bool:
        return self.state == TuneState.DONE

    def start(self) -> Gains:
        """Begin a new session. Returns the P-only search gains."""
        self._clear_session()
        self._transition(TuneState.SEARCHING, f"Searching from kp={self.kp:.3f}")
        return self.search_gains

    @property
    def search_gains(self) -> Gains:
        return Gains(kp=self.kp, ki=0.0, kd=0.0)

    def _transition(self, new_state: TuneState, message: str = ""):
        old = self.state
        self.state = new_state
        self.events.append({
            "time": self._time,
            "from_state": old.value,
            "to_state": new_state.value,
            "message": message,
        })
        logger.info("Auto-tune %s -> %s: %s", old.value, new_state.value, message)

    def _fail(self, message: str) -> TuneStep:
        self._transition(TuneState.FAILED, message)
        logger.warning("Auto-tune failed: %s", message)
        return TuneStep(TuneState.FAILED, message=message)

    # ------------------------------------------------------------------
    # Per-tick advance
    # ------------------------------------------------------------------
    def advance(self, pv: float, time: float) -> TuneStep:
        """Feed one PV sample taken at simulation time `time`."""
        self._time = time

        if self.state == TuneState.SEARCHING:
            return self._search(pv, time)

        if self.state == TuneState.IDENTIFIED:
            return self._finish()

        return TuneStep(self.state)

    def _search(self, pv: float, time: float) -> TuneStep:
        if self._start_time is None:
            self._start_time = time

        self._window.append((time, pv))
        self._detect_peak()

        if len(self.peaks) >= self.min_peaks:
            recent = self.peaks[-4:]
            if self._amplitude_stable(recent):
                self.ultimate_gain = self.kp
                self.oscillation_period = (recent[-1].time - recent[0].time) / (len(recent) - 1)
                if self.ultimate_gain <= 0 or self.oscillation_period <= 0:
                    return self._fail(
                        f"Non-positive ultimate gain/period "
                        f"(Ku={self.ultimate_gain:.4f}, Tu={self.oscillation_period:.4f})"
                    )
                self._transition(
                    TuneState.IDENTIFIED,
                    f"Sustained oscillation: Ku={self.ultimate_gain:.4f}, "
                    f"Tu={self.oscillation_period:.4f}",
                )
                return TuneStep(TuneState.IDENTIFIED, self.search_gains)

        window_index = math.floor((time - self._start_time) / self.step_interval)
        if window_index > self._last_step_window:
            self._last_step_window = window_index
            if not self._amplitude_stable(self.peaks[-4:]):
                self.kp += self.kp_step
                logger.debug("Auto-tune raised kp to %.4f at t=%.2f", self.kp, time)
                if self.max_kp is not None and self.kp > self.max_kp:
                    return self._fail(f"No sustained oscillation up to kp={self.max_kp:.4f}")

        return TuneStep(TuneState.SEARCHING, self.search_gains)

    def _detect_peak(self):
        if len(self._window) < 3:
            return
        (_, before), (t_mid, mid), (_, after) = self._window
        if mid > before and mid >= after:
            if not self.peaks or t_mid > self.peaks[-1].time:
                self.peaks.append(Peak(value=mid, time=t_mid))

    def _amplitude_stable(self, peaks: list[Peak]) -> bool:
        if len(peaks) < 2:
            return False
        tolerance = self.amplitude_tolerance * abs(self.setpoint)
        return abs(peaks[-1].value - peaks[0].value) < tolerance

    def _finish(self) -> TuneStep:
        result = ziegler_nichols(self.ultimate_gain, self.oscillation_period)
        self.result = result.gains
        self._transition(
            TuneState.DONE,
            f"Ziegler-Nichols gains kp={result.kp:.4f} ki={result.ki:.4f} kd={result.kd:.4f}",
        )
        return TuneStep(TuneState.DONE, self.result)

    def get_state(self) -> dict:
        return {
            "state": self.state.value,
            "kp": self.kp,
            "peaks": len(self.peaks),
            "ultimate_gain": self.ultimate_gain,
            "oscillation_period": self.oscillation_period,
            "events": self.events[-10:],
        }
