"""PID controller for the closed-loop simulation engine.

Features:
    - Setpoint weighting on the proportional and derivative paths
    - Derivative on measurement with first-order low-pass filter
    - Standard or conditional integration
    - Clamping / back-calculation anti-windup
    - Manual station with bumpless transfer
"""

import logging
from dataclasses import dataclass
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator

from pidsim.control.tuning import TuningResult, cohen_coon, lambda_tuning, ziegler_nichols

logger = logging.getLogger(__name__)

# Conditional integration treats the output as saturated within this fraction
# of the output span from either limit.
SATURATION_MARGIN = 0.025


class IntegralMode(str, Enum):
    STANDARD = "standard"
    CONDITIONAL = "conditional"


class AntiWindup(str, Enum):
    CLAMPING = "clamping"
    BACK_CALCULATION = "back-calculation"
    NONE = "none"


class ControllerConfig(BaseModel):
    """Gains and tuning options. Immutable, replaced wholesale by the setters."""

    model_config = ConfigDict(frozen=True)

    kp: float = 1.0
    ki: float = 0.0
    kd: float = 0.0
    output_min: float = -100.0
    output_max: float = 100.0
    derivative_filter_alpha: float = Field(default=0.1, gt=0.0, le=1.0)
    setpoint_weight_p: float = Field(default=1.0, ge=0.0, le=1.0)
    setpoint_weight_d: float = Field(default=0.0, ge=0.0, le=1.0)
    integral_mode: IntegralMode = IntegralMode.STANDARD
    anti_windup: AntiWindup = AntiWindup.CLAMPING
    tracking_time_constant: float = Field(default=1.0, gt=0.0)

    @model_validator(mode="after")
    def _check_limits(self):
        if self.output_min >= self.output_max:
            raise ValueError(
                f"output_min ({self.output_min}) must be below output_max ({self.output_max})"
            )
        return self


@dataclass(frozen=True)
class ControllerTerms:
    proportional: float = 0.0
    integral: float = 0.0
    derivative: float = 0.0
    total: float = 0.0


@dataclass(frozen=True)
class ControllerState:
    last_error: float = 0.0
    last_process_variable: float = 0.0
    last_setpoint: float = 0.0
    integral: float = 0.0
    filtered_derivative: float = 0.0
    last_output: float = 0.0
    is_manual: bool = False
    manual_output: float = 0.0
    initialized: bool = False


class PIDController:
    """Positional PID controller with anti-windup and a manual station."""

    def __init__(self, kp: float = 1.0, ki: float = 0.0, kd: float = 0.0, **options):
        self._config = ControllerConfig(kp=kp, ki=ki, kd=kd, **options)
        self.reset()

    @classmethod
    def from_config(cls, config: ControllerConfig) -> "PIDController":
        return cls(**config.model_dump())

    # ------------------------------------------------------------------
    # Control law
    # ------------------------------------------------------------------
    def update(self, setpoint: float, process_variable: float, dt: float) -> float:
        """Compute the manipulated variable.

        Args:
            setpoint: Desired value (SP).
            process_variable: Measured value (PV).
            dt: Time since the previous update. Non-positive values leave the
                controller untouched and return the previous output.

        Returns:
            Controller output, clamped to output_min..output_max unless the
            controller is in manual mode.
        """
        if dt <= 0:
            return self._last_output

        if self._is_manual:
            self._last_output = self._manual_output
            self._track(setpoint, process_variable, dt)
            return self._manual_output

        cfg = self._config
        error = setpoint - process_variable

        # Proportional on the weighted error
        p_term = cfg.kp * (cfg.setpoint_weight_p * setpoint - process_variable)

        # Integral
        integral = self._integrate(error, self._integral, dt)
        i_term = cfg.ki * integral

        # Derivative on measurement, filtered, plus weighted setpoint rate
        if self._initialized:
            pv_rate = (process_variable - self._last_pv) / dt
            sp_rate = (setpoint - self._last_setpoint) / dt
        else:
            pv_rate = sp_rate = 0.0
        alpha = cfg.derivative_filter_alpha
        filtered = alpha * -pv_rate + (1.0 - alpha) * self._filtered_derivative
        d_term = cfg.kd * (filtered + cfg.setpoint_weight_d * sp_rate)

        unsaturated = p_term + i_term + d_term
        output = self._clamp(unsaturated)

        # Anti-windup
        if output != unsaturated:
            if cfg.ki == 0.0:
                if cfg.anti_windup is not AntiWindup.NONE:
                    logger.debug("Output saturated with ki=0, skipping %s anti-windup",
                                 cfg.anti_windup.value)
            elif cfg.anti_windup is AntiWindup.CLAMPING:
                integral -= (unsaturated - output) / cfg.ki
                i_term = cfg.ki * integral
            elif cfg.anti_windup is AntiWindup.BACK_CALCULATION:
                integral += (output - unsaturated) / cfg.tracking_time_constant * dt
                i_term = cfg.ki * integral

        # Commit
        self._integral = integral
        self._filtered_derivative = filtered
        self._last_error = error
        self._last_output = output
        self._track(setpoint, process_variable, dt)
        self._terms = ControllerTerms(p_term, i_term, d_term, output)
        return output

    def _integrate(self, error: float, integral: float, dt: float) -> float:
        if self._integration_allowed(error, integral):
            return integral + error * dt
        return integral

    def _integration_allowed(self, error: float, integral: float) -> bool:
        if self._config.integral_mode is IntegralMode.STANDARD:
            return True
        # Conditional: hold the integral near saturation unless it unwinds
        return not self._near_saturation(self._last_output) or error * integral < 0

    def _near_saturation(self, value: float) -> bool:
        cfg = self._config
        margin = SATURATION_MARGIN * (cfg.output_max - cfg.output_min)
        return value >= cfg.output_max - margin or value <= cfg.output_min + margin

    def _clamp(self, value: float) -> float:
        return max(self._config.output_min, min(self._config.output_max, value))

    def _track(self, setpoint: float, process_variable: float, dt: float):
        self._last_setpoint = setpoint
        self._last_pv = process_variable
        self._last_dt = dt
        self._initialized = True

    # ------------------------------------------------------------------
    # Manual / automatic
    # ------------------------------------------------------------------
    def set_manual_mode(self, is_manual: bool, manual_output: float | None = None):
        """Switch between manual and automatic operation.

        Entering manual holds the last automatic output unless an explicit
        manual_output is given. Leaving manual primes the integral so the next
        automatic update at unchanged SP/PV reproduces the manual output.
        """
        if is_manual:
            if not self._is_manual:
                self._manual_output = self._last_output
            if manual_output is not None:
                self._manual_output = manual_output
            self._is_manual = True
            self._last_output = self._manual_output
            return

        if self._is_manual:
            self._is_manual = False
            self._bumpless_restore()

    def _bumpless_restore(self):
        cfg = self._config
        if cfg.ki == 0.0:
            logger.warning("Bumpless transfer skipped: ki=0, integral cannot absorb the "
                           "manual output %.4f", self._manual_output)
            return

        self.align_integral(self._manual_output)

    def align_integral(self, target: float | None = None):
        """Prime the integral so the next update at unchanged SP/PV returns `target`.

        Defaults to the current output. With ki=0 the accumulator is cleared.
        """
        cfg = self._config
        if target is None:
            target = self._last_output
        if cfg.ki == 0.0:
            logger.debug("Integral cleared: ki=0 cannot hold output %.4f", target)
            self._integral = 0.0
            return

        error = self._last_setpoint - self._last_pv
        p_term = cfg.kp * (cfg.setpoint_weight_p * self._last_setpoint - self._last_pv)
        # Derivative at unchanged inputs decays by one filter step
        d_term = cfg.kd * (1.0 - cfg.derivative_filter_alpha) * self._filtered_derivative

        self._last_output = target
        integral = (target - p_term - d_term) / cfg.ki
        if self._initialized:
            primed = integral - error * self._last_dt
            if self._integration_allowed(error, primed):
                integral = primed

        self._integral = integral
        self._terms = ControllerTerms(p_term, cfg.ki * integral, d_term, target)

    @property
    def is_manual(self) -> bool:
        return self._is_manual

    @property
    def output(self) -> float:
        return self._last_output

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------
    def _reconfigure(self, **changes):
        self._config = ControllerConfig(**{**self._config.model_dump(), **changes})

    def set_gains(self, kp: float, ki: float, kd: float):
        self._reconfigure(kp=kp, ki=ki, kd=kd)

    def set_output_limits(self, output_min: float, output_max: float):
        self._reconfigure(output_min=output_min, output_max=output_max)

    def set_setpoint_weighting(self, weight_p: float, weight_d: float):
        self._reconfigure(setpoint_weight_p=weight_p, setpoint_weight_d=weight_d)

    def set_derivative_filter(self, alpha: float):
        self._reconfigure(derivative_filter_alpha=alpha)

    def set_integral_mode(self, mode: IntegralMode | str):
        self._reconfigure(integral_mode=IntegralMode(mode))

    def set_anti_windup(self, method: AntiWindup | str):
        self._reconfigure(anti_windup=AntiWindup(method))

    # ------------------------------------------------------------------
    # Auto-tune rules
    # ------------------------------------------------------------------
    def _apply(self, result: TuningResult) -> TuningResult:
        self.set_gains(result.kp, result.ki, result.kd)
        logger.info("Applied %s gains: kp=%.4f ki=%.4f kd=%.4f",
                    result.method, result.kp, result.ki, result.kd)
        return result

    def auto_tune_ziegler_nichols(self, ultimate_gain: float, ultimate_period: float) -> TuningResult:
        return self._apply(ziegler_nichols(ultimate_gain, ultimate_period))

    def auto_tune_cohen_coon(self, process_gain: float, time_constant: float,
                             dead_time: float) -> TuningResult:
        return self._apply(cohen_coon(process_gain, time_constant, dead_time))

    def auto_tune_lambda(self, process_gain: float, time_constant: float, dead_time: float,
                         closed_loop_time_constant: float) -> TuningResult:
        return self._apply(
            lambda_tuning(process_gain, time_constant, dead_time, closed_loop_time_constant)
        )

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------
    def reset(self):
        """Zero all controller state. Configuration is kept."""
        self._integral = 0.0
        self._filtered_derivative = 0.0
        self._last_error = 0.0
        self._last_pv = 0.0
        self._last_setpoint = 0.0
        self._last_output = 0.0
        self._last_dt = 0.0
        self._is_manual = False
        self._manual_output = 0.0
        self._initialized = False
        self._terms = ControllerTerms()

    def get_terms(self) -> ControllerTerms:
        return self._terms

    def get_configuration(self) -> ControllerConfig:
        return self._config

    def get_state(self) -> ControllerState:
        return ControllerState(
            last_error=self._last_error,
            last_process_variable=self._last_pv,
            last_setpoint=self._last_setpoint,
            integral=self._integral,
            filtered_derivative=self._filtered_derivative,
            last_output=self._last_output,
            is_manual=self._is_manual,
            manual_output=self._manual_output,
            initialized=self._initialized,
        )
