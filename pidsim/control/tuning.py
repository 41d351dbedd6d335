"""Classical PID tuning rules.

Ziegler-Nichols  - from the ultimate gain / period of a sustained oscillation
Cohen-Coon       - from a first-order-plus-dead-time step model
Lambda (IMC)     - from the same model plus a desired closed-loop time constant
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class Gains:
    kp: float
    ki: float
    kd: float


@dataclass(frozen=True)
class TuningResult(Gains):
    method: str

    @property
    def gains(self) -> Gains:
        return Gains(self.kp, self.ki, self.kd)


def _require_positive(**values: float):
    for name, value in values.items():
        if value <= 0:
            raise ValueError(f"{name} must be positive, got {value}")


def ziegler_nichols(ultimate_gain: float, ultimate_period: float) -> TuningResult:
    """Classic closed-loop Ziegler-Nichols PID rule."""
    _require_positive(ultimate_gain=ultimate_gain, ultimate_period=ultimate_period)
    ku, tu = ultimate_gain, ultimate_period
    return TuningResult(
        kp=0.6 * ku,
        ki=1.2 * ku / tu,
        kd=0.6 * ku * tu / 8.0,
        method="ziegler-nichols",
    )


def cohen_coon(process_gain: float, time_constant: float, dead_time: float) -> TuningResult:
    """Cohen-Coon rule for first-order systems with dead time.

    Args:
        process_gain: Static gain K of the step response.
        time_constant: Dominant time constant tau.
        dead_time: Apparent transport delay L.
    """
    _require_positive(process_gain=process_gain, time_constant=time_constant, dead_time=dead_time)
    k, tau, L = process_gain, time_constant, dead_time
    ratio = L / tau
    if ratio >= 1.25:
        raise ValueError(f"dead_time/time_constant ratio {ratio:.3f} is outside the rule's range (< 1.25)")

    kp = (1.35 / k) * (tau / L) * (1.0 + 0.18 * ratio)
    ki = kp / (tau * (2.5 - 2.0 * ratio) / (1.0 + 0.39 * ratio))
    kd = kp * tau * (0.37 - 0.37 * ratio) / (1.0 + 0.81 * ratio)
    return TuningResult(kp=kp, ki=ki, kd=kd, method="cohen-coon")


def lambda_tuning(
    process_gain: float,
    time_constant: float,
    dead_time: float,
    closed_loop_time_constant: float,
) -> TuningResult:
    """Lambda (IMC) rule. Produces a PI controller, kd is always 0."""
    _require_positive(
        process_gain=process_gain,
        time_constant=time_constant,
        closed_loop_time_constant=closed_loop_time_constant,
    )
    if dead_time < 0:
        raise ValueError(f"dead_time must not be negative, got {dead_time}")

    kp = time_constant / (process_gain * (closed_loop_time_constant + dead_time))
    return TuningResult(kp=kp, ki=kp / time_constant, kd=0.0, method="lambda")
