"""
Motor speed plant: DC motor driven by armature current.

    J * dw/dt = k_t * i - b * f * w - T_load
    rpm       = w * 60 / (2 * pi) * gear_ratio

Disturbances:
  "load"     - load torque (N*m)
  "friction" - friction multiplier f (neutral value 1.0)
"""

import math

from pidsim.physics.base import PlantModel


DEFAULT_PARAMS = {
    "inertia": 0.01,           # kg*m2
    "friction": 0.1,           # N*m*s/rad
    "torque_constant": 0.5,    # N*m/A
    "max_current": 10.0,       # A
    "gear_ratio": 10.0,
}


class MotorSpeedPlant(PlantModel):
    """Current-driven DC motor; the process variable is output shaft rpm."""

    name = "motor_speed"
    DEFAULT_PARAMS = DEFAULT_PARAMS
    DISTURBANCES = {"load": 0.0, "friction": 1.0}

    def _configure(self, p: dict):
        self.inertia = p["inertia"]
        self.friction = p["friction"]
        self.torque_constant = p["torque_constant"]
        self.max_current = p["max_current"]
        self.gear_ratio = p["gear_ratio"]

    def _reset_state(self):
        self.angular_velocity = 0.0
        self.rpm = 0.0
        self.torque = 0.0

    def _clamp_input(self, value: float) -> float:
        return max(-self.max_current, min(self.max_current, value))

    def _integrate(self, u: float, dt: float) -> float:
        motor_torque = self.torque_constant * u
        friction_torque = self.friction * self.disturbances["friction"] * self.angular_velocity
        load_torque = self.disturbances["load"]

        acceleration = (motor_torque - friction_torque - load_torque) / self.inertia
        self.angular_velocity += acceleration * dt
        self.rpm = self.angular_velocity * 60.0 / (2.0 * math.pi) * self.gear_ratio
        self.torque = motor_torque
        return -load_torque

    def _measured_value(self) -> float:
        return self.rpm

    def _variables(self) -> dict[str, float]:
        return {
            "angular_velocity": self.angular_velocity,
            "rpm": self.rpm,
            "torque": self.torque,
        }
