"""
Tank level plant: open tank drained through a controlled outlet valve.

    A * dh/dt = Q_in + Q_dist - opening * Q_max * sqrt(h) - Q_leak

The manipulated input is the outlet valve opening (0-100 %), so the process
gain is negative: opening the valve lowers the level.
"""

import math

from pidsim.physics.base import PlantModel


DEFAULT_PARAMS = {
    "tank_area": 2.0,          # m2
    "max_outlet_flow": 0.05,   # m3/s at full opening and 1 m head
    "inlet_flow": 0.02,        # m3/s
    "max_level": 5.0,          # m
    "initial_level": 1.0,      # m
}


class TankLevelPlant(PlantModel):
    """Gravity-drained tank with a square-root outlet law."""

    name = "tank_level"
    DEFAULT_PARAMS = DEFAULT_PARAMS
    DISTURBANCES = {"inlet": 0.0, "leak": 0.0}

    def _configure(self, p: dict):
        self.tank_area = p["tank_area"]
        self.max_outlet_flow = p["max_outlet_flow"]
        self.inlet_flow = p["inlet_flow"]
        self.max_level = p["max_level"]
        self.initial_level = p["initial_level"]

    def _reset_state(self):
        self.level = self.initial_level
        self.outlet_flow = 0.0

    def _clamp_input(self, value: float) -> float:
        return max(0.0, min(100.0, value))

    def _integrate(self, u: float, dt: float) -> float:
        opening = u / 100.0
        head = max(0.0, self.level)
        self.outlet_flow = opening * self.max_outlet_flow * math.sqrt(head)

        inlet = self.inlet_flow + self.disturbances["inlet"]
        leak = self.disturbances["leak"]
        net_flow = inlet - self.outlet_flow - leak

        self.level += net_flow / self.tank_area * dt
        self.level = max(0.0, min(self.max_level, self.level))
        return self.disturbances["inlet"] - leak

    def _measured_value(self) -> float:
        return self.level

    def _variables(self) -> dict[str, float]:
        return {"level": self.level, "outlet_flow": self.outlet_flow}
