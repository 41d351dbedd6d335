"""
Pressure plant: pneumatic vessel filled through a controlled inlet valve.

    dm/dt = opening * m_max - c * f * sqrt(P - P_atm) - m_leak
    P     = m * R * (T + dT) / V

The process variable is gauge pressure in kPa.

Disturbances:
  "outlet"      - outlet flow multiplier f (neutral value 1.0)
  "leak"        - leak mass flow (kg/s)
  "temperature" - gas temperature offset dT (K)
"""

import math

from pidsim.physics.base import PlantModel


GAS_CONSTANT_AIR = 287.0         # J/(kg*K)
ATMOSPHERIC_PRESSURE = 101325.0  # Pa
MIN_MASS = 0.001                 # kg

DEFAULT_PARAMS = {
    "volume": 0.1,                  # m3
    "temperature": 293.0,           # K
    "max_inlet_flow": 0.01,         # kg/s at full opening
    "outlet_coefficient": 0.0001,   # kg/(s*sqrt(Pa))
    "initial_gauge_pressure": 50000.0,  # Pa
}


class PressurePlant(PlantModel):
    """Ideal-gas receiver with square-root outlet flow."""

    name = "pressure"
    DEFAULT_PARAMS = DEFAULT_PARAMS
    DISTURBANCES = {"outlet": 1.0, "leak": 0.0, "temperature": 0.0}

    def _configure(self, p: dict):
        self.volume = p["volume"]
        self.gas_temperature = p["temperature"]
        self.max_inlet_flow = p["max_inlet_flow"]
        self.outlet_coefficient = p["outlet_coefficient"]
        self.initial_gauge_pressure = p["initial_gauge_pressure"]

    def _reset_state(self):
        self.pressure = ATMOSPHERIC_PRESSURE + self.initial_gauge_pressure
        self.mass = self.pressure * self.volume / (GAS_CONSTANT_AIR * self.gas_temperature)

    def _clamp_input(self, value: float) -> float:
        return max(0.0, min(100.0, value))

    def _integrate(self, u: float, dt: float) -> float:
        inlet = u / 100.0 * self.max_inlet_flow
        pressure_diff = max(0.0, self.pressure - ATMOSPHERIC_PRESSURE)
        outlet = self.outlet_coefficient * self.disturbances["outlet"] * math.sqrt(pressure_diff)
        leak = self.disturbances["leak"]

        self.mass += (inlet - outlet - leak) * dt
        self.mass = max(MIN_MASS, self.mass)

        temperature = self.gas_temperature + self.disturbances["temperature"]
        self.pressure = self.mass * GAS_CONSTANT_AIR * temperature / self.volume
        return -leak

    def _measured_value(self) -> float:
        return (self.pressure - ATMOSPHERIC_PRESSURE) / 1000.0

    def _variables(self) -> dict[str, float]:
        return {"pressure": self.pressure, "mass": self.mass}
