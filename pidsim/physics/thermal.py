"""
Thermal plant: heated chamber losing energy to ambient through a resistance.

    C * dT/dt = P_heater - (T - T_amb) / R - P_door

Disturbances:
  "ambient" - offset added to the ambient temperature (°C)
  "door"    - non-zero opens the door, adding a fixed heat loss
"""

from pidsim.physics.base import PlantModel


DEFAULT_PARAMS = {
    "thermal_capacity": 500.0,     # J/K
    "thermal_resistance": 0.1,     # K/W
    "ambient_temperature": 25.0,   # °C
    "max_heating_power": 2000.0,   # W
    "door_loss": 50.0,             # W lost while the door is open
}


class ThermalPlant(PlantModel):
    """Lumped-capacitance heater with ambient losses."""

    name = "thermal"
    DEFAULT_PARAMS = DEFAULT_PARAMS
    DISTURBANCES = {"ambient": 0.0, "door": 0.0}

    def _configure(self, p: dict):
        self.thermal_capacity = p["thermal_capacity"]
        self.thermal_resistance = p["thermal_resistance"]
        self.ambient_temperature = p["ambient_temperature"]
        self.max_heating_power = p["max_heating_power"]
        self.door_loss = p["door_loss"]

    @property
    def time_constant(self) -> float:
        return self.thermal_capacity * self.thermal_resistance

    def _reset_state(self):
        self.temperature = self.ambient_temperature
        self.heat_flow = 0.0

    def _clamp_input(self, value: float) -> float:
        return max(0.0, min(self.max_heating_power, value))

    def _integrate(self, u: float, dt: float) -> float:
        ambient = self.ambient_temperature + self.disturbances["ambient"]
        thermal_loss = (self.temperature - ambient) / self.thermal_resistance
        door_effect = -self.door_loss if self.disturbances["door"] else 0.0

        self.heat_flow = u - thermal_loss + door_effect
        self.temperature += self.heat_flow / self.thermal_capacity * dt
        return door_effect

    def _measured_value(self) -> float:
        return self.temperature

    def _variables(self) -> dict[str, float]:
        return {"temperature": self.temperature, "heat_flow": self.heat_flow}
