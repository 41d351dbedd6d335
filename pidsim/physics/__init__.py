"""Plant models for closed-loop PID simulation.

Modules:
    base: Shared stepping contract, sensor noise and transport delay
    mechanical: Mass with friction and constant load (position control)
    thermal: Heated chamber with ambient losses (temperature control)
    tank_level: Gravity-drained tank (level control)
    motor_speed: Current-driven DC motor (speed control)
    pressure: Ideal-gas receiver (pressure control)
"""

from pidsim.physics.base import PlantModel, PlantState, UnknownDisturbanceError
from pidsim.physics.mechanical import MechanicalPlant
from pidsim.physics.motor_speed import MotorSpeedPlant
from pidsim.physics.pressure import PressurePlant
from pidsim.physics.tank_level import TankLevelPlant
from pidsim.physics.thermal import ThermalPlant


class UnknownPlantError(KeyError):
    """Raised by create_plant() for an unregistered plant kind."""


PLANT_TYPES: dict[str, type[PlantModel]] = {
    MechanicalPlant.name: MechanicalPlant,
    ThermalPlant.name: ThermalPlant,
    TankLevelPlant.name: TankLevelPlant,
    MotorSpeedPlant.name: MotorSpeedPlant,
    PressurePlant.name: PressurePlant,
}


def create_plant(kind: str, params: dict | None = None) -> PlantModel:
    """Instantiate a plant variant by its registry key."""
    try:
        plant_cls = PLANT_TYPES[kind]
    except KeyError:
        raise UnknownPlantError(
            f"Unknown plant '{kind}' (expected one of {sorted(PLANT_TYPES)})"
        ) from None
    return plant_cls(params)


__all__ = [
    "PLANT_TYPES",
    "MechanicalPlant",
    "MotorSpeedPlant",
    "PlantModel",
    "PlantState",
    "PressurePlant",
    "TankLevelPlant",
    "ThermalPlant",
    "UnknownDisturbanceError",
    "UnknownPlantError",
    "create_plant",
]
