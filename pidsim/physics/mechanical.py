"""
Mechanical plant: a mass pushed by the controller against friction and a load.

    m * dv/dt = F + F_dist - b * v - F_load
    dx/dt     = v

The process variable is the position.
"""

from pidsim.physics.base import PlantModel


DEFAULT_PARAMS = {
    "inertia": 1.0,            # kg (mass)
    "friction": 0.2,           # N*s/m viscous coefficient
    "load": 20.0,              # N  constant opposing force (e.g. gravity)
    "max_force": 100.0,        # N  actuator limit
    "initial_position": 0.0,
}


class MechanicalPlant(PlantModel):
    """Point mass with viscous friction and constant load."""

    name = "mechanical"
    DEFAULT_PARAMS = DEFAULT_PARAMS
    DISTURBANCES = {"force": 0.0}

    def _configure(self, p: dict):
        self.inertia = p["inertia"]
        self.friction = p["friction"]
        self.load = p["load"]
        self.max_force = p["max_force"]
        self.initial_position = p["initial_position"]

    def _reset_state(self):
        self.position = self.initial_position
        self.velocity = 0.0

    def _clamp_input(self, value: float) -> float:
        return max(-self.max_force, min(self.max_force, value))

    def _integrate(self, u: float, dt: float) -> float:
        disturbance = self.disturbances["force"]
        net_force = u + disturbance - self.friction * self.velocity - self.load
        acceleration = net_force / self.inertia

        self.velocity += acceleration * dt
        self.position += self.velocity * dt
        return disturbance

    def _measured_value(self) -> float:
        return self.position

    def _variables(self) -> dict[str, float]:
        return {"position": self.position, "velocity": self.velocity}
