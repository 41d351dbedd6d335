"""
Plant model base: shared stepping contract for every physical variant.

Features:
  - Forward-Euler stepping under a fixed dt
  - Input saturation at the plant boundary
  - Transport delay (time-stamped input buffer)
  - Sensor noise on the reported reading only
  - Named disturbances per variant
"""

import math
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

import numpy as np


class UnknownDisturbanceError(KeyError):
    """Raised when a plant is asked for a disturbance kind it does not model."""


@dataclass(frozen=True)
class PlantState:
    """Immutable snapshot returned by PlantModel.update()."""

    process_variable: float
    true_value: float
    applied_input: float
    effective_input: float
    disturbance: float
    time: float
    variables: Mapping[str, float] = field(default_factory=dict)


class TransportDelay:
    """Time-stamped buffer of past inputs."""

    def __init__(self, delay_time: float = 0.1):
        self.delay_time = delay_time
        self._buffer: deque[tuple[float, float]] = deque()

    def apply(self, value: float, now: float) -> float:
        """Record `value` at `now` and return the input due at now - delay_time."""
        self._buffer.append((now, value))

        cutoff = now - 3.0 * self.delay_time
        while self._buffer and self._buffer[0][0] <= cutoff:
            self._buffer.popleft()

        target = now - self.delay_time
        for stamp, past in reversed(self._buffer):
            if stamp <= target:
                return past
        # Not enough history yet
        return value

    def clear(self):
        self._buffer.clear()

    def __len__(self) -> int:
        return len(self._buffer)


class SensorNoise:
    """Deterministic two-tone ripple plus uniform random noise."""

    def __init__(self, amplitude: float = 0.5, seed: int | None = None):
        self.amplitude = amplitude
        self._rng = np.random.default_rng(seed)

    def apply(self, clean: float, now: float) -> float:
        ripple = math.sin(now * 8.0) * 0.4 + math.sin(now * 20.3) * 0.15
        random_part = self._rng.uniform(-0.25, 0.25)
        return clean + (ripple + random_part) * self.amplitude


class PlantModel(ABC):
    """Base class for single-input single-output plant models.

    Subclasses declare DEFAULT_PARAMS and DISTURBANCES (kind → neutral value)
    and implement the physical balance.
    """

    name: str = "plant"
    DEFAULT_PARAMS: dict[str, Any] = {}
    DISTURBANCES: dict[str, float] = {}

    def __init__(self, params: dict | None = None):
        p = {**self.DEFAULT_PARAMS, **(params or {})}
        self.params = p
        self._configure(p)

        self.noise = SensorNoise(p.get("noise_amplitude", 0.5), p.get("noise_seed"))
        self.noise_enabled = bool(p.get("noise_enabled", False))
        self.delay = TransportDelay(p.get("delay_time", 0.1))
        self.delay_enabled = bool(p.get("delay_enabled", False))

        self.reset()

    # ------------------------------------------------------------------
    # Variant hooks
    # ------------------------------------------------------------------
    @abstractmethod
    def _configure(self, p: dict):
        """Read physical parameters from the merged params dict."""

    @abstractmethod
    def _reset_state(self):
        """Restore the initial physical state."""

    @abstractmethod
    def _clamp_input(self, value: float) -> float:
        """Saturate the manipulated input to its physical range."""

    @abstractmethod
    def _integrate(self, u: float, dt: float) -> float:
        """Advance the balance by dt with effective input u. Returns the disturbance effect."""

    @abstractmethod
    def _measured_value(self) -> float:
        """Noise-free process variable."""

    @abstractmethod
    def _variables(self) -> dict[str, float]:
        """Variant-specific state vector."""

    # ------------------------------------------------------------------
    # Stepping
    # ------------------------------------------------------------------
    def update(self, manipulated_input: float, dt: float) -> PlantState:
        """Advance the plant by dt with the given manipulated input.

        A non-positive dt returns the last snapshot without touching state.
        """
        if dt <= 0:
            return self._snapshot

        self.time += dt

        applied = self._clamp_input(manipulated_input)
        effective = self.delay.apply(applied, self.time) if self.delay_enabled else applied

        disturbance = self._integrate(effective, dt)

        true_value = self._measured_value()
        reading = self.noise.apply(true_value, self.time) if self.noise_enabled else true_value

        self._snapshot = PlantState(
            process_variable=reading,
            true_value=true_value,
            applied_input=applied,
            effective_input=effective,
            disturbance=disturbance,
            time=self.time,
            variables=MappingProxyType(self._variables()),
        )
        return self._snapshot

    @property
    def process_variable(self) -> float:
        """Last reported reading."""
        return self._snapshot.process_variable

    @property
    def snapshot(self) -> PlantState:
        return self._snapshot

    # ------------------------------------------------------------------
    # Disturbances, noise, delay
    # ------------------------------------------------------------------
    def set_disturbance(self, kind: str, value: float):
        if kind not in self.DISTURBANCES:
            raise UnknownDisturbanceError(
                f"{self.name} plant has no '{kind}' disturbance "
                f"(expected one of {sorted(self.DISTURBANCES)})"
            )
        self.disturbances[kind] = float(value)

    def enable_noise(self, amplitude: float = 0.5, seed: int | None = None):
        self.noise_enabled = True
        self.noise.amplitude = amplitude
        if seed is not None:
            self.noise = SensorNoise(amplitude, seed)

    def disable_noise(self):
        self.noise_enabled = False

    def enable_delay(self, delay_time: float = 0.1):
        self.delay_enabled = True
        self.delay.delay_time = delay_time

    def disable_delay(self):
        self.delay_enabled = False
        self.delay.clear()

    def reset(self):
        """Restore initial physical state. Noise/delay settings are kept."""
        self.time = 0.0
        self.disturbances = dict(self.DISTURBANCES)
        self.delay.clear()
        self._reset_state()
        true_value = self._measured_value()
        self._snapshot = PlantState(
            process_variable=true_value,
            true_value=true_value,
            applied_input=0.0,
            effective_input=0.0,
            disturbance=0.0,
            time=0.0,
            variables=MappingProxyType(self._variables()),
        )

    def get_state(self) -> dict:
        return {
            "plant": self.name,
            "time": round(self.time, 4),
            "process_variable": round(self._snapshot.process_variable, 4),
            **{k: round(v, 4) for k, v in self._variables().items()},
            "disturbances": dict(self.disturbances),
            "noise_enabled": self.noise_enabled,
            "noise_amplitude": self.noise.amplitude,
            "delay_enabled": self.delay_enabled,
            "delay_time": self.delay.delay_time,
            "delay_buffer": len(self.delay),
        }
