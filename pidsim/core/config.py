"""Engine configuration via environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="PIDSIM_",
        case_sensitive=True,
        extra="ignore",
    )

    # Project
    PROJECT_NAME: str = "PID Loop Simulation Engine"
    VERSION: str = "0.1.0"

    # Simulation loop
    SIMULATION_TIMESTEP_S: float = 0.04
    MAX_CATCH_UP_STEPS: int = 250

    # Performance analysis
    HISTORY_SIZE: int = 1000
    STEADY_STATE_WINDOW: int = 200
    STEP_CHANGE_THRESHOLD: float = 0.1
    SETTLING_BAND: float = 0.02
    MIN_STEP_SAMPLES: int = 10

    # Auto-tuning
    AUTOTUNE_KP_STEP_INTERVAL: float = 5.0
    AUTOTUNE_MIN_PEAKS: int = 5
    AUTOTUNE_AMPLITUDE_TOLERANCE: float = 0.05


settings = Settings()
