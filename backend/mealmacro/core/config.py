from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Logging
    log_level: str = "INFO"

    # Optimizer
    optimizer_tolerance: float = 25.0  # percent, per macro
    optimizer_max_iterations: int = 4000
    optimizer_jitter_probability: float = 0.3

    # Unset means every shuffled attempt draws fresh entropy
    optimizer_random_seed: Optional[int] = None

    class Config:
        env_file = ".env"


settings = Settings()
