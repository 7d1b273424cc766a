from __future__ import annotations

from pydantic_settings import BaseSettings

from downtime_bench import __version__


class Settings(BaseSettings):
    """Central configuration loaded from environment / .env file."""

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_prefix": "DOWNTIME_BENCH_",
        "extra": "ignore",
    }

    # Targets file (absolute or relative to CWD)
    targets_file: str = "targets.yaml"

    # Monitoring cadence
    check_interval: float = 1.0  # seconds between rounds
    check_timeout: float = 5.0  # per-check cap, seconds

    # HTTP probes
    user_agent: str = f"downtime-bench/{__version__}"

    # Logging (status blocks go to the console, not the log)
    log_level: str = "WARNING"


settings = Settings()
