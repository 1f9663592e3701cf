from __future__ import annotations

import sysconfig
from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Central configuration loaded from environment / .env file."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    # Checkfiles
    checks_dir: str = "~/Checkbar"

    # Scheduling
    check_run_interval: int = 10  # seconds between runs of one check
    check_timeout: int = 0  # 0 = no timeout
    max_concurrent_runs: int = 0  # 0 = no global cap

    # Command runner: prepended to PATH, empty = interpreter's scripts dir
    scripts_dir: str = ""

    # Debug history kept per check
    history_size: int = 20

    # File watcher
    watch_poll_interval: float = 1.0
    watch_debounce: float = 0.5

    # API
    api_host: str = "127.0.0.1"
    api_port: int = 8765

    # Logging
    log_level: str = "INFO"

    @property
    def checks_path(self) -> Path:
        return Path(self.checks_dir).expanduser()

    @property
    def scripts_path(self) -> Path:
        if self.scripts_dir:
            return Path(self.scripts_dir).expanduser()
        return Path(sysconfig.get_path("scripts"))


settings = Settings()
