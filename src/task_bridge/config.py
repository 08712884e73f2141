"""Configuration loading from environment variables."""

import os
from dataclasses import dataclass, field
from pathlib import Path

MODES = ("architect", "executor", "full")


@dataclass
class Config:
    project_path: Path = field(default_factory=lambda: Path.cwd())
    db_path: Path | None = None
    mode: str = "full"
    busy_timeout_ms: int = 5000
    log_level: str = "WARNING"

    def __post_init__(self):
        if self.db_path is None:
            self.db_path = self.project_path / ".task_bridge" / "bridge.db"

    @property
    def agent_role(self) -> str:
        """The role this process acts as. Full mode acts as the architect."""
        return "executor" if self.mode == "executor" else "architect"

    @classmethod
    def from_env(cls) -> "Config":
        config = cls()

        if project := os.environ.get("BRIDGE_PROJECT_PATH"):
            config.project_path = Path(project).resolve()
            config.db_path = config.project_path / ".task_bridge" / "bridge.db"

        if db := os.environ.get("BRIDGE_DB_PATH"):
            db_path = Path(db)
            if not db_path.is_absolute():
                db_path = config.project_path / db_path
            config.db_path = db_path

        if mode := os.environ.get("BRIDGE_MODE"):
            mode = mode.lower()
            config.mode = mode if mode in MODES else "full"

        if timeout := os.environ.get("BRIDGE_BUSY_TIMEOUT_MS"):
            config.busy_timeout_ms = int(timeout)

        if level := os.environ.get("BRIDGE_LOG_LEVEL"):
            config.log_level = level.upper()

        return config


def get_config() -> Config:
    return Config.from_env()
