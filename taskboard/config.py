"""Configuration for Taskboard with validation."""

import os
from pathlib import Path
from typing import Optional

import structlog
import toml
from pydantic import BaseModel, ConfigDict, Field, field_validator

log = structlog.get_logger()

# Environment variable -> config field
ENV_OVERRIDES = {
    "TASKBOARD_DB_PATH": "db_path",
    "TASKBOARD_PORT": "port",
    "TASKBOARD_LOG_LEVEL": "log_level",
}


class TaskboardConfig(BaseModel):
    """Main configuration for Taskboard with validation."""

    model_config = ConfigDict(validate_assignment=True)

    # Paths
    data_dir: Path = Field(default_factory=lambda: Path.home() / ".taskboard")
    db_path: Optional[Path] = None  # Computed from data_dir if None

    # Server
    host: str = "127.0.0.1"
    port: int = Field(gt=0, lt=65536, default=3001)

    # Auth
    token_ttl_hours: int = Field(gt=0, default=24 * 7)
    min_password_length: int = Field(ge=1, default=6)

    # Return raw messages for unexpected errors (development only)
    expose_errors: bool = False

    # Logging
    log_level: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR)$")
    log_file: Optional[Path] = None
    json_logs: bool = False

    @field_validator('host')
    @classmethod
    def host_not_empty(cls, v):
        if not v or not v.strip():
            raise ValueError('host cannot be empty')
        return v.strip()

    def model_post_init(self, __context):
        """Set computed values after initialization."""
        self.data_dir = Path(self.data_dir).expanduser()
        if self.db_path is None:
            self.db_path = self.data_dir / "taskboard.db"
        else:
            self.db_path = Path(self.db_path).expanduser()

    @classmethod
    def load(cls, path: Optional[str] = None) -> 'TaskboardConfig':
        """Build configuration from a TOML file plus environment overrides.

        Without an explicit path the first existing file among
        ``$TASKBOARD_CONFIG``, ``./taskboard.toml`` and
        ``~/.taskboard/config.toml`` is used. An unreadable file is logged
        and ignored. Environment variables in ``ENV_OVERRIDES`` win over
        file values.
        """
        source = Path(path).expanduser() if path else cls._find_config_file()

        values: dict = {}
        if source is not None and source.is_file():
            try:
                values = toml.load(str(source))
            except (toml.TomlDecodeError, OSError) as e:
                log.error("config_load_failed", path=str(source), error=str(e))
            else:
                log.info("config_loaded", path=str(source))

        for env_name, key in ENV_OVERRIDES.items():
            if os.environ.get(env_name):
                values[key] = os.environ[env_name]

        return cls(**values)

    @staticmethod
    def _find_config_file() -> Optional[Path]:
        candidates = [Path("taskboard.toml"), Path.home() / ".taskboard" / "config.toml"]
        if os.environ.get("TASKBOARD_CONFIG"):
            candidates.insert(0, Path(os.environ["TASKBOARD_CONFIG"]).expanduser())
        return next((c for c in candidates if c.is_file()), None)

    def save(self, path: str):
        """Write this configuration as TOML, omitting unset optional values."""
        target = Path(path).expanduser()
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(toml.dumps(self.model_dump(mode='json', exclude_none=True)))
        log.info("config_saved", path=str(target))
