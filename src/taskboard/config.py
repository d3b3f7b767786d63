"""Configuration management for the taskboard analytics engine."""

import dataclasses
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "TASKBOARD_CONFIG"


@dataclass
class ConfigModel:
    """Global configuration model for report generation."""

    # Date ranges
    default_date_range: int = 30
    allowed_date_ranges: List[int] = field(default_factory=lambda: [7, 14, 30, 60, 90])

    # Fan-out
    report_timeout_seconds: float = 5.0

    # Activity feed
    activity_limit: int = 10
    user_dashboard_activity_limit: int = 15
    feed_project_cap: int = 5
    feed_task_cap: int = 10
    feed_comment_cap: int = 5

    # Charts and rankings
    project_progress_limit: int = 10
    distribution_top_projects: int = 5
    recent_time_entries: int = 5
    time_distribution_days: int = 30
    top_performers_limit: int = 10

    # Team metrics
    active_user_window_days: int = 7
    standard_work_hours: float = 8.0
    work_days_in_period: int = 22

    # Export
    csv_delimiter: str = ","

    # Paths and logging
    data_dir: str = "~/.taskboard"
    log_level: str = "INFO"

    def __post_init__(self):
        """Post-initialization setup."""
        self.data_dir = os.path.expanduser(self.data_dir)
        self.allowed_date_ranges = sorted(int(days) for days in self.allowed_date_ranges)
        if self.default_date_range not in self.allowed_date_ranges:
            raise ValueError(
                f"default_date_range {self.default_date_range} is not one of "
                f"{self.allowed_date_ranges}"
            )
        if len(self.csv_delimiter) != 1:
            raise ValueError("csv_delimiter must be a single character")

    def to_yaml(self) -> str:
        """Serialize config to YAML."""
        return yaml.dump(dataclasses.asdict(self), default_flow_style=False)

    @classmethod
    def from_yaml(cls, yaml_str: str) -> "ConfigModel":
        """Deserialize config from YAML."""
        data = yaml.safe_load(yaml_str) or {}
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConfigModel":
        known = {f.name for f in dataclasses.fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            logger.warning(f"Ignoring unknown configuration keys: {', '.join(unknown)}")
        return cls(**{key: value for key, value in data.items() if key in known})

    def get_config_path(self) -> Path:
        """Get the config file path."""
        return Path(self.data_dir) / "config.yaml"


class Config:
    """Configuration manager."""

    _instance: Optional[ConfigModel] = None

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> ConfigModel:
        """Load configuration from file, falling back to defaults."""
        if cls._instance is not None:
            return cls._instance

        config = ConfigModel()

        if config_path is None:
            env_path = os.environ.get(CONFIG_ENV_VAR)
            config_path = Path(env_path) if env_path else config.get_config_path()

        if config_path.exists():
            try:
                config = ConfigModel.from_yaml(config_path.read_text())
                logger.debug(f"Loaded configuration from {config_path}")
            except (yaml.YAMLError, TypeError, ValueError) as e:
                logger.warning(f"Failed to load config from {config_path}: {e}. Using defaults.")
                config = ConfigModel()
        else:
            logger.debug(f"No configuration at {config_path}, using defaults")

        cls._instance = config
        return config

    @classmethod
    def save(cls, config: ConfigModel, config_path: Optional[Path] = None) -> None:
        """Save configuration to file."""
        if config_path is None:
            config_path = config.get_config_path()

        config_path.parent.mkdir(parents=True, exist_ok=True)
        config_path.write_text(config.to_yaml())
        logger.info(f"Configuration saved to {config_path}")

    @classmethod
    def get(cls) -> ConfigModel:
        """Get the current configuration instance."""
        if cls._instance is None:
            cls._instance = cls.load()
        return cls._instance

    @classmethod
    def reload(cls, config_path: Optional[Path] = None) -> ConfigModel:
        """Reload configuration from file."""
        cls._instance = None
        return cls.load(config_path)


def get_config() -> ConfigModel:
    """Get the current configuration."""
    return Config.get()


def load_config(config_path: Optional[Path] = None) -> ConfigModel:
    """Load configuration from file."""
    return Config.load(config_path)


def save_config(config: ConfigModel, config_path: Optional[Path] = None) -> None:
    """Save configuration to file."""
    Config.save(config, config_path)
