"""Configuration and settings management."""
import json
import logging
from pathlib import Path
from dataclasses import dataclass, asdict

from platformdirs import user_config_dir

logger = logging.getLogger(__name__)

APP_NAME = "SigExtract"


class ConfigError(Exception):
    """Raised when configuration operations fail."""
    pass


@dataclass
class AppSettings:
    """Application settings."""
    sensitivity: int = 15
    output_width: int = 452
    output_height: int = 224
    background: str = "transparent"
    auto_sensitivity: bool = False
    auto_detect: bool = False

    def to_dict(self) -> dict:
        """Convert settings to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> 'AppSettings':
        """Create settings from dictionary."""
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


def get_config_path() -> Path:
    """
    Get the path to the configuration file.

    Returns:
        Path to settings.json
    """
    config_dir = Path(user_config_dir(APP_NAME))
    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir / "settings.json"


def load_settings() -> AppSettings:
    """
    Load settings from disk.

    Returns:
        AppSettings object with loaded settings
    """
    config_path = get_config_path()

    if not config_path.exists():
        logger.info("No settings file found, using defaults")
        return AppSettings()

    try:
        with open(config_path, 'r') as f:
            data = json.load(f)
        settings = AppSettings.from_dict(data)
        logger.info(f"Loaded settings from {config_path}")
        return settings
    except (OSError, ValueError, TypeError, AttributeError) as e:
        logger.warning(f"Failed to load settings: {e}, using defaults")
        return AppSettings()


def save_settings(settings: AppSettings) -> None:
    """
    Save settings to disk.

    Args:
        settings: AppSettings object to save

    Raises:
        ConfigError: If save fails
    """
    config_path = get_config_path()

    try:
        with open(config_path, 'w') as f:
            json.dump(settings.to_dict(), f, indent=2)
        logger.info(f"Saved settings to {config_path}")
    except OSError as e:
        logger.error(f"Failed to save settings: {e}")
        raise ConfigError(f"Failed to save settings: {str(e)}") from e
