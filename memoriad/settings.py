#!/usr/bin/env python3
"""
Memoria Settings Management
Loads and validates config.yml using Pydantic
"""

import logging
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from memoriad.errors import SettingsError

logger = logging.getLogger(__name__)


class RetentionSettings(BaseModel):
    """Retention policy settings"""
    days: int = Field(
        default=30,
        ge=1,
        description="Delete items created more than this many days ago"
    )
    delete_unstarred_only: bool = Field(
        default=True,
        description="Keep starred items regardless of age"
    )


class UISettings(BaseModel):
    """Popup window settings, passed through to the UI"""
    width: int = Field(default=480, ge=100, le=10000)
    height: int = Field(default=640, ge=100, le=10000)
    anchor: str = Field(default="top-right")
    opacity: float = Field(default=0.92, ge=0.0, le=1.0)
    blur: float = Field(default=12.0, ge=0.0)

    @field_validator('anchor')
    @classmethod
    def validate_anchor(cls, v: str) -> str:
        """Anchor must name a screen corner or edge"""
        allowed = {
            "top-left", "top", "top-right",
            "left", "center", "right",
            "bottom-left", "bottom", "bottom-right",
        }
        if v not in allowed:
            raise ValueError(f"anchor must be one of {sorted(allowed)}")
        return v


class GridSettings(BaseModel):
    """Image gallery grid settings"""
    thumb_size: int = Field(default=104, ge=16, le=1024)
    columns: int = Field(default=3, ge=1, le=20)


class BehaviorSettings(BaseModel):
    """Capture behavior"""
    dedupe: bool = Field(
        default=True,
        description="Coalesce repeat captures of identical content into one item"
    )


class ClipboardSettings(BaseModel):
    """Clipboard polling settings"""
    poll_interval_ms: int = Field(default=300, ge=50, le=60000)
    timeout_seconds: float = Field(default=2.0, gt=0.0, le=60.0)


class StorageSettings(BaseModel):
    """Storage location"""
    data_dir: Optional[str] = Field(
        default=None,
        description="Override for ~/.local/share/memoria"
    )


class Settings(BaseModel):
    """Main settings model"""
    retention: RetentionSettings = Field(default_factory=RetentionSettings)
    ui: UISettings = Field(default_factory=UISettings)
    grid: GridSettings = Field(default_factory=GridSettings)
    behavior: BehaviorSettings = Field(default_factory=BehaviorSettings)
    clipboard: ClipboardSettings = Field(default_factory=ClipboardSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)


def default_config_path() -> Path:
    """~/.config/memoria/config.yml"""
    return Path.home() / ".config" / "memoria" / "config.yml"


def default_data_dir() -> Path:
    """~/.local/share/memoria"""
    return Path.home() / ".local" / "share" / "memoria"


class SettingsManager:
    """Manages loading and accessing settings"""

    def __init__(self, config_path: Optional[Path] = None):
        """
        Initialize settings manager

        Args:
            config_path: Path to config.yml. Defaults to ~/.config/memoria/config.yml

        Raises:
            SettingsError: the file exists but is not valid YAML
        """
        if config_path is None:
            config_path = default_config_path()

        self.config_path = Path(config_path)
        self.settings = self._load_settings()

    def _load_settings(self) -> Settings:
        """Load and validate settings from YAML file"""
        if not self.config_path.exists():
            logger.warning(f"Config file not found, creating with defaults: {self.config_path}")
            settings = Settings()
            self._save_settings(settings)
            return settings

        try:
            with open(self.config_path, 'r') as f:
                config_data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise SettingsError(f"Invalid config.yml: syntax error: {e}\nPath: {self.config_path}") from e
        except OSError as e:
            raise SettingsError(f"Failed to read config file {self.config_path}: {e}") from e

        if config_data is None:
            logger.warning("Config file is empty, using defaults")
            return Settings()

        if not isinstance(config_data, dict):
            logger.warning("Config file is not a mapping, using defaults")
            return Settings()

        try:
            settings = Settings(**config_data)
        except ValidationError as e:
            logger.warning("Config file has invalid fields, using defaults")
            logger.warning(f"Validation error: {e}")
            return Settings()

        logger.info(f"Loaded settings from {self.config_path}")
        logger.info(f"  - Retention days: {settings.retention.days}")
        logger.info(f"  - Dedupe: {settings.behavior.dedupe}")
        return settings

    def _save_settings(self, settings: Optional[Settings] = None):
        """Write settings to the YAML file, creating its directory"""
        settings = settings or self.settings
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_path, 'w') as f:
                yaml.safe_dump(settings.model_dump(), f, default_flow_style=False, sort_keys=False)
        except OSError as e:
            raise SettingsError(f"Failed to write default config {self.config_path}: {e}") from e
        logger.info(f"Created default config at: {self.config_path}")

    def reload(self):
        """Reload settings from file"""
        self.settings = self._load_settings()

    @property
    def retention_days(self) -> int:
        return self.settings.retention.days

    @property
    def delete_unstarred_only(self) -> bool:
        return self.settings.retention.delete_unstarred_only

    @property
    def dedupe(self) -> bool:
        return self.settings.behavior.dedupe

    @property
    def poll_interval(self) -> float:
        """Clipboard poll interval in seconds"""
        return self.settings.clipboard.poll_interval_ms / 1000.0

    @property
    def tool_timeout(self) -> float:
        return self.settings.clipboard.timeout_seconds

    @property
    def data_dir(self) -> Path:
        if self.settings.storage.data_dir:
            return Path(self.settings.storage.data_dir).expanduser()
        return default_data_dir()

    def snapshot(self) -> dict:
        """ui/grid/behavior sections as plain data for IPC clients"""
        return {
            "ui": self.settings.ui.model_dump(),
            "grid": self.settings.grid.model_dump(),
            "behavior": self.settings.behavior.model_dump(),
        }
