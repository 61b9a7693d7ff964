"""Configuration management using Pydantic Settings."""

import logging
from functools import lru_cache
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from bakehouse.timeutils import parse_time_to_minutes

logger = logging.getLogger(__name__)


class ApiConfig(BaseModel):
    """Remote simulator endpoints."""

    base_url: str = "http://localhost:3001"
    websocket_url: str | None = None  # Defaults to base_url
    timeout_seconds: float = 30.0
    max_retries: int = 3

    @property
    def push_url(self) -> str:
        return self.websocket_url or self.base_url


class BusinessHoursConfig(BaseModel):
    """Opening hours that bound every scheduled batch."""

    start: str = "06:00"
    end: str = "17:00"

    @field_validator("start", "end")
    @classmethod
    def validate_clock(cls, v: str) -> str:
        if parse_time_to_minutes(v) is None:
            raise ValueError(f"Invalid HH:MM time: {v!r}")
        return v

    @model_validator(mode="after")
    def validate_order(self) -> "BusinessHoursConfig":
        if self.start_minutes >= self.end_minutes:
            raise ValueError("Business hours must start before they end")
        return self

    @property
    def start_minutes(self) -> int:
        return parse_time_to_minutes(self.start)

    @property
    def end_minutes(self) -> int:
        return parse_time_to_minutes(self.end)


class OvenConfig(BaseModel):
    """Oven and rack topology."""

    oven_count: int = Field(default=2, ge=1)
    racks_per_oven: int = Field(default=6, ge=1)

    @property
    def total_racks(self) -> int:
        return self.oven_count * self.racks_per_oven


class TimelineConfig(BaseModel):
    """Timeline coordinate system and drag snapping."""

    snap_minutes: int = Field(default=20, gt=0)
    minutes_per_pixel: float = Field(default=0.3, gt=0)
    min_card_width: float = 20.0  # Pixels
    min_timeline_width: float = 2200.0  # Pixels, 11-hour day at 0.3 min/px
    rack_height: float = 140.0
    card_top: float = 4.0
    hour_interval: int = 1


class SyncConfig(BaseModel):
    """Push channel, polling fallback and mutation guard timing."""

    guard_timeout_seconds: float = 1.0
    poll_interval_seconds: float = 0.5
    items_refresh_seconds: float = 2.0
    connect_timeout_seconds: float = 5.0
    reconnection_attempts: int = 3
    reconnection_delay_seconds: float = 1.0


class SuggestionConfig(BaseModel):
    """Suggested-batch polling driven by the simulated clock."""

    sample_interval_seconds: float = 0.25  # Wall clock, independent of speed
    threshold_minutes: int = 10  # Simulated minutes
    mode: Literal["predictive", "reactive"] = "predictive"


class Settings(BaseSettings):
    """Main configuration class."""

    # Paths
    data_dir: Path = Path("data")

    # API Keys
    logfire_token: str = ""

    # Nested configuration sections
    api: ApiConfig = Field(default_factory=ApiConfig)
    business: BusinessHoursConfig = Field(default_factory=BusinessHoursConfig)
    ovens: OvenConfig = Field(default_factory=OvenConfig)
    timeline: TimelineConfig = Field(default_factory=TimelineConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    suggestions: SuggestionConfig = Field(default_factory=SuggestionConfig)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("data_dir", mode="after")
    @classmethod
    def resolve_data_dir(cls, v: Path) -> Path:
        """Resolve data directory to absolute path."""
        return v.resolve()

    def load_yaml_config(self) -> None:
        """Load and merge YAML configuration."""
        config_path = self.data_dir / "config.yaml"

        if not config_path.exists():
            logger.info(
                f"Config file not found: {config_path}. "
                "Using defaults. Run 'python -m bakehouse init' to create it."
            )
            return

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                yaml_config = yaml.safe_load(f)

            if not yaml_config:
                logger.warning(f"Empty config file: {config_path}")
                return

            for section_name in [
                "api",
                "business",
                "ovens",
                "timeline",
                "sync",
                "suggestions",
            ]:
                if section_name in yaml_config:
                    section = getattr(self, section_name)
                    yaml_section = yaml_config[section_name]

                    section_dict = section.model_dump()
                    section_dict.update(yaml_section)

                    new_section = section.__class__(**section_dict)
                    setattr(self, section_name, new_section)

            logger.info(f"Loaded configuration from {config_path}")

        except yaml.YAMLError as e:
            logger.error(f"Failed to parse YAML config: {e}")
            raise
        except Exception as e:
            logger.error(f"Failed to load config: {e}")
            raise


@lru_cache()
def get_settings() -> Settings:
    """Get singleton Settings instance."""
    settings = Settings()
    settings.load_yaml_config()
    return settings
