"""Capture service configuration.

Loads from config.yaml if present, with environment variable overrides.
Environment variables use the pattern: VISIT_<SECTION>_<KEY> (uppercase).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path

import yaml


@dataclass
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 8000
    env: str = "dev"  # "dev" or "prod"


@dataclass
class ApiConfig:
    base_url: str = "http://localhost:8080/api"
    token: str = ""
    timeout_seconds: float = 10.0
    checkin_type: str = "EXTRACALL"


@dataclass
class CameraConfig:
    grace_seconds: float = 3.0
    quality: float = 0.7
    mirror: bool = True


@dataclass
class GeolocationConfig:
    accuracy: str = "balanced"
    max_age_seconds: float = 60.0


@dataclass
class GeofenceConfig:
    default_radius_m: int = 100
    enforce_on_checkout: bool = False


@dataclass
class CompressionConfig:
    photo_budget_bytes: int = 100 * 1024
    target_width: int = 480
    initial_quality: float = 0.7
    quality_step: float = 0.15
    min_quality: float = 0.2
    max_attempts: int = 5
    # Outlet-edit storefront photos.
    media_target_width: int = 800
    media_initial_quality: float = 0.5


@dataclass
class VideoConfig:
    budget_bytes: int = 5 * 1024 * 1024
    raw_ceiling_bytes: int = 15 * 1024 * 1024
    min_bytes: int = 1024
    preset: str = "manual"
    quality: str = "low"


@dataclass
class WatermarkConfig:
    render_timeout_seconds: float = 5.0
    snapshot_quality: float = 0.5
    timestamp_format: str = "%d/%m/%Y %H:%M:%S"


@dataclass
class CacheConfig:
    outlet_ttl_seconds: float = 300.0


@dataclass
class LoggingConfig:
    level: str = "info"
    format: str = "console"  # "console" or "json"
    file: str = ""


@dataclass
class AppConfig:
    server: ServerConfig = field(default_factory=ServerConfig)
    api: ApiConfig = field(default_factory=ApiConfig)
    camera: CameraConfig = field(default_factory=CameraConfig)
    geolocation: GeolocationConfig = field(default_factory=GeolocationConfig)
    geofence: GeofenceConfig = field(default_factory=GeofenceConfig)
    compression: CompressionConfig = field(default_factory=CompressionConfig)
    video: VideoConfig = field(default_factory=VideoConfig)
    watermark: WatermarkConfig = field(default_factory=WatermarkConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _coerce(current: object, value: str) -> object:
    """Convert an env string to the type of the current value."""
    if isinstance(current, bool):
        return value.strip().lower() in ("1", "true", "yes", "on")
    if isinstance(current, int):
        return int(value)
    if isinstance(current, float):
        return float(value)
    return value


def _apply_env_overrides(config: AppConfig) -> None:
    """Override config values from environment variables."""
    for section_field in fields(config):
        section = getattr(config, section_field.name)
        # Coerce to the declared default's type; YAML may have stored an int for a float.
        defaults = type(section)()
        prefix = "VISIT_LOG" if section_field.name == "logging" else f"VISIT_{section_field.name.upper()}"
        for item in fields(section):
            val = os.environ.get(f"{prefix}_{item.name.upper()}")
            if val is not None:
                setattr(section, item.name, _coerce(getattr(defaults, item.name), val))


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load configuration from YAML file + environment overrides."""
    config = AppConfig()

    # Try to load YAML
    if config_path is None:
        config_path = Path(os.environ.get("VISIT_CONFIG", "config.yaml"))
    else:
        config_path = Path(config_path)

    if config_path.exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}

        for section_name, values in raw.items():
            section = getattr(config, section_name, None)
            if section is None or not isinstance(values, dict):
                continue
            for k, v in values.items():
                if hasattr(section, k):
                    setattr(section, k, v)

    # Environment overrides always win
    _apply_env_overrides(config)
    return config
