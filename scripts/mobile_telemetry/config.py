"""
Configuration for the telemetry pipeline.

Provides an explicit option tree with:
- Defaults for every recognized option
- Validation once, at construction
- JSON file loading
- Environment variable overrides

Usage:
    from mobile_telemetry.config import load_config

    config = load_config(Path("telemetry.json"))
    if config.heatmap.track_touches:
        ...
"""

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from .gestures.classifier import GestureThresholds
from .transport.policy import FlushPolicy

logger = logging.getLogger(__name__)

ENV_PREFIX = "MOBILE_TELEMETRY_"
TRUE_VALUES = ("true", "1", "yes")


class ConfigError(ValueError):
    """Invalid or incomplete configuration."""


@dataclass
class TransportOptions:
    """Dispatch queue settings."""
    flush_interval: float = 5.0  # seconds
    max_queue_size: int = 30
    timeout: float = 10.0  # seconds per request

    def validate(self):
        if self.flush_interval <= 0:
            raise ConfigError("transport.flush_interval must be > 0")
        if self.max_queue_size < 1:
            raise ConfigError("transport.max_queue_size must be >= 1")
        if self.timeout <= 0:
            raise ConfigError("transport.timeout must be > 0")

    def policy(self) -> FlushPolicy:
        return FlushPolicy(self.max_queue_size, self.flush_interval)


@dataclass
class HeatmapOptions:
    """Touch, gesture and scroll tracking."""
    enabled: bool = True
    track_touches: bool = True
    track_scrolls: bool = True
    track_gestures: bool = True
    touch_sampling: float = 1.0  # 0-1
    long_press_duration_ms: float = 500
    tap_max_distance: float = 10
    swipe_min_distance: float = 50
    swipe_min_velocity: float = 0.3
    flush_interval: float = 10.0
    max_queue_size: int = 50

    def validate(self):
        if not 0.0 <= self.touch_sampling <= 1.0:
            raise ConfigError("heatmap.touch_sampling must be between 0 and 1")
        if self.long_press_duration_ms <= 0:
            raise ConfigError("heatmap.long_press_duration_ms must be > 0")
        if self.tap_max_distance < 0 or self.swipe_min_distance < 0:
            raise ConfigError("heatmap distances must be >= 0")
        if self.swipe_min_velocity < 0:
            raise ConfigError("heatmap.swipe_min_velocity must be >= 0")
        if self.flush_interval <= 0:
            raise ConfigError("heatmap.flush_interval must be > 0")
        if self.max_queue_size < 1:
            raise ConfigError("heatmap.max_queue_size must be >= 1")

    def thresholds(self) -> GestureThresholds:
        return GestureThresholds(
            long_press_duration_ms=self.long_press_duration_ms,
            tap_max_distance=self.tap_max_distance,
            swipe_min_distance=self.swipe_min_distance,
            swipe_min_velocity=self.swipe_min_velocity,
        )

    def policy(self) -> FlushPolicy:
        return FlushPolicy(self.max_queue_size, self.flush_interval)


@dataclass
class CrashReportingOptions:
    enabled: bool = True
    capture_breadcrumbs: bool = True
    max_breadcrumbs: int = 50

    def validate(self):
        if self.max_breadcrumbs < 0:
            raise ConfigError("crash_reporting.max_breadcrumbs must be >= 0")


@dataclass
class PerformanceOptions:
    enabled: bool = True
    track_app_start_time: bool = True
    track_screen_render_time: bool = True
    track_network_requests: bool = True
    slow_render_threshold_ms: float = 500

    def validate(self):
        if self.slow_render_threshold_ms < 0:
            raise ConfigError("performance.slow_render_threshold_ms must be >= 0")


@dataclass
class NetworkOptions:
    ignore_urls: Tuple[str, ...] = ()  # regular expressions
    capture_headers: bool = False
    capture_failed_only: bool = False

    def validate(self):
        self.ignore_urls = tuple(self.ignore_urls)
        for pattern in self.ignore_urls:
            if not isinstance(pattern, str):
                raise ConfigError(f"network.ignore_urls entries must be strings: {pattern!r}")


@dataclass
class SessionOptions:
    track_screen_views: bool = True
    track_screen_events: bool = True  # also emit a "screen_view" analytics event

    def validate(self):
        pass


SECTIONS = {
    "transport": TransportOptions,
    "heatmap": HeatmapOptions,
    "crash_reporting": CrashReportingOptions,
    "performance": PerformanceOptions,
    "network": NetworkOptions,
    "session": SessionOptions,
}


@dataclass
class TelemetryConfig:
    """Resolved configuration; validated on construction."""
    api_key: str
    app_id: str
    api_url: str
    enabled: bool = True
    debug: bool = False
    environment: str = "production"
    release: Optional[str] = None
    app_version: Optional[str] = None
    transport: TransportOptions = field(default_factory=TransportOptions)
    heatmap: HeatmapOptions = field(default_factory=HeatmapOptions)
    crash_reporting: CrashReportingOptions = field(default_factory=CrashReportingOptions)
    performance: PerformanceOptions = field(default_factory=PerformanceOptions)
    network: NetworkOptions = field(default_factory=NetworkOptions)
    session: SessionOptions = field(default_factory=SessionOptions)
    before_send: Optional[Callable[[Dict[str, Any]], Any]] = field(default=None, repr=False)

    def __post_init__(self):
        self.validate()

    def validate(self):
        for name in ("api_key", "app_id", "api_url"):
            value = getattr(self, name)
            if not isinstance(value, str) or not value:
                raise ConfigError(f"{name} is required")
        if not self.api_url.startswith(("http://", "https://")):
            raise ConfigError(f"api_url must be an http(s) URL: {self.api_url}")
        if self.before_send is not None and not callable(self.before_send):
            raise ConfigError("before_send must be callable")
        for section in SECTIONS:
            getattr(self, section).validate()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], **kwargs) -> "TelemetryConfig":
        """
        Build a config from a nested dictionary.

        Args:
            data: Options keyed like the dataclass fields; sections are
                nested dictionaries
            **kwargs: Values that cannot come from JSON (before_send)

        Raises:
            ConfigError: on unknown keys or invalid values
        """
        top_level = {f.name for f in fields(cls)} - {"before_send"}
        values: Dict[str, Any] = {}

        for key, value in data.items():
            if key not in top_level:
                raise ConfigError(f"Unknown option: {key}")
            if key in SECTIONS:
                values[key] = _build_section(key, value)
            else:
                values[key] = value

        values.update(kwargs)
        try:
            return cls(**values)
        except TypeError as e:
            raise ConfigError(str(e)) from e

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary (without callables)."""
        data = asdict(self)
        data.pop("before_send", None)
        data["network"]["ignore_urls"] = list(self.network.ignore_urls)
        return data


def _build_section(name: str, value: Any):
    section_cls = SECTIONS[name]
    if isinstance(value, section_cls):
        return value
    if not isinstance(value, Mapping):
        raise ConfigError(f"Section {name} must be an object")

    known = {f.name for f in fields(section_cls)}
    unknown = set(value) - known
    if unknown:
        raise ConfigError(f"Unknown option(s) in {name}: {', '.join(sorted(unknown))}")
    return section_cls(**value)


def _apply_env_overrides(data: Dict[str, Any], environ: Mapping[str, str]):
    """
    Apply environment variable overrides.

    MOBILE_TELEMETRY_ENABLED=false disables the pipeline entirely.
    """
    for key in ("api_key", "app_id", "api_url", "environment", "release"):
        env_key = ENV_PREFIX + key.upper()
        if env_key in environ:
            data[key] = environ[env_key]

    for key in ("enabled", "debug"):
        env_key = ENV_PREFIX + key.upper()
        if env_key in environ:
            data[key] = environ[env_key].lower() in TRUE_VALUES

    env_key = ENV_PREFIX + "TOUCH_SAMPLING"
    if env_key in environ:
        try:
            sampling = float(environ[env_key])
        except ValueError:
            raise ConfigError(f"{env_key} must be a number") from None
        data.setdefault("heatmap", {})
        data["heatmap"] = {**data["heatmap"], "touch_sampling": sampling}


def load_config(
    config_path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
    **kwargs,
) -> TelemetryConfig:
    """
    Load configuration from a JSON file plus environment overrides.

    Args:
        config_path: Path to a JSON config file (optional; a missing file
            means defaults only)
        environ: Environment mapping (defaults to os.environ)
        **kwargs: Extra values passed to TelemetryConfig (before_send)

    Returns:
        Validated TelemetryConfig
    """
    environ = os.environ if environ is None else environ
    data: Dict[str, Any] = {}

    if config_path is not None:
        config_path = Path(config_path)
        if config_path.exists():
            try:
                with open(config_path) as f:
                    data = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                logger.warning("Failed to load config from %s: %s", config_path, e)
                data = {}
            if not isinstance(data, dict):
                raise ConfigError(f"{config_path} must contain a JSON object")

    _apply_env_overrides(data, environ)
    return TelemetryConfig.from_dict(data, **kwargs)
