"""
Mobile telemetry pipeline.

Collects events, screen views, errors, network calls, touches, scrolls and
performance samples from a running app, batches them and forwards them to a
collection backend without blocking or raising into host code.
"""

__version__ = "0.1.0"

from .schema import (
    Category,
    Record,
    EventRecord,
    ScreenView,
    NetworkRequest,
    PerformanceMetric,
    TouchRecord,
    ScrollRecord,
    CrashReport,
    SessionRecord,
    UserIdentity,
    Breadcrumb,
)
from .config import ConfigError, TelemetryConfig, load_config
from .context import DeviceInfoProvider, StaticDeviceInfoProvider
from .logs import enable_debug_logging, disable_debug_logging
from .transport import Dispatcher, HttpxSender, Sender, TransportError
from .collectors import ErrorCollector, NetworkCollector, PerformanceCollector
from .client import TelemetryClient

__all__ = [
    # Records
    'Category',
    'Record',
    'EventRecord',
    'ScreenView',
    'NetworkRequest',
    'PerformanceMetric',
    'TouchRecord',
    'ScrollRecord',
    'CrashReport',
    'SessionRecord',
    'UserIdentity',
    'Breadcrumb',
    # Config
    'ConfigError',
    'TelemetryConfig',
    'load_config',
    # Context
    'DeviceInfoProvider',
    'StaticDeviceInfoProvider',
    # Logging
    'enable_debug_logging',
    'disable_debug_logging',
    # Transport
    'Dispatcher',
    'HttpxSender',
    'Sender',
    'TransportError',
    # Collectors
    'ErrorCollector',
    'NetworkCollector',
    'PerformanceCollector',
    'TelemetryClient',
]
