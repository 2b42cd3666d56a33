"""
Context utilities for telemetry.

Provides session/anonymous id generation and the device/app info contract
used to enrich the session-start record.
"""

import logging
import os
import uuid
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


def new_session_id() -> str:
    """Generate a fresh session id (UUID4)."""
    return str(uuid.uuid4())


def get_anonymous_id(environ=None) -> str:
    """
    Get the anonymous install id.

    Returns:
        Id from MOBILE_TELEMETRY_ANONYMOUS_ID or a fresh UUID
    """
    environ = os.environ if environ is None else environ
    anonymous_id = environ.get('MOBILE_TELEMETRY_ANONYMOUS_ID')
    if anonymous_id:
        return anonymous_id
    return str(uuid.uuid4())


class DeviceInfoProvider:
    """
    Best-effort source of device and app metadata.

    Both methods may return None; the pipeline treats the result as an
    opaque dictionary.
    """

    def collect(self) -> Optional[Dict[str, Any]]:
        return None

    def collect_app_info(self) -> Optional[Dict[str, Any]]:
        return None


class StaticDeviceInfoProvider(DeviceInfoProvider):
    """Provider returning snapshots handed over by the host platform."""

    def __init__(self, device: Optional[Dict[str, Any]] = None, app: Optional[Dict[str, Any]] = None):
        self.device = device
        self.app = app

    def collect(self) -> Optional[Dict[str, Any]]:
        return dict(self.device) if self.device else None

    def collect_app_info(self) -> Optional[Dict[str, Any]]:
        return dict(self.app) if self.app else None


def snapshot(provider: Optional[DeviceInfoProvider]):
    """
    Collect (device, app) from a provider.

    Returns:
        Tuple of two optional dicts; (None, None) if the provider fails
    """
    if provider is None:
        return None, None
    try:
        return provider.collect(), provider.collect_app_info()
    except Exception as e:
        logger.warning("Device info provider failed: %s", e)
        return None, None
