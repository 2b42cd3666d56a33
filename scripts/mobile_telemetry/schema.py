"""
Record schemas for the telemetry pipeline.

Every unit of telemetry is an immutable dataclass carrying the session id,
an optional user id and a creation timestamp. to_payload() renders the
camelCase JSON shape the collection backend expects.
"""

from dataclasses import dataclass, field, fields, is_dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Dict, Optional, Tuple


class Category(str, Enum):
    """Dispatch group of a record; decides endpoint and batching."""
    EVENT = "event"
    SESSION = "session"
    ERROR = "error"
    NETWORK = "network"
    PERFORMANCE = "performance"
    HEATMAP = "heatmap"  # touches and scrolls
    SCREEN_VIEW = "screen"
    IDENTIFY = "identify"


def utc_now() -> str:
    """Current time as an ISO-8601 UTC string."""
    return datetime.now(timezone.utc).isoformat()


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def _to_json_value(value: Any) -> Any:
    if is_dataclass(value) and hasattr(value, "to_payload"):
        return value.to_payload()
    if isinstance(value, (list, tuple)):
        return [_to_json_value(v) for v in value]
    if isinstance(value, dict):
        return {k: _to_json_value(v) for k, v in value.items()}
    return value


def _payload(obj, renames: Dict[str, str]) -> Dict[str, Any]:
    data = {}
    for f in fields(obj):
        value = getattr(obj, f.name)
        if value is None:
            continue
        data[renames.get(f.name, _camel(f.name))] = _to_json_value(value)
    return data


@dataclass(frozen=True, kw_only=True)
class Record:
    """Base of all telemetry records."""
    category: ClassVar[Category] = Category.EVENT
    payload_renames: ClassVar[Dict[str, str]] = {}

    session_id: str
    user_id: Optional[str] = None
    timestamp: str = field(default_factory=utc_now)

    def __post_init__(self):
        if not isinstance(self.session_id, str) or not self.session_id:
            raise ValueError("session_id is required")

    def to_payload(self) -> Dict[str, Any]:
        """Convert to the wire dictionary, skipping unset fields."""
        return _payload(self, self.payload_renames)


@dataclass(frozen=True, kw_only=True)
class EventRecord(Record):
    """Custom analytics event."""
    category: ClassVar[Category] = Category.EVENT

    event_name: str
    event_type: str = "track"
    anonymous_id: Optional[str] = None
    screen_name: Optional[str] = None
    properties: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, kw_only=True)
class ScreenView(Record):
    """A screen became visible."""
    category: ClassVar[Category] = Category.SCREEN_VIEW

    screen_name: str
    screen_class: Optional[str] = None
    previous_screen: Optional[str] = None
    render_time: Optional[float] = None
    properties: Optional[Dict[str, Any]] = None


@dataclass(frozen=True, kw_only=True)
class NetworkRequest(Record):
    """One outbound HTTP call made by the host application."""
    category: ClassVar[Category] = Category.NETWORK

    url: str
    method: str
    duration_ms: float
    status_code: Optional[int] = None
    request_size: Optional[int] = None
    response_size: Optional[int] = None
    request_headers: Optional[Dict[str, str]] = None
    response_headers: Optional[Dict[str, str]] = None
    error_message: Optional[str] = None
    initiator: Optional[str] = None  # "httpx", "native", ...


@dataclass(frozen=True, kw_only=True)
class PerformanceMetric(Record):
    """A named performance sample (cold start, render time, custom)."""
    category: ClassVar[Category] = Category.PERFORMANCE

    metric_name: str
    value: float
    screen_name: Optional[str] = None
    attributes: Dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        # Attributes are flattened next to the metric fields
        data = dict(self.attributes)
        data.update(_payload(self, {}))
        data.pop("attributes", None)
        return data


@dataclass(frozen=True, kw_only=True)
class TouchRecord(Record):
    """Classified touch interaction for heatmaps."""
    category: ClassVar[Category] = Category.HEATMAP
    payload_renames: ClassVar[Dict[str, str]] = {"kind": "type"}

    kind: str  # "tap", "longPress", "swipe", "pinch"
    x: float
    y: float
    relative_x: float = 0.0
    relative_y: float = 0.0
    screen_name: str = ""
    screen_width: float = 0
    screen_height: float = 0
    direction: Optional[str] = None
    velocity: Optional[float] = None
    duration: Optional[float] = None
    force: Optional[float] = None
    scale: Optional[float] = None
    end_x: Optional[float] = None
    end_y: Optional[float] = None
    element_type: Optional[str] = None
    element_id: Optional[str] = None
    element_label: Optional[str] = None


@dataclass(frozen=True, kw_only=True)
class ScrollRecord(Record):
    """A new scroll-depth milestone on a screen."""
    category: ClassVar[Category] = Category.HEATMAP

    screen_name: str
    scroll_depth: int
    max_scroll_depth: int
    content_height: float
    viewport_height: float
    direction: str

    def to_payload(self) -> Dict[str, Any]:
        data = {"type": "scroll"}
        data.update(_payload(self, {}))
        return data


@dataclass(frozen=True)
class Breadcrumb:
    """Trail entry attached to crash reports."""
    category: str
    message: str
    level: str = "info"  # debug, info, warning, error, fatal
    timestamp: str = field(default_factory=utc_now)
    data: Optional[Dict[str, Any]] = None

    def to_payload(self) -> Dict[str, Any]:
        return _payload(self, {})


@dataclass(frozen=True, kw_only=True)
class CrashReport(Record):
    """Error, native crash, ANR or out-of-memory report."""
    category: ClassVar[Category] = Category.ERROR
    payload_renames: ClassVar[Dict[str, str]] = {"crash_type": "type"}

    message: str
    crash_type: str = "python"  # python, native, anr, oom
    stack: Optional[str] = None
    screen_name: Optional[str] = None
    breadcrumbs: Tuple[Breadcrumb, ...] = ()
    context: Optional[Dict[str, Any]] = None
    device: Optional[Dict[str, Any]] = None
    app: Optional[Dict[str, Any]] = None
    is_fatal: bool = False
    signal: Optional[str] = None
    anr_duration: Optional[float] = None
    main_thread_stack: Optional[str] = None


@dataclass(frozen=True, kw_only=True)
class SessionRecord(Record):
    """Session start record, enriched with the device/app snapshot."""
    category: ClassVar[Category] = Category.SESSION

    started_at: str = field(default_factory=utc_now)
    anonymous_id: Optional[str] = None
    platform: str = "mobile"
    device: Optional[Dict[str, Any]] = None
    app: Optional[Dict[str, Any]] = None


@dataclass(frozen=True, kw_only=True)
class UserIdentity(Record):
    """Associates the session with a known user."""
    category: ClassVar[Category] = Category.IDENTIFY

    user_id: str
    anonymous_id: Optional[str] = None
    traits: Dict[str, Any] = field(default_factory=dict)
