"""
TelemetryClient: the host-facing facade.

Wires the dispatcher, the heatmap collector and the error, performance and
network collectors around one session.

Usage:
    config = load_config(Path("telemetry.json"))
    client = TelemetryClient(config)

    async def main():
        client.start()
        client.track_screen("Home")
        client.track("button_clicked", {"id": "buy"})
        ...
        await client.shutdown()

start() must run inside the event loop when the default LoopScheduler is
used. Every other operation is a silent no-op before start(), after
shutdown(), when the config disables telemetry, or after opt_out().
"""

import logging
import random
from typing import Any, Callable, Dict, Optional

import httpx

from .collectors import ErrorCollector, NetworkCollector, PerformanceCollector
from .config import TelemetryConfig
from .context import DeviceInfoProvider, get_anonymous_id, new_session_id, snapshot
from .gestures.heatmap import HeatmapCollector
from .logs import enable_debug_logging
from .schema import Category, EventRecord, ScreenView, SessionRecord, UserIdentity
from .transport.dispatcher import Dispatcher
from .transport.http import HttpxSender, Sender
from .transport.scheduler import LoopScheduler, Scheduler

logger = logging.getLogger(__name__)


class TelemetryClient:
    """One telemetry session for a running app."""

    def __init__(
        self,
        config: TelemetryConfig,
        sender: Optional[Sender] = None,
        scheduler: Optional[Scheduler] = None,
        device_info: Optional[DeviceInfoProvider] = None,
        random_fn: Callable[[], float] = random.random,
    ):
        """
        Args:
            config: Resolved configuration
            sender: Transport primitive; an HttpxSender when omitted
            scheduler: Timer source for every component
            device_info: Source of the device/app snapshot
            random_fn: Uniform [0, 1) source for touch sampling
        """
        self.config = config
        self.scheduler = scheduler or LoopScheduler()
        self.device_info = device_info
        self._sender = sender
        self._random = random_fn

        self.dispatcher: Optional[Dispatcher] = None
        self.heatmap: Optional[HeatmapCollector] = None
        self.errors: Optional[ErrorCollector] = None
        self.performance: Optional[PerformanceCollector] = None
        self.network: Optional[NetworkCollector] = None

        self.session_id: Optional[str] = None
        self.anonymous_id: Optional[str] = None
        self.user_id: Optional[str] = None
        self.user_traits: Dict[str, Any] = {}
        self.current_screen = ""
        self.app_state = "active"

        self._started = False
        self._shut_down = False
        self._opted_out = False

        if config.debug:
            enable_debug_logging()

    @property
    def active(self) -> bool:
        return (self._started and not self._shut_down
                and self.config.enabled and not self._opted_out)

    @property
    def opted_out(self) -> bool:
        return self._opted_out

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, app_start_time: Optional[float] = None):
        """
        Begin a session, send the session-start record and mark the app ready.

        Args:
            app_start_time: Process start on the scheduler clock; the cold
                start metric is measured from it to the end of start()
        """
        if self._started or self._shut_down:
            return
        if not self.config.enabled:
            logger.debug("Telemetry disabled by config")
            return

        config = self.config
        self.session_id = new_session_id()
        self.anonymous_id = get_anonymous_id()

        sender = self._sender or HttpxSender(
            config.api_key, config.app_id, timeout=config.transport.timeout
        )
        self.dispatcher = Dispatcher(
            sender,
            config.api_url,
            config.api_key,
            config.app_id,
            session_id=self.session_id,
            policy=config.transport.policy(),
            scheduler=self.scheduler,
            before_send=config.before_send,
            envelope={
                "environment": config.environment,
                "release": config.release,
                "appVersion": config.app_version,
            },
        )
        self.errors = ErrorCollector(config.crash_reporting, self.dispatcher, self.scheduler)
        self.performance = PerformanceCollector(config.performance, self.dispatcher, self.scheduler)
        self.network = NetworkCollector(
            config.network, config.performance, self.dispatcher, self.scheduler, config.api_url
        )
        self.heatmap = HeatmapCollector(
            config.heatmap, self.dispatcher, self.scheduler,
            session_id=self.session_id,
            random_fn=self._random,
        )
        for collector in (self.errors, self.performance, self.network):
            collector.set_session_id(self.session_id)

        device, app = snapshot(self.device_info)
        self.errors.set_device_info(device, app)

        self._started = True
        self.heatmap.start()
        self.performance.start(app_start_time)

        self.dispatcher.send_soon(SessionRecord(
            session_id=self.session_id,
            anonymous_id=self.anonymous_id,
            device=device,
            app=app,
        ))
        self.performance.mark_app_ready()
        logger.debug("Telemetry started, session %s", self.session_id)

    async def flush(self):
        """Push heatmap buffers into the queue and send everything queued."""
        if not self.active:
            return
        self.heatmap.flush()
        await self.dispatcher.flush()

    async def shutdown(self):
        """
        Stop timers, send what is left and release the transport.

        Safe to call more than once.
        """
        if self._shut_down:
            return
        self._shut_down = True
        if not self._started:
            return

        self.heatmap.stop()
        self.network.paused = True
        await self.dispatcher.aclose()
        logger.debug("Telemetry shut down")

    def opt_out(self):
        """Stop collecting until opt_in(); a pending long press is discarded."""
        self._opted_out = True
        if self.heatmap is not None:
            self.heatmap.classifier.cancel()
        if self.network is not None:
            self.network.paused = True
        logger.debug("User opted out of telemetry")

    def opt_in(self):
        self._opted_out = False
        if self.network is not None:
            self.network.paused = False
        logger.debug("User opted in to telemetry")

    def on_app_state_change(self, state: str):
        """
        Forward a platform lifecycle transition ("active", "background", ...).

        Going to the background flushes so data is not lost if the OS
        suspends the process.
        """
        previous, self.app_state = self.app_state, state
        if not self.active:
            return

        if state == "background":
            self.errors.add_breadcrumb("app.lifecycle", "App went to background")
            self.heatmap.flush()
            self.dispatcher.flush_soon()
        elif state == "active" and previous == "background":
            self.errors.add_breadcrumb("app.lifecycle", "App came to foreground")

    # ------------------------------------------------------------------
    # Analytics
    # ------------------------------------------------------------------

    def track(self, event_name: str, properties: Optional[Dict[str, Any]] = None):
        if not self.active:
            return
        self.dispatcher.enqueue(Category.EVENT, EventRecord(
            session_id=self.session_id,
            user_id=self.user_id,
            event_name=event_name,
            anonymous_id=self.anonymous_id,
            screen_name=self.current_screen or None,
            properties=dict(properties or {}),
        ))

    def track_screen(
        self,
        screen_name: str,
        screen_class: Optional[str] = None,
        properties: Optional[Dict[str, Any]] = None,
    ):
        """
        Record navigation to a screen.

        Resets the screen's scroll depth and starts its render timing.
        """
        if not self.active:
            return

        previous = self.current_screen
        self.current_screen = screen_name
        self.heatmap.set_current_screen(screen_name)
        for collector in (self.errors, self.performance, self.network):
            collector.set_current_screen(screen_name)

        self.performance.start_screen_render(screen_name)
        self.errors.add_breadcrumb(
            "navigation", f"Navigated to {screen_name}",
            data={"from": previous or None, "to": screen_name},
        )

        if self.config.session.track_screen_views:
            self.dispatcher.enqueue(Category.SCREEN_VIEW, ScreenView(
                session_id=self.session_id,
                user_id=self.user_id,
                screen_name=screen_name,
                screen_class=screen_class,
                previous_screen=previous or None,
                properties=properties,
            ))
        if self.config.session.track_screen_events:
            self.track("screen_view", {"screen_name": screen_name, "screen_class": screen_class})

    def mark_screen_rendered(self, screen_name: Optional[str] = None) -> Optional[float]:
        if not self.active:
            return None
        return self.performance.end_screen_render(screen_name or self.current_screen)

    def mark_interactive(self, screen_name: Optional[str] = None) -> Optional[float]:
        if not self.active:
            return None
        return self.performance.mark_interactive(screen_name or self.current_screen)

    def identify(self, user_id: str, traits: Optional[Dict[str, Any]] = None):
        """
        Attach a user to the session and send the identity right away.

        Traits accumulate across calls; later values win.
        """
        if not self.active:
            return
        self.set_user(user_id, traits)
        self.dispatcher.send_soon(UserIdentity(
            session_id=self.session_id,
            user_id=user_id,
            anonymous_id=self.anonymous_id,
            traits=dict(self.user_traits),
        ))

    def set_user(self, user_id: Optional[str], traits: Optional[Dict[str, Any]] = None):
        if not self.active:
            return
        self.user_id = user_id
        self.user_traits.update(traits or {})
        self.heatmap.set_user_id(user_id)
        for collector in (self.errors, self.performance, self.network):
            collector.set_user_id(user_id)

    def clear_user(self):
        self.user_traits = {}
        self.set_user(None)

    # ------------------------------------------------------------------
    # Errors
    # ------------------------------------------------------------------

    def capture_error(self, error, context: Optional[Dict[str, Any]] = None,
                      is_fatal: bool = False):
        if not self.active:
            return None
        return self.errors.capture_error(error, context=context, is_fatal=is_fatal)

    def capture_native_crash(self, message: str, native_stack: str,
                             signal: Optional[str] = None):
        if not self.active:
            return None
        return self.errors.capture_native_crash(message, native_stack, signal=signal)

    def capture_anr(self, duration_ms: float, main_thread_stack: str):
        if not self.active:
            return None
        return self.errors.capture_anr(duration_ms, main_thread_stack)

    def capture_oom(self, memory_info: Optional[Dict[str, Any]] = None):
        if not self.active:
            return None
        return self.errors.capture_oom(memory_info)

    def add_breadcrumb(self, category: str, message: str, level: str = "info",
                       data: Optional[Dict[str, Any]] = None):
        if self.active:
            self.errors.add_breadcrumb(category, message, level=level, data=data)

    # ------------------------------------------------------------------
    # Network and performance
    # ------------------------------------------------------------------

    def track_network_request(self, url: str, method: str, duration_ms: float, **kwargs):
        """See NetworkCollector.track_request() for the optional fields."""
        if not self.active:
            return None
        return self.network.track_request(url, method, duration_ms, **kwargs)

    def instrument(self, http_client: httpx.AsyncClient) -> httpx.AsyncClient:
        """Report every request made through `http_client`."""
        if self.network is None:
            return http_client
        return self.network.instrument(http_client)

    def report_performance(self, name: str, value: float,
                           attributes: Optional[Dict[str, Any]] = None):
        if self.active:
            self.performance.report_metric(name, value, attributes)

    # ------------------------------------------------------------------
    # Platform samples
    # ------------------------------------------------------------------

    def set_viewport(self, width: float, height: float):
        if self.active:
            self.heatmap.set_screen_dimensions(width, height)

    def on_touch_start(self, x: float, y: float, force: Optional[float] = None):
        if self.active:
            self.heatmap.on_touch_start(x, y, force)

    def on_touch_end(self, x: float, y: float):
        if self.active:
            self.heatmap.on_touch_end(x, y)

    def on_pinch(self, scale: float, x: float, y: float):
        if self.active:
            self.heatmap.on_pinch(scale, x, y)

    def on_scroll(self, scroll_y: float, content_height: float, viewport_height: float):
        if self.active:
            self.heatmap.on_scroll(scroll_y, content_height, viewport_height)

    def record_element_touch(self, element_type: str, element_id: Optional[str] = None,
                             element_label: Optional[str] = None, x: float = 0, y: float = 0):
        if self.active:
            self.heatmap.record_element_touch(element_type, element_id, element_label, x, y)
