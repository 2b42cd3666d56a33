"""
Domain collectors feeding the dispatcher.

- ErrorCollector: crashes, ANRs, OOMs and the breadcrumb trail
- PerformanceCollector: cold start, screen render timing, custom metrics
- NetworkCollector: outbound HTTP calls, optionally via httpx event hooks
"""

import logging
import re
import traceback
import weakref
from collections import deque
from typing import Any, Dict, List, Optional, Union
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import httpx

from .schema import Breadcrumb, Category, CrashReport, NetworkRequest, PerformanceMetric

logger = logging.getLogger(__name__)

SENSITIVE_PARAMS = {'token', 'key', 'apikey', 'api_key', 'password', 'secret', 'auth'}
SENSITIVE_HEADERS = {'authorization', 'cookie', 'x-api-key'}
REDACTED = '[REDACTED]'


class _SessionBound:
    """Session context shared by the collectors."""

    def __init__(self, dispatcher, scheduler):
        self.dispatcher = dispatcher
        self.scheduler = scheduler
        self.session_id = ""
        self.user_id: Optional[str] = None
        self.current_screen = ""

    def set_session_id(self, session_id: str):
        self.session_id = session_id

    def set_user_id(self, user_id: Optional[str]):
        self.user_id = user_id

    def set_current_screen(self, screen_name: str):
        self.current_screen = screen_name


class ErrorCollector(_SessionBound):
    """
    Builds crash reports and sends them straight to the network.

    Reports race to the backend via send_soon(); on failure the dispatcher
    falls back to its queue.
    """

    def __init__(self, options, dispatcher, scheduler):
        super().__init__(dispatcher, scheduler)
        self.options = options
        self.device: Optional[Dict[str, Any]] = None
        self.app: Optional[Dict[str, Any]] = None
        self._breadcrumbs = deque(maxlen=max(options.max_breadcrumbs, 0))

    def set_device_info(self, device: Optional[Dict[str, Any]], app: Optional[Dict[str, Any]]):
        self.device = device
        self.app = app

    # Breadcrumbs

    def add_breadcrumb(self, category: str, message: str, level: str = "info",
                       data: Optional[Dict[str, Any]] = None):
        if not self.options.capture_breadcrumbs:
            return
        self._breadcrumbs.append(Breadcrumb(category=category, message=message,
                                            level=level, data=data))
        logger.debug("Breadcrumb added: %s", message)

    @property
    def breadcrumbs(self) -> List[Breadcrumb]:
        return list(self._breadcrumbs)

    def clear_breadcrumbs(self):
        self._breadcrumbs.clear()

    # Capture

    def capture_error(
        self,
        error: Union[BaseException, str],
        context: Optional[Dict[str, Any]] = None,
        is_fatal: bool = False,
    ) -> Optional[CrashReport]:
        """
        Report a handled or unhandled Python error.

        Args:
            error: Exception instance or plain message
            context: Extra key/values attached to the report
            is_fatal: Whether the error terminates the app

        Returns:
            The report sent, or None when crash reporting is off
        """
        if isinstance(error, BaseException):
            message = str(error) or type(error).__name__
            stack = "".join(traceback.format_exception(type(error), error, error.__traceback__))
        else:
            message, stack = str(error), None

        report = self._report(message, "python", stack=stack, context=context, is_fatal=is_fatal)
        if report is not None:
            self.add_breadcrumb(
                "error", message,
                level="fatal" if is_fatal else "error",
                data={"type": report.crash_type, "stack": (stack or "")[:500]},
            )
        return report

    def capture_native_crash(self, message: str, native_stack: str,
                             signal: Optional[str] = None,
                             context: Optional[Dict[str, Any]] = None) -> Optional[CrashReport]:
        return self._report(message, "native", stack=native_stack, context=context,
                            is_fatal=True, signal=signal)

    def capture_anr(self, duration_ms: float, main_thread_stack: str) -> Optional[CrashReport]:
        """Application Not Responding (main thread blocked)."""
        return self._report(
            f"Application Not Responding for {duration_ms:g}ms", "anr",
            stack=main_thread_stack,
            anr_duration=duration_ms,
            main_thread_stack=main_thread_stack,
        )

    def capture_oom(self, memory_info: Optional[Dict[str, Any]] = None) -> Optional[CrashReport]:
        return self._report("Out of Memory", "oom", is_fatal=True,
                            context={"memoryInfo": memory_info})

    def _report(self, message: str, crash_type: str, **fields) -> Optional[CrashReport]:
        if not self.options.enabled or not self.session_id:
            return None
        report = CrashReport(
            session_id=self.session_id,
            user_id=self.user_id,
            message=message,
            crash_type=crash_type,
            screen_name=self.current_screen or None,
            breadcrumbs=tuple(self._breadcrumbs),
            device=self.device,
            app=self.app,
            **fields,
        )
        self.dispatcher.send_soon(report)
        return report


class PerformanceCollector(_SessionBound):
    """Cold start, screen render and custom metric reporting."""

    def __init__(self, options, dispatcher, scheduler):
        super().__init__(dispatcher, scheduler)
        self.options = options
        self.app_start_time: Optional[float] = None
        self._screen_timings: Dict[str, Dict[str, float]] = {}
        self.metrics: Dict[str, float] = {}

    def start(self, app_start_time: Optional[float] = None):
        """
        Args:
            app_start_time: Process start on the scheduler clock, used for
                the cold start metric
        """
        if self.options.enabled and self.options.track_app_start_time:
            self.app_start_time = app_start_time

    def mark_app_ready(self):
        if self.app_start_time is None:
            return
        cold_start = (self.scheduler.now() - self.app_start_time) * 1000.0
        self.app_start_time = None
        self.metrics["appStartTime"] = cold_start
        self._emit("AppColdStart", cold_start)
        logger.debug("Cold start time: %.0fms", cold_start)

    def start_screen_render(self, screen_name: str):
        if not (self.options.enabled and self.options.track_screen_render_time):
            return
        self._screen_timings[screen_name] = {"start": self.scheduler.now()}

    def end_screen_render(self, screen_name: str) -> Optional[float]:
        """
        Close the render timing for a screen.

        Returns:
            Render time in ms, or None if the screen was not being timed
        """
        if not (self.options.enabled and self.options.track_screen_render_time):
            return None
        timing = self._screen_timings.get(screen_name)
        if timing is None or "render" in timing:
            return None

        render_time = (self.scheduler.now() - timing["start"]) * 1000.0
        timing["render"] = render_time
        self.metrics["screenRenderTime"] = render_time
        self._emit("ScreenRender", render_time, screen_name=screen_name)

        if render_time > self.options.slow_render_threshold_ms:
            self._emit("SlowRender", render_time, screen_name=screen_name)
            logger.debug("Slow screen render: %s %.0fms", screen_name, render_time)
        return render_time

    def mark_interactive(self, screen_name: str) -> Optional[float]:
        """Time to interactive; only after the screen has rendered."""
        timing = self._screen_timings.get(screen_name)
        if timing is None or "render" not in timing:
            return None
        del self._screen_timings[screen_name]

        tti = (self.scheduler.now() - timing["start"]) * 1000.0
        self.metrics["timeToInteractive"] = tti
        self._emit("TimeToInteractive", tti, screen_name=screen_name)
        return tti

    def report_metric(self, name: str, value: float,
                      attributes: Optional[Dict[str, Any]] = None):
        self._emit(name, value, attributes=attributes)

    def _emit(self, name: str, value: float, screen_name: Optional[str] = None,
              attributes: Optional[Dict[str, Any]] = None):
        if not self.options.enabled or not self.session_id:
            return
        self.dispatcher.enqueue(Category.PERFORMANCE, PerformanceMetric(
            session_id=self.session_id,
            user_id=self.user_id,
            metric_name=name,
            value=value,
            screen_name=screen_name,
            attributes=dict(attributes or {}),
        ))


def sanitize_url(url: str) -> str:
    """Redact sensitive query parameters (token, key, password, ...)."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return url
    if not parts.query:
        return url
    query = [
        (k, REDACTED if k.lower() in SENSITIVE_PARAMS else v)
        for k, v in parse_qsl(parts.query, keep_blank_values=True)
    ]
    return urlunsplit(parts._replace(query=urlencode(query, safe="[]")))


def redact_headers(headers) -> Dict[str, str]:
    return {
        k: REDACTED if k.lower() in SENSITIVE_HEADERS else v
        for k, v in dict(headers).items()
    }


class NetworkCollector(_SessionBound):
    """
    Records outbound HTTP calls.

    Hosts either call track_request() themselves or register the collector
    on an httpx.AsyncClient with instrument().
    """

    def __init__(self, options, performance_options, dispatcher, scheduler, api_url: str):
        super().__init__(dispatcher, scheduler)
        self.options = options
        self.enabled = performance_options.enabled and performance_options.track_network_requests
        self.api_url = api_url
        self._ignore = [re.compile(p) for p in options.ignore_urls]
        self._started_at = weakref.WeakKeyDictionary()
        self.paused = False

    def should_ignore(self, url: str) -> bool:
        # Never report the pipeline's own traffic
        if self.api_url and url.startswith(self.api_url):
            return True
        return any(p.search(url) for p in self._ignore)

    def track_request(
        self,
        url: str,
        method: str,
        duration_ms: float,
        status_code: Optional[int] = None,
        request_size: Optional[int] = None,
        response_size: Optional[int] = None,
        response_headers: Optional[Dict[str, str]] = None,
        error_message: Optional[str] = None,
        initiator: str = "native",
    ) -> Optional[NetworkRequest]:
        if self.paused or not self.enabled or not self.session_id or self.should_ignore(url):
            return None

        failed = error_message is not None or status_code is None or status_code >= 400
        if self.options.capture_failed_only and not failed:
            return None
        if error_message is None and status_code is not None and status_code >= 400:
            error_message = f"HTTP {status_code}"

        record = NetworkRequest(
            session_id=self.session_id,
            user_id=self.user_id,
            url=sanitize_url(url),
            method=method.upper(),
            duration_ms=duration_ms,
            status_code=status_code,
            request_size=request_size,
            response_size=response_size,
            response_headers=(redact_headers(response_headers)
                              if self.options.capture_headers and response_headers else None),
            error_message=error_message,
            initiator=initiator,
        )
        self.dispatcher.enqueue(Category.NETWORK, record)
        logger.debug("Network request: %s %s", record.url, status_code)
        return record

    def instrument(self, client: httpx.AsyncClient) -> httpx.AsyncClient:
        """Register request/response hooks on an httpx client."""
        hooks = client.event_hooks
        hooks["request"] = [*hooks.get("request", []), self._on_request]
        hooks["response"] = [*hooks.get("response", []), self._on_response]
        client.event_hooks = hooks
        return client

    async def _on_request(self, request: httpx.Request):
        self._started_at[request] = self.scheduler.now()

    async def _on_response(self, response: httpx.Response):
        request = response.request
        started = self._started_at.pop(request, None)
        duration_ms = (self.scheduler.now() - started) * 1000.0 if started is not None else 0.0

        request_length = request.headers.get("content-length")
        length = response.headers.get("content-length")
        self.track_request(
            url=str(request.url),
            method=request.method,
            duration_ms=duration_ms,
            status_code=response.status_code,
            request_size=int(request_length) if request_length and request_length.isdigit() else None,
            response_size=int(length) if length and length.isdigit() else None,
            response_headers=dict(response.headers),
            initiator="httpx",
        )
