"""
Heatmap collector.

Feeds raw touch and scroll samples through the classifier and the scroll
depth tracker, turns the results into TouchRecord/ScrollRecord and buffers
them locally. The buffers are flushed into the dispatcher (not the network)
when they fill up, on a periodic timer, and on stop().
"""

import logging
import random
from typing import Callable, List, Optional

from ..schema import Category, ScrollRecord, TouchRecord
from ..transport.policy import FlushPolicy
from ..transport.scheduler import Scheduler, TimerHandle
from .classifier import Gesture, GestureClassifier
from .scroll import ScrollDepthTracker

logger = logging.getLogger(__name__)


class HeatmapCollector:
    """Tracks touches, gestures and scroll depth for one session."""

    def __init__(
        self,
        options,
        dispatcher,
        scheduler: Scheduler,
        session_id: str = "",
        random_fn: Callable[[], float] = random.random,
        scroll_tracker: Optional[ScrollDepthTracker] = None,
    ):
        """
        Args:
            options: HeatmapOptions (toggles, sampling, thresholds)
            dispatcher: Anything with enqueue(category, record)
            scheduler: Timer source shared with the classifier
            session_id: Current session id
            random_fn: Uniform [0, 1) source for touch sampling
            scroll_tracker: Depth table to own; a fresh one when omitted
        """
        self.options = options
        self.dispatcher = dispatcher
        self.scheduler = scheduler
        self.session_id = session_id
        self.user_id: Optional[str] = None
        self._random = random_fn

        self.policy: FlushPolicy = options.policy()
        self.classifier = GestureClassifier(self._on_gesture, scheduler, options.thresholds())
        self.scroll = scroll_tracker if scroll_tracker is not None else ScrollDepthTracker()

        self.screen_width = 0.0
        self.screen_height = 0.0

        self._touch_queue: List[TouchRecord] = []
        self._scroll_queue: List[ScrollRecord] = []
        self._timer: Optional[TimerHandle] = None
        self._started = False

    # ------------------------------------------------------------------
    # Lifecycle and context
    # ------------------------------------------------------------------

    def start(self):
        if not self.options.enabled or self._started:
            return
        self._started = True
        self._arm_timer()
        logger.debug("Heatmap collector started")

    def stop(self):
        """Cancel timers (periodic and long-press) and flush what is buffered."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._started = False
        self.classifier.cancel()
        self.flush()

    def set_session_id(self, session_id: str):
        self.session_id = session_id

    def set_user_id(self, user_id: Optional[str]):
        self.user_id = user_id

    def set_current_screen(self, screen_name: str):
        self.scroll.set_screen(screen_name)

    def set_screen_dimensions(self, width: float, height: float):
        self.screen_width = width
        self.screen_height = height

    @property
    def current_screen(self) -> str:
        return self.scroll.current_screen

    @property
    def buffered(self) -> int:
        return len(self._touch_queue) + len(self._scroll_queue)

    # ------------------------------------------------------------------
    # Platform samples
    # ------------------------------------------------------------------

    def on_touch_start(self, x: float, y: float, force: Optional[float] = None):
        if not (self.options.enabled and self.options.track_touches):
            return
        self.classifier.touch_down(x, y, force)

    def on_touch_end(self, x: float, y: float):
        if not (self.options.enabled and self.options.track_touches):
            return
        self.classifier.touch_up(x, y)

    def on_pinch(self, scale: float, x: float, y: float):
        if not (self.options.enabled and self.options.track_gestures):
            return
        self._record_touch("pinch", x, y, scale=scale)

    def on_scroll(self, scroll_y: float, content_height: float, viewport_height: float):
        if not (self.options.enabled and self.options.track_scrolls):
            return

        sample = self.scroll.observe(scroll_y, content_height, viewport_height)
        if sample is None or not self.session_id:
            return

        self._scroll_queue.append(ScrollRecord(
            session_id=self.session_id,
            user_id=self.user_id,
            screen_name=sample.screen_name,
            scroll_depth=sample.depth,
            max_scroll_depth=sample.depth,
            content_height=sample.content_height,
            viewport_height=sample.viewport_height,
            direction=sample.direction,
        ))

        if self.policy.should_flush(len(self._scroll_queue)):
            self.flush()

    def record_element_touch(
        self,
        element_type: str,
        element_id: Optional[str] = None,
        element_label: Optional[str] = None,
        x: float = 0,
        y: float = 0,
    ):
        """Record a tap on a known UI element."""
        if not (self.options.enabled and self.options.track_touches):
            return
        self._record_touch(
            "tap", x, y,
            element_type=element_type,
            element_id=element_id,
            element_label=element_label,
        )

    # ------------------------------------------------------------------
    # Buffering
    # ------------------------------------------------------------------

    def flush(self):
        """Move buffered touch and scroll records into the dispatcher."""
        touches, self._touch_queue = self._touch_queue, []
        scrolls, self._scroll_queue = self._scroll_queue, []

        for record in touches:
            self.dispatcher.enqueue(Category.HEATMAP, record)
        for record in scrolls:
            self.dispatcher.enqueue(Category.HEATMAP, record)

        if touches or scrolls:
            logger.debug("Heatmap data flushed: %d touches, %d scrolls",
                         len(touches), len(scrolls))

    def _arm_timer(self):
        self._timer = self.scheduler.call_later(self.policy.flush_interval, self._on_tick)

    def _on_tick(self):
        if not self._started:
            return
        self.flush()
        self._arm_timer()

    def _on_gesture(self, gesture: Gesture):
        self._record_touch(
            gesture.kind, gesture.x, gesture.y,
            duration=gesture.duration,
            force=gesture.force,
            direction=gesture.direction,
            velocity=gesture.velocity,
            end_x=gesture.end_x,
            end_y=gesture.end_y,
        )

    def _record_touch(self, kind: str, x: float, y: float, **extra):
        if self._random() > self.options.touch_sampling:
            return
        if not self.session_id:
            logger.debug("No session yet, %s dropped", kind)
            return

        self._touch_queue.append(TouchRecord(
            session_id=self.session_id,
            user_id=self.user_id,
            kind=kind,
            x=x,
            y=y,
            relative_x=x / self.screen_width if self.screen_width > 0 else 0.0,
            relative_y=y / self.screen_height if self.screen_height > 0 else 0.0,
            screen_name=self.current_screen,
            screen_width=self.screen_width,
            screen_height=self.screen_height,
            **extra,
        ))
        logger.debug("Touch recorded: %s %s %s", kind, x, y)

        if self.policy.should_flush(len(self._touch_queue)):
            self.flush()
