"""
Touch gesture classification.

Single-pointer state machine:

    Idle --touch down--> Pressed --touch up--> Idle (tap / swipe / nothing)
                            |
                            +--long-press timer--> resolved as longPress;
                                                   the next touch up is a no-op

Pinch is not inferred here; it is reported through an explicit call on the
heatmap collector.
"""

import math
from dataclasses import dataclass
from typing import Callable, Optional

from ..transport.scheduler import Scheduler, TimerHandle


@dataclass(frozen=True)
class GestureThresholds:
    """Timing and distance heuristics (pixels, milliseconds)."""
    long_press_duration_ms: float = 500
    tap_max_distance: float = 10
    swipe_min_distance: float = 50
    swipe_min_velocity: float = 0.3  # px/ms


@dataclass(frozen=True)
class TouchPoint:
    x: float
    y: float
    timestamp: float  # scheduler clock, seconds
    force: Optional[float] = None


@dataclass(frozen=True)
class Gesture:
    """Result of classifying one touch lifecycle."""
    kind: str  # "tap", "longPress", "swipe"
    x: float
    y: float
    duration: float
    force: Optional[float] = None
    direction: Optional[str] = None
    velocity: Optional[float] = None
    end_x: Optional[float] = None
    end_y: Optional[float] = None


def swipe_direction(dx: float, dy: float) -> str:
    """Dominant axis decides horizontal vs vertical; screen y grows downward."""
    if abs(dx) > abs(dy):
        return "right" if dx > 0 else "left"
    return "down" if dy > 0 else "up"


class GestureClassifier:
    """
    Turns touch-down/touch-up samples into Gesture results.

    Results are handed to `on_gesture`; ambiguous touches produce nothing.
    """

    def __init__(
        self,
        on_gesture: Callable[[Gesture], None],
        scheduler: Scheduler,
        thresholds: GestureThresholds = GestureThresholds(),
    ):
        self.on_gesture = on_gesture
        self.scheduler = scheduler
        self.thresholds = thresholds

        self._start: Optional[TouchPoint] = None
        self._long_press_timer: Optional[TimerHandle] = None
        self._long_press_fired = False

    @property
    def state(self) -> str:
        if self._start is None:
            return "idle"
        return "long_press" if self._long_press_fired else "pressed"

    def touch_down(self, x: float, y: float, force: Optional[float] = None):
        # A second touch-down without a touch-up restarts the gesture
        self._cancel_timer()
        self._start = TouchPoint(x, y, self.scheduler.now(), force)
        self._long_press_fired = False
        self._long_press_timer = self.scheduler.call_later(
            self.thresholds.long_press_duration_ms / 1000.0, self._fire_long_press
        )

    def touch_up(self, x: float, y: float) -> Optional[Gesture]:
        self._cancel_timer()

        start = self._start
        if start is None:
            return None
        self._start = None

        if self._long_press_fired:
            self._long_press_fired = False
            return None

        gesture = self.classify(start, x, y, self.scheduler.now())
        if gesture is not None:
            self.on_gesture(gesture)
        return gesture

    def cancel(self):
        """Drop the active gesture, if any, without emitting."""
        self._cancel_timer()
        self._start = None
        self._long_press_fired = False

    def classify(self, start: TouchPoint, x: float, y: float, now: float) -> Optional[Gesture]:
        """Pure classification of a completed touch."""
        t = self.thresholds
        dx = x - start.x
        dy = y - start.y
        distance = math.hypot(dx, dy)
        duration_ms = (now - start.timestamp) * 1000.0
        # Sub-millisecond touches are timed as 1ms
        velocity = distance / max(duration_ms, 1.0)

        if distance < t.tap_max_distance and duration_ms < t.long_press_duration_ms:
            return Gesture("tap", start.x, start.y, duration_ms, force=start.force)

        if distance >= t.swipe_min_distance and velocity >= t.swipe_min_velocity:
            return Gesture(
                "swipe", start.x, start.y, duration_ms,
                direction=swipe_direction(dx, dy),
                velocity=velocity,
                end_x=x,
                end_y=y,
            )

        return None

    def _fire_long_press(self):
        self._long_press_timer = None
        start = self._start
        if start is None:
            return
        self._long_press_fired = True
        self.on_gesture(Gesture(
            "longPress", start.x, start.y,
            self.thresholds.long_press_duration_ms,
            force=start.force,
        ))

    def _cancel_timer(self):
        if self._long_press_timer is not None:
            self._long_press_timer.cancel()
            self._long_press_timer = None
