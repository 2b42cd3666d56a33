"""
Scroll depth tracking.

Keeps a per-screen high-water mark of scroll depth (0-100) and reports a
sample only when a screen is scrolled deeper than before.
"""

import math
from dataclasses import dataclass
from typing import Dict, Optional


@dataclass(frozen=True)
class ScrollSample:
    screen_name: str
    depth: int
    content_height: float
    viewport_height: float
    direction: str


def scroll_depth(scroll_y: float, content_height: float, viewport_height: float) -> int:
    """
    Percentage of the scrollable range covered, rounded half up.

    Content that fits in the viewport counts as fully seen.
    """
    max_scroll_y = content_height - viewport_height
    if max_scroll_y <= 0:
        return 100
    depth = math.floor(100.0 * scroll_y / max_scroll_y + 0.5)
    return max(0, min(100, depth))


class ScrollDepthTracker:
    """Owns the screen -> max depth table."""

    def __init__(self):
        self._max_depth: Dict[str, int] = {}
        self._current_screen = ""
        self._last_scroll_y = 0.0

    @property
    def current_screen(self) -> str:
        return self._current_screen

    def set_screen(self, screen_name: str):
        """Activate a screen and reset its mark; other screens keep theirs."""
        self._current_screen = screen_name
        self._max_depth[screen_name] = 0

    def max_depth(self, screen_name: Optional[str] = None) -> int:
        if screen_name is None:
            screen_name = self._current_screen
        return self._max_depth.get(screen_name, 0)

    def observe(
        self,
        scroll_y: float,
        content_height: float,
        viewport_height: float,
    ) -> Optional[ScrollSample]:
        """
        Feed one scroll sample.

        Returns:
            ScrollSample when the current screen reached a new depth,
            otherwise None
        """
        depth = scroll_depth(scroll_y, content_height, viewport_height)
        screen = self._current_screen
        sample = None

        if depth > self._max_depth.get(screen, 0):
            self._max_depth[screen] = depth
            sample = ScrollSample(
                screen_name=screen,
                depth=depth,
                content_height=content_height,
                viewport_height=viewport_height,
                direction="down" if scroll_y > self._last_scroll_y else "up",
            )

        self._last_scroll_y = scroll_y
        return sample
