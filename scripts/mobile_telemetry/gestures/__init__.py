"""
Gesture layer: touch classification, scroll depth and heatmap buffering.
"""

from .classifier import GestureClassifier, GestureThresholds, Gesture, TouchPoint, swipe_direction
from .scroll import ScrollDepthTracker, ScrollSample, scroll_depth
from .heatmap import HeatmapCollector

__all__ = [
    'GestureClassifier',
    'GestureThresholds',
    'Gesture',
    'TouchPoint',
    'swipe_direction',
    'ScrollDepthTracker',
    'ScrollSample',
    'scroll_depth',
    'HeatmapCollector',
]
