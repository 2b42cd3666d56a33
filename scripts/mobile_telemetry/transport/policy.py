"""
Flush policy shared by the dispatch queue and the heatmap buffers.

A buffer is flushed when it reaches max_queue_size entries, or when
flush_interval seconds pass, whichever comes first.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class FlushPolicy:
    """Size and time triggers for a buffer."""
    max_queue_size: int = 30
    flush_interval: float = 5.0

    def __post_init__(self):
        if self.max_queue_size < 1:
            raise ValueError(f"max_queue_size must be >= 1, got {self.max_queue_size}")
        if self.flush_interval <= 0:
            raise ValueError(f"flush_interval must be > 0, got {self.flush_interval}")

    def should_flush(self, size: int) -> bool:
        """True when a buffer holding `size` entries has hit the watermark."""
        return size >= self.max_queue_size


# Dispatch queue defaults (records -> network)
DISPATCH_POLICY = FlushPolicy(max_queue_size=30, flush_interval=5.0)

# Heatmap buffer defaults (gestures -> dispatch queue)
HEATMAP_POLICY = FlushPolicy(max_queue_size=50, flush_interval=10.0)
