"""
Transport layer: dispatch queue, flush policy, timers and HTTP sender.
"""

from .scheduler import Scheduler, LoopScheduler, ManualScheduler, TimerHandle
from .policy import FlushPolicy, DISPATCH_POLICY, HEATMAP_POLICY
from .queue import EventQueue, QueueEntry, MAX_RETRIES
from .http import Sender, HttpxSender, TransportError
from .dispatcher import Dispatcher, ENDPOINTS, EVENT_BATCH_ENDPOINT

__all__ = [
    'Scheduler',
    'LoopScheduler',
    'ManualScheduler',
    'TimerHandle',
    'FlushPolicy',
    'DISPATCH_POLICY',
    'HEATMAP_POLICY',
    'EventQueue',
    'QueueEntry',
    'MAX_RETRIES',
    'Sender',
    'HttpxSender',
    'TransportError',
    'Dispatcher',
    'ENDPOINTS',
    'EVENT_BATCH_ENDPOINT',
]
