"""
Dispatcher: batching, delivery and retry for telemetry records.

Accepts records from any collector, accumulates them in an EventQueue and
delivers them to the collection backend. Producers are never blocked and
never see an exception:

- enqueue() is synchronous and infallible
- flush() and send_immediate() swallow their own failures
- transient failures are re-queued until MAX_RETRIES, then dropped
- payloads vetoed by before_send are dropped without retry
- records that cannot be encoded are dropped with a warning
"""

import asyncio
import json
import logging
from typing import Any, Callable, Dict, List, Optional, Set

from ..schema import Category, Record, utc_now
from .http import Sender, TransportError
from .policy import DISPATCH_POLICY, FlushPolicy
from .queue import EventQueue, QueueEntry
from .scheduler import LoopScheduler, Scheduler, TimerHandle

logger = logging.getLogger(__name__)

BeforeSend = Callable[[Dict[str, Any]], Optional[Dict[str, Any]]]

ENDPOINTS = {
    Category.EVENT: "/v1/rum/events",
    Category.SESSION: "/v1/rum/sessions",
    Category.ERROR: "/v1/errors/errors",
    Category.NETWORK: "/v1/rum/network-requests",
    Category.PERFORMANCE: "/v1/rum/web-vitals",
    Category.HEATMAP: "/v1/sdk/heatmap",
    Category.SCREEN_VIEW: "/v1/rum/page-views",
    Category.IDENTIFY: "/v1/analytics/identify",
}

EVENT_BATCH_ENDPOINT = "/v1/rum/events/batch"


class Dispatcher:
    """
    Owns the dispatch queue and the periodic flush timer.

    The periodic timer is armed on construction and cancelled by close().
    """

    def __init__(
        self,
        sender: Sender,
        api_url: str,
        api_key: str,
        app_id: str,
        session_id: Optional[str] = None,
        policy: FlushPolicy = DISPATCH_POLICY,
        scheduler: Optional[Scheduler] = None,
        queue: Optional[EventQueue] = None,
        before_send: Optional[BeforeSend] = None,
        envelope: Optional[Dict[str, Any]] = None,
    ):
        """
        Args:
            sender: Transport primitive used for every request
            api_url: Base URL of the collection backend
            api_key: Project API key, added to every payload
            app_id: Application id, added to every payload
            session_id: Current session id (see set_session_id)
            policy: Watermark and flush interval
            scheduler: Timer source (virtual in tests)
            queue: Queue to own; a fresh one when omitted
            before_send: Hook that may rewrite or veto a payload
            envelope: Extra fields merged into every payload
                (environment, release, appVersion)
        """
        self.sender = sender
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.app_id = app_id
        self.session_id = session_id
        self.policy = policy
        self.scheduler = scheduler or LoopScheduler()
        self.before_send = before_send
        self.envelope = {k: v for k, v in (envelope or {}).items() if v is not None}

        self._queue = queue if queue is not None else EventQueue()
        self._inflight: Set[asyncio.Future] = set()
        self._closed = False
        self._timer: Optional[TimerHandle] = None
        self._arm_timer()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def set_session_id(self, session_id: str):
        self.session_id = session_id

    def enqueue(self, category, record: Record):
        """
        Add a record to the queue (fire-and-forget).

        Reaching the watermark drains the queue and starts a flush in the
        background before returning.
        """
        if self._closed:
            logger.debug("Dispatcher closed, %s record dropped", category)
            return

        try:
            category = Category(category)
        except ValueError:
            logger.warning("Unknown category %r, record dropped", category)
            return

        self._append(category, record)

        if self.policy.should_flush(len(self._queue)):
            self.flush_soon()

    async def flush(self):
        """
        Send everything currently queued.

        Entries enqueued while this flush is awaiting the network are left
        for the next cycle.
        """
        await self._deliver(self._queue.drain())

    async def send_immediate(self, record: Record) -> bool:
        """
        Send a record right away, bypassing the queue.

        Used for crashes, which may precede process exit. On failure the
        record falls back into the queue for the normal retry cycle.

        Returns:
            True if the record was delivered or deliberately vetoed
        """
        category = record.category
        try:
            await self._send(ENDPOINTS[category], self._build_payload(record, category))
            return True
        except TransportError as e:
            logger.debug("Immediate %s send failed, queueing: %s", category.value, e)
            if self._closed:
                # Picked up by the last pass in aclose()
                self._append(category, record)
            else:
                self.enqueue(category, record)
            return False
        except Exception:
            logger.warning("Immediate %s send raised, record dropped", category.value, exc_info=True)
            return False

    def flush_soon(self) -> Optional[asyncio.Future]:
        """Drain the queue and deliver it in the background."""
        return self._spawn_delivery(self._queue.drain())

    def send_soon(self, record: Record) -> asyncio.Future:
        """send_immediate() in the background, for synchronous callers."""
        task = self.scheduler.spawn(self.send_immediate(record))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    def close(self) -> Optional[asyncio.Future]:
        """
        Cancel the periodic timer and start a final flush.

        Returns the final flush task so callers may await it; None when
        there was nothing left to send or close() already ran.
        """
        if self._closed:
            return None
        self._closed = True
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        return self.flush_soon()

    async def aclose(self):
        """
        close(), then wait for every in-flight delivery and release the sender.

        Records that fell back into the queue during teardown, such as a
        crash whose send_soon() failed, get one last delivery attempt.
        """
        self.close()
        await self.join()
        if len(self._queue):
            await self._deliver(self._queue.drain())
        await self.sender.aclose()

    async def join(self):
        """Wait until background deliveries have settled."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    @property
    def pending(self) -> int:
        """Number of queued entries."""
        return len(self._queue)

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    def _append(self, category: Category, record: Record):
        self._queue.append(QueueEntry(
            category=category,
            record=record,
            enqueued_at=self.scheduler.now(),
        ))

    def _arm_timer(self):
        self._timer = self.scheduler.call_later(self.policy.flush_interval, self._on_tick)

    def _on_tick(self):
        if self._closed:
            return
        self.flush_soon()
        self._arm_timer()

    def _spawn_delivery(self, entries: List[QueueEntry]) -> Optional[asyncio.Future]:
        if not entries:
            return None
        task = self.scheduler.spawn(self._deliver(entries))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    async def _deliver(self, entries: List[QueueEntry]):
        if not entries:
            return

        grouped: Dict[Category, List[QueueEntry]] = {}
        for entry in entries:
            grouped.setdefault(entry.category, []).append(entry)

        results = await asyncio.gather(
            *(self._dispatch_group(category, group) for category, group in grouped.items()),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, Exception):
                logger.warning("Dispatch group failed unexpectedly: %s", result)

        logger.debug("Flushed %d items", len(entries))

    async def _dispatch_group(self, category: Category, entries: List[QueueEntry]):
        if category is Category.EVENT and len(entries) > 1:
            await self._dispatch_batch(entries)
            return

        endpoint = ENDPOINTS[category]
        kept: List[QueueEntry] = []
        for index, entry in enumerate(entries):
            try:
                await self._send(endpoint, self._build_payload(entry.record, category))
            except TransportError as e:
                # The whole group goes back in order for the next cycle
                logger.debug("%s send failed: %s", category.value, e)
                self._requeue(kept + entries[index:])
                return
            except Exception:
                logger.warning("%s record could not be sent, dropped",
                               category.value, exc_info=True)
                continue
            kept.append(entry)

    async def _dispatch_batch(self, entries: List[QueueEntry]):
        sendable: List[QueueEntry] = []
        events: List[Dict[str, Any]] = []
        for entry in entries:
            data = self._build_batch_event(entry.record)
            if data is not None:
                sendable.append(entry)
                events.append(data)
        if not events:
            return

        try:
            await self._send(EVENT_BATCH_ENDPOINT,
                             self._build_batch_payload(events, sendable[0].record))
        except TransportError as e:
            logger.debug("Event batch of %d failed: %s", len(sendable), e)
            self._requeue(sendable)
        except Exception:
            logger.warning("Event batch of %d could not be sent, dropped",
                           len(sendable), exc_info=True)

    def _requeue(self, entries: List[QueueEntry]):
        for entry in entries:
            self._queue.requeue(entry)

    # ------------------------------------------------------------------
    # Payloads
    # ------------------------------------------------------------------

    def _common_fields(self) -> Dict[str, Any]:
        return {
            **self.envelope,
            "apiKey": self.api_key,
            "applicationId": self.app_id,
        }

    def _build_payload(self, record: Record, category: Category) -> Dict[str, Any]:
        data = record.to_payload()
        data.setdefault("platform", "mobile")
        data["sessionId"] = record.session_id

        if category is Category.HEATMAP:
            payload = {
                "heatmaps": [data],
                "sessionId": record.session_id,
                "timestamp": record.timestamp,
            }
        else:
            payload = data

        payload.update(self._common_fields())
        return payload

    def _build_batch_event(self, record: Record) -> Optional[Dict[str, Any]]:
        """One event of a batch, or None when it cannot be JSON encoded."""
        try:
            data = record.to_payload()
            data.setdefault("platform", "mobile")
            data["applicationId"] = self.app_id
            json.dumps(data, allow_nan=False)
        except (TypeError, ValueError) as e:
            logger.warning("Event %r is not JSON encodable, dropped: %s",
                           getattr(record, "event_name", None), e)
            return None
        return data

    def _build_batch_payload(self, events: List[Dict[str, Any]], first: Record) -> Dict[str, Any]:
        payload = {
            "events": events,
            "sessionId": self.session_id or first.session_id,
            "timestamp": utc_now(),
        }
        payload.update(self._common_fields())
        return payload

    async def _send(self, endpoint: str, payload: Dict[str, Any]):
        """
        Apply before_send and hand the payload to the sender.

        A veto returns quietly; only TransportError escapes.
        """
        if self.before_send is not None:
            try:
                processed = self.before_send(payload)
            except Exception:
                logger.warning("before_send hook raised, dropping payload for %s",
                               endpoint, exc_info=True)
                return
            if not processed:
                logger.debug("before_send vetoed payload for %s", endpoint)
                return
            if isinstance(processed, dict):
                payload = processed

        await self.sender.send(f"{self.api_url}{endpoint}", payload)
