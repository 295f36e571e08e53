"""
Event System for Nexus Community Watch

Async pub/sub event bus carrying incident domain events from the
workflow engine to the notification sink, off the request path.
"""

import asyncio
from collections import defaultdict, deque
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field
from typing import Any

import structlog

from nexus.models.base import generate_id, utc_now
from nexus.models.events import Event, EventType

logger = structlog.get_logger(__name__)


# Type alias for event handlers
EventHandler = Callable[[Event], Coroutine[Any, Any, None]]


class EventQueueFullError(RuntimeError):
    """The bus queue is at capacity and the event was not accepted."""

    pass


@dataclass
class Subscription:
    """Represents an event subscription."""

    id: str
    handler: EventHandler
    event_types: set[EventType]

    def matches(self, event: Event) -> bool:
        return EventType(event.event_type) in self.event_types


@dataclass
class EventMetrics:
    """Metrics for event system monitoring."""

    events_published: int = 0
    events_delivered: int = 0
    events_failed: int = 0
    events_dropped: int = 0
    avg_delivery_time_ms: float = 0.0
    delivery_times: deque[float] = field(default_factory=lambda: deque(maxlen=1000))

    def record_delivery(self, duration_ms: float) -> None:
        self.delivery_times.append(duration_ms)
        self.avg_delivery_time_ms = sum(self.delivery_times) / len(self.delivery_times)


class EventBus:
    """
    Async event bus for pub/sub messaging.

    Features:
    - Non-blocking publish; delivery happens on a background worker
    - Per-handler timeout and retry with linear backoff
    - Bounded dead letter queue for events whose handlers kept failing
    - Metrics collection
    """

    def __init__(
        self,
        max_queue_size: int = 10000,
        max_retries: int = 3,
        retry_delay_seconds: float = 1.0,
        handler_timeout_seconds: float = 30.0,
        max_dead_letter_size: int = 1000,
    ):
        self._subscriptions: dict[str, Subscription] = {}
        self._event_queue: asyncio.Queue[Event] = asyncio.Queue(maxsize=max_queue_size)
        self._dead_letters: deque[tuple[Event, str]] = deque(maxlen=max_dead_letter_size)
        self._metrics = EventMetrics()
        self._max_retries = max(1, max_retries)
        self._retry_delay = retry_delay_seconds
        self._handler_timeout = handler_timeout_seconds
        self._running = False
        self._worker_task: asyncio.Task[None] | None = None

        # Event type index for faster lookups
        self._type_index: dict[EventType, set[str]] = defaultdict(set)

    @property
    def is_running(self) -> bool:
        return self._running

    # =========================================================================
    # Subscription Management
    # =========================================================================

    def subscribe(
        self,
        handler: EventHandler,
        event_types: set[EventType],
    ) -> str:
        """
        Subscribe to events.

        Args:
            handler: Async function to handle events
            event_types: Set of event types to subscribe to

        Returns:
            Subscription ID for unsubscribing
        """
        sub_id = generate_id()
        types = {EventType(et) for et in event_types}

        self._subscriptions[sub_id] = Subscription(
            id=sub_id,
            handler=handler,
            event_types=types,
        )
        for event_type in types:
            self._type_index[event_type].add(sub_id)

        logger.info(
            "event_subscription_created",
            subscription_id=sub_id,
            event_types=sorted(et.value for et in types),
        )
        return sub_id

    def unsubscribe(self, subscription_id: str) -> bool:
        """
        Unsubscribe from events.

        Returns:
            True if unsubscribed, False if not found
        """
        subscription = self._subscriptions.pop(subscription_id, None)
        if subscription is None:
            return False

        for event_type in subscription.event_types:
            self._type_index[event_type].discard(subscription_id)

        logger.info("event_subscription_removed", subscription_id=subscription_id)
        return True

    # =========================================================================
    # Event Publishing
    # =========================================================================

    async def publish(
        self,
        event_type: EventType,
        payload: dict[str, Any],
        source: str,
        correlation_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Event:
        """
        Publish an event without waiting for it to be delivered.

        Args:
            event_type: Type of event
            payload: Event data
            source: Source identifier (e.g., "service:community_watch")
            correlation_id: For linking related events
            metadata: Additional metadata

        Returns:
            Created Event

        Raises:
            EventQueueFullError: If the queue is at capacity
        """
        event = Event(
            event_type=event_type,
            payload=payload,
            source=source,
            correlation_id=correlation_id or generate_id(),
            metadata=metadata or {},
            timestamp=utc_now(),
        )

        try:
            self._event_queue.put_nowait(event)
        except asyncio.QueueFull as e:
            self._metrics.events_dropped += 1
            raise EventQueueFullError(
                f"Event queue full ({self._event_queue.maxsize}), dropped {event.event_type}"
            ) from e

        self._metrics.events_published += 1

        logger.debug(
            "event_published",
            event_id=event.id,
            event_type=EventType(event.event_type).value,
            source=source,
        )
        return event

    # =========================================================================
    # Event Processing
    # =========================================================================

    async def _process_event(self, event: Event) -> None:
        """Process a single event by dispatching to matching subscribers."""
        loop = asyncio.get_running_loop()
        start_time = loop.time()

        potential_subs = self._type_index.get(EventType(event.event_type), set())

        tasks = []
        for sub_id in list(potential_subs):
            subscription = self._subscriptions.get(sub_id)
            if subscription and subscription.matches(event):
                tasks.append(self._deliver_event(subscription, event))

        if tasks:
            results = await asyncio.gather(*tasks, return_exceptions=True)

            for result in results:
                if isinstance(result, BaseException):
                    self._metrics.events_failed += 1
                    logger.error(
                        "event_delivery_failed",
                        event_id=event.id,
                        event_type=EventType(event.event_type).value,
                        error=str(result) or type(result).__name__,
                    )
                else:
                    self._metrics.events_delivered += 1

        duration_ms = (loop.time() - start_time) * 1000
        self._metrics.record_delivery(duration_ms)

    async def _deliver_event(self, subscription: Subscription, event: Event) -> None:
        """Deliver event to a single subscriber with retry logic."""
        attempt = 1
        while True:
            try:
                await asyncio.wait_for(
                    subscription.handler(event),
                    timeout=self._handler_timeout,
                )
                return
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if isinstance(e, asyncio.TimeoutError):
                    logger.warning(
                        "event_handler_timeout",
                        subscription_id=subscription.id,
                        event_id=event.id,
                        attempt=attempt,
                    )
                if attempt >= self._max_retries:
                    self._dead_letters.append((event, str(e) or type(e).__name__))
                    raise

                logger.warning(
                    "event_delivery_retry",
                    subscription_id=subscription.id,
                    event_id=event.id,
                    attempt=attempt,
                    error=str(e),
                )
                await asyncio.sleep(self._retry_delay * attempt)
                attempt += 1

    async def _worker(self) -> None:
        """Background worker that processes events from the queue."""
        logger.info("event_worker_started")

        while self._running:
            try:
                event = await asyncio.wait_for(self._event_queue.get(), timeout=1.0)
            except asyncio.TimeoutError:
                continue

            try:
                await self._process_event(event)
            except Exception as e:
                logger.error("event_worker_error", event_id=event.id, error=str(e))
            finally:
                self._event_queue.task_done()

        logger.info("event_worker_stopped")

    # =========================================================================
    # Lifecycle Management
    # =========================================================================

    async def start(self) -> None:
        """Start the event bus worker."""
        if self._running:
            return

        self._running = True
        self._worker_task = asyncio.create_task(self._worker())
        logger.info("event_bus_started")

    async def stop(self, timeout: float = 10.0) -> None:
        """
        Stop the event bus, giving queued events up to ``timeout``
        seconds to be delivered first.
        """
        if not self._running:
            return

        try:
            await asyncio.wait_for(self._event_queue.join(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("event_bus_stop_timeout", pending_events=self._event_queue.qsize())

        self._running = False

        if self._worker_task:
            self._worker_task.cancel()
            try:
                await self._worker_task
            except asyncio.CancelledError:
                pass
            self._worker_task = None

        logger.info("event_bus_stopped")

    async def drain(self, timeout: float = 5.0) -> bool:
        """Wait until every queued event has been processed."""
        try:
            await asyncio.wait_for(self._event_queue.join(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            return False

    # =========================================================================
    # Dead Letter Queue
    # =========================================================================

    def get_dead_letters(self, limit: int = 100) -> list[tuple[Event, str]]:
        """
        Remove and return up to ``limit`` dead letters, oldest first.

        Returns:
            List of (event, error_message) tuples
        """
        dead_letters = []
        while self._dead_letters and len(dead_letters) < limit:
            dead_letters.append(self._dead_letters.popleft())
        return dead_letters

    # =========================================================================
    # Metrics & Monitoring
    # =========================================================================

    def get_metrics(self) -> dict[str, Any]:
        """Get event system metrics."""
        return {
            "running": self._running,
            "events_published": self._metrics.events_published,
            "events_delivered": self._metrics.events_delivered,
            "events_failed": self._metrics.events_failed,
            "events_dropped": self._metrics.events_dropped,
            "avg_delivery_time_ms": round(self._metrics.avg_delivery_time_ms, 2),
            "queue_size": self._event_queue.qsize(),
            "dead_letter_size": len(self._dead_letters),
            "active_subscriptions": len(self._subscriptions),
        }

    def get_subscription_count(self) -> int:
        return len(self._subscriptions)

    def get_queue_size(self) -> int:
        return self._event_queue.qsize()
