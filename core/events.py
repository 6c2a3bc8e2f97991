"""
In-process event bus for store and sync lifecycle events.

Sync jobs publish what happened; the cache, the audit trail and metrics
subscribe. Handlers are coroutines that receive the event's data dict:

    @events.on(SyncEvent.SYNC_COMPLETED)
    async def log_totals(data: dict):
        logger.info(f"{data['store_id']}: {data['stats']['total']} items")
"""
import asyncio
import uuid
from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Coroutine, Deque, Dict, List, Optional

from core.models import utcnow
from core.observability import get_correlation_id, get_logger

logger = get_logger(__name__)

EventHandler = Callable[[Dict[str, Any]], Coroutine[Any, Any, None]]


class SyncEvent(Enum):
    SYNC_STARTED = "sync.started"
    SYNC_COMPLETED = "sync.completed"
    SYNC_FAILED = "sync.failed"

    # one per entity stream inside a job
    PRODUCTS_SYNCED = "products.synced"
    CUSTOMERS_SYNCED = "customers.synced"
    ORDERS_SYNCED = "orders.synced"

    STORE_CONNECTED = "store.connected"
    STORE_DISCONNECTED = "store.disconnected"

    CACHE_INVALIDATED = "cache.invalidated"

    JOB_QUEUED = "scheduler.job_queued"
    JOB_FAILED = "scheduler.job_failed"


# Persisted to the ``events`` table; entity and cache events are too chatty
AUDITED_EVENTS = (
    SyncEvent.SYNC_STARTED,
    SyncEvent.SYNC_COMPLETED,
    SyncEvent.SYNC_FAILED,
    SyncEvent.STORE_CONNECTED,
    SyncEvent.STORE_DISCONNECTED,
)

ENTITY_EVENTS = {
    "products": SyncEvent.PRODUCTS_SYNCED,
    "customers": SyncEvent.CUSTOMERS_SYNCED,
    "orders": SyncEvent.ORDERS_SYNCED,
}


@dataclass
class EventMetadata:
    event_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: datetime = field(default_factory=utcnow)
    # the request or job that caused the event
    correlation_id: Optional[str] = field(default_factory=get_correlation_id)
    source: str = "sync_service"


@dataclass
class Event:
    type: SyncEvent
    data: Dict[str, Any]
    metadata: EventMetadata = field(default_factory=EventMetadata)

    def to_dict(self) -> Dict[str, Any]:
        meta = self.metadata
        return {
            "event_type": self.type.value,
            "data": self.data,
            "metadata": {
                "event_id": meta.event_id,
                "timestamp": meta.timestamp.isoformat(),
                "correlation_id": meta.correlation_id,
                "source": meta.source,
            },
        }


class EventBus:
    """
    Publish/subscribe hub.

    Subscribing with ``None`` as the event type receives every event. All
    handlers of an event run concurrently and a handler that raises is
    logged without affecting the others or the emitter. The last
    ``max_history`` events are kept for ``get_history``.
    """

    def __init__(self, max_history: int = 100):
        self._handlers: Dict[SyncEvent, List[EventHandler]] = defaultdict(list)
        self._catch_all: List[EventHandler] = []
        self._history: Deque[Event] = deque(maxlen=max_history)

    def _bucket(self, event_type: Optional[SyncEvent]) -> List[EventHandler]:
        return self._catch_all if event_type is None else self._handlers[event_type]

    def on(self, event_type: Optional[SyncEvent] = None) -> Callable[[EventHandler], EventHandler]:
        def decorator(handler: EventHandler) -> EventHandler:
            self.subscribe(event_type, handler)
            return handler
        return decorator

    def subscribe(self, event_type: Optional[SyncEvent], handler: EventHandler) -> None:
        self._bucket(event_type).append(handler)
        logger.debug(
            f"{handler.__name__} subscribed to {event_type.value if event_type else '*'}"
        )

    def unsubscribe(self, event_type: Optional[SyncEvent], handler: EventHandler) -> bool:
        """Remove ``handler``; False if it was not subscribed."""
        bucket = self._bucket(event_type)
        if handler not in bucket:
            return False
        bucket.remove(handler)
        return True

    async def emit(
        self,
        event_type: SyncEvent,
        data: Optional[Dict[str, Any]] = None,
        source: str = "sync_service",
    ) -> Event:
        event = Event(type=event_type, data=data or {}, metadata=EventMetadata(source=source))
        self._history.append(event)

        handlers = [*self._handlers.get(event_type, ()), *self._catch_all]
        if not handlers:
            return event

        outcomes = await asyncio.gather(
            *(handler(event.data) for handler in handlers), return_exceptions=True
        )
        for handler, outcome in zip(handlers, outcomes):
            if isinstance(outcome, Exception):
                logger.error(
                    f"{handler.__name__} failed on {event_type.value}: {outcome}",
                    extra={"event_type": event_type.value, "event_id": event.metadata.event_id},
                )
        return event

    def get_history(self, event_type: Optional[SyncEvent] = None, limit: int = 20) -> List[Dict[str, Any]]:
        """Recent events as dicts, oldest first."""
        matching = [e for e in self._history if event_type is None or e.type == event_type]
        return [e.to_dict() for e in matching[-limit:]]

    def get_handlers(self, event_type: Optional[SyncEvent] = None) -> Dict[str, int]:
        if event_type is not None:
            return {event_type.value: len(self._handlers.get(event_type, ()))}
        counts = {et.value: len(hs) for et, hs in self._handlers.items() if hs}
        counts["*"] = len(self._catch_all)
        return counts

    def clear_handlers(self) -> None:
        self._handlers.clear()
        self._catch_all.clear()

    def clear_history(self) -> None:
        self._history.clear()


events = EventBus()


def register_audit_handlers(store, bus: EventBus = None) -> None:
    """
    Write every audited event that names a store to the ``events`` table.

    ``store`` is the DuckDBStore (anything with an async ``record_event``).
    """
    bus = bus or events

    def recorder(event_type: SyncEvent) -> EventHandler:
        async def record(data: Dict[str, Any]) -> None:
            if not data.get("store_id"):
                return
            await store.record_event(
                event_type.value,
                store_id=data["store_id"],
                tenant_id=data.get("tenant_id"),
                payload=data,
            )

        record.__name__ = f"audit_{event_type.name.lower()}"
        return record

    for event_type in AUDITED_EVENTS:
        bus.subscribe(event_type, recorder(event_type))


# ═══════════════════════════════════════════════════════════════════════════════
# EMIT HELPERS
# ═══════════════════════════════════════════════════════════════════════════════


async def _emit_job_event(
    event_type: SyncEvent, store_id: str, job_id: str, data_type: str, bus: Optional[EventBus], **fields
) -> Event:
    payload = {"store_id": store_id, "job_id": job_id, "data_type": data_type, **fields}
    return await (bus or events).emit(event_type, payload)


async def emit_sync_started(store_id: str, job_id: str, data_type: str, bus: EventBus = None, **kwargs) -> Event:
    return await _emit_job_event(SyncEvent.SYNC_STARTED, store_id, job_id, data_type, bus, **kwargs)


async def emit_sync_completed(
    store_id: str,
    job_id: str,
    data_type: str,
    stats: Dict[str, int],
    duration_ms: float,
    bus: EventBus = None,
    **kwargs,
) -> Event:
    return await _emit_job_event(
        SyncEvent.SYNC_COMPLETED, store_id, job_id, data_type, bus,
        stats=stats, duration_ms=duration_ms, **kwargs,
    )


async def emit_sync_failed(
    store_id: str, job_id: str, data_type: str, error: str, bus: EventBus = None, **kwargs
) -> Event:
    return await _emit_job_event(SyncEvent.SYNC_FAILED, store_id, job_id, data_type, bus, error=error, **kwargs)


async def emit_entity_synced(
    store_id: str, entity: str, stats: Dict[str, int], duration_ms: float, bus: EventBus = None
) -> Event:
    """``{entity}.synced`` once one entity stream of a job has finished."""
    return await (bus or events).emit(
        ENTITY_EVENTS[entity],
        {"store_id": store_id, "count": stats.get("total", 0), "stats": stats, "duration_ms": duration_ms},
    )


async def emit_cache_invalidated(keys: List[str], reason: str, bus: EventBus = None, **kwargs) -> Event:
    return await (bus or events).emit(
        SyncEvent.CACHE_INVALIDATED, {"keys": keys, "reason": reason, **kwargs}, source="cache"
    )
