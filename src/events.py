"""In-process event bus for SystemEvents.

Conversations, the Cal.com and MercadoPago clients and the booking
negotiator publish events here; the audit logger subscribes at startup.

    from src.events import emit, subscribe

    subscribe(audit_on_event)                                  # every event
    subscribe(on_booking, [EventType.BOOKING_NEGOTIATED])      # one type

    await emit(SystemEvent(event_type=EventType.BOOKING_NEGOTIATED, ...))

Delivery is asynchronous: ``emit`` only enqueues, a single worker task
fans events out to handlers. With nobody subscribed, events are dropped.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from typing import Any

from src.schemas.events import EventType, SystemEvent

logger = logging.getLogger(__name__)

EventHandler = Callable[[SystemEvent], Coroutine[Any, Any, None]]

# None keys handlers that want every event
_handlers: dict[EventType | None, list[EventHandler]] = {}
_queue: asyncio.Queue[SystemEvent] | None = None
_worker_task: asyncio.Task[None] | None = None


# ── Subscriptions ────────────────────────────────────────────────────


def subscribe(handler: EventHandler, event_types: list[EventType] | None = None) -> None:
    """Register ``handler`` for ``event_types``, or for everything when None."""
    keys: list[EventType | None] = list(event_types) if event_types else [None]
    for key in keys:
        _handlers.setdefault(key, []).append(handler)
    logger.info(
        "Subscribed %s to %s",
        handler.__name__,
        "all events" if event_types is None else [t.value for t in event_types],
    )


def unsubscribe(handler: EventHandler) -> None:
    """Remove ``handler`` from every subscription it holds."""
    for handlers in _handlers.values():
        while handler in handlers:
            handlers.remove(handler)


def has_subscribers() -> bool:
    return any(_handlers.values())


def _handlers_for(event_type: EventType) -> list[EventHandler]:
    return [*_handlers.get(None, []), *_handlers.get(event_type, [])]


# ── Publishing ───────────────────────────────────────────────────────


async def emit(event: SystemEvent) -> None:
    """Queue ``event`` for delivery; never waits on handlers."""
    global _queue
    if not has_subscribers():
        return

    if _queue is None:
        _queue = asyncio.Queue()
    _ensure_worker()

    await _queue.put(event)
    logger.debug("Queued %s (conversation=%s)", event.event_type.value, event.conversation_id)


def _ensure_worker() -> None:
    global _worker_task
    if _worker_task is None or _worker_task.done():
        _worker_task = asyncio.create_task(_drain())


async def _drain() -> None:
    """Worker loop: deliver queued events one by one."""
    while _queue is not None:
        event = await _queue.get()
        try:
            await _dispatch(event)
        except Exception:
            logger.exception("Event delivery failed for %s", event.event_type.value)
        finally:
            _queue.task_done()


async def _dispatch(event: SystemEvent) -> None:
    handlers = _handlers_for(event.event_type)
    if not handlers:
        return

    # A failing handler must not starve the others
    outcomes = await asyncio.gather(*(h(event) for h in handlers), return_exceptions=True)
    for handler, outcome in zip(handlers, outcomes):
        if isinstance(outcome, Exception):
            logger.error(
                "Handler %s raised on %s: %s", handler.__name__, event.event_type.value, outcome
            )


# ── Lifecycle ────────────────────────────────────────────────────────


async def start_event_system() -> None:
    """Create the queue and worker. Called from the FastAPI lifespan."""
    global _queue
    _queue = asyncio.Queue()
    _ensure_worker()
    logger.info("Event system started (%d handlers)", sum(len(h) for h in _handlers.values()))


async def stop_event_system() -> None:
    """Deliver what is queued, then stop the worker."""
    global _queue, _worker_task

    if _queue is not None and _worker_task is not None and not _worker_task.done():
        await _queue.join()

    if _worker_task is not None and not _worker_task.done():
        _worker_task.cancel()
        try:
            await _worker_task
        except asyncio.CancelledError:
            pass

    _worker_task = None
    _queue = None
    logger.info("Event system stopped")
