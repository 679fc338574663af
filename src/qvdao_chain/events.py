"""Typed notification channels.

Each component owns its own EventChannel and exposes subscribe/unsubscribe,
instead of inheriting from a shared emitter.

Example:
    channel = EventChannel()
    unsubscribe = channel.subscribe(WalletEvent.CONNECTED, on_connected)
    ...
    unsubscribe()
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Generic, List, Optional, Set, TypeVar

logger = logging.getLogger(__name__)


class WalletEvent(str, Enum):
    """Notifications published by the wallet session components."""
    CONNECTED = "wallet:connected"
    DISCONNECTED = "wallet:disconnected"
    ACCOUNT_CHANGED = "wallet:accountChanged"
    NETWORK_CHANGED = "network:changed"
    ERROR = "wallet:error"
    MESSAGE = "wallet:message"
    TRANSACTION_ADDED = "transaction:added"
    HISTORY_CLEARED = "transaction:historyCleared"
    CACHE_CLEARED = "cache:cleared"


class ProviderEvent(str, Enum):
    """Raw provider notifications forwarded by the EventBridge."""
    ACCOUNTS_CHANGED = "accountsChanged"
    CHAIN_CHANGED = "chainChanged"
    DISCONNECT = "disconnect"
    MESSAGE = "message"
    CONTRACT_EVENT = "contractEvent"


E = TypeVar("E", bound=Enum)


@dataclass
class Notification(Generic[E]):
    """A single delivered notification."""
    event: E
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)


Handler = Callable[[Notification], Any]
Unsubscribe = Callable[[], None]


class EventChannel(Generic[E]):
    """Subscriber registry with unsubscribe handles.

    Handlers run synchronously in subscription order. A coroutine returned by a
    handler is scheduled as a tracked background task. A failing handler is
    logged and does not stop delivery to the others.
    """

    def __init__(self, name: str = "events"):
        self._name = name
        self._subscribers: Dict[Optional[E], List[Handler]] = {}
        self._background_tasks: Set[asyncio.Task[Any]] = set()

    def subscribe(self, event: Optional[E], handler: Handler) -> Unsubscribe:
        """Subscribe to one event type, or to every event with None."""
        handlers = self._subscribers.setdefault(event, [])
        if handler not in handlers:
            handlers.append(handler)

        def unsubscribe() -> None:
            self.unsubscribe(event, handler)

        return unsubscribe

    def unsubscribe(self, event: Optional[E], handler: Handler) -> None:
        handlers = self._subscribers.get(event)
        if handlers and handler in handlers:
            handlers.remove(handler)
            if not handlers:
                del self._subscribers[event]

    def emit(self, event: E, /, **data: Any) -> Notification[E]:
        """Deliver a notification to matching subscribers."""
        notification = Notification(event=event, data=data)
        handlers = list(self._subscribers.get(event, [])) + list(self._subscribers.get(None, []))

        for handler in handlers:
            try:
                result = handler(notification)
                if asyncio.iscoroutine(result):
                    self._schedule_background(result)
            except Exception as e:
                logger.error(
                    f"{self._name} handler {getattr(handler, '__name__', handler)!r} "
                    f"failed for {event.value}: {e}",
                    exc_info=True,
                )

        logger.debug(f"{self._name}: emitted {event.value} to {len(handlers)} handlers")
        return notification

    def _schedule_background(self, coro: Any) -> None:
        task = asyncio.ensure_future(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._on_background_task_done)

    def _on_background_task_done(self, task: asyncio.Task[Any]) -> None:
        self._background_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"{self._name} background handler failed: {exc}", exc_info=exc)

    def subscriber_count(self, event: Optional[E] = None) -> int:
        if event is None:
            return sum(len(handlers) for handlers in self._subscribers.values())
        return len(self._subscribers.get(event, []))

    def clear(self) -> None:
        """Drop every subscription and cancel pending background handlers."""
        self._subscribers.clear()
        for task in list(self._background_tasks):
            task.cancel()
        self._background_tasks.clear()
