from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable, DefaultDict, Dict, List, Optional, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

E = TypeVar("E")


@dataclass(frozen=True)
class SessionStarted:
    token: int
    mode: str
    sticky: bool
    pool_size: int


@dataclass(frozen=True)
class SessionCancelled:
    token: int
    reason: str


@dataclass(frozen=True)
class EntryChanged:
    """The session switched to a new current entry (random cycling or start)."""

    token: int
    identity_key: str
    source: str  # "single" | "queue" | "fallback"


@dataclass(frozen=True)
class InstanceCommitted:
    token: int
    identity_key: str
    target: str  # "scene" | "entity"
    entity: Any = None
    instance: Any = None
    world: Optional[Tuple[float, float]] = None


@dataclass(frozen=True)
class Notification:
    level: str  # "info" | "warning" | "error"
    message: str


@dataclass(frozen=True)
class UIStateChanged:
    state: Dict[str, Any] = field(default_factory=dict)
    render: bool = False


class Subscription:
    """Handle returned by :meth:`EventBus.subscribe`; ``close()`` is idempotent."""

    def __init__(self, bus: "EventBus", event_type: type, callback: Callable[[Any], None]) -> None:
        self._bus = bus
        self.event_type = event_type
        self.callback = callback
        self.closed = False

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._bus._remove(self.event_type, self.callback)


class EventBus:
    """A lightweight publish/subscribe bus keyed by payload type.

    Subscribers register a callback for a payload dataclass. When an event is
    published, all callbacks registered for its type are invoked in
    registration order. Callback exceptions are logged and never reach the
    publisher.
    """

    def __init__(self) -> None:
        self._subs: DefaultDict[type, List[Callable[[Any], None]]] = defaultdict(list)

    def subscribe(self, event_type: Type[E], callback: Callable[[E], None]) -> Subscription:
        """Subscribe a callback for a given payload type.

        Args:
            event_type: The payload class to listen for.
            callback: A function accepting a single payload argument.
        """
        if not callable(callback):
            raise TypeError("callback must be callable")
        self._subs[event_type].append(callback)
        logger.debug("Subscribed %s to '%s'", getattr(callback, "__name__", str(callback)), event_type.__name__)
        return Subscription(self, event_type, callback)

    def _remove(self, event_type: type, callback: Callable[[Any], None]) -> None:
        subs = self._subs.get(event_type)
        if subs and callback in subs:
            subs.remove(callback)
            logger.debug("Unsubscribed %s from '%s'", getattr(callback, "__name__", str(callback)), event_type.__name__)

    def publish(self, event: Any) -> None:
        """Publish a payload to all subscribers of its type."""
        subs = list(self._subs.get(type(event), []))
        logger.debug("Publishing '%s' to %d subscribers: %s", type(event).__name__, len(subs), event)
        for cb in subs:
            try:
                cb(event)
            except Exception:  # pragma: no cover - guard rail
                logger.exception("Unhandled exception in event subscriber for '%s'", type(event).__name__)

    def subscriber_count(self, event_type: type) -> int:
        return len(self._subs.get(event_type, []))


__all__ = [
    "EntryChanged",
    "EventBus",
    "InstanceCommitted",
    "Notification",
    "SessionCancelled",
    "SessionStarted",
    "Subscription",
    "UIStateChanged",
]
