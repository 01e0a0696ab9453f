"""
propsync.events  ──  Post-commit change notification for Record saves

The store calls `ChangeNotifier.notify` explicitly once a write has
committed; nothing here hooks into ORM lifecycle events.
"""

from __future__ import annotations
from typing import Any, Callable, Dict, List, Type, TYPE_CHECKING
from collections import defaultdict

if TYPE_CHECKING:
    from .core.record import Record

Handler = Callable[["Record"], Any]

EVENT_TYPES = ("create", "update")


class ChangeNotifier:
    """Central registry for save handlers"""

    def __init__(self):
        # Maps event type -> class name -> handlers, in registration order
        self._handlers: Dict[str, Dict[str, List[Handler]]] = {
            event: defaultdict(list) for event in EVENT_TYPES
        }

    def register(
        self,
        event_type: str,
        record_classes: tuple[Type[Record], ...],
        handler: Handler,
    ) -> None:
        """Register a handler for specific record classes (and their subclasses)"""
        if event_type not in self._handlers:
            raise ValueError(f"unknown event type {event_type!r}")
        for cls in record_classes:
            handlers = self._handlers[event_type][cls.__name__]
            if handler not in handlers:
                handlers.append(handler)

    def unregister(self, handler: Handler) -> None:
        for by_class in self._handlers.values():
            for handlers in by_class.values():
                if handler in handlers:
                    handlers.remove(handler)

    def notify(self, instance: Record, *, created: bool) -> None:
        """Emit create/update to all matching handlers, most specific class first"""
        event_type = "create" if created else "update"
        seen: List[Handler] = []
        for cls in type(instance).__mro__:
            for handler in self._handlers[event_type].get(cls.__name__, ()):
                if handler not in seen:
                    seen.append(handler)

        for handler in seen:
            handler(instance)


class OnDecorator:
    """Namespace for event decorators bound to one notifier"""

    def __init__(self, notifier: ChangeNotifier):
        self._notifier = notifier

    def create(self, *record_classes: Type[Record]) -> Callable:
        """Decorator for handling record creation events"""

        def decorator(func: Callable) -> Callable:
            self._notifier.register("create", record_classes, func)
            return func

        return decorator

    def update(self, *record_classes: Type[Record]) -> Callable:
        """Decorator for handling record update events"""

        def decorator(func: Callable) -> Callable:
            self._notifier.register("update", record_classes, func)
            return func

        return decorator

    def save(self, *record_classes: Type[Record]) -> Callable:
        """Decorator for handling both creation and update events"""

        def decorator(func: Callable) -> Callable:
            self._notifier.register("create", record_classes, func)
            self._notifier.register("update", record_classes, func)
            return func

        return decorator


# Process-wide notifier used when a store is built without one
notifier = ChangeNotifier()

# Export the decorator interface
on = OnDecorator(notifier)
