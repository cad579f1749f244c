"""Publish/subscribe event channel used by every component to report progress and
lifecycle changes. Components only publish events, front ends subscribe to the event
types they are interested in.
"""

from threading import Lock

from typing import Any, Callable, Dict, List, Optional


Handler = Callable[[Any], None]


class EventChannel:
    """A channel dispatching published events to handlers subscribed to the event's
    type or any of its base classes. Subscribing to `object` receives every event.

    Handlers are called synchronously in the publishing thread, in subscription order.
    The channel can be shared between threads, events from the download workers and
    from the process monitor are published concurrently.
    """

    def __init__(self) -> None:
        self._handlers: Dict[type, List[Handler]] = {}
        self._lock = Lock()

    def subscribe(self, event_type: type, handler: Handler) -> Callable[[], None]:
        """Subscribe a handler to every event that is an instance of the given type.

        :return: A function that unsubscribes the handler when called.
        """

        with self._lock:
            self._handlers.setdefault(event_type, []).append(handler)

        def unsubscribe() -> None:
            with self._lock:
                handlers = self._handlers.get(event_type)
                if handlers is not None and handler in handlers:
                    handlers.remove(handler)

        return unsubscribe

    def subscribe_all(self, handlers: Dict[type, Handler]) -> Callable[[], None]:
        """Subscribe many handlers at once, mapped by event type.
        """
        unsubscribes = [self.subscribe(event_type, handler) for event_type, handler in handlers.items()]
        def unsubscribe() -> None:
            for func in unsubscribes:
                func()
        return unsubscribe

    def publish(self, event: Any) -> None:
        """Dispatch the event to all handlers subscribed to one of its types.
        """

        with self._lock:
            targets: List[Handler] = []
            for event_type in type(event).__mro__:
                targets.extend(self._handlers.get(event_type, ()))

        for handler in targets:
            handler(event)


def publish(events: Optional[EventChannel], event: Any) -> None:
    """Publish to an optional channel, events are dropped without any channel.
    """
    if events is not None:
        events.publish(event)
