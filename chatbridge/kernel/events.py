"""
In-process publish/subscribe channel used by the engine facade to deliver
streaming responses, metrics, lifecycle and error notifications.

Delivery is synchronous and in subscription order. Nothing is buffered:
a handler registered after an event fired never sees it.
"""
from enum import Enum
from typing import Any, Callable, Optional

from chatbridge.internal.logging import get_logger
from chatbridge.kernel.contracts import DomainError, GenerationMetrics, StreamingResponse

logger = get_logger(__name__)

Handler = Callable[[Any], None]


class EventName(str, Enum):
    RESPONSE = "response"
    METRICS = "metrics"
    ERROR = "error"
    READY = "ready"
    GENERATING = "generating"


# None means the event carries no payload
PAYLOAD_TYPES: dict[EventName, Optional[type]] = {
    EventName.RESPONSE: StreamingResponse,
    EventName.METRICS: GenerationMetrics,
    EventName.ERROR: DomainError,
    EventName.READY: None,
    EventName.GENERATING: bool,
}


def _coerce_event_name(event_name) -> EventName:
    try:
        return EventName(event_name)
    except ValueError:
        raise ValueError(f"Unknown event name: {event_name!r}") from None


class Subscription:
    """
    Token returned by EventChannel.subscribe. `unsubscribe()` may be called
    any number of times, including from inside the handler itself.
    """

    def __init__(self, channel: "EventChannel", event_name: EventName, handler: Handler):
        self._channel = channel
        self.event_name = event_name
        self.handler = handler
        self.active = True

    def unsubscribe(self) -> None:
        if not self.active:
            return
        self.active = False
        self._channel._remove(self)

    def __repr__(self) -> str:
        state = "active" if self.active else "removed"
        return f"<Subscription {self.event_name.value} {state}>"


class EventChannel:
    def __init__(self):
        self._subscribers: dict[EventName, list[Subscription]] = {name: [] for name in EventName}

    def subscribe(self, event_name, handler: Handler) -> Subscription:
        name = _coerce_event_name(event_name)
        if not callable(handler):
            raise TypeError("Event handler must be callable")
        subscription = Subscription(self, name, handler)
        self._subscribers[name].append(subscription)
        logger.debug("Subscriber added", event_name=name.value, subscribers=len(self._subscribers[name]))
        return subscription

    def unsubscribe_all(self, event_name) -> None:
        name = _coerce_event_name(event_name)
        subscriptions, self._subscribers[name] = self._subscribers[name], []
        for subscription in subscriptions:
            subscription.active = False

    def clear(self) -> None:
        for name in EventName:
            self.unsubscribe_all(name)

    def subscriber_count(self, event_name) -> int:
        return len(self._subscribers[_coerce_event_name(event_name)])

    def publish(self, event_name, payload: Any = None) -> None:
        name = _coerce_event_name(event_name)
        expected = PAYLOAD_TYPES[name]
        if expected is None:
            if payload is not None:
                raise TypeError(f"Event '{name.value}' carries no payload")
        elif not isinstance(payload, expected):
            raise TypeError(
                f"Event '{name.value}' expects {expected.__name__}, got {type(payload).__name__}"
            )

        # Snapshot so handlers can (un)subscribe while we iterate
        for subscription in list(self._subscribers[name]):
            if not subscription.active:
                continue
            try:
                if expected is None:
                    subscription.handler()
                else:
                    subscription.handler(payload)
            except Exception:
                logger.exception("Event handler raised", event_name=name.value)

    def _remove(self, subscription: Subscription) -> None:
        subscribers = self._subscribers[subscription.event_name]
        if subscription in subscribers:
            subscribers.remove(subscription)
