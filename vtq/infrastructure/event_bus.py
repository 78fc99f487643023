import logging
from collections import defaultdict
from typing import Type, Callable, List, Dict, Any, Optional
from vtq.domain.events import Event

Handler = Callable[[Any], None]

class EventBus:
    """Synchronous in-process pub/sub between the coordinator and its observers."""

    def __init__(self):
        self._subscribers: Dict[Type[Event], List[Handler]] = defaultdict(list)
        self.logger = logging.getLogger(__name__)

    def subscribe(self, event_type: Type[Event], callback: Optional[Handler] = None):
        """Registers callback for event_type and its subclasses. Usable as a decorator."""
        if callback is None:
            def decorator(func: Handler):
                self.subscribe(event_type, func)
                return func
            return decorator
        self._subscribers[event_type].append(callback)

    def unsubscribe(self, event_type: Type[Event], callback: Handler):
        handlers = self._subscribers.get(event_type, [])
        if callback in handlers:
            handlers.remove(callback)

    def publish(self, event: Event):
        """Delivers to subscribers of the event's type and of every base type.

        Observers are not load-bearing: a failing subscriber is logged and the
        remaining subscribers still run.
        """
        for event_type in type(event).__mro__:
            for callback in list(self._subscribers.get(event_type, ())):
                try:
                    callback(event)
                except Exception as exc:
                    self.logger.warning(f"Event subscriber failed for {type(event).__name__}: {exc}")
