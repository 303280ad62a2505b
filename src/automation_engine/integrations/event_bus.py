"""
In-process event bus for run lifecycle events
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List

from ..models.execution import utc_now


logger = logging.getLogger(__name__)


RUN_STARTED = "run.started"
RUN_NODE_COMPLETED = "run.node_completed"
RUN_WAITING = "run.waiting"
RUN_RESUMED = "run.resumed"
RUN_COMPLETED = "run.completed"
RUN_FAILED = "run.failed"
RUN_CANCELLED = "run.cancelled"
MESSAGE_DISPATCHED = "message.dispatched"


@dataclass
class Event:
    """Event object"""
    topic: str
    payload: Any
    timestamp: datetime = field(default_factory=utc_now)
    headers: Dict[str, str] = field(default_factory=dict)


class EventBus:
    """Publish/subscribe by topic; subscriber errors never reach the publisher"""

    def __init__(self):
        self.subscribers: Dict[str, List[Callable]] = {}
        self._lock = asyncio.Lock()

    async def publish(self, topic: str, payload: Any, headers: Dict[str, str] = None):
        event = Event(
            topic=topic,
            payload=payload,
            headers=headers or {}
        )

        async with self._lock:
            subscribers = list(self.subscribers.get(topic, [])) + list(self.subscribers.get("*", []))

        if subscribers:
            await asyncio.gather(*(self._notify_subscriber(s, event) for s in subscribers))

        logger.debug(f"Published event to topic '{topic}' with {len(subscribers)} subscribers")

    async def subscribe(self, topic: str, handler: Callable):
        """Subscribe to a topic; '*' receives every event"""
        async with self._lock:
            self.subscribers.setdefault(topic, []).append(handler)

        logger.info(f"Subscribed to topic '{topic}'")

    async def unsubscribe(self, topic: str, handler: Callable):
        async with self._lock:
            if topic in self.subscribers:
                self.subscribers[topic].remove(handler)
                if not self.subscribers[topic]:
                    del self.subscribers[topic]

        logger.info(f"Unsubscribed from topic '{topic}'")

    async def _notify_subscriber(self, subscriber: Callable, event: Event):
        try:
            if asyncio.iscoroutinefunction(subscriber):
                await subscriber(event)
            else:
                subscriber(event)
        except Exception as e:
            logger.error(f"Error notifying subscriber for topic '{event.topic}': {e}", exc_info=True)
