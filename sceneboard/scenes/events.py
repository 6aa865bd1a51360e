import asyncio
import logging
from typing import Any, Callable, Dict, List

from sceneboard.utils.logging_setup import current_log_context

logger = logging.getLogger(__name__)

Event = Dict[str, Any]


class EventBus:
    """
    Fan-out of store changes and operation notifications.

    Listeners are plain callables invoked synchronously; subscribers get a
    bounded asyncio.Queue each (used by the SSE endpoint). A full queue drops
    its oldest event so a slow client never blocks scene operations.
    """

    def __init__(self, max_queue_size: int = 200):
        self.max_queue_size = max_queue_size
        self._listeners: List[Callable[[Event], None]] = []
        self._queues: List[asyncio.Queue] = []

    def add_listener(self, callback: Callable[[Event], None]) -> Callable[[], None]:
        self._listeners.append(callback)

        def remove() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return remove

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.max_queue_size)
        self._queues.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        if queue in self._queues:
            self._queues.remove(queue)

    def publish(self, event: Event) -> None:
        for callback in list(self._listeners):
            try:
                callback(event)
            except Exception:
                logger.exception(f"Event listener failed for {event.get('type')}")
        for queue in list(self._queues):
            if queue.full():
                queue.get_nowait()
            queue.put_nowait(event)

    def notify(self, level: str, operation: str, message: str, scene_id: int | None = None, **extra: Any) -> None:
        self.publish({
            "type": "notification",
            "level": level,
            "operation": operation,
            "scene_id": scene_id,
            "session_id": current_log_context().get("session_id"),
            "message": message,
            **extra,
        })
