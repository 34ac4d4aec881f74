from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Any, DefaultDict, Dict, List, Optional

from ..core.models import ChangeEvent

logger = logging.getLogger(__name__)

DEFAULT_BACKLOG = 256


class SessionEventBroker:
    """Per-session fan-out of store change events to stream subscribers.

    Subscriber queues live on the event loop that registered them. Events
    emitted on that loop are queued inline, events from any other thread are
    handed over with ``call_soon_threadsafe``. A subscriber that falls
    ``backlog`` events behind loses its oldest pending events, so a stalled
    client never holds up the stores.
    """

    def __init__(self, backlog: int = DEFAULT_BACKLOG) -> None:
        self.backlog = backlog
        self._subscribers: DefaultDict[str, List[asyncio.Queue]] = defaultdict(list)
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self.dropped = 0

    def subscribe(self, session_id: str) -> asyncio.Queue:
        """Register a subscriber; call from the serving event loop."""
        self._loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.backlog)
        self._subscribers[session_id].append(queue)
        logger.debug("Subscriber joined %s (%d open)", session_id, len(self._subscribers[session_id]))
        return queue

    def unsubscribe(self, session_id: str, queue: asyncio.Queue) -> None:
        queues = self._subscribers.get(session_id)
        if queues is None:
            return
        if queue in queues:
            queues.remove(queue)
        if not queues:
            del self._subscribers[session_id]

    def subscriber_count(self, session_id: str) -> int:
        return len(self._subscribers.get(session_id, ()))

    def _deliver(self, session_id: str, message: Dict[str, Any]) -> None:
        for queue in list(self._subscribers.get(session_id, ())):
            if queue.full():
                queue.get_nowait()
                self.dropped += 1
                logger.warning("Subscriber of %s is lagging; dropped its oldest event", session_id)
            queue.put_nowait(message)

    def publish_change(self, event: ChangeEvent) -> None:
        """Bus observer: forward a store event to the session's subscribers."""
        loop = self._loop
        if loop is None or loop.is_closed() or not self.subscriber_count(event.session_id):
            return
        message = event.to_json_dict()
        try:
            on_loop = asyncio.get_running_loop() is loop
        except RuntimeError:
            on_loop = False
        if on_loop:
            self._deliver(event.session_id, message)
        else:
            loop.call_soon_threadsafe(self._deliver, event.session_id, message)


session_events = SessionEventBroker()
