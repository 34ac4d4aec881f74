from __future__ import annotations

import logging
from collections import deque
from typing import Callable, Deque, List

from .models import ChangeEvent

logger = logging.getLogger(__name__)

Handler = Callable[[ChangeEvent], None]

RECENT_EVENTS = 20


class ChangeBus:
    """One-way event channel from the stores to their observers.

    Stores publish an event after each mutation; observers (persistence
    mirrors, the streaming broker, diagnostics) only listen. Commands never
    travel back through the bus. A failing observer is logged and skipped so
    it cannot undo a mutation that already happened.
    """

    def __init__(self, session_id: str, history: int = RECENT_EVENTS) -> None:
        self.session_id = session_id
        self._handlers: List[Handler] = []
        self._recent: Deque[ChangeEvent] = deque(maxlen=history)

    def subscribe(self, handler: Handler) -> Callable[[], None]:
        self._handlers.append(handler)

        def _unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return _unsubscribe

    def emit(self, event_type: str, **payload) -> ChangeEvent:
        event = ChangeEvent(type=event_type, session_id=self.session_id, payload=payload)
        self._recent.append(event)
        logger.debug("[%s] %s %s", self.session_id, event_type, payload)
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception:
                logger.exception("Change observer failed on %s", event_type)
        return event

    def recent(self) -> List[ChangeEvent]:
        return list(self._recent)
