"""
External completion events that can trigger event-based workflows.

The event bus is a small synchronous publish/subscribe hub: data-sync
runners publish ``DataSyncCompleted`` events and the scheduler subscribes
to turn them into EVENT trigger signals.
"""

import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List

from utils.timezone_utils import utc_now

logger = logging.getLogger(__name__)

DATA_SYNC_SOURCE = "DATA_SYNC"


@dataclass
class DataSyncCompleted:
    """
    A data sync finished, successfully or not.

    Attributes:
        source_id: Id of the data-sync configuration that ran
        succeeded: Whether the sync succeeded
        source_type: Kind of source, always "DATA_SYNC" for data syncs
        completed_at: When the sync finished
        id: Unique identifier for the event
    """
    source_id: str
    succeeded: bool = True
    source_type: str = DATA_SYNC_SOURCE
    completed_at: datetime = field(default_factory=utc_now)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "source_type": self.source_type,
            "source_id": self.source_id,
            "succeeded": self.succeeded,
            "completed_at": self.completed_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DataSyncCompleted":
        completed_at = data.get("completed_at")
        if isinstance(completed_at, str):
            completed_at = datetime.fromisoformat(completed_at)
        return cls(
            source_id=data["source_id"],
            succeeded=data.get("succeeded", True),
            source_type=data.get("source_type", DATA_SYNC_SOURCE),
            completed_at=completed_at or utc_now(),
            id=data.get("id", str(uuid.uuid4())),
        )


class EventBus:
    """Routes completion events to registered handlers."""

    def __init__(self):
        self.handlers: List[Callable[[DataSyncCompleted], None]] = []
        self._lock = threading.Lock()

    def subscribe(self, handler: Callable[[DataSyncCompleted], None]) -> Callable[[], None]:
        """
        Register a handler for completion events.

        Args:
            handler: Called with each published event

        Returns:
            A function that removes the handler again
        """
        with self._lock:
            self.handlers.append(handler)
        logger.debug(f"Registered event handler {getattr(handler, '__name__', handler)}")

        def unsubscribe() -> None:
            with self._lock:
                if handler in self.handlers:
                    self.handlers.remove(handler)

        return unsubscribe

    def publish(self, event: DataSyncCompleted) -> None:
        """
        Deliver an event to every handler.

        A failing handler is logged and does not stop delivery to the rest.
        """
        with self._lock:
            handlers = list(self.handlers)

        if not handlers:
            logger.debug(f"No handlers for {event.source_type} event from {event.source_id}")
            return

        logger.debug(f"Publishing {event.source_type} event from {event.source_id} to {len(handlers)} handler(s)")
        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                logger.error(f"Error in event handler: {e}", exc_info=True)
