"""
Per-automation run locks.

At most one run per automation id is in flight. A second concurrent run is
rejected immediately with ConcurrentRunConflict; it is never queued.
"""

import logging
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Iterator, List, Optional

from errors import ConcurrentRunConflict
from utils.timezone_utils import utc_now

logger = logging.getLogger(__name__)


class LockRegistry:
    """Tracks which automations are currently running."""

    def __init__(self):
        # automation_id -> (run_id, started_at)
        self._active: Dict[str, tuple] = {}
        self._lock = threading.Lock()

    def try_acquire(self, automation_id: str) -> Optional[str]:
        """
        Mark an automation as running without blocking.

        Args:
            automation_id: Automation to lock

        Returns:
            A run id when acquired, None if a run is already in flight
        """
        with self._lock:
            if automation_id in self._active:
                return None
            run_id = str(uuid.uuid4())
            self._active[automation_id] = (run_id, utc_now())
            return run_id

    def release(self, automation_id: str, run_id: Optional[str] = None) -> None:
        """Release the lock; a mismatched run id leaves it held."""
        with self._lock:
            current = self._active.get(automation_id)
            if current is None:
                return
            if run_id is not None and current[0] != run_id:
                logger.warning(f"Run {run_id} tried to release lock held by {current[0]} for {automation_id}")
                return
            del self._active[automation_id]

    @contextmanager
    def hold(self, automation_id: str) -> Iterator[str]:
        """
        Hold the lock for the duration of a run.

        Raises:
            ConcurrentRunConflict: If the automation is already running
        """
        run_id = self.try_acquire(automation_id)
        if run_id is None:
            raise ConcurrentRunConflict(automation_id)
        try:
            yield run_id
        finally:
            self.release(automation_id, run_id)

    def is_running(self, automation_id: str) -> bool:
        with self._lock:
            return automation_id in self._active

    def running_since(self, automation_id: str) -> Optional[datetime]:
        with self._lock:
            current = self._active.get(automation_id)
            return current[1] if current else None

    def active_ids(self) -> List[str]:
        with self._lock:
            return list(self._active)
