"""
Drain Scheduler - one-shot auto-drain timer per user.

Each deadline is also written to the store, so a process restart can
recover it from ``due_drain_deadlines`` even though the in-process timer
is gone.
"""

import logging
import threading
from datetime import datetime
from typing import Callable, Dict, Optional, Tuple

from spendgate.clock import Clock, utc_now
from spendgate.execution.models import DrainDeadline
from spendgate.storage.base import Store


logger = logging.getLogger(__name__)


DrainCallback = Callable[[str, str], object]


class DrainScheduler:
    """
    Cancellable single-shot timers keyed by user.

    Arming a timer for a user replaces any timer already armed for them.
    """

    def __init__(self, store: Store, clock: Optional[Clock] = None):
        self.store = store
        self.clock = clock or utc_now
        self._lock = threading.Lock()
        self._timers: Dict[str, Tuple[str, threading.Timer]] = {}

    def arm(
        self,
        user_id: str,
        session_id: str,
        fire_at: datetime,
        callback: DrainCallback,
    ) -> DrainDeadline:
        """
        Schedule ``callback(user_id, session_id)`` at ``fire_at``.

        Args:
            user_id: Owner of the session
            session_id: Session to drain
            fire_at: When to fire
            callback: Drain function

        Returns:
            The persisted DrainDeadline
        """
        deadline = DrainDeadline(user_id=user_id, session_id=session_id, fire_at=fire_at)
        self.store.set_drain_deadline(deadline)

        delay = max((fire_at - self.clock()).total_seconds(), 0.0)
        timer = threading.Timer(delay, self._fire, args=(user_id, session_id, callback))
        timer.daemon = True

        with self._lock:
            previous = self._timers.pop(user_id, None)
            if previous is not None:
                previous[1].cancel()
            self._timers[user_id] = (session_id, timer)
        timer.start()

        logger.debug(f"Auto-drain armed for {user_id}/{session_id} in {delay:.1f}s")
        return deadline

    def cancel(self, user_id: str, session_id: Optional[str] = None) -> bool:
        """
        Cancel the user's pending timer and clear its stored deadline.

        Args:
            user_id: Owner of the timer
            session_id: If given, only cancel when the timer is for this session

        Returns:
            True if a timer was cancelled
        """
        cancelled = False
        with self._lock:
            armed = self._timers.get(user_id)
            if armed is not None and (session_id is None or armed[0] == session_id):
                armed[1].cancel()
                del self._timers[user_id]
                session_id = session_id or armed[0]
                cancelled = True

        if session_id is not None:
            self.store.clear_drain_deadline(session_id)
        return cancelled

    def is_armed(self, user_id: str) -> bool:
        with self._lock:
            return user_id in self._timers

    def armed_session(self, user_id: str) -> Optional[str]:
        with self._lock:
            armed = self._timers.get(user_id)
            return armed[0] if armed else None

    def shutdown(self) -> None:
        """Cancel all in-process timers. Stored deadlines are kept."""
        with self._lock:
            for _, timer in self._timers.values():
                timer.cancel()
            count = len(self._timers)
            self._timers.clear()
        logger.info(f"Drain scheduler stopped ({count} timers cancelled)")

    def _fire(self, user_id: str, session_id: str, callback: DrainCallback) -> None:
        with self._lock:
            armed = self._timers.get(user_id)
            if armed is not None and armed[0] == session_id:
                del self._timers[user_id]

        logger.info(f"Auto-drain timer fired for {user_id}/{session_id}")
        try:
            callback(user_id, session_id)
        except Exception as e:
            # The stale-cleanup sweep drains the session on next access
            logger.error(f"Auto-drain for {user_id}/{session_id} failed: {e}")
