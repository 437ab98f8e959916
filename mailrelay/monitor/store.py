"""
Monitor State

Per-user monitoring records and the thread-safe collection that owns them.
"""

import asyncio
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Hashable, List, Optional


@dataclass
class UserMonitor:
    """Polling configuration and state for one user."""

    user_id: Hashable
    mail_address: str
    access_token: str = field(repr=False)
    secret: Optional[str] = field(default=None, repr=False)
    last_seen_count: int = 0

    # Recurring poll task and the one-shot retry scheduled after a token refresh
    schedule_handle: Optional[asyncio.Task] = field(default=None, repr=False)
    retry_handle: Optional[asyncio.Task] = field(default=None, repr=False)

    # Cancellation token checked at tick start and before each mutation
    cancelled: bool = False

    # Serializes ticks for this user (scheduled, retry and forced)
    tick_lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    @property
    def active(self) -> bool:
        """True while the recurring schedule is alive."""
        return (
            not self.cancelled
            and self.schedule_handle is not None
            and not self.schedule_handle.done()
        )

    def cancel(self):
        """Cancel the recurring schedule and any pending retry."""
        self.cancelled = True
        for handle in (self.schedule_handle, self.retry_handle):
            if handle is not None and not handle.done():
                handle.cancel()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "mail_address": self.mail_address,
            "active": self.active,
            "message_count": self.last_seen_count,
        }


class CredentialStore:
    """
    Mapping of user ID to UserMonitor.

    All access goes through a lock that is only held for dictionary
    operations, never across an await, so status and listing requests can
    read while ticks are running.

    Mutations performed by a tick take the monitor it started with and are
    ignored unless that exact record is still registered. A tick that
    outlives stop() or a re-registration therefore cannot write into the
    replacement record or bring a deleted one back.
    """

    def __init__(self):
        self._monitors: Dict[Hashable, UserMonitor] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._monitors)

    def __contains__(self, user_id: Hashable) -> bool:
        with self._lock:
            return user_id in self._monitors

    def get(self, user_id: Hashable) -> Optional[UserMonitor]:
        with self._lock:
            return self._monitors.get(user_id)

    def put(self, monitor: UserMonitor) -> Optional[UserMonitor]:
        """
        Register a monitor.

        Returns:
            The monitor previously registered for the same user, if any
        """
        with self._lock:
            previous = self._monitors.get(monitor.user_id)
            self._monitors[monitor.user_id] = monitor
            return previous

    def remove(self, user_id: Hashable) -> Optional[UserMonitor]:
        with self._lock:
            return self._monitors.pop(user_id, None)

    def clear(self) -> List[UserMonitor]:
        """Remove and return every monitor."""
        with self._lock:
            monitors = list(self._monitors.values())
            self._monitors.clear()
            return monitors

    def snapshot(self) -> List[UserMonitor]:
        with self._lock:
            return list(self._monitors.values())

    def _is_current_locked(self, monitor: UserMonitor) -> bool:
        return not monitor.cancelled and self._monitors.get(monitor.user_id) is monitor

    def is_current(self, monitor: UserMonitor) -> bool:
        """True if monitor is the live, registered record for its user."""
        with self._lock:
            return self._is_current_locked(monitor)

    def replace_token(self, monitor: UserMonitor, token: str) -> bool:
        """
        Store a refreshed access token.

        Returns:
            False if the monitor was stopped or replaced meanwhile
        """
        with self._lock:
            if not self._is_current_locked(monitor):
                return False
            monitor.access_token = token
            return True

    def record_count(self, monitor: UserMonitor, count: int) -> bool:
        """
        Store the latest observed message count.

        The count never decreases while the monitor is registered.

        Returns:
            False if the monitor was stopped or replaced meanwhile
        """
        with self._lock:
            if not self._is_current_locked(monitor):
                return False
            if count > monitor.last_seen_count:
                monitor.last_seen_count = count
            return True
