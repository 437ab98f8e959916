"""
Monitor Scheduler

Owns one recurring asyncio task per monitored user. Each task polls the
user's inbox immediately and then every poll interval until it is
cancelled by stop(), a re-registration, or shutdown().
"""

import asyncio
import logging
from typing import Any, Dict, Hashable, List, Optional, Set

from .poller import InboxPoller
from .store import CredentialStore, UserMonitor
from ..core.exceptions import MonitorNotFoundError


logger = logging.getLogger(__name__)


class MonitorScheduler:
    """
    Starts, stops and replaces per-user polling loops.

    Features:
    - At most one live schedule per user (start() cancels the previous one)
    - Ticks for different users run concurrently; ticks for one user never overlap
    - One delayed retry after a successful token refresh
    - Graceful shutdown waiting for in-flight ticks

    Usage:
        scheduler = MonitorScheduler(poller, store, poll_interval=15)
        scheduler.start(chat_id, "user@example.com", token, password)
        scheduler.status(chat_id)
        scheduler.stop(chat_id)
        await scheduler.shutdown()
    """

    def __init__(
        self,
        poller: InboxPoller,
        store: Optional[CredentialStore] = None,
        poll_interval: float = 15,
        retry_delay: float = 1,
        shutdown_grace: float = 10,
    ):
        """
        Initialize monitor scheduler.

        Args:
            poller: InboxPoller running individual ticks
            store: Monitor collection (defaults to the poller's store)
            poll_interval: Seconds between scheduled ticks
            retry_delay: Seconds to wait before retrying with a refreshed token
            shutdown_grace: Seconds shutdown() waits for in-flight ticks
        """
        self.poller = poller
        self.store = store if store is not None else poller.store
        self.poll_interval = poll_interval
        self.retry_delay = retry_delay
        self.shutdown_grace = shutdown_grace

        # In-flight tick tasks, so shutdown can wait for them
        self._ticks: Set[asyncio.Task] = set()

        logger.info(f"MonitorScheduler initialized (interval: {poll_interval}s, retry_delay: {retry_delay}s)")

    # ------------------------------------------------------------------
    # Management operations
    # ------------------------------------------------------------------

    def start(self, user_id: Hashable, mail_address: str, token: str, secret: Optional[str] = None) -> UserMonitor:
        """
        Start monitoring a mailbox for a user.

        Any existing monitor for the user is cancelled first. Must be called
        from within the running event loop; the first poll is dispatched
        without blocking the caller.

        Args:
            user_id: Recipient identifier (Telegram chat ID)
            mail_address: Mailbox address
            token: Mailbox access token
            secret: Mailbox password used to refresh the token

        Returns:
            The new UserMonitor
        """
        previous = self.store.remove(user_id)
        if previous is not None:
            previous.cancel()
            logger.info(f"Replacing existing monitor for user {user_id}")

        monitor = UserMonitor(
            user_id=user_id,
            mail_address=mail_address,
            access_token=token,
            secret=secret,
        )

        # Registered before the first tick runs
        self.store.put(monitor)
        monitor.schedule_handle = asyncio.get_running_loop().create_task(
            self._run_schedule(monitor), name=f"monitor-{user_id}"
        )

        logger.info(f"Started monitoring for user {user_id} with email {mail_address}")
        return monitor

    def stop(self, user_id: Hashable) -> bool:
        """
        Stop monitoring a user and forget their state.

        Args:
            user_id: Recipient identifier

        Returns:
            True if a monitor was stopped, False if none existed
        """
        monitor = self.store.remove(user_id)
        if monitor is None:
            logger.debug(f"Stop requested for {user_id}, not monitoring")
            return False

        monitor.cancel()
        logger.info(f"Stopped monitoring for user {user_id}")
        return True

    def status(self, user_id: Hashable) -> Dict[str, Any]:
        """
        Get monitoring status for a user.

        Returns:
            Dictionary with:
                - active: Whether a schedule is running
                - mail_address: Monitored address (None if unknown)
                - message_count: Last seen message count (0 if unknown)
        """
        monitor = self.store.get(user_id)
        if monitor is None:
            return {"active": False, "mail_address": None, "message_count": 0}

        return {
            "active": monitor.active,
            "mail_address": monitor.mail_address,
            "message_count": monitor.last_seen_count,
        }

    def list_active(self) -> List[Dict[str, Any]]:
        """Snapshot of all registered monitors."""
        return [monitor.to_dict() for monitor in self.store.snapshot()]

    async def force_poll(self, user_id: Hashable) -> Dict[str, Any]:
        """
        Poll a user's inbox now.

        Args:
            user_id: Recipient identifier

        Returns:
            Tick stats from InboxPoller.check_inbox

        Raises:
            MonitorNotFoundError: If the user is not being monitored
        """
        monitor = self.store.get(user_id)
        if monitor is None:
            raise MonitorNotFoundError(f"User {user_id} is not being monitored")

        logger.info(f"Manual inbox check for user {user_id}")

        # Tracked like scheduled ticks so shutdown() waits for it
        return await asyncio.shield(self._spawn_tick(monitor))

    async def shutdown(self):
        """
        Cancel every schedule and drop all monitors.

        Waits up to shutdown_grace seconds for ticks already in flight.
        """
        monitors = self.store.clear()
        for monitor in monitors:
            monitor.cancel()
            logger.info(f"Stopped monitoring for user {monitor.user_id}")

        if self._ticks:
            logger.info(f"Waiting for {len(self._ticks)} in-flight tick(s) to complete...")
            try:
                await asyncio.wait_for(
                    asyncio.gather(*self._ticks, return_exceptions=True),
                    timeout=self.shutdown_grace,
                )
            except asyncio.TimeoutError:
                logger.warning(f"Some ticks did not complete within {self.shutdown_grace} seconds")

        logger.info(f"MonitorScheduler stopped ({len(monitors)} monitor(s) cancelled)")

    @property
    def active_count(self) -> int:
        return len(self.store)

    # ------------------------------------------------------------------
    # Tick dispatch
    # ------------------------------------------------------------------

    async def _run_schedule(self, monitor: UserMonitor):
        """Recurring loop: tick immediately, then every poll_interval."""
        try:
            while self.store.is_current(monitor):
                try:
                    # Shielded so stop() lets an in-flight tick finish
                    await asyncio.shield(self._spawn_tick(monitor))
                except Exception as e:
                    logger.error(f"Inbox check for {monitor.user_id} failed: {e}", exc_info=True)

                await asyncio.sleep(self.poll_interval)
        except asyncio.CancelledError:
            logger.debug(f"Schedule for {monitor.user_id} cancelled")
            raise

    async def _retry_after_refresh(self, monitor: UserMonitor, token: str):
        """One-shot retry with a refreshed token."""
        await asyncio.sleep(self.retry_delay)

        if not self.store.is_current(monitor):
            return

        logger.info(f"Retrying inbox check for {monitor.user_id} with refreshed token")
        try:
            await asyncio.shield(self._spawn_tick(monitor, token=token, allow_refresh=False))
        except Exception as e:
            logger.error(f"Retry for {monitor.user_id} failed: {e}", exc_info=True)

    def _spawn_tick(self, monitor: UserMonitor, token: Optional[str] = None, allow_refresh: bool = True) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(
            self._run_tick(monitor, token=token, allow_refresh=allow_refresh)
        )
        self._ticks.add(task)
        task.add_done_callback(self._ticks.discard)
        return task

    async def _run_tick(
        self,
        monitor: UserMonitor,
        token: Optional[str] = None,
        allow_refresh: bool = True,
    ) -> Dict[str, Any]:
        async with monitor.tick_lock:
            stats = await self.poller.check_inbox(monitor, token=token, allow_refresh=allow_refresh)

        if stats.get("retry_token"):
            self._schedule_retry(monitor, stats["retry_token"])

        return stats

    def _schedule_retry(self, monitor: UserMonitor, token: str):
        if not self.store.is_current(monitor):
            return

        if monitor.retry_handle is not None and not monitor.retry_handle.done():
            monitor.retry_handle.cancel()

        monitor.retry_handle = asyncio.get_running_loop().create_task(
            self._retry_after_refresh(monitor, token), name=f"monitor-retry-{monitor.user_id}"
        )
