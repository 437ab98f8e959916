"""
Inbox Poller

Runs one tick for one user: lists the mailbox, works out which messages
arrived since the last tick, and sends a notification for each of them.
"""

import logging
from typing import Any, Dict, Optional

from .formatter import DEFAULT_EXCERPT_LIMIT, format_notification
from .store import CredentialStore, UserMonitor
from ..core.exceptions import MailboxAPIError, MailboxAuthenticationError
from ..mailbox.client import MailboxClient
from ..notify.telegram import TelegramNotifier


logger = logging.getLogger(__name__)


class InboxPoller:
    """
    Detects new mail for a monitored user and relays it.

    The provider lists messages newest first, so when the mailbox grows from
    ``last_seen_count`` to ``current`` messages the new ones are taken to be
    the first ``current - last_seen_count`` entries. Messages deleted or
    reordered between ticks can make this over- or under-report.

    Every failure is contained here: check_inbox never raises (other than
    task cancellation) so one user's broken mailbox cannot affect the
    scheduler or other users.
    """

    def __init__(
        self,
        client: MailboxClient,
        notifier: TelegramNotifier,
        store: CredentialStore,
        excerpt_limit: int = DEFAULT_EXCERPT_LIMIT,
    ):
        """
        Initialize inbox poller.

        Args:
            client: mail.tm client
            notifier: Notification sink
            store: Shared monitor collection
            excerpt_limit: Maximum body excerpt length in notifications
        """
        self.client = client
        self.notifier = notifier
        self.store = store
        self.excerpt_limit = excerpt_limit

    async def check_inbox(
        self,
        monitor: UserMonitor,
        token: Optional[str] = None,
        allow_refresh: bool = True,
    ) -> Dict[str, Any]:
        """
        Run a single poll for one user.

        Args:
            monitor: The user's monitor record
            token: Access token to use instead of the stored one (retry after refresh)
            allow_refresh: Whether an auth failure may trigger a token refresh

        Returns:
            Dictionary with tick stats:
                - checked: Messages in the mailbox (None if the listing failed)
                - new: Messages judged new this tick
                - notified: Notifications delivered
                - failed: Messages skipped or not delivered
                - retry_token: Refreshed token the caller should retry with, if any
        """
        stats = {"checked": None, "new": 0, "notified": 0, "failed": 0, "retry_token": None}

        if not self.store.is_current(monitor):
            logger.debug(f"Monitor for {monitor.user_id} no longer active, skipping tick")
            return stats

        # Read at tick start so a refreshed token is picked up
        token = token or monitor.access_token

        try:
            messages = await self.client.list_messages(token)
        except MailboxAuthenticationError:
            stats["retry_token"] = await self._refresh_token(monitor, allow_refresh)
            return stats
        except MailboxAPIError as e:
            logger.warning(f"Failed to check inbox for {monitor.user_id}: {e}")
            return stats
        except Exception as e:
            logger.error(f"Unexpected error checking inbox for {monitor.user_id}: {e}", exc_info=True)
            return stats

        current_count = len(messages)
        last_count = monitor.last_seen_count
        stats["checked"] = current_count

        if current_count <= last_count:
            logger.debug(f"No new mail for {monitor.user_id} ({current_count} messages)")
            return stats

        new_messages = messages[: current_count - last_count]
        stats["new"] = len(new_messages)

        logger.info(f"{len(new_messages)} new message(s) for {monitor.user_id} ({monitor.mail_address})")

        for summary in new_messages:
            if await self._relay_message(monitor, token, summary):
                stats["notified"] += 1
            else:
                stats["failed"] += 1

        if not self.store.record_count(monitor, current_count):
            logger.debug(f"Monitor for {monitor.user_id} stopped during tick, discarding count {current_count}")

        return stats

    async def _relay_message(self, monitor: UserMonitor, token: str, summary: Dict[str, Any]) -> bool:
        """
        Fetch one message and send its notification.

        Returns:
            True if the notification was delivered
        """
        message_id = summary.get("id") if isinstance(summary, dict) else None

        try:
            detail = await self.client.get_message(token, message_id)
        except MailboxAPIError as e:
            logger.error(f"Failed to get message details for {message_id}: {e}")
            return False
        except Exception as e:
            logger.error(f"Unexpected error fetching message {message_id}: {e}", exc_info=True)
            return False

        try:
            text = format_notification(summary, detail, self.excerpt_limit)
        except Exception as e:
            logger.error(f"Malformed message {message_id} for {monitor.user_id}, skipping: {e}", exc_info=True)
            return False

        try:
            return await self.notifier.send(monitor.user_id, text)
        except Exception as e:
            logger.error(f"Failed to send message to {monitor.user_id}: {e}", exc_info=True)
            return False

    async def _refresh_token(self, monitor: UserMonitor, allow_refresh: bool) -> Optional[str]:
        """
        Re-issue the access token after the provider rejected it.

        Returns:
            The new token if it was issued and stored, None otherwise
        """
        if not allow_refresh:
            logger.warning(f"Refreshed token for {monitor.user_id} was rejected as well, waiting for next tick")
            return None

        if not monitor.secret:
            logger.warning(f"Token expired for {monitor.user_id} and no password on record, cannot refresh")
            return None

        logger.info(f"Token expired for {monitor.user_id}, attempting to refresh...")

        try:
            new_token = await self.client.issue_token(monitor.mail_address, monitor.secret)
        except MailboxAPIError as e:
            logger.error(f"Failed to refresh token for {monitor.user_id}: {e}")
            return None
        except Exception as e:
            logger.error(f"Unexpected error refreshing token for {monitor.user_id}: {e}", exc_info=True)
            return None

        if not self.store.replace_token(monitor, new_token):
            logger.debug(f"Monitor for {monitor.user_id} stopped during refresh, dropping new token")
            return None

        return new_token
