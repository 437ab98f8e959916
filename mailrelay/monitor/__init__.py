"""
Inbox Monitoring Module

Polls each registered mailbox on a fixed interval and relays new mail:
- CredentialStore keeps per-user credentials and the last seen message count
- InboxPoller runs one poll for one user
- MonitorScheduler owns the per-user polling loops
"""

from .formatter import format_notification
from .store import CredentialStore, UserMonitor
from .poller import InboxPoller
from .scheduler import MonitorScheduler

__all__ = [
    "format_notification",
    "CredentialStore",
    "UserMonitor",
    "InboxPoller",
    "MonitorScheduler",
]
