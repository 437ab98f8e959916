"""
Custom exceptions for the Mail Relay service.
"""


class MailRelayException(Exception):
    """Base exception for all custom exceptions."""

    pass


# ============================================================================
# Configuration Exceptions
# ============================================================================


class ConfigurationError(MailRelayException):
    """Configuration or registration input is invalid or missing."""

    pass


# ============================================================================
# Mailbox API Exceptions
# ============================================================================


class MailboxAPIError(MailRelayException):
    """Error communicating with the mailbox provider."""

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.status_code = status_code


class MailboxAuthenticationError(MailboxAPIError):
    """Access token rejected or expired (HTTP 401)."""

    pass


class MailboxNetworkError(MailboxAPIError):
    """Connection failure or timeout talking to the mailbox provider."""

    pass


# ============================================================================
# Monitoring Exceptions
# ============================================================================


class MonitorNotFoundError(MailRelayException):
    """No active monitor for the requested user."""

    pass


# ============================================================================
# Notification Exceptions
# ============================================================================


class NotificationSendError(MailRelayException):
    """Failed to deliver a notification."""

    pass
