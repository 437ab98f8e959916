"""
Input validation utilities.
"""

import re
from typing import Any, Optional

from ..core.exceptions import ConfigurationError


def validate_email(email: str) -> bool:
    """
    Validate email address format.

    Args:
        email: Email address to validate

    Returns:
        True if valid, False otherwise

    Example:
        validate_email("user@example.com") -> True
        validate_email("invalid.email") -> False
    """
    if not email:
        return False

    # RFC 5322 compliant regex (simplified)
    pattern = r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$"

    return bool(re.match(pattern, email))


def validate_registration(chat_id: Any, email: Optional[str], token: Optional[str]) -> None:
    """
    Check the fields required to start monitoring a mailbox.

    Args:
        chat_id: Recipient identifier
        email: Mailbox address
        token: Mailbox access token

    Raises:
        ConfigurationError: If a required field is missing or the address is malformed
    """
    missing = [
        name
        for name, value in (("chat_id", chat_id), ("email", email), ("token", token))
        if value in (None, "")
    ]
    if missing:
        raise ConfigurationError(f"Missing required fields: {', '.join(missing)}")

    if not validate_email(email):
        raise ConfigurationError(f"Invalid email address: {email}")
