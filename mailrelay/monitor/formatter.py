"""
Notification text for a newly received message.
"""

from typing import Any, Dict, Optional

from ..utils.text_utils import strip_html_tags, truncate_text


DEFAULT_EXCERPT_LIMIT = 800
UNAVAILABLE = "Unavailable"
NO_CONTENT = "No content available"


def _sender_address(summary: Dict[str, Any]) -> str:
    sender = summary.get("from")
    if isinstance(sender, dict):
        return sender.get("address") or UNAVAILABLE
    return sender or UNAVAILABLE


def body_excerpt(detail: Optional[Dict[str, Any]], limit: int = DEFAULT_EXCERPT_LIMIT) -> str:
    """
    Derive the body excerpt shown in a notification.

    Plain text is preferred over HTML. Markup is stripped and the result is
    cut to ``limit`` characters with a trailing ``...`` when cut.

    Args:
        detail: Message detail with optional ``text`` / ``html`` bodies
        limit: Maximum number of body characters kept

    Returns:
        Excerpt text (``No content available`` when neither body is present)
    """
    detail = detail or {}
    content = detail.get("text") or detail.get("html")

    # mail.tm returns html as a list of parts
    if isinstance(content, list):
        content = "".join(part for part in content if isinstance(part, str))

    if not content:
        return NO_CONTENT

    return truncate_text(strip_html_tags(content), limit)


def format_notification(
    summary: Dict[str, Any],
    detail: Optional[Dict[str, Any]] = None,
    excerpt_limit: int = DEFAULT_EXCERPT_LIMIT,
) -> str:
    """
    Build the Telegram notification for one message.

    Args:
        summary: Message entry from the mailbox listing (sender, subject)
        detail: Full message (bodies)
        excerpt_limit: Maximum body excerpt length

    Returns:
        Notification text
    """
    subject = summary.get("subject") or UNAVAILABLE

    return (
        "📩 New Mail Received In Your Email ID 🪧\n\n"
        f"📇 From : {_sender_address(summary)}\n\n"
        f"🗒️ Subject : {subject}\n\n"
        f"💬 Text : *{body_excerpt(detail, excerpt_limit)}*"
    )
