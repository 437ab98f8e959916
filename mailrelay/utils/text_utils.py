"""
Text processing utilities for the Mail Relay service.
"""

import re


_TAG_PATTERN = re.compile(r"<[^>]*>")


def strip_html_tags(text: str) -> str:
    """
    Remove all markup tags from text.

    Tags are removed without touching entities or whitespace, so the
    surrounding text is kept exactly as written.

    Args:
        text: Text possibly containing HTML markup

    Returns:
        Text with every ``<...>`` sequence removed

    Example:
        strip_html_tags("<p>Hello <b>there</b></p>")
        -> "Hello there"
    """
    if not text:
        return ""

    return _TAG_PATTERN.sub("", text)


def truncate_text(text: str, max_length: int, suffix: str = "...") -> str:
    """
    Truncate text to max_length characters, appending suffix if truncated.

    The suffix is added after the kept characters, so a truncated result is
    ``max_length + len(suffix)`` characters long.

    Args:
        text: Text to truncate
        max_length: Number of characters to keep
        suffix: Suffix to add if truncated (default: "...")

    Returns:
        Truncated text

    Example:
        truncate_text("This is a long sentence", 7)
        -> "This is..."
    """
    if len(text) <= max_length:
        return text

    return text[:max_length] + suffix
