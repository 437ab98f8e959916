"""mail.tm API access."""
