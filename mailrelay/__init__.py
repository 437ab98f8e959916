"""
Mail Relay - forwards new mail.tm messages to Telegram chats.
"""

__version__ = "1.0.0"
