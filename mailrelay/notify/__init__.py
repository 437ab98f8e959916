"""Notification delivery."""
