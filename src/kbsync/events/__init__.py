"""Notification layer: per-connection router and the stream-reading loop."""

from kbsync.events.listener import dispatch_notification, listen_for_notifications
from kbsync.events.router import NotificationRouter

__all__ = ["NotificationRouter", "dispatch_notification", "listen_for_notifications"]
