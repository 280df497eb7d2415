"""
通知：语义事件的对外投递
"""
from hms.notification.channel import (
    INotificationChannel, LoggingChannel, NotificationChannelRegistry
)
from hms.notification.handlers import (
    NotificationHandlers, notification_handlers, register_notification_handlers
)

__all__ = [
    "INotificationChannel",
    "LoggingChannel",
    "NotificationChannelRegistry",
    "NotificationHandlers",
    "notification_handlers",
    "register_notification_handlers",
]
