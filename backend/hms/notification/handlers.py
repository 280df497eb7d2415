"""
通知处理器 - 把语义事件转发给所有通知渠道
即发即忘：投递失败不会影响已经提交的业务状态
"""
from typing import Optional, Tuple
import logging

from hms.models.events import NOTIFIABLE_EVENTS
from hms.notification.channel import LoggingChannel, NotificationChannelRegistry
from hms.services.event_bus import Event, event_bus

logger = logging.getLogger(__name__)

# 按优先级查找事件负载中的实体 ID
_ENTITY_KEYS = ("transaction_id", "stay_id", "booking_id", "invoice_id")


def entity_of(event: Event) -> Tuple[Optional[str], Optional[int]]:
    """事件对应的实体 (类型, ID)"""
    for key in _ENTITY_KEYS:
        value = event.data.get(key)
        if value:
            return key[:-3], value
    return None, None


class NotificationHandlers:
    """通知处理器集合"""

    def __init__(self, registry: Optional[NotificationChannelRegistry] = None):
        self._registry = registry or NotificationChannelRegistry()
        self._registered = False

    @property
    def registry(self) -> NotificationChannelRegistry:
        return self._registry

    def handle(self, event: Event) -> None:
        """转发事件：{event, entity id}"""
        event_type = getattr(event.event_type, "value", event.event_type)
        entity, entity_id = entity_of(event)
        recipient = f"guest:{event.data['guest_id']}" if event.data.get("guest_id") else "front_desk"

        try:
            delivered = self._registry.broadcast(
                recipient=recipient,
                subject=event_type,
                content=f"{entity} {entity_id}",
                extra={"event": event_type, "entity": entity, "entity_id": entity_id},
            )
            logger.debug(f"Event {event_type} delivered to {delivered} channel(s)")
        except Exception as e:
            logger.error(f"Failed to notify {event_type}: {e}", exc_info=True)

    def register_handlers(self, event_bus_instance=None) -> None:
        """订阅所有需要通知的事件"""
        if self._registered:
            return

        bus = event_bus_instance or event_bus
        if not self._registry.get_all_channels():
            self._registry.register(LoggingChannel())

        bus.subscribe_all(NOTIFIABLE_EVENTS, self.handle)

        self._registered = True
        logger.info("Notification handlers registered successfully")

    def unregister_handlers(self, event_bus_instance=None) -> None:
        """取消订阅（用于测试）"""
        bus = event_bus_instance or event_bus
        bus.unsubscribe_all(NOTIFIABLE_EVENTS, self.handle)

        self._registered = False
        logger.info("Notification handlers unregistered")


# 全局通知处理器实例
notification_handlers = NotificationHandlers()


def register_notification_handlers():
    """注册通知处理器（应用启动时调用）"""
    notification_handlers.register_handlers()
