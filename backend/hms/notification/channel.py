"""
通知渠道

短信、邮件、Webhook 等外发方式实现 INotificationChannel 并注册；
默认只注册 LoggingChannel，把语义事件写入日志。
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
import logging
import threading

logger = logging.getLogger(__name__)


class INotificationChannel(ABC):
    """通知渠道"""

    @abstractmethod
    def send(self, recipient: str, subject: str, content: str,
             extra: Optional[Dict[str, Any]] = None) -> bool:
        """投递一条通知

        Args:
            recipient: guest:<id> 或 front_desk
            subject: 事件类型，如 booking.confirmed
            content: 简短描述
            extra: {event, entity, entity_id}

        Returns:
            渠道是否接收成功；抛出的异常由注册表记录
        """

    @abstractmethod
    def get_channel_type(self) -> str:
        """渠道标识，注册表按它去重"""


class LoggingChannel(INotificationChannel):
    """只写日志"""

    def send(self, recipient, subject, content, extra=None) -> bool:
        logger.info(f"[notify:{recipient}] {subject}: {content}")
        return True

    def get_channel_type(self) -> str:
        return "log"


class NotificationChannelRegistry:
    """
    通知渠道注册表（单例）
    同一渠道类型只保留最后注册的实现
    """

    _instance: Optional["NotificationChannelRegistry"] = None
    _instance_lock = threading.Lock()

    def __new__(cls) -> "NotificationChannelRegistry":
        if cls._instance is None:
            with cls._instance_lock:
                if cls._instance is None:
                    instance = super().__new__(cls)
                    instance._channels = {}
                    instance._lock = threading.Lock()
                    cls._instance = instance
        return cls._instance

    def register(self, channel: INotificationChannel) -> None:
        with self._lock:
            self._channels[channel.get_channel_type()] = channel
        logger.info(f"Notification channel '{channel.get_channel_type()}' registered")

    def unregister(self, channel_type: str) -> None:
        with self._lock:
            self._channels.pop(channel_type, None)

    def get_channel(self, channel_type: str) -> Optional[INotificationChannel]:
        with self._lock:
            return self._channels.get(channel_type)

    def get_all_channels(self) -> List[INotificationChannel]:
        with self._lock:
            return list(self._channels.values())

    def broadcast(self, recipient: str, subject: str, content: str,
                  extra: Optional[Dict[str, Any]] = None) -> int:
        """
        向所有渠道投递，返回成功的渠道数
        单个渠道失败只记录日志
        """
        delivered = 0
        for channel in self.get_all_channels():
            try:
                if channel.send(recipient, subject, content, extra):
                    delivered += 1
            except Exception as e:
                logger.error(f"Notification via {channel.get_channel_type()} failed: {e}", exc_info=True)
        return delivered

    def clear(self) -> None:
        """清除所有渠道（用于测试）"""
        with self._lock:
            self._channels.clear()
