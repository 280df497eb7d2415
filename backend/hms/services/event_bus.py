"""
事件总线 - 进程内发布/订阅
业务事务提交后发布语义事件，通知等协作方订阅；
订阅方的失败只记录日志，不会回传给业务操作
"""
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional, Union
from enum import Enum
import logging
import threading
import uuid

from hms.config import settings

logger = logging.getLogger(__name__)

EventKey = Union[str, Enum]
Handler = Callable[["Event"], None]


def _key(event_type: EventKey) -> str:
    """订阅表统一使用字符串键，EventType 与其取值等价"""
    return event_type.value if isinstance(event_type, Enum) else str(event_type)


@dataclass
class Event:
    """
    语义事件

    Attributes:
        event_type: 事件类型（EventType 或其取值）
        timestamp: 发生时间
        data: 事件负载（实体 ID 等，已转为可序列化的字典）
        source: 发布方服务名
    """
    event_type: EventKey
    timestamp: datetime
    data: Dict[str, Any]
    source: str
    event_id: str = field(default_factory=lambda: uuid.uuid4().hex)


class EventBus:
    """
    线程安全的事件总线单例

        event_bus.subscribe(EventType.CHECKED_IN, handler)
        event_bus.publish(Event(...))
    """

    _instance = None
    _lock = threading.Lock()

    def __new__(cls):
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return
        self._subscribers: Dict[str, List[Handler]] = {}
        self._history: Deque[Event] = deque(maxlen=settings.EVENT_HISTORY_SIZE)
        self._subscriber_lock = threading.Lock()
        self._initialized = True
        logger.info("EventBus initialized")

    def subscribe(self, event_type: EventKey, handler: Handler) -> None:
        """订阅事件；同一处理器重复订阅只登记一次"""
        key = _key(event_type)
        with self._subscriber_lock:
            handlers = self._subscribers.setdefault(key, [])
            if handler not in handlers:
                handlers.append(handler)
                logger.info(f"Handler {handler.__name__} subscribed to {key}")

    def subscribe_all(self, event_types: Iterable[EventKey], handler: Handler) -> None:
        for event_type in event_types:
            self.subscribe(event_type, handler)

    def unsubscribe(self, event_type: EventKey, handler: Handler) -> None:
        key = _key(event_type)
        with self._subscriber_lock:
            handlers = self._subscribers.get(key, [])
            if handler in handlers:
                handlers.remove(handler)
                logger.info(f"Handler {handler.__name__} unsubscribed from {key}")

    def unsubscribe_all(self, event_types: Iterable[EventKey], handler: Handler) -> None:
        for event_type in event_types:
            self.unsubscribe(event_type, handler)

    def publish(self, event: Event) -> int:
        """
        同步调用所有订阅方

        Returns:
            成功处理的订阅方数量；单个处理器异常不影响其他处理器
        """
        key = _key(event.event_type)
        self._history.append(event)

        with self._subscriber_lock:
            handlers = list(self._subscribers.get(key, ()))

        delivered = 0
        for handler in handlers:
            try:
                handler(event)
                delivered += 1
            except Exception as e:
                logger.error(f"Event handler {handler.__name__} failed on {key}: {e}", exc_info=True)

        if handlers:
            logger.debug(f"Event {key} delivered to {delivered}/{len(handlers)} handlers")
        return delivered

    def get_history(self, event_type: Optional[EventKey] = None, limit: int = 50,
                    booking_id: Optional[int] = None) -> List[Event]:
        """最近发布的事件（最新在前），可按类型或预订过滤，用于排查"""
        events = reversed(self._history)
        if event_type is not None:
            key = _key(event_type)
            events = (e for e in events if _key(e.event_type) == key)
        if booking_id is not None:
            events = (e for e in events if e.data.get("booking_id") == booking_id)
        return list(events)[:limit]

    def get_subscribers(self, event_type: Optional[EventKey] = None) -> Dict[str, List[str]]:
        """事件类型 -> 处理器名称"""
        with self._subscriber_lock:
            if event_type is not None:
                key = _key(event_type)
                return {key: [h.__name__ for h in self._subscribers.get(key, [])]}
            return {key: [h.__name__ for h in handlers] for key, handlers in self._subscribers.items()}

    def clear_subscribers(self) -> None:
        """清空订阅（用于测试）"""
        with self._subscriber_lock:
            self._subscribers.clear()

    def clear_history(self) -> None:
        self._history.clear()


# 全局事件总线实例
event_bus = EventBus()


def safe_publish(publisher: Callable[[Event], Any], event: Event) -> None:
    """
    事务提交后发布事件
    发布器本身抛出的异常只记录，业务结果已经生效
    """
    try:
        publisher(event)
    except Exception as e:
        logger.error(f"Failed to publish {_key(event.event_type)} from {event.source}: {e}", exc_info=True)
