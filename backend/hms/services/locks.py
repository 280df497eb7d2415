"""
资源锁管理 - 进程内的按键互斥锁
用于包住"先查后写"序列：
- inventory:<room_type_id>  预订/审批时的计数 + 插入
- booking:<booking_id>      单个预订的状态转换
- invoice:<invoice_id>      同一发票的支付入账

跨进程部署时，由数据库行锁（SELECT ... FOR UPDATE）和 Booking.version 乐观锁兜底
"""
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional
import logging
import threading

from hms.config import settings
from hms.errors import Unavailable

logger = logging.getLogger(__name__)


class ResourceLockManager:
    """
    按键分配的锁注册表（线程安全单例模式）

    使用方式：
        with lock_manager.hold(inventory_key(room_type_id)):
            ...  # 计数 + 插入
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
        # key -> [锁, 持有或等待的线程数]
        self._locks: Dict[str, List] = {}
        self._registry_lock = threading.Lock()
        self._initialized = True

    def _checkout(self, key: str) -> threading.Lock:
        with self._registry_lock:
            entry = self._locks.get(key)
            if entry is None:
                entry = [threading.Lock(), 0]
                self._locks[key] = entry
            entry[1] += 1
            return entry[0]

    def _checkin(self, key: str) -> None:
        """没有线程再使用的键从注册表移除"""
        with self._registry_lock:
            entry = self._locks.get(key)
            if entry is None:
                return
            entry[1] -= 1
            if entry[1] <= 0:
                del self._locks[key]

    @contextmanager
    def hold(self, key: str, timeout: Optional[float] = None) -> Iterator[None]:
        """
        持有指定键的锁直到 with 块结束

        Raises:
            Unavailable: 超时未获得锁
        """
        timeout = settings.LOCK_TIMEOUT_SECONDS if timeout is None else timeout
        lock = self._checkout(key)
        try:
            if not lock.acquire(timeout=timeout):
                logger.warning(f"Timed out after {timeout}s waiting for lock {key}")
                raise Unavailable("资源繁忙，请稍后重试", {"lock": key})
            try:
                yield
            finally:
                lock.release()
        finally:
            self._checkin(key)

    def is_locked(self, key: str) -> bool:
        """查看某个键当前是否被持有（用于调试）"""
        with self._registry_lock:
            entry = self._locks.get(key)
        return entry is not None and entry[0].locked()

    def active_keys(self) -> List[str]:
        """当前被持有或等待中的键"""
        with self._registry_lock:
            return list(self._locks)

    def clear(self) -> None:
        """清空锁注册表（用于测试）"""
        with self._registry_lock:
            self._locks.clear()


def inventory_key(room_type_id: int) -> str:
    return f"inventory:{room_type_id}"


def booking_key(booking_id: int) -> str:
    return f"booking:{booking_id}"


def invoice_key(invoice_id: int) -> str:
    return f"invoice:{invoice_id}"


# 全局锁管理器实例
lock_manager = ResourceLockManager()
