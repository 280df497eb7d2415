"""
领域错误定义
所有失败都限定在单次操作内，不会影响进程；
只有 Unavailable 可由调用方重试（提交前不会暴露任何部分写入）
"""
from typing import Any, Dict, Optional


class ErrorType:
    """错误类别"""

    INVALID_RANGE = "invalid_range"
    NOT_FOUND = "not_found"
    NO_AVAILABILITY = "no_availability"
    NO_ROOM_AVAILABLE = "no_room_available"
    INVALID_TRANSITION = "invalid_transition"
    INVALID_AMOUNT = "invalid_amount"
    UNAVAILABLE = "unavailable"


class HotelError(Exception):
    """
    领域错误基类

    Attributes:
        error_type: 错误类别（ErrorType）
        message: 可读的错误信息
        context: 附加上下文（实体 ID 等）
    """

    error_type: str = ErrorType.UNAVAILABLE
    retryable: bool = False

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典（用于 API 响应）"""
        return {
            "error": self.error_type,
            "detail": self.message,
            "context": self.context,
        }


class InvalidRange(HotelError, ValueError):
    """日期区间非法（from >= to）"""
    error_type = ErrorType.INVALID_RANGE


class NotFound(HotelError):
    """引用的房型/房间/预订/发票不存在"""
    error_type = ErrorType.NOT_FOUND


class NoAvailability(HotelError):
    """预订或审批时房型库存已满"""
    error_type = ErrorType.NO_AVAILABILITY


class NoRoomAvailable(HotelError):
    """入住时没有可分配的实体房间"""
    error_type = ErrorType.NO_ROOM_AVAILABLE


class InvalidTransition(HotelError):
    """非法的生命周期状态转换"""
    error_type = ErrorType.INVALID_TRANSITION


class InvalidAmount(HotelError, ValueError):
    """金额或数量非法"""
    error_type = ErrorType.INVALID_AMOUNT


class Unavailable(HotelError):
    """存储/事务暂时失败，可安全重试"""
    error_type = ErrorType.UNAVAILABLE
    retryable = True


__all__ = [
    "ErrorType",
    "HotelError",
    "InvalidRange",
    "NotFound",
    "NoAvailability",
    "NoRoomAvailable",
    "InvalidTransition",
    "InvalidAmount",
    "Unavailable",
]
