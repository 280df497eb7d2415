"""
领域事件定义 (Domain Events)
事件在事务提交后发布，通知投递失败不会回滚业务状态
"""
from enum import Enum
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Optional, Dict, Any


class EventType(str, Enum):
    """事件类型枚举"""
    # 预订相关
    BOOKING_REQUESTED = "booking.requested"
    BOOKING_APPROVED = "booking.approved"
    BOOKING_CONFIRMED = "booking.confirmed"
    BOOKING_CANCELLED = "booking.cancelled"
    BOOKING_RESCHEDULED = "booking.rescheduled"

    # 入住相关
    CHECKED_IN = "stay.checked_in"
    CHECKED_OUT = "stay.checked_out"

    # 账务相关
    INVOICE_FINALIZED = "invoice.finalized"
    PAYMENT_RECORDED = "payment.recorded"


# 需要对外通知的语义事件
NOTIFIABLE_EVENTS = (
    EventType.BOOKING_CONFIRMED,
    EventType.BOOKING_APPROVED,
    EventType.BOOKING_CANCELLED,
    EventType.BOOKING_RESCHEDULED,
    EventType.CHECKED_IN,
    EventType.CHECKED_OUT,
    EventType.PAYMENT_RECORDED,
)


@dataclass
class BaseEventData:
    """事件数据基类"""
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典"""
        result = asdict(self)
        # 处理 datetime 序列化
        for key, value in result.items():
            if isinstance(value, datetime):
                result[key] = value.isoformat()
        return result


@dataclass
class BookingEventData(BaseEventData):
    """预订状态变更事件数据"""
    booking_id: int = 0
    booking_no: str = ""
    guest_id: int = 0
    room_type_id: int = 0
    check_in_date: str = ""  # date as string
    check_out_date: str = ""  # date as string
    status: str = ""
    total_amount: float = 0.0
    cancel_reason: Optional[str] = None


@dataclass
class StayEventData(BaseEventData):
    """入住/退房事件数据"""
    stay_id: int = 0
    booking_id: int = 0
    guest_id: int = 0
    room_id: int = 0
    room_number: str = ""
    staff_id: Optional[int] = None
    check_in_time: Optional[datetime] = None
    check_out_time: Optional[datetime] = None
    invoice_id: Optional[int] = None


@dataclass
class InvoiceFinalizedData(BaseEventData):
    """发票冻结事件数据"""
    invoice_id: int = 0
    invoice_no: str = ""
    booking_id: Optional[int] = None
    stay_id: Optional[int] = None
    total: float = 0.0


@dataclass
class PaymentRecordedData(BaseEventData):
    """支付记录事件数据"""
    transaction_id: int = 0
    invoice_id: int = 0
    amount: float = 0.0
    method: str = ""
    status: str = ""
    total_paid: float = 0.0
    balance_due: float = 0.0
