"""
可用性服务 - 房型在日期区间内的库存计算
只读、无副作用，可并发重复调用
"""
from dataclasses import dataclass, asdict
from datetime import date, datetime
from typing import List, Optional, Sequence
from sqlalchemy.orm import Session
from hms.config import settings
from hms.errors import InvalidRange
from hms.models.ontology import Booking, BookingStatus, COMMITTED_STATUSES
from hms.services.catalog import InventoryCatalog


@dataclass(frozen=True)
class AvailabilityResult:
    """房型可用性"""
    room_type_id: int
    total_rooms: int
    reserved_count: int
    available_count: int

    def to_dict(self) -> dict:
        return asdict(self)


def align_range(start, end):
    """一端带时间、一端只有日期时，两端都按日期比较"""
    if isinstance(start, datetime) != isinstance(end, datetime):
        start = start.date() if isinstance(start, datetime) else start
        end = end.date() if isinstance(end, datetime) else end
    return start, end


def validate_range(start: date, end: date) -> None:
    """校验半开区间 [start, end)"""
    if start is None or end is None:
        raise InvalidRange("必须提供入住和离店日期")
    start, end = align_range(start, end)
    if start >= end:
        raise InvalidRange(
            "离店日期必须晚于入住日期",
            {"from": start.isoformat(), "to": end.isoformat()},
        )


def capacity_statuses(requested_holds: Optional[bool] = None) -> Sequence[BookingStatus]:
    """占用库存的预订状态集合"""
    if requested_holds is None:
        requested_holds = settings.REQUESTED_HOLDS_INVENTORY
    if requested_holds:
        return (BookingStatus.REQUESTED,) + COMMITTED_STATUSES
    return COMMITTED_STATUSES


class AvailabilityService:
    """可用性服务"""

    def __init__(self, db: Session, catalog: Optional[InventoryCatalog] = None,
                 requested_holds: Optional[bool] = None):
        self.db = db
        self.catalog = catalog or InventoryCatalog(db)
        self.requested_holds = requested_holds

    def count_reserved(self, room_type_id: int, start: date, end: date,
                       exclude_booking_id: Optional[int] = None) -> int:
        """
        统计与 [start, end) 重叠的占用库存预订数
        重叠条件：booking.from < end AND booking.to > start
        """
        query = self.db.query(Booking).filter(
            Booking.room_type_id == room_type_id,
            Booking.status.in_(capacity_statuses(self.requested_holds)),
            Booking.check_in_date < end,
            Booking.check_out_date > start,
        )
        if exclude_booking_id is not None:
            query = query.filter(Booking.id != exclude_booking_id)
        return query.count()

    def availability(self, room_type_id: int, start: date, end: date,
                     exclude_booking_id: Optional[int] = None) -> AvailabilityResult:
        """
        计算房型在区间内的可用数

        Raises:
            InvalidRange: start >= end
            NotFound: 房型不存在
        """
        validate_range(start, end)
        self.catalog.get_room_type(room_type_id)

        total = self.catalog.total_rooms(room_type_id)
        reserved = self.count_reserved(room_type_id, start, end, exclude_booking_id)
        return AvailabilityResult(
            room_type_id=room_type_id,
            total_rooms=total,
            reserved_count=reserved,
            available_count=max(0, total - reserved),
        )

    def is_room_type_available(self, room_type_id: int, start: date, end: date,
                               exclude_booking_id: Optional[int] = None) -> bool:
        """房型在区间内是否还有空余（exclude_booking_id 用于审批时排除自身）"""
        return self.availability(room_type_id, start, end, exclude_booking_id).available_count > 0

    def search(self, start: date, end: date, guest_count: int = 1) -> List[AvailabilityResult]:
        """客人查房：返回容量满足人数且仍有空余的房型"""
        validate_range(start, end)
        results = []
        for room_type in self.catalog.list_room_types():
            if (room_type.capacity or 0) < guest_count:
                continue
            result = self.availability(room_type.id, start, end)
            if result.available_count > 0:
                results.append(result)
        return results
