"""
预订服务 - 预订事务管理
"检查库存 → 创建预订" 作为一个隔离的原子单元执行：
同房型的并发预订在库存锁内串行，最后一间房不会被两个请求同时拿到
"""
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Callable, Iterable, List, Optional, Tuple, Union
import logging
import math
import uuid

from sqlalchemy.orm import Session

from hms.config import settings
from hms.database import transactional
from hms.errors import InvalidAmount, InvalidTransition, NoAvailability, NotFound
from hms.models.events import EventType, BookingEventData
from hms.models.ontology import (
    Booking, BookingExtra, BookingSource, BookingStatus, Guest, RoomType
)
from hms.services.availability_service import (
    AvailabilityService, align_range, capacity_statuses, validate_range
)
from hms.services.catalog import InventoryCatalog, ServiceCatalog
from hms.services.event_bus import Event, event_bus, safe_publish
from hms.services.invoice_service import round_money
from hms.services.locks import booking_key, inventory_key, lock_manager

logger = logging.getLogger(__name__)

ONE_DAY = timedelta(days=1)

DateLike = Union[date, datetime]

# 可改期的预订状态
RESCHEDULABLE_STATUSES = (BookingStatus.REQUESTED, BookingStatus.APPROVED, BookingStatus.CONFIRMED)


@dataclass
class ExtraRequest:
    """申请时的附加服务（unit_price 为空时取目录价）"""
    service_id: int
    quantity: int = 1
    unit_price: Optional[Decimal] = None


def compute_nights(start: DateLike, end: DateLike) -> int:
    """
    计算间夜数：ceil((end - start) / 1 天)，不足 24 小时按 1 晚计
    """
    delta = end - start
    nights = math.ceil(delta.total_seconds() / ONE_DAY.total_seconds())
    return max(1, nights)


def normalize_stay_range(start: DateLike, end: DateLike) -> Tuple[date, date, int]:
    """
    把请求区间规整为整晚日期区间，返回 (入住日期, 离店日期, 间夜数)
    带时间的区间按间夜数向后推算离店日期
    """
    validate_range(start, end)
    start, end = align_range(start, end)
    nights = compute_nights(start, end)
    if isinstance(start, datetime):
        start = start.date()
    return start, start + timedelta(days=nights), nights


def compute_total_amount(nights: int, base_price: Decimal,
                         extras: Iterable[BookingExtra]) -> Decimal:
    """预估总价 = 间夜数 × 房型基础价 + Σ(数量 × 单价)"""
    total = Decimal(nights) * Decimal(base_price)
    for extra in extras:
        total += Decimal(extra.quantity) * Decimal(extra.unit_price)
    return total


def booking_event(booking: Booking, event_type: EventType, source: str) -> Event:
    """构造预订状态事件"""
    return Event(
        event_type=event_type,
        timestamp=datetime.now(),
        data=BookingEventData(
            booking_id=booking.id,
            booking_no=booking.booking_no,
            guest_id=booking.guest_id,
            room_type_id=booking.room_type_id,
            check_in_date=str(booking.check_in_date),
            check_out_date=str(booking.check_out_date),
            status=booking.status.value,
            total_amount=float(booking.total_amount),
            cancel_reason=booking.cancel_reason,
        ).to_dict(),
        source=source,
    )


class ReservationService:
    """预订服务"""

    def __init__(self, db: Session, event_publisher: Callable[[Event], None] = None,
                 requested_holds: Optional[bool] = None):
        self.db = db
        self.catalog = InventoryCatalog(db)
        self.services = ServiceCatalog(db)
        self.availability = AvailabilityService(db, self.catalog, requested_holds)
        self.requested_holds = requested_holds
        # 支持依赖注入事件发布器，便于测试
        self._publish_event = event_publisher or event_bus.publish

    def _generate_booking_no(self) -> str:
        """生成预订号：BK + 日期 + 随机串"""
        return f"BK{datetime.now().strftime('%Y%m%d')}{uuid.uuid4().hex[:8].upper()}"

    # ============== 查询 ==============

    def find_booking(self, booking_id: int) -> Optional[Booking]:
        return self.db.query(Booking).filter(Booking.id == booking_id).first()

    def get_booking(self, booking_id: int) -> Booking:
        booking = self.find_booking(booking_id)
        if not booking:
            raise NotFound("预订不存在", {"booking_id": booking_id})
        return booking

    def list_bookings(self, status: Optional[BookingStatus] = None,
                      guest_id: Optional[int] = None,
                      room_type_id: Optional[int] = None,
                      offset: int = 0, limit: int = 50) -> List[Booking]:
        """获取预订列表（按入住日期倒序）"""
        query = self.db.query(Booking)

        if status:
            query = query.filter(Booking.status == status)
        if guest_id:
            query = query.filter(Booking.guest_id == guest_id)
        if room_type_id:
            query = query.filter(Booking.room_type_id == room_type_id)

        return query.order_by(Booking.check_in_date.desc(), Booking.id.desc()) \
            .offset(offset).limit(limit).all()

    def get_today_arrivals(self, today: Optional[date] = None) -> List[Booking]:
        """获取今日预抵（已确认、今天入住）"""
        today = today or date.today()
        return self.db.query(Booking).filter(
            Booking.check_in_date == today,
            Booking.status == BookingStatus.CONFIRMED
        ).order_by(Booking.id).all()

    # ============== 预订 ==============

    def reserve(self, room_type_id: int, start: DateLike, end: DateLike, guest_id: int,
                extras: Optional[Iterable[Union[ExtraRequest, dict]]] = None,
                guest_count: int = 1,
                source: Union[BookingSource, str] = BookingSource.DIRECT) -> Booking:
        """
        创建预订（原子操作）

        业务规则：
        - 直订（direct）立即确认；前台代订（staff）为 requested，待审批
        - 占用库存的预订必须在库存锁内重新计数，reserved < total 才插入
        - 总价 = 间夜数 × 基础价 + 附加服务

        Raises:
            InvalidRange: 日期区间非法
            InvalidAmount: 人数或服务数量非法
            NotFound: 房型/客人/服务不存在
            NoAvailability: 库存已满或人数超过房型容量
        """
        check_in, check_out, nights = normalize_stay_range(start, end)
        if guest_count < 1:
            raise InvalidAmount("入住人数至少为 1", {"guest_count": guest_count})
        source = BookingSource(source)
        status = BookingStatus.CONFIRMED if source == BookingSource.DIRECT else BookingStatus.REQUESTED

        with lock_manager.hold(inventory_key(room_type_id)):
            with transactional(self.db):
                room_type = self.catalog.get_room_type(room_type_id, for_update=True)
                if not self.db.query(Guest).filter(Guest.id == guest_id).first():
                    raise NotFound("客人不存在", {"guest_id": guest_id})
                if guest_count > (room_type.capacity or 0):
                    raise NoAvailability(
                        f"{room_type.name}最多入住 {room_type.capacity} 人",
                        {"reason": "capacity", "room_type_id": room_type_id},
                    )

                extra_rows = self._build_extras(extras or [])

                if status in capacity_statuses(self.requested_holds):
                    self.ensure_capacity(room_type, check_in, check_out)

                booking = Booking(
                    booking_no=self._generate_booking_no(),
                    guest_id=guest_id,
                    room_type_id=room_type_id,
                    check_in_date=check_in,
                    check_out_date=check_out,
                    guest_count=guest_count,
                    nights=nights,
                    total_amount=compute_total_amount(nights, room_type.base_price, extra_rows),
                    currency=settings.DEFAULT_CURRENCY,
                    status=status,
                    source=source,
                    extras=extra_rows,
                )
                self.db.add(booking)
                self.db.flush()

        self.db.refresh(booking)
        logger.info(
            f"Booking {booking.booking_no} created for room type {room_type_id} "
            f"[{check_in}, {check_out}) status={status.value}"
        )

        event_type = EventType.BOOKING_CONFIRMED if status == BookingStatus.CONFIRMED \
            else EventType.BOOKING_REQUESTED
        safe_publish(self._publish_event, booking_event(booking, event_type, "reservation_service"))
        return booking

    def ensure_capacity(self, room_type: RoomType, check_in: date, check_out: date,
                         exclude_booking_id: Optional[int] = None) -> None:
        """在锁内重新计数，库存已满时抛出 NoAvailability"""
        result = self.availability.availability(room_type.id, check_in, check_out, exclude_booking_id)
        if result.reserved_count >= result.total_rooms:
            raise NoAvailability(
                f"{room_type.name}在所选日期已无空房",
                {
                    "room_type_id": room_type.id,
                    "total_rooms": result.total_rooms,
                    "reserved_count": result.reserved_count,
                },
            )

    def _build_extras(self, extras: Iterable[Union[ExtraRequest, dict]],
                      start_position: int = 0) -> List[BookingExtra]:
        """解析附加服务申请，快照单价"""
        rows = []
        for position, item in enumerate(extras, start=start_position):
            if isinstance(item, dict):
                item = ExtraRequest(**item)
            if item.quantity is None or item.quantity < 1:
                raise InvalidAmount("服务数量至少为 1", {"service_id": item.service_id})
            service = self.services.get_service(item.service_id, active_only=True)
            try:
                unit_price = service.price if item.unit_price is None else Decimal(str(item.unit_price))
            except InvalidOperation as e:
                raise InvalidAmount("服务单价格式错误", {"service_id": item.service_id}) from e
            if not unit_price.is_finite() or unit_price < 0:
                raise InvalidAmount("服务单价不能为负", {"service_id": item.service_id})
            unit_price = round_money(unit_price)
            rows.append(BookingExtra(
                service_id=service.id,
                quantity=item.quantity,
                unit_price=unit_price,
                position=position,
            ))
        return rows

    # ============== 附加服务 ==============

    def add_service(self, booking_id: int, service_id: int, quantity: int = 1) -> Booking:
        """
        为预订添加附加服务
        已取消/已退房的预订不可添加；未冻结的发票随之重算
        """
        with lock_manager.hold(booking_key(booking_id)):
            with transactional(self.db):
                booking = self.get_booking(booking_id)
                self._ensure_editable(booking)

                position = max((e.position for e in booking.extras), default=-1) + 1
                booking.extras.extend(self._build_extras(
                    [ExtraRequest(service_id=service_id, quantity=quantity)], position
                ))
                self._recompute(booking)

        self.db.refresh(booking)
        logger.info(f"Service {service_id} x{quantity} added to booking {booking.booking_no}")
        return booking

    def remove_service(self, booking_id: int, extra_id: int) -> Booking:
        """移除预订的附加服务明细"""
        with lock_manager.hold(booking_key(booking_id)):
            with transactional(self.db):
                booking = self.get_booking(booking_id)
                self._ensure_editable(booking)

                extra = next((e for e in booking.extras if e.id == extra_id), None)
                if extra is None:
                    raise NotFound("服务明细不存在", {"booking_id": booking_id, "extra_id": extra_id})
                booking.extras.remove(extra)
                self._recompute(booking)

        self.db.refresh(booking)
        return booking

    # ============== 改期 ==============

    def reschedule(self, booking_id: int, start: DateLike, end: DateLike,
                   room_type_id: Optional[int] = None) -> Booking:
        """
        修改预订日期（可同时更换房型）

        业务规则：
        - 只有 requested/approved/confirmed 的预订可以改期
        - 占用库存的预订在库存锁内重新计数，计数时排除自身
        - 重算间夜数与预估总价，已存在的草稿发票随之刷新

        Raises:
            InvalidRange: 日期区间非法
            InvalidTransition: 已入住/已退房/已取消
            NotFound: 预订或房型不存在
            NoAvailability: 新日期已无空房或人数超过新房型容量
        """
        check_in, check_out, nights = normalize_stay_range(start, end)

        with lock_manager.hold(booking_key(booking_id)):
            target_type_id = room_type_id or self.get_booking(booking_id).room_type_id
            with lock_manager.hold(inventory_key(target_type_id)):
                with transactional(self.db):
                    booking = self.get_booking(booking_id)
                    if booking.status not in RESCHEDULABLE_STATUSES:
                        raise InvalidTransition(
                            "已入住、已退房或已取消的预订不能改期",
                            {"booking_id": booking.id, "status": booking.status.value},
                        )
                    room_type = self.catalog.get_room_type(target_type_id, for_update=True)
                    if booking.guest_count > (room_type.capacity or 0):
                        raise NoAvailability(
                            f"{room_type.name}最多入住 {room_type.capacity} 人",
                            {"reason": "capacity", "room_type_id": room_type.id},
                        )
                    if booking.status in capacity_statuses(self.requested_holds):
                        self.ensure_capacity(room_type, check_in, check_out, exclude_booking_id=booking.id)

                    booking.room_type_id = room_type.id
                    booking.check_in_date = check_in
                    booking.check_out_date = check_out
                    booking.nights = nights
                    self._recompute(booking)

        self.db.refresh(booking)
        logger.info(
            f"Booking {booking.booking_no} rescheduled to room type {booking.room_type_id} "
            f"[{check_in}, {check_out})"
        )
        safe_publish(self._publish_event,
                     booking_event(booking, EventType.BOOKING_RESCHEDULED, "reservation_service"))
        return booking

    def _ensure_editable(self, booking: Booking) -> None:
        if booking.status in (BookingStatus.CANCELLED, BookingStatus.CHECKED_OUT):
            raise InvalidTransition(
                "已取消或已退房的预订不能修改附加服务",
                {"booking_id": booking.id, "status": booking.status.value},
            )

    def _recompute(self, booking: Booking) -> None:
        """重算预估总价，并刷新未冻结的发票（不提交）"""
        from hms.services.invoice_service import InvoiceService

        room_type = self.catalog.get_room_type(booking.room_type_id)
        booking.total_amount = compute_total_amount(booking.nights, room_type.base_price, booking.extras)
        self.db.flush()
        InvoiceService(self.db, event_publisher=self._publish_event).refresh_if_open(booking)

    # ============== 详情 ==============

    def get_booking_detail(self, booking_id: int) -> dict:
        """获取预订详情（包含附加服务）"""
        booking = self.get_booking(booking_id)
        return {
            'id': booking.id,
            'booking_no': booking.booking_no,
            'guest_id': booking.guest_id,
            'room_type_id': booking.room_type_id,
            'allocated_room_id': booking.allocated_room_id,
            'check_in_date': booking.check_in_date,
            'check_out_date': booking.check_out_date,
            'guest_count': booking.guest_count,
            'nights': booking.nights,
            'total_amount': booking.total_amount,
            'currency': booking.currency,
            'status': booking.status,
            'source': booking.source,
            'cancel_reason': booking.cancel_reason,
            'extras': [
                {
                    'id': e.id,
                    'service_id': e.service_id,
                    'quantity': e.quantity,
                    'unit_price': e.unit_price,
                }
                for e in booking.extras
            ],
            'created_at': booking.created_at,
            'updated_at': booking.updated_at,
        }
