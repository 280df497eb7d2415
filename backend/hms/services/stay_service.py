"""
住宿服务 - 入住/退房
管理 Stay 对象（住宿期间的聚合根）
入住：分配实体房间、创建住宿记录、生成草稿发票
退房：释放房间、冻结最终发票
"""
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Callable, List, Optional
import logging

from sqlalchemy.orm import Session

from hms.config import settings
from hms.database import transactional
from hms.errors import InvalidAmount, InvalidTransition, NoRoomAvailable, NotFound
from hms.models.events import EventType, StayEventData
from hms.models.ontology import (
    Booking, Room, RoomStatus, Stay, StayCharge, StayStatus
)
from hms.services.booking_lifecycle import fire
from hms.services.catalog import InventoryCatalog
from hms.services.event_bus import Event, event_bus, safe_publish
from hms.services.invoice_service import InvoiceService, round_money, round_rate
from hms.services.locks import booking_key, inventory_key, lock_manager

logger = logging.getLogger(__name__)


class StayService:
    """住宿服务"""

    def __init__(self, db: Session, event_publisher: Callable[[Event], None] = None):
        self.db = db
        self.catalog = InventoryCatalog(db)
        self._publish_event = event_publisher or event_bus.publish
        self.invoices = InvoiceService(db, event_publisher=self._publish_event)

    # ============== 查询 ==============

    def _get_booking(self, booking_id: int) -> Booking:
        booking = self.db.query(Booking).filter(Booking.id == booking_id).first()
        if not booking:
            raise NotFound("预订不存在", {"booking_id": booking_id})
        return booking

    def get_stay(self, stay_id: int) -> Stay:
        stay = self.db.query(Stay).filter(Stay.id == stay_id).first()
        if not stay:
            raise NotFound("住宿记录不存在", {"stay_id": stay_id})
        return stay

    def find_stay_by_booking(self, booking_id: int) -> Optional[Stay]:
        return self.db.query(Stay).filter(Stay.booking_id == booking_id).first()

    def get_stay_by_booking(self, booking_id: int) -> Stay:
        stay = self.find_stay_by_booking(booking_id)
        if not stay:
            raise NotFound("该预订没有住宿记录", {"booking_id": booking_id})
        return stay

    def get_active_stays(self) -> List[Stay]:
        """获取所有在住记录"""
        return self.db.query(Stay).filter(
            Stay.status == StayStatus.ACTIVE
        ).order_by(Stay.id).all()

    # ============== 入住 ==============

    def _check_dates(self, booking: Booking, now: datetime, walk_in: bool) -> None:
        today = now.date()
        earliest = booking.check_in_date - timedelta(days=settings.EARLY_CHECKIN_DAYS)
        if today < earliest and not (settings.ALLOW_EARLY_CHECKIN or walk_in):
            raise InvalidTransition(
                f"未到入住日期 {booking.check_in_date}",
                {"booking_id": booking.id, "today": today.isoformat()},
            )
        if today >= booking.check_out_date:
            raise InvalidTransition(
                f"已过离店日期 {booking.check_out_date}",
                {"booking_id": booking.id, "today": today.isoformat()},
            )

    def _pick_room(self, booking: Booking, room_id: Optional[int]) -> Room:
        if room_id is None:
            room = self.catalog.list_available_room(booking.room_type_id)
            if room is None:
                raise NoRoomAvailable("没有可分配的空闲房间", {"room_type_id": booking.room_type_id})
            return room

        room = self.db.query(Room).filter(Room.id == room_id).with_for_update().first()
        if not room:
            raise NotFound("房间不存在", {"room_id": room_id})
        if room.room_type_id != booking.room_type_id:
            raise NoRoomAvailable(
                f"房间 {room.room_number} 的房型与预订不符",
                {"room_id": room_id, "room_type_id": booking.room_type_id},
            )
        if room.status != RoomStatus.AVAILABLE:
            raise NoRoomAvailable(
                f"房间 {room.room_number} 状态为 {room.status.value}，无法入住",
                {"room_id": room_id, "status": room.status.value},
            )
        return room

    def check_in(self, booking_id: int, room_id: Optional[int] = None,
                 staff_id: Optional[int] = None, now: Optional[datetime] = None,
                 walk_in: bool = False) -> Stay:
        """
        办理入住

        业务规则：
        - 预订必须为 confirmed
        - 不早于入住日期（可配置提前天数；walk_in 放宽），且早于离店日期
        - 指定房间时必须同房型且空闲，否则自动分配
        - 房间置为入住中，创建住宿记录与草稿发票

        Raises:
            NotFound: 预订或房间不存在
            InvalidTransition: 状态或日期不满足
            NoRoomAvailable: 没有可用房间
        """
        now = now or datetime.now()

        with lock_manager.hold(booking_key(booking_id)):
            room_type_id = self._get_booking(booking_id).room_type_id
            # 同房型的房间分配串行，避免两笔入住拿到同一间房
            with lock_manager.hold(inventory_key(room_type_id)):
                with transactional(self.db):
                    booking = self._get_booking(booking_id)
                    new_status = fire(booking, "check_in")
                    self._check_dates(booking, now, walk_in)
                    room = self._pick_room(booking, room_id)

                    room.status = RoomStatus.OCCUPIED
                    stay = Stay(
                        booking_id=booking.id,
                        room_id=room.id,
                        staff_id=staff_id,
                        actual_check_in=now,
                        status=StayStatus.ACTIVE,
                    )
                    self.db.add(stay)
                    booking.allocated_room_id = room.id
                    booking.status = new_status
                    self.db.flush()

                    invoice = self.invoices.upsert_for(booking)

        self.db.refresh(stay)
        logger.info(f"Booking {booking.booking_no} checked in to room {room.room_number}")

        safe_publish(self._publish_event, Event(
            event_type=EventType.CHECKED_IN,
            timestamp=datetime.now(),
            data=StayEventData(
                stay_id=stay.id,
                booking_id=booking.id,
                guest_id=booking.guest_id,
                room_id=room.id,
                room_number=room.room_number,
                staff_id=staff_id,
                check_in_time=stay.actual_check_in,
                invoice_id=invoice.id,
            ).to_dict(),
            source="stay_service",
        ))
        return stay

    # ============== 退房 ==============

    def check_out(self, booking_id: int, now: Optional[datetime] = None) -> Stay:
        """
        办理退房

        住宿必须在住；房间释放为空闲，预订变为 checked_out，
        发票按最终数据（含杂费）重算后冻结

        Raises:
            NotFound: 预订不存在
            InvalidTransition: 预订未入住或住宿已结束
        """
        now = now or datetime.now()

        with lock_manager.hold(booking_key(booking_id)):
            with transactional(self.db):
                booking = self._get_booking(booking_id)
                stay = self.find_stay_by_booking(booking_id)
                if stay is None or stay.status != StayStatus.ACTIVE:
                    raise InvalidTransition(
                        "该预订没有在住记录，无法退房",
                        {"booking_id": booking_id, "status": booking.status.value},
                    )
                new_status = fire(booking, "check_out")

                stay.actual_check_out = now
                stay.status = StayStatus.COMPLETED
                room = self.catalog.get_room(stay.room_id)
                room.status = RoomStatus.AVAILABLE
                booking.status = new_status
                self.db.flush()

                invoice = self.invoices.finalize_for(booking)

        self.db.refresh(stay)
        self.db.refresh(invoice)
        logger.info(f"Booking {booking.booking_no} checked out of room {room.room_number}")

        safe_publish(self._publish_event, Event(
            event_type=EventType.CHECKED_OUT,
            timestamp=datetime.now(),
            data=StayEventData(
                stay_id=stay.id,
                booking_id=booking.id,
                guest_id=booking.guest_id,
                room_id=room.id,
                room_number=room.room_number,
                staff_id=stay.staff_id,
                check_in_time=stay.actual_check_in,
                check_out_time=stay.actual_check_out,
                invoice_id=invoice.id,
            ).to_dict(),
            source="stay_service",
        ))
        self.invoices.publish_finalized(invoice)
        return stay

    # ============== 住宿期间 ==============

    def add_charge(self, stay_id: int, description: str, unit_price,
                   quantity: int = 1, tax_rate: Optional[Decimal] = None) -> StayCharge:
        """
        记录住宿期间杂费（迷你吧、损耗等），并刷新草稿发票

        Raises:
            NotFound: 住宿记录不存在
            InvalidAmount: 数量/单价/税率非法
            InvalidTransition: 住宿已结束
        """
        if not description:
            raise InvalidAmount("杂费必须填写说明")
        if quantity is None or quantity < 1:
            raise InvalidAmount("杂费数量至少为 1", {"quantity": quantity})
        try:
            price = Decimal(str(unit_price))
            rate = settings.DEFAULT_TAX_RATE if tax_rate is None else Decimal(str(tax_rate))
        except InvalidOperation as e:
            raise InvalidAmount("杂费金额格式错误", {"unit_price": str(unit_price)}) from e
        if not price.is_finite() or price < 0:
            raise InvalidAmount("杂费单价不能为负", {"unit_price": str(unit_price)})
        if not rate.is_finite() or rate < 0:
            raise InvalidAmount("税率不能为负", {"tax_rate": str(tax_rate)})
        # 按列精度取整后再参与计算，重算发票时结果一致
        price = round_money(price)
        rate = round_rate(rate)

        booking_id = self.get_stay(stay_id).booking_id
        with lock_manager.hold(booking_key(booking_id)):
            with transactional(self.db):
                stay = self.get_stay(stay_id)
                if stay.status != StayStatus.ACTIVE:
                    raise InvalidTransition(
                        "住宿已结束，不能再记录杂费",
                        {"stay_id": stay_id, "status": stay.status.value},
                    )
                charge = StayCharge(
                    description=description,
                    quantity=quantity,
                    unit_price=price,
                    tax_rate=rate,
                )
                stay.charges.append(charge)
                self.db.flush()
                self.invoices.refresh_if_open(self._get_booking(booking_id))

        self.db.refresh(charge)
        logger.info(f"Charge '{description}' x{quantity} added to stay {stay_id}")
        return charge

    def mark_disputed(self, stay_id: int) -> Stay:
        """已结束的住宿标记为有争议（账单复核）"""
        with transactional(self.db):
            stay = self.get_stay(stay_id)
            if stay.status != StayStatus.COMPLETED:
                raise InvalidTransition(
                    "只有已退房的住宿可以标记争议",
                    {"stay_id": stay_id, "status": stay.status.value},
                )
            stay.status = StayStatus.DISPUTED

        self.db.refresh(stay)
        logger.warning(f"Stay {stay_id} marked as disputed")
        return stay
