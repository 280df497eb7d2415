"""
预订生命周期服务
requested → approved → confirmed → checked_in → checked_out
requested / approved / confirmed → cancelled
每次转换都持有预订锁，并依赖 Booking.version 拒绝并发的过期写入
"""
from datetime import datetime
from typing import Callable, List, Optional
import logging

from sqlalchemy.orm import Session

from hms.database import transactional
from hms.engine import StateMachine, StateMachineConfig, StateTransition
from hms.models.events import EventType
from hms.models.ontology import Booking, BookingStatus, Stay
from hms.services.event_bus import Event, event_bus, safe_publish
from hms.services.locks import booking_key, inventory_key, lock_manager
from hms.services.reservation_service import ReservationService, booking_event

logger = logging.getLogger(__name__)


BOOKING_STATE_MACHINE = StateMachine(StateMachineConfig(
    name="预订",
    states=[s.value for s in BookingStatus],
    transitions=[
        StateTransition(BookingStatus.REQUESTED.value, BookingStatus.APPROVED.value, "approve"),
        StateTransition(BookingStatus.APPROVED.value, BookingStatus.CONFIRMED.value, "confirm"),
        StateTransition(BookingStatus.CONFIRMED.value, BookingStatus.CHECKED_IN.value, "check_in"),
        StateTransition(BookingStatus.CHECKED_IN.value, BookingStatus.CHECKED_OUT.value, "check_out"),
        StateTransition(BookingStatus.REQUESTED.value, BookingStatus.CANCELLED.value, "cancel"),
        StateTransition(BookingStatus.APPROVED.value, BookingStatus.CANCELLED.value, "cancel"),
        StateTransition(BookingStatus.CONFIRMED.value, BookingStatus.CANCELLED.value, "cancel"),
    ],
    initial_state=BookingStatus.REQUESTED.value,
    final_states=[BookingStatus.CHECKED_OUT.value, BookingStatus.CANCELLED.value],
))


def fire(booking: Booking, trigger: str) -> BookingStatus:
    """对预订执行触发动作，返回新状态（不写回）"""
    new_state = BOOKING_STATE_MACHINE.fire(
        booking.status.value, trigger, {"booking_id": booking.id}
    )
    return BookingStatus(new_state)


class BookingLifecycleService:
    """预订生命周期服务"""

    def __init__(self, db: Session, event_publisher: Callable[[Event], None] = None,
                 requested_holds: Optional[bool] = None):
        self.db = db
        self._publish_event = event_publisher or event_bus.publish
        self.reservations = ReservationService(db, self._publish_event, requested_holds)

    def _publish(self, booking: Booking, event_type: EventType) -> None:
        safe_publish(self._publish_event, booking_event(booking, event_type, "booking_lifecycle"))

    def allowed_actions(self, booking: Booking) -> List[str]:
        """当前状态下可执行的动作"""
        return BOOKING_STATE_MACHINE.allowed_triggers(booking.status.value)

    def approve(self, booking_id: int) -> Booking:
        """
        审批预订（requested → approved）
        审批后开始占用库存，因此在库存锁内排除自身重新计数

        Raises:
            NotFound: 预订不存在
            InvalidTransition: 预订不是 requested
            NoAvailability: 库存已满
        """
        with lock_manager.hold(booking_key(booking_id)):
            room_type_id = self.reservations.get_booking(booking_id).room_type_id
            with lock_manager.hold(inventory_key(room_type_id)):
                with transactional(self.db):
                    booking = self.reservations.get_booking(booking_id)
                    new_status = fire(booking, "approve")
                    room_type = self.reservations.catalog.get_room_type(room_type_id, for_update=True)
                    self.reservations.ensure_capacity(
                        room_type, booking.check_in_date, booking.check_out_date,
                        exclude_booking_id=booking.id,
                    )
                    booking.status = new_status

        self.db.refresh(booking)
        logger.info(f"Booking {booking.booking_no} approved")
        self._publish(booking, EventType.BOOKING_APPROVED)
        return booking

    def confirm(self, booking_id: int) -> Booking:
        """确认预订（approved → confirmed）"""
        with lock_manager.hold(booking_key(booking_id)):
            with transactional(self.db):
                booking = self.reservations.get_booking(booking_id)
                booking.status = fire(booking, "confirm")

        self.db.refresh(booking)
        logger.info(f"Booking {booking.booking_no} confirmed")
        self._publish(booking, EventType.BOOKING_CONFIRMED)
        return booking

    def cancel(self, booking_id: int, reason: Optional[str] = None) -> Booking:
        """
        取消预订
        已取消的预订重复取消直接返回，不再发布事件；
        取消后该预订立即不再计入库存

        Raises:
            NotFound: 预订不存在
            InvalidTransition: 已入住/已退房
        """
        with lock_manager.hold(booking_key(booking_id)):
            with transactional(self.db):
                booking = self.reservations.get_booking(booking_id)
                if booking.status == BookingStatus.CANCELLED:
                    return booking
                booking.status = fire(booking, "cancel")
                booking.cancel_reason = reason

        self.db.refresh(booking)
        logger.info(f"Booking {booking.booking_no} cancelled, reason: {reason}")
        self._publish(booking, EventType.BOOKING_CANCELLED)
        return booking

    def check_in(self, booking_id: int, room_id: Optional[int] = None,
                 staff_id: Optional[int] = None, now: Optional[datetime] = None,
                 walk_in: bool = False) -> Stay:
        """办理入住（confirmed → checked_in），由住宿服务完成"""
        from hms.services.stay_service import StayService
        return StayService(self.db, event_publisher=self._publish_event).check_in(
            booking_id, room_id=room_id, staff_id=staff_id, now=now, walk_in=walk_in
        )

    def check_out(self, booking_id: int, now: Optional[datetime] = None) -> Stay:
        """办理退房（checked_in → checked_out），由住宿服务完成"""
        from hms.services.stay_service import StayService
        return StayService(self.db, event_publisher=self._publish_event).check_out(booking_id, now=now)
