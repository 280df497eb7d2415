"""
预订管理路由
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from hms.database import get_db
from hms.models.ontology import BookingStatus
from hms.models.schemas import (
    BookingCreate, BookingCancel, BookingReschedule, BookingResponse, ServiceAdd
)
from hms.services.booking_lifecycle import BookingLifecycleService
from hms.services.reservation_service import ReservationService

router = APIRouter(prefix="/bookings", tags=["预订管理"])


def _response(db: Session, booking_id: int) -> BookingResponse:
    service = ReservationService(db)
    detail = service.get_booking_detail(booking_id)
    actions = BookingLifecycleService(db).allowed_actions(service.get_booking(booking_id))
    return BookingResponse(**detail, allowed_actions=actions)


@router.get("", response_model=List[BookingResponse])
def list_bookings(
    status: Optional[BookingStatus] = None,
    guest_id: Optional[int] = None,
    room_type_id: Optional[int] = None,
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db)
):
    """获取预订列表"""
    bookings = ReservationService(db).list_bookings(status, guest_id, room_type_id, offset, limit)
    return [_response(db, b.id) for b in bookings]


@router.get("/today-arrivals", response_model=List[BookingResponse])
def get_today_arrivals(db: Session = Depends(get_db)):
    """获取今日预抵"""
    bookings = ReservationService(db).get_today_arrivals()
    return [_response(db, b.id) for b in bookings]


@router.get("/{booking_id}", response_model=BookingResponse)
def get_booking(booking_id: int, db: Session = Depends(get_db)):
    """获取预订详情"""
    return _response(db, booking_id)


@router.post("", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
def create_booking(data: BookingCreate, db: Session = Depends(get_db)):
    """创建预订"""
    booking = ReservationService(db).reserve(
        room_type_id=data.room_type_id,
        start=data.check_in_date,
        end=data.check_out_date,
        guest_id=data.guest_id,
        extras=[e.model_dump() for e in data.extras],
        guest_count=data.guest_count,
        source=data.source,
    )
    return _response(db, booking.id)


@router.post("/{booking_id}/approve", response_model=BookingResponse)
def approve_booking(booking_id: int, db: Session = Depends(get_db)):
    """审批预订"""
    BookingLifecycleService(db).approve(booking_id)
    return _response(db, booking_id)


@router.post("/{booking_id}/confirm", response_model=BookingResponse)
def confirm_booking(booking_id: int, db: Session = Depends(get_db)):
    """确认预订"""
    BookingLifecycleService(db).confirm(booking_id)
    return _response(db, booking_id)


@router.post("/{booking_id}/cancel", response_model=BookingResponse)
def cancel_booking(booking_id: int, data: Optional[BookingCancel] = None,
                   db: Session = Depends(get_db)):
    """取消预订"""
    BookingLifecycleService(db).cancel(booking_id, data.reason if data else None)
    return _response(db, booking_id)


@router.post("/{booking_id}/reschedule", response_model=BookingResponse)
def reschedule_booking(booking_id: int, data: BookingReschedule, db: Session = Depends(get_db)):
    """修改预订日期或房型"""
    ReservationService(db).reschedule(
        booking_id, data.check_in_date, data.check_out_date, room_type_id=data.room_type_id
    )
    return _response(db, booking_id)


@router.post("/{booking_id}/services", response_model=BookingResponse)
def add_service(booking_id: int, data: ServiceAdd, db: Session = Depends(get_db)):
    """添加附加服务"""
    ReservationService(db).add_service(booking_id, data.service_id, data.quantity)
    return _response(db, booking_id)


@router.delete("/{booking_id}/services/{extra_id}", response_model=BookingResponse)
def remove_service(booking_id: int, extra_id: int, db: Session = Depends(get_db)):
    """移除附加服务"""
    ReservationService(db).remove_service(booking_id, extra_id)
    return _response(db, booking_id)
