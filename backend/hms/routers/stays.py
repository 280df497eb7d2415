"""
入住/退房路由
"""
from typing import List
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from hms.database import get_db
from hms.models.schemas import (
    ChargeCreate, CheckInRequest, CheckOutRequest, StayChargeResponse, StayResponse
)
from hms.services.booking_lifecycle import BookingLifecycleService
from hms.services.stay_service import StayService

router = APIRouter(prefix="/stays", tags=["入住管理"])


@router.get("/active", response_model=List[StayResponse])
def get_active_stays(db: Session = Depends(get_db)):
    """获取所有在住记录"""
    return StayService(db).get_active_stays()


@router.get("/by-booking/{booking_id}", response_model=StayResponse)
def get_stay_by_booking(booking_id: int, db: Session = Depends(get_db)):
    """根据预订获取住宿记录"""
    return StayService(db).get_stay_by_booking(booking_id)


@router.get("/{stay_id}", response_model=StayResponse)
def get_stay(stay_id: int, db: Session = Depends(get_db)):
    """获取住宿记录"""
    return StayService(db).get_stay(stay_id)


@router.post("/check-in", response_model=StayResponse, status_code=status.HTTP_201_CREATED)
def check_in(data: CheckInRequest, db: Session = Depends(get_db)):
    """办理入住"""
    return BookingLifecycleService(db).check_in(
        data.booking_id, room_id=data.room_id, staff_id=data.staff_id, walk_in=data.walk_in
    )


@router.post("/check-out", response_model=StayResponse)
def check_out(data: CheckOutRequest, db: Session = Depends(get_db)):
    """办理退房"""
    return BookingLifecycleService(db).check_out(data.booking_id)


@router.post("/{stay_id}/charges", response_model=StayChargeResponse,
             status_code=status.HTTP_201_CREATED)
def add_charge(stay_id: int, data: ChargeCreate, db: Session = Depends(get_db)):
    """记录住宿期间杂费"""
    return StayService(db).add_charge(
        stay_id, data.description, data.unit_price, data.quantity, data.tax_rate
    )


@router.post("/{stay_id}/dispute", response_model=StayResponse)
def mark_disputed(stay_id: int, db: Session = Depends(get_db)):
    """标记账单争议"""
    return StayService(db).mark_disputed(stay_id)
