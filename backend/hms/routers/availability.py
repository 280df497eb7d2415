"""
可用性查询路由
"""
from typing import List
from datetime import date
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from hms.database import get_db
from hms.models.schemas import AvailabilityResponse
from hms.services.availability_service import AvailabilityService

router = APIRouter(prefix="/availability", tags=["可用性"])


@router.get("", response_model=AvailabilityResponse)
def get_availability(
    room_type_id: int,
    from_date: date = Query(..., alias="from"),
    to_date: date = Query(..., alias="to"),
    db: Session = Depends(get_db)
):
    """查询房型在 [from, to) 内的可用数"""
    result = AvailabilityService(db).availability(room_type_id, from_date, to_date)
    return AvailabilityResponse(**result.to_dict())


@router.get("/search", response_model=List[AvailabilityResponse])
def search_availability(
    from_date: date = Query(..., alias="from"),
    to_date: date = Query(..., alias="to"),
    guest_count: int = Query(default=1, ge=1),
    db: Session = Depends(get_db)
):
    """查找仍有空房且容量满足人数的房型"""
    results = AvailabilityService(db).search(from_date, to_date, guest_count)
    return [AvailabilityResponse(**r.to_dict()) for r in results]
