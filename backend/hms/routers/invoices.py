"""
发票路由
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from hms.database import get_db
from hms.models.schemas import InvoiceLineResponse, InvoicePreview, InvoiceResponse
from hms.services.invoice_service import InvoiceService

router = APIRouter(prefix="/invoices", tags=["发票"])


@router.get("/bookings/{booking_id}/preview", response_model=InvoicePreview)
def preview_invoice(booking_id: int, db: Session = Depends(get_db)):
    """试算发票（不落库）"""
    lines, totals = InvoiceService(db).preview(booking_id)
    return InvoicePreview(
        booking_id=booking_id,
        lines=[InvoiceLineResponse.model_validate(line) for line in lines],
        subtotal=totals.subtotal,
        tax=totals.tax,
        total=totals.total,
    )


@router.post("/bookings/{booking_id}", response_model=InvoiceResponse)
def build_invoice(booking_id: int, db: Session = Depends(get_db)):
    """生成/重算预订发票"""
    return InvoiceService(db).build_invoice(booking_id)


@router.post("/bookings/{booking_id}/finalize", response_model=InvoiceResponse)
def finalize_invoice(booking_id: int, db: Session = Depends(get_db)):
    """冻结预订发票"""
    return InvoiceService(db).finalize(booking_id)


@router.get("/bookings/{booking_id}", response_model=InvoiceResponse)
def get_invoice_for_booking(booking_id: int, db: Session = Depends(get_db)):
    """获取预订的发票"""
    return InvoiceService(db).get_invoice_for_booking(booking_id)


@router.get("/{invoice_id}", response_model=InvoiceResponse)
def get_invoice(invoice_id: int, db: Session = Depends(get_db)):
    """获取发票"""
    return InvoiceService(db).get_invoice(invoice_id)
