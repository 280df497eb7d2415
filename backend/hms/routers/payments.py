"""
支付路由
"""
from typing import List
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from hms.database import get_db
from hms.models.schemas import (
    PaymentCreate, PaymentSummaryResponse, PaymentTransactionResponse
)
from hms.services.payment_service import PaymentService

router = APIRouter(prefix="/payments", tags=["支付"])


@router.post("", response_model=PaymentTransactionResponse, status_code=status.HTTP_201_CREATED)
def record_payment(data: PaymentCreate, db: Session = Depends(get_db)):
    """记录支付"""
    return PaymentService(db).record_payment(
        data.invoice_id, data.amount, data.method, data.provider, data.provider_tx_id
    )


@router.get("/invoices/{invoice_id}/summary", response_model=PaymentSummaryResponse)
def get_summary(invoice_id: int, db: Session = Depends(get_db)):
    """发票支付汇总"""
    return PaymentSummaryResponse(**PaymentService(db).summary(invoice_id).to_dict())


@router.get("/invoices/{invoice_id}/transactions", response_model=List[PaymentTransactionResponse])
def list_transactions(invoice_id: int, db: Session = Depends(get_db)):
    """发票支付流水"""
    return PaymentService(db).list_transactions(invoice_id)
