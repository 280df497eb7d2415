"""
Pydantic 模式定义
用于 API 请求/响应验证
金额/日期区间的业务校验在服务层完成，以统一错误类别
"""
from datetime import datetime, date
from decimal import Decimal
from typing import Optional, List
from pydantic import BaseModel, Field, ConfigDict
from hms.models.ontology import (
    BookingSource, BookingStatus, InvoiceLineKind, InvoiceStatus,
    PaymentMethod, StayStatus, TransactionStatus
)


# ============== 可用性 Schemas ==============

class AvailabilityResponse(BaseModel):
    room_type_id: int
    total_rooms: int
    reserved_count: int
    available_count: int
    model_config = ConfigDict(from_attributes=True)


# ============== 预订 Schemas ==============

class ExtraItem(BaseModel):
    service_id: int
    quantity: int = 1
    unit_price: Optional[Decimal] = None


class BookingCreate(BaseModel):
    room_type_id: int
    guest_id: int
    check_in_date: date
    check_out_date: date
    guest_count: int = 1
    source: BookingSource = BookingSource.DIRECT
    extras: List[ExtraItem] = []


class BookingCancel(BaseModel):
    reason: Optional[str] = None


class BookingReschedule(BaseModel):
    check_in_date: date
    check_out_date: date
    room_type_id: Optional[int] = None


class ServiceAdd(BaseModel):
    service_id: int
    quantity: int = 1


class BookingExtraResponse(BaseModel):
    id: int
    service_id: int
    quantity: int
    unit_price: Decimal
    model_config = ConfigDict(from_attributes=True)


class BookingResponse(BaseModel):
    id: int
    booking_no: str
    guest_id: int
    room_type_id: int
    allocated_room_id: Optional[int] = None
    check_in_date: date
    check_out_date: date
    guest_count: int
    nights: int
    total_amount: Decimal
    currency: str
    status: BookingStatus
    source: BookingSource
    cancel_reason: Optional[str] = None
    extras: List[BookingExtraResponse] = []
    allowed_actions: List[str] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


# ============== 住宿 Schemas ==============

class CheckInRequest(BaseModel):
    booking_id: int
    room_id: Optional[int] = None
    staff_id: Optional[int] = None
    walk_in: bool = False


class CheckOutRequest(BaseModel):
    booking_id: int


class ChargeCreate(BaseModel):
    description: str = Field(..., max_length=200)
    unit_price: Decimal
    quantity: int = 1
    tax_rate: Optional[Decimal] = None


class StayChargeResponse(BaseModel):
    id: int
    description: str
    quantity: int
    unit_price: Decimal
    tax_rate: Decimal
    model_config = ConfigDict(from_attributes=True)


class StayResponse(BaseModel):
    id: int
    booking_id: int
    room_id: int
    room_number: Optional[str] = None
    staff_id: Optional[int] = None
    actual_check_in: datetime
    actual_check_out: Optional[datetime] = None
    status: StayStatus
    charges: List[StayChargeResponse] = []
    model_config = ConfigDict(from_attributes=True)


# ============== 发票 Schemas ==============

class InvoiceLineResponse(BaseModel):
    kind: InvoiceLineKind
    description: str
    quantity: int
    unit_price: Decimal
    tax_rate: Decimal
    amount: Decimal
    model_config = ConfigDict(from_attributes=True)


class InvoiceResponse(BaseModel):
    id: int
    invoice_no: str
    booking_id: Optional[int] = None
    stay_id: Optional[int] = None
    lines: List[InvoiceLineResponse] = []
    subtotal: Decimal
    tax: Decimal
    total: Decimal
    currency: str
    status: InvoiceStatus
    is_final: bool
    model_config = ConfigDict(from_attributes=True)


class InvoicePreview(BaseModel):
    booking_id: int
    lines: List[InvoiceLineResponse]
    subtotal: Decimal
    tax: Decimal
    total: Decimal
    model_config = ConfigDict(from_attributes=True)


# ============== 支付 Schemas ==============

class PaymentCreate(BaseModel):
    invoice_id: int
    amount: Decimal
    method: PaymentMethod = PaymentMethod.CASH
    provider: Optional[str] = None
    provider_tx_id: Optional[str] = None


class PaymentTransactionResponse(BaseModel):
    id: int
    invoice_id: int
    provider: str
    provider_tx_id: Optional[str] = None
    method: PaymentMethod
    amount: Decimal
    status: TransactionStatus
    message: Optional[str] = None
    created_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class PaymentSummaryResponse(BaseModel):
    invoice_id: int
    total: Decimal
    total_paid: Decimal
    balance_due: Decimal
    is_fully_paid: bool
    overpaid: Decimal
    model_config = ConfigDict(from_attributes=True)
