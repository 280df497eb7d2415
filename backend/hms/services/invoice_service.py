"""
发票服务 - 明细与税额组合
发票是预订/住宿数据的可重算投影：
- 房费行：间夜数 × 房型基础价，税率取默认税率
- 服务行：同一服务（同一快照单价）合并为一行，税率取服务目录税率
- 杂费行：住宿期间的每笔杂费
舍入规则：subtotal/tax 保持精确值，仅对最终 total 做一次四舍五入（ROUND_HALF_UP，保留 2 位）
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple
import logging
import uuid

from sqlalchemy.orm import Session

from hms.config import settings
from hms.database import transactional
from hms.errors import InvalidTransition, NotFound
from hms.models.events import EventType, InvoiceFinalizedData
from hms.models.ontology import (
    Booking, BookingExtra, BookingStatus, Invoice, InvoiceLine, InvoiceLineKind,
    InvoiceStatus, RoomType, Service, Stay, StayCharge
)
from hms.services.catalog import InventoryCatalog
from hms.services.event_bus import Event, event_bus, safe_publish
from hms.services.payment_service import sum_succeeded

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
RATE_STEP = Decimal("0.0001")


def round_money(value: Decimal) -> Decimal:
    """金额舍入到分（四舍五入）"""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def round_rate(value: Decimal) -> Decimal:
    """税率保留 4 位，与列精度一致"""
    return Decimal(value).quantize(RATE_STEP, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class LineDraft:
    """待写入的发票明细"""
    kind: InvoiceLineKind
    description: str
    quantity: int
    unit_price: Decimal
    tax_rate: Decimal

    @property
    def amount(self) -> Decimal:
        return Decimal(self.quantity) * Decimal(self.unit_price)

    @property
    def tax(self) -> Decimal:
        return self.amount * Decimal(self.tax_rate)

    def key(self) -> Tuple:
        return (
            InvoiceLineKind(self.kind), self.description, int(self.quantity),
            Decimal(self.unit_price), Decimal(self.tax_rate),
        )


@dataclass(frozen=True)
class InvoiceTotals:
    """发票合计"""
    subtotal: Decimal
    tax: Decimal
    total: Decimal


def compute_totals(lines: Iterable[LineDraft]) -> InvoiceTotals:
    """
    subtotal = Σ qty × unit_price
    tax = Σ qty × unit_price × tax_rate
    total = round_half_up(subtotal + tax)
    """
    subtotal = Decimal("0")
    tax = Decimal("0")
    for line in lines:
        subtotal += line.amount
        tax += line.tax
    return InvoiceTotals(subtotal=subtotal, tax=tax, total=round_money(subtotal + tax))


def compose_lines(booking: Booking, room_type: RoomType,
                  extras: Sequence[BookingExtra],
                  services: Mapping[int, Service],
                  charges: Sequence[StayCharge] = (),
                  room_tax_rate: Optional[Decimal] = None) -> List[LineDraft]:
    """
    根据预订/住宿数据组合发票明细（纯函数）

    Args:
        booking: 预订（提供间夜数）
        room_type: 房型（提供基础价）
        extras: 预订的附加服务快照
        services: service_id -> Service，提供名称与税率
        charges: 住宿期间杂费
        room_tax_rate: 房费税率，默认取配置
    """
    if room_tax_rate is None:
        room_tax_rate = settings.DEFAULT_TAX_RATE

    lines = [LineDraft(
        kind=InvoiceLineKind.ROOM,
        description=f"{room_type.name} 房费",
        quantity=booking.nights,
        unit_price=Decimal(room_type.base_price),
        tax_rate=round_rate(room_tax_rate),
    )]

    # 同一服务、同一快照单价合并数量，保持首次出现的顺序
    grouped: Dict[Tuple[int, Decimal], int] = {}
    for extra in extras:
        key = (extra.service_id, Decimal(extra.unit_price))
        grouped[key] = grouped.get(key, 0) + extra.quantity

    for (service_id, unit_price), quantity in grouped.items():
        service = services.get(service_id)
        if service is None:
            raise NotFound("服务不存在", {"service_id": service_id})
        lines.append(LineDraft(
            kind=InvoiceLineKind.SERVICE,
            description=service.name,
            quantity=quantity,
            unit_price=unit_price,
            tax_rate=Decimal(service.tax_rate or 0),
        ))

    for charge in charges:
        lines.append(LineDraft(
            kind=InvoiceLineKind.CHARGE,
            description=charge.description,
            quantity=charge.quantity,
            unit_price=Decimal(charge.unit_price),
            tax_rate=Decimal(charge.tax_rate or 0),
        ))

    return lines


class InvoiceService:
    """发票服务"""

    def __init__(self, db: Session, event_publisher: Callable[[Event], None] = None,
                 room_tax_rate: Optional[Decimal] = None):
        self.db = db
        self.catalog = InventoryCatalog(db)
        self.room_tax_rate = room_tax_rate
        self._publish_event = event_publisher or event_bus.publish

    def _generate_invoice_no(self) -> str:
        """生成发票号：INV-YYYYMMDD-XXXXX"""
        return f"INV-{datetime.now().strftime('%Y%m%d')}-{uuid.uuid4().hex[:5].upper()}"

    # ============== 查询 ==============

    def get_invoice(self, invoice_id: int) -> Invoice:
        invoice = self.db.query(Invoice).filter(Invoice.id == invoice_id).first()
        if not invoice:
            raise NotFound("发票不存在", {"invoice_id": invoice_id})
        return invoice

    def find_invoice_for_booking(self, booking_id: int) -> Optional[Invoice]:
        return self.db.query(Invoice).filter(Invoice.booking_id == booking_id).first()

    def get_invoice_for_booking(self, booking_id: int) -> Invoice:
        invoice = self.find_invoice_for_booking(booking_id)
        if not invoice:
            raise NotFound("该预订尚未生成发票", {"booking_id": booking_id})
        return invoice

    # ============== 组合 ==============

    def _get_booking(self, booking_id: int) -> Booking:
        booking = self.db.query(Booking).filter(Booking.id == booking_id).first()
        if not booking:
            raise NotFound("预订不存在", {"booking_id": booking_id})
        return booking

    def _collect(self, booking: Booking) -> Tuple[List[LineDraft], Optional[Stay]]:
        """读取当前预订/住宿/服务数据并组合明细"""
        room_type = self.catalog.get_room_type(booking.room_type_id)
        service_ids = {e.service_id for e in booking.extras}
        services = {}
        if service_ids:
            services = {
                s.id: s for s in self.db.query(Service).filter(Service.id.in_(service_ids)).all()
            }
        stay = self.db.query(Stay).filter(Stay.booking_id == booking.id).first()
        charges = stay.charges if stay else []
        lines = compose_lines(booking, room_type, booking.extras, services, charges, self.room_tax_rate)
        return lines, stay

    def preview(self, booking_id: int) -> Tuple[List[LineDraft], InvoiceTotals]:
        """只计算不落库"""
        booking = self._get_booking(booking_id)
        lines, _ = self._collect(booking)
        return lines, compute_totals(lines)

    def _apply(self, invoice: Invoice, lines: List[LineDraft], stay: Optional[Stay]) -> None:
        """把明细与合计写入发票；明细未变化时保留原有行"""
        current = [
            (InvoiceLineKind(l.kind), l.description, int(l.quantity),
             Decimal(l.unit_price), Decimal(l.tax_rate))
            for l in invoice.lines
        ]
        if current != [line.key() for line in lines]:
            invoice.lines = [
                InvoiceLine(
                    position=position,
                    kind=line.kind,
                    description=line.description,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                    tax_rate=line.tax_rate,
                )
                for position, line in enumerate(lines)
            ]

        totals = compute_totals(lines)
        invoice.subtotal = totals.subtotal
        invoice.tax = totals.tax
        invoice.total = totals.total
        if stay is not None:
            invoice.stay_id = stay.id
        self._sync_status(invoice)

    def _sync_status(self, invoice: Invoice) -> None:
        """合计变化后按已付金额重新判定 paid/unpaid（已退款保持不变）"""
        if invoice.status == InvoiceStatus.REFUNDED or invoice.id is None:
            return
        paid = sum_succeeded(self.db, invoice.id)
        invoice.status = InvoiceStatus.PAID if paid >= Decimal(invoice.total) else InvoiceStatus.UNPAID

    def upsert_for(self, booking: Booking) -> Invoice:
        """创建或刷新预订的发票（不提交）；已冻结的发票原样返回"""
        if booking.status == BookingStatus.CANCELLED:
            raise InvalidTransition("已取消的预订不能生成发票", {"booking_id": booking.id})

        invoice = self.find_invoice_for_booking(booking.id)
        if invoice is not None and invoice.is_final:
            return invoice

        lines, stay = self._collect(booking)
        if invoice is None:
            invoice = Invoice(
                invoice_no=self._generate_invoice_no(),
                booking_id=booking.id,
                currency=booking.currency,
                status=InvoiceStatus.UNPAID,
            )
            self.db.add(invoice)
        self._apply(invoice, lines, stay)
        self.db.flush()
        return invoice

    def build_invoice(self, booking_id: int) -> Invoice:
        """
        生成/重算预订的发票（幂等）

        相同输入重复调用得到相同的 subtotal/tax/total；
        退房后发票已冻结，直接返回

        Raises:
            NotFound: 预订不存在
            InvalidTransition: 预订已取消
        """
        with transactional(self.db):
            booking = self._get_booking(booking_id)
            invoice = self.upsert_for(booking)
        self.db.refresh(invoice)
        return invoice

    def refresh_if_open(self, booking: Booking) -> Optional[Invoice]:
        """服务/杂费变化后刷新未冻结的发票（不提交）；尚无发票时不创建"""
        invoice = self.find_invoice_for_booking(booking.id)
        if invoice is None or invoice.is_final:
            return invoice
        lines, stay = self._collect(booking)
        self._apply(invoice, lines, stay)
        self.db.flush()
        return invoice

    def finalize_for(self, booking: Booking) -> Invoice:
        """生成最终发票并冻结（不提交，由退房事务统一提交）"""
        invoice = self.upsert_for(booking)
        if not invoice.is_final:
            invoice.is_final = True
            invoice.finalized_at = datetime.now()
            self.db.flush()
            logger.info(f"Invoice {invoice.invoice_no} finalized, total={invoice.total}")
        return invoice

    def finalize(self, booking_id: int) -> Invoice:
        """冻结预订的发票"""
        with transactional(self.db):
            booking = self._get_booking(booking_id)
            invoice = self.finalize_for(booking)
        self.db.refresh(invoice)
        self.publish_finalized(invoice)
        return invoice

    def publish_finalized(self, invoice: Invoice) -> None:
        safe_publish(self._publish_event, Event(
            event_type=EventType.INVOICE_FINALIZED,
            timestamp=datetime.now(),
            data=InvoiceFinalizedData(
                invoice_id=invoice.id,
                invoice_no=invoice.invoice_no,
                booking_id=invoice.booking_id,
                stay_id=invoice.stay_id,
                total=float(invoice.total),
            ).to_dict(),
            source="invoice_service",
        ))

    # ============== 详情 ==============

    def get_invoice_detail(self, invoice_id: int) -> dict:
        """获取发票详情（含明细）"""
        invoice = self.get_invoice(invoice_id)
        return {
            'id': invoice.id,
            'invoice_no': invoice.invoice_no,
            'booking_id': invoice.booking_id,
            'stay_id': invoice.stay_id,
            'lines': [
                {
                    'kind': l.kind,
                    'description': l.description,
                    'quantity': l.quantity,
                    'unit_price': l.unit_price,
                    'tax_rate': l.tax_rate,
                    'amount': l.amount,
                }
                for l in invoice.lines
            ],
            'subtotal': invoice.subtotal,
            'tax': invoice.tax,
            'total': invoice.total,
            'currency': invoice.currency,
            'status': invoice.status,
            'is_final': invoice.is_final,
            'created_at': invoice.created_at,
        }
