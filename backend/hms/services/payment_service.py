"""
支付服务 - 支付对账
支付流水只追加不修改；已付金额 = succeeded 流水之和
发票总额在入账时从不改变，只有状态会在足额后变为 paid
"""
from dataclasses import dataclass, asdict
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Callable, List, Optional, Union
import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from hms.database import transactional
from hms.errors import InvalidAmount, NotFound
from hms.models.events import EventType, PaymentRecordedData
from hms.models.ontology import (
    Invoice, InvoiceStatus, PaymentMethod, PaymentTransaction, TransactionStatus
)
from hms.services.event_bus import Event, event_bus, safe_publish
from hms.services.locks import invoice_key, lock_manager
from hms.services.payment_gateway import PaymentGatewayRegistry, gateway_registry

logger = logging.getLogger(__name__)


def sum_succeeded(db: Session, invoice_id: int) -> Decimal:
    """发票已成功入账的金额"""
    paid = db.query(func.sum(PaymentTransaction.amount)).filter(
        PaymentTransaction.invoice_id == invoice_id,
        PaymentTransaction.status == TransactionStatus.SUCCEEDED
    ).scalar()
    return Decimal(str(paid)) if paid is not None else Decimal("0")


@dataclass(frozen=True)
class PaymentSummary:
    """发票支付汇总"""
    invoice_id: int
    total: Decimal
    total_paid: Decimal
    balance_due: Decimal
    is_fully_paid: bool
    overpaid: Decimal

    def to_dict(self) -> dict:
        return asdict(self)


class PaymentService:
    """支付服务"""

    def __init__(self, db: Session, event_publisher: Callable[[Event], None] = None,
                 gateways: Optional[PaymentGatewayRegistry] = None):
        self.db = db
        self.gateways = gateways or gateway_registry
        self._publish_event = event_publisher or event_bus.publish

    def get_invoice(self, invoice_id: int) -> Invoice:
        invoice = self.db.query(Invoice).filter(Invoice.id == invoice_id).first()
        if not invoice:
            raise NotFound("发票不存在", {"invoice_id": invoice_id})
        return invoice

    @staticmethod
    def _parse_amount(amount) -> Decimal:
        try:
            value = Decimal(str(amount)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
        except (InvalidOperation, ValueError) as e:
            raise InvalidAmount("支付金额格式错误", {"amount": str(amount)}) from e
        if not value.is_finite() or value <= 0:
            raise InvalidAmount("支付金额必须大于 0", {"amount": str(amount)})
        return value

    def record_payment(self, invoice_id: int, amount,
                       method: Union[PaymentMethod, str] = PaymentMethod.CASH,
                       provider: Optional[str] = None,
                       provider_tx_id: Optional[str] = None) -> PaymentTransaction:
        """
        记录一笔支付

        业务规则：
        - 金额必须 > 0
        - 无论网关成功与否都追加流水（失败流水不计入已付）
        - 已付 >= 总额时发票状态变为 paid

        Raises:
            InvalidAmount: 金额 <= 0
            NotFound: 发票不存在
        """
        value = self._parse_amount(amount)
        method = PaymentMethod(method)

        with lock_manager.hold(invoice_key(invoice_id)):
            with transactional(self.db):
                invoice = self.get_invoice(invoice_id)
                gateway = self.gateways.get_gateway(provider)
                result = gateway.charge(value, method, invoice.invoice_no, provider_tx_id)

                tx = PaymentTransaction(
                    invoice_id=invoice.id,
                    provider=gateway.get_provider(),
                    provider_tx_id=result.provider_tx_id,
                    method=method,
                    amount=value,
                    status=result.status,
                    message=result.message,
                )
                self.db.add(tx)
                self.db.flush()

                paid = sum_succeeded(self.db, invoice.id)
                if invoice.status == InvoiceStatus.UNPAID and paid >= Decimal(invoice.total):
                    invoice.status = InvoiceStatus.PAID

        self.db.refresh(tx)
        summary = self.summary(invoice_id)
        logger.info(
            f"Payment {tx.id} on invoice {invoice_id}: {value} via {method.value} "
            f"-> {tx.status.value}, balance_due={summary.balance_due}"
        )

        safe_publish(self._publish_event, Event(
            event_type=EventType.PAYMENT_RECORDED,
            timestamp=datetime.now(),
            data=PaymentRecordedData(
                transaction_id=tx.id,
                invoice_id=invoice_id,
                amount=float(tx.amount),
                method=method.value,
                status=tx.status.value,
                total_paid=float(summary.total_paid),
                balance_due=float(summary.balance_due),
            ).to_dict(),
            source="payment_service",
        ))
        return tx

    def summary(self, invoice_id: int) -> PaymentSummary:
        """
        发票支付汇总（只读）
        balance_due = max(0, total - paid)，多付部分单独给出
        """
        invoice = self.get_invoice(invoice_id)
        total = Decimal(invoice.total)
        paid = sum_succeeded(self.db, invoice_id)
        return PaymentSummary(
            invoice_id=invoice_id,
            total=total,
            total_paid=paid,
            balance_due=max(Decimal("0"), total - paid),
            is_fully_paid=paid >= total,
            overpaid=max(Decimal("0"), paid - total),
        )

    def list_transactions(self, invoice_id: int) -> List[PaymentTransaction]:
        """发票的全部支付流水（按入账顺序）"""
        self.get_invoice(invoice_id)
        return self.db.query(PaymentTransaction).filter(
            PaymentTransaction.invoice_id == invoice_id
        ).order_by(PaymentTransaction.id).all()
