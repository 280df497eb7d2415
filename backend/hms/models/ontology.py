"""
本体对象定义 (Ontology Objects)
房间库存、预订、住宿、发票与支付流水
实体之间只通过 ID 引用，关系仅用于只读导航
"""
from datetime import datetime
from decimal import Decimal
from enum import Enum
from sqlalchemy import (
    Column, Integer, String, DateTime, Date,
    ForeignKey, Text, Enum as SQLEnum, Boolean, Numeric
)
from sqlalchemy.orm import relationship
from hms.database import Base


# ============== 枚举定义 ==============

class RoomStatus(str, Enum):
    """房间物理状态"""
    AVAILABLE = "available"        # 空闲
    OCCUPIED = "occupied"          # 入住中
    BLOCKED = "blocked"            # 锁房
    MAINTENANCE = "maintenance"    # 维修中


class BookingStatus(str, Enum):
    """预订状态枚举"""
    REQUESTED = "requested"      # 已申请（待审批）
    APPROVED = "approved"        # 已审批
    CONFIRMED = "confirmed"      # 已确认
    CHECKED_IN = "checked_in"    # 已入住
    CHECKED_OUT = "checked_out"  # 已退房
    CANCELLED = "cancelled"      # 已取消


class BookingSource(str, Enum):
    """预订来源"""
    DIRECT = "direct"    # 客人直订，立即确认
    STAFF = "staff"      # 前台代订，需审批


class StayStatus(str, Enum):
    """住宿记录状态"""
    ACTIVE = "active"          # 在住
    COMPLETED = "completed"    # 已退房
    DISPUTED = "disputed"      # 有争议


class InvoiceStatus(str, Enum):
    """发票状态"""
    UNPAID = "unpaid"
    PAID = "paid"
    REFUNDED = "refunded"


class InvoiceLineKind(str, Enum):
    """发票明细类型"""
    ROOM = "room"          # 房费
    SERVICE = "service"    # 附加服务
    CHARGE = "charge"      # 住宿期间杂费


class PaymentMethod(str, Enum):
    """支付方式"""
    CASH = "cash"
    CARD = "card"
    ONLINE = "online"


class TransactionStatus(str, Enum):
    """支付流水状态"""
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    PENDING = "pending"


# 占用库存的预订状态（不含 requested，见 Settings.REQUESTED_HOLDS_INVENTORY）
COMMITTED_STATUSES = (
    BookingStatus.APPROVED,
    BookingStatus.CONFIRMED,
    BookingStatus.CHECKED_IN,
)


# ============== 本体对象定义 ==============

class RoomType(Base):
    """
    房型对象（外部维护的参考数据，预订期间只读）
    """
    __tablename__ = "room_types"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(50), unique=True, nullable=False)  # 房型名称
    description = Column(Text)
    base_price = Column(Numeric(10, 2), nullable=False)     # 基础价格（每晚）
    capacity = Column(Integer, default=2)                   # 最大入住人数
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # 链接：一个房型对应多个房间
    rooms = relationship("Room", back_populates="room_type")


class Room(Base):
    """
    房间对象 - 独立于预订存在
    """
    __tablename__ = "rooms"

    id = Column(Integer, primary_key=True, index=True)
    room_number = Column(String(10), unique=True, nullable=False)
    floor = Column(Integer)
    room_type_id = Column(Integer, ForeignKey("room_types.id"), nullable=False, index=True)
    status = Column(SQLEnum(RoomStatus), default=RoomStatus.AVAILABLE, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    room_type = relationship("RoomType", back_populates="rooms")


class Guest(Base):
    """客人对象（仅作引用）"""
    __tablename__ = "guests"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    phone = Column(String(20))
    email = Column(String(100))
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Service(Base):
    """
    附加服务对象（服务目录，外部维护）
    """
    __tablename__ = "services"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    description = Column(Text)
    price = Column(Numeric(10, 2), nullable=False)             # 单价
    tax_rate = Column(Numeric(6, 4), default=Decimal("0"))     # 税率（0.05 = 5%）
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Booking(Base):
    """
    预订对象 - 预订阶段的聚合根
    日期区间为半开区间 [check_in_date, check_out_date)
    只能通过生命周期状态机修改状态，取消是状态而不是删除
    """
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    booking_no = Column(String(20), unique=True, nullable=False)
    guest_id = Column(Integer, ForeignKey("guests.id"), nullable=False, index=True)
    room_type_id = Column(Integer, ForeignKey("room_types.id"), nullable=False, index=True)
    allocated_room_id = Column(Integer, ForeignKey("rooms.id"), nullable=True)  # 入住后绑定
    check_in_date = Column(Date, nullable=False, index=True)
    check_out_date = Column(Date, nullable=False, index=True)
    guest_count = Column(Integer, default=1)
    nights = Column(Integer, nullable=False)
    total_amount = Column(Numeric(12, 2), nullable=False)      # 预估总价
    currency = Column(String(3), nullable=False)
    status = Column(SQLEnum(BookingStatus), default=BookingStatus.CONFIRMED, nullable=False, index=True)
    source = Column(SQLEnum(BookingSource), default=BookingSource.DIRECT, nullable=False)
    cancel_reason = Column(Text)
    version = Column(Integer, nullable=False)                  # 乐观锁版本号
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # 链接
    extras = relationship(
        "BookingExtra", order_by="BookingExtra.position",
        cascade="all, delete-orphan", back_populates="booking"
    )
    room_type = relationship("RoomType")

    __mapper_args__ = {"version_id_col": version}


class BookingExtra(Base):
    """
    预订附加服务明细
    单价在申请时快照，不受之后目录调价影响
    """
    __tablename__ = "booking_extras"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)
    service_id = Column(Integer, ForeignKey("services.id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)
    position = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)

    booking = relationship("Booking", back_populates="extras")


class Stay(Base):
    """
    住宿记录对象 - 住宿期间的聚合根
    入住时创建，与预订一对一
    """
    __tablename__ = "stays"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, unique=True)
    room_id = Column(Integer, ForeignKey("rooms.id"), nullable=False)
    staff_id = Column(Integer)                              # 办理员工
    actual_check_in = Column(DateTime, nullable=False)      # 实际入住时间
    actual_check_out = Column(DateTime)                     # 实际退房时间
    status = Column(SQLEnum(StayStatus), default=StayStatus.ACTIVE, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    charges = relationship(
        "StayCharge", order_by="StayCharge.id",
        cascade="all, delete-orphan", back_populates="stay"
    )
    room = relationship("Room")

    @property
    def room_number(self):
        return self.room.room_number if self.room else None


class StayCharge(Base):
    """住宿期间产生的杂费（迷你吧、损耗等）"""
    __tablename__ = "stay_charges"

    id = Column(Integer, primary_key=True, index=True)
    stay_id = Column(Integer, ForeignKey("stays.id"), nullable=False, index=True)
    description = Column(String(200), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    unit_price = Column(Numeric(10, 2), nullable=False)
    tax_rate = Column(Numeric(6, 4), nullable=False, default=Decimal("0"))
    created_at = Column(DateTime, default=datetime.utcnow)

    stay = relationship("Stay", back_populates="charges")


class Invoice(Base):
    """
    发票对象
    明细是预订/住宿数据的可重算投影，退房后冻结（is_final）
    """
    __tablename__ = "invoices"

    id = Column(Integer, primary_key=True, index=True)
    invoice_no = Column(String(20), unique=True, nullable=False)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=True, unique=True)
    stay_id = Column(Integer, ForeignKey("stays.id"), nullable=True)
    subtotal = Column(Numeric(18, 6), nullable=False, default=Decimal("0"))  # 税前（不舍入）
    tax = Column(Numeric(18, 6), nullable=False, default=Decimal("0"))       # 税额（不舍入，单价 2 位 × 税率 4 位）
    total = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))     # 唯一舍入点
    currency = Column(String(3), nullable=False)
    status = Column(SQLEnum(InvoiceStatus), default=InvoiceStatus.UNPAID, nullable=False)
    is_final = Column(Boolean, default=False, nullable=False)
    finalized_at = Column(DateTime)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    lines = relationship(
        "InvoiceLine", order_by="InvoiceLine.position",
        cascade="all, delete-orphan", back_populates="invoice"
    )


class InvoiceLine(Base):
    """发票明细行"""
    __tablename__ = "invoice_lines"

    id = Column(Integer, primary_key=True, index=True)
    invoice_id = Column(Integer, ForeignKey("invoices.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False)
    kind = Column(SQLEnum(InvoiceLineKind), nullable=False)
    description = Column(String(200), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)
    tax_rate = Column(Numeric(6, 4), nullable=False)

    invoice = relationship("Invoice", back_populates="lines")

    @property
    def amount(self) -> Decimal:
        """税前金额"""
        return Decimal(self.quantity) * Decimal(self.unit_price)


class PaymentTransaction(Base):
    """
    支付流水对象 - 只追加的账本
    已付金额 = succeeded 流水之和，历史流水不做修改
    """
    __tablename__ = "payment_transactions"

    id = Column(Integer, primary_key=True, index=True)
    invoice_id = Column(Integer, ForeignKey("invoices.id"), nullable=False, index=True)
    provider = Column(String(30), nullable=False, default="stub")
    provider_tx_id = Column(String(64), index=True)
    method = Column(SQLEnum(PaymentMethod), nullable=False, default=PaymentMethod.CASH)
    amount = Column(Numeric(12, 2), nullable=False)
    status = Column(SQLEnum(TransactionStatus), default=TransactionStatus.SUCCEEDED, nullable=False)
    message = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow)
