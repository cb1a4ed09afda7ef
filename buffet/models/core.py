from sqlalchemy import (
    String, ForeignKey, Boolean, Numeric, Enum, Text, Date, Integer, JSON, UniqueConstraint, CheckConstraint
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from enum import Enum as PyEnum
from datetime import datetime, date
from decimal import Decimal
from buffet.db import Base
from buffet.models.common import IdMixin, TSMMixin, UTCDateTime

# ── Enums ───────────────────────────────────────────────────────────────────
class TableStatus(PyEnum):
    AVAILABLE = "available"
    OCCUPIED = "occupied"
    RESERVED = "reserved"
    CLEANING = "cleaning"

class SessionStatus(PyEnum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

class OrderStatus(PyEnum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    IN_PROGRESS = "in_progress"
    SERVED = "served"
    CANCELLED = "cancelled"

class PaymentMethod(PyEnum):
    CASH = "cash"
    CARD = "card"
    QR_PAYMENT = "qr_payment"
    TRANSFER = "transfer"

class PointsTransactionType(PyEnum):
    EARNED = "earned"
    REDEEMED = "redeemed"
    ADJUSTED = "adjusted"

class StockMoveType(PyEnum):
    SALE = "SALE"
    RESTOCK = "RESTOCK"

# ── Identity ────────────────────────────────────────────────────────────────
class Role(Base, IdMixin, TSMMixin):
    __tablename__ = "role"
    name: Mapped[str] = mapped_column(String(50), unique=True)  # ADMIN bypasses permission checks
    description: Mapped[str | None] = mapped_column(Text)
    permissions: Mapped[list | None] = mapped_column(JSON, default=list)  # e.g. ["BILLING", "SESSION_MANAGE"]

class User(Base, IdMixin, TSMMixin):
    __tablename__ = "user"
    username: Mapped[str] = mapped_column(String(80), unique=True)
    pass_hash: Mapped[str] = mapped_column(String(200))
    full_name: Mapped[str] = mapped_column(String(160))
    email: Mapped[str | None] = mapped_column(String(160))
    phone: Mapped[str | None] = mapped_column(String(20))
    role_id: Mapped[str] = mapped_column(String(36), ForeignKey("role.id"))
    branch_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("branch.id"))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    role: Mapped["Role"] = relationship()

class Branch(Base, IdMixin, TSMMixin):
    __tablename__ = "branch"
    name: Mapped[str] = mapped_column(String(160))
    address: Mapped[str | None] = mapped_column(Text)
    phone: Mapped[str | None] = mapped_column(String(20))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

# ── Settings ────────────────────────────────────────────────────────────────
class Setting(Base, IdMixin, TSMMixin):
    __tablename__ = "setting"
    key: Mapped[str] = mapped_column(String(80), unique=True)  # vat_percent, service_charge_percent, ...
    value: Mapped[str] = mapped_column(Text)
    description: Mapped[str | None] = mapped_column(Text)

# ── Dining ──────────────────────────────────────────────────────────────────
class DiningTable(Base, IdMixin, TSMMixin):
    __tablename__ = "dining_table"
    branch_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("branch.id"))
    table_number: Mapped[str] = mapped_column(String(30))
    zone: Mapped[str | None] = mapped_column(String(30))
    capacity: Mapped[int] = mapped_column(Integer, default=4)
    status: Mapped[TableStatus] = mapped_column(Enum(TableStatus), default=TableStatus.AVAILABLE)
    is_out_of_service: Mapped[bool] = mapped_column(Boolean, default=False)
    service_notes: Mapped[str | None] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

# ── Packages & menu ─────────────────────────────────────────────────────────
class Package(Base, IdMixin, TSMMixin):
    __tablename__ = "package"
    branch_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("branch.id"))
    name: Mapped[str] = mapped_column(String(120))
    description: Mapped[str | None] = mapped_column(Text)
    adult_price: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    child_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0)
    duration_minutes: Mapped[int] = mapped_column(Integer)
    parent_package_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("package.id"))  # inherits parent's menu
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)

class MenuCategory(Base, IdMixin, TSMMixin):
    __tablename__ = "menu_category"
    branch_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("branch.id"))
    name: Mapped[str] = mapped_column(String(120))
    sort_order: Mapped[int] = mapped_column(Integer, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

class MenuItem(Base, IdMixin, TSMMixin):
    __tablename__ = "menu_item"
    branch_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("branch.id"))
    category_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("menu_category.id"))
    name: Mapped[str] = mapped_column(String(160))
    description: Mapped[str | None] = mapped_column(Text)
    cost: Mapped[Decimal | None] = mapped_column(Numeric(10, 2))
    image_url: Mapped[str | None] = mapped_column(String(400))
    is_available: Mapped[bool] = mapped_column(Boolean, default=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    is_out_of_stock: Mapped[bool] = mapped_column(Boolean, default=False)
    stock_quantity: Mapped[int | None] = mapped_column(Integer)  # NULL = untracked (unlimited)
    low_stock_threshold: Mapped[int | None] = mapped_column(Integer, default=10)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)

    category: Mapped["MenuCategory"] = relationship()

class PackageMenu(Base, IdMixin, TSMMixin):
    __tablename__ = "package_menu"
    package_id: Mapped[str] = mapped_column(String(36), ForeignKey("package.id"))
    menu_item_id: Mapped[str] = mapped_column(String(36), ForeignKey("menu_item.id"))
    __table_args__ = (
        UniqueConstraint("package_id", "menu_item_id", name="uq_package_menu_pair"),
    )

class StockMove(Base, IdMixin, TSMMixin):
    __tablename__ = "stock_move"
    menu_item_id: Mapped[str] = mapped_column(String(36), ForeignKey("menu_item.id"))
    type: Mapped[StockMoveType] = mapped_column(Enum(StockMoveType))
    qty_change: Mapped[int] = mapped_column(Integer)
    reason: Mapped[str | None] = mapped_column(Text)
    ref_order_id: Mapped[str | None] = mapped_column(String(36))

# ── Sessions & orders ───────────────────────────────────────────────────────
class CustomerSession(Base, IdMixin, TSMMixin):
    __tablename__ = "customer_session"
    table_id: Mapped[str] = mapped_column(String(36), ForeignKey("dining_table.id"))
    package_id: Mapped[str] = mapped_column(String(36), ForeignKey("package.id"))
    adult_count: Mapped[int] = mapped_column(Integer)
    child_count: Mapped[int] = mapped_column(Integer, default=0)
    start_time: Mapped[datetime] = mapped_column(UTCDateTime)
    end_time: Mapped[datetime] = mapped_column(UTCDateTime)  # start + duration, shifted by resume
    status: Mapped[SessionStatus] = mapped_column(Enum(SessionStatus), default=SessionStatus.ACTIVE)
    paused_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    paused_duration_minutes: Mapped[int] = mapped_column(Integer, default=0)
    last_warning_sent: Mapped[datetime | None] = mapped_column(UTCDateTime)
    actual_end_time: Mapped[datetime | None] = mapped_column(UTCDateTime)
    started_by_user_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("user.id"))
    qr_code: Mapped[str | None] = mapped_column(Text)  # payload only; rendering happens client side
    __table_args__ = (
        CheckConstraint("end_time >= start_time", name="ck_session_end_after_start"),
    )

    table: Mapped["DiningTable"] = relationship()
    package: Mapped["Package"] = relationship()
    started_by: Mapped["User"] = relationship()
    orders: Mapped[list["Order"]] = relationship(back_populates="session", order_by="Order.created_at")

class Order(Base, IdMixin, TSMMixin):
    __tablename__ = "order"
    session_id: Mapped[str] = mapped_column(String(36), ForeignKey("customer_session.id"))
    status: Mapped[OrderStatus] = mapped_column(Enum(OrderStatus), default=OrderStatus.PENDING)
    notes: Mapped[str | None] = mapped_column(Text)

    session: Mapped["CustomerSession"] = relationship(back_populates="orders")
    items: Mapped[list["OrderItem"]] = relationship(back_populates="order")

class OrderItem(Base, IdMixin, TSMMixin):
    __tablename__ = "order_item"
    order_id: Mapped[str] = mapped_column(String(36), ForeignKey("order.id"))
    menu_item_id: Mapped[str] = mapped_column(String(36), ForeignKey("menu_item.id"))
    quantity: Mapped[int] = mapped_column(Integer)
    waste_quantity: Mapped[int] = mapped_column(Integer, default=0)
    waste_reason: Mapped[str | None] = mapped_column(String(100))
    notes: Mapped[str | None] = mapped_column(Text)

    order: Mapped["Order"] = relationship(back_populates="items")
    menu_item: Mapped["MenuItem"] = relationship()

# ── Loyalty ─────────────────────────────────────────────────────────────────
class Member(Base, IdMixin, TSMMixin):
    __tablename__ = "member"
    phone: Mapped[str] = mapped_column(String(20), unique=True)
    full_name: Mapped[str] = mapped_column(String(160))
    email: Mapped[str | None] = mapped_column(String(160))
    date_of_birth: Mapped[date | None] = mapped_column(Date)
    total_points: Mapped[int] = mapped_column(Integer, default=0)  # cached balance_after of the latest ledger row
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

class MemberPoints(Base, IdMixin, TSMMixin):
    __tablename__ = "member_points"
    member_id: Mapped[str] = mapped_column(String(36), ForeignKey("member.id"))
    transaction_type: Mapped[PointsTransactionType] = mapped_column(Enum(PointsTransactionType))
    points: Mapped[int] = mapped_column(Integer)  # signed
    balance_after: Mapped[int] = mapped_column(Integer)
    receipt_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("receipt.id"))
    notes: Mapped[str | None] = mapped_column(Text)

# ── Receipts & payments ─────────────────────────────────────────────────────
class ReceiptCounter(Base):
    __tablename__ = "receipt_counter"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    last_value: Mapped[int] = mapped_column(Integer, default=0)

class Receipt(Base, IdMixin, TSMMixin):
    __tablename__ = "receipt"
    receipt_number: Mapped[str] = mapped_column(String(40), unique=True)
    session_id: Mapped[str] = mapped_column(String(36), ForeignKey("customer_session.id"), unique=True)
    member_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("member.id"))
    subtotal: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    service_charge: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0)
    vat: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0)
    discount_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0)
    discount_reason: Mapped[str | None] = mapped_column(String(255))
    points_used: Mapped[int] = mapped_column(Integer, default=0)
    points_value: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0)
    grand_total: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    points_earned: Mapped[int] = mapped_column(Integer, default=0)
    cashier_id: Mapped[str] = mapped_column(String(36), ForeignKey("user.id"))

    session: Mapped["CustomerSession"] = relationship()
    member: Mapped["Member"] = relationship()
    cashier: Mapped["User"] = relationship()
    payments: Mapped[list["Payment"]] = relationship(back_populates="receipt")

class Payment(Base, IdMixin, TSMMixin):
    __tablename__ = "payment"
    receipt_id: Mapped[str] = mapped_column(String(36), ForeignKey("receipt.id"))
    payment_method: Mapped[PaymentMethod] = mapped_column(Enum(PaymentMethod))
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    reference_number: Mapped[str | None] = mapped_column(String(255))
    notes: Mapped[str | None] = mapped_column(Text)

    receipt: Mapped["Receipt"] = relationship(back_populates="payments")

# ── Audit ───────────────────────────────────────────────────────────────────
class AuditLog(Base, IdMixin, TSMMixin):
    __tablename__ = "audit_log"
    actor_user_id: Mapped[str | None] = mapped_column(String(36))
    entity: Mapped[str] = mapped_column(String(60))
    entity_id: Mapped[str] = mapped_column(String(36))
    action: Mapped[str] = mapped_column(String(60))
    reason: Mapped[str | None] = mapped_column(Text)
    before: Mapped[str | None] = mapped_column(Text)
    after: Mapped[str | None] = mapped_column(Text)
