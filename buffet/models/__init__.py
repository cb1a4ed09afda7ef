# Importing the module registers tables with Base for create_all()
from .core import (  # noqa: F401
    # Enums
    TableStatus, SessionStatus, OrderStatus, PaymentMethod, PointsTransactionType, StockMoveType,

    # Identity
    Role, User, Branch,

    # Settings
    Setting,

    # Dining, packages & menu
    DiningTable, Package, MenuCategory, MenuItem, PackageMenu, StockMove,

    # Sessions & orders
    CustomerSession, Order, OrderItem,

    # Loyalty, receipts & payments
    Member, MemberPoints, ReceiptCounter, Receipt, Payment,

    # Audit
    AuditLog,
)

__all__ = [
    "TableStatus", "SessionStatus", "OrderStatus", "PaymentMethod", "PointsTransactionType", "StockMoveType",
    "Role", "User", "Branch",
    "Setting",
    "DiningTable", "Package", "MenuCategory", "MenuItem", "PackageMenu", "StockMove",
    "CustomerSession", "Order", "OrderItem",
    "Member", "MemberPoints", "ReceiptCounter", "Receipt", "Payment",
    "AuditLog",
]
