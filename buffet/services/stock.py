from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from buffet.errors import InsufficientStock, NotFound, OutOfStock, ValidationError
from buffet.models.core import MenuItem, StockMove, StockMoveType

logger = logging.getLogger(__name__)

DEFAULT_LOW_STOCK_THRESHOLD = 10


def _lock_menu_item(db: Session, menu_item_id: str) -> MenuItem:
    # row lock serializes check-then-decrement per item; populate_existing refreshes a cached instance
    item = db.execute(
        select(MenuItem)
        .where(MenuItem.id == menu_item_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if not item:
        raise NotFound('menu item', menu_item_id)
    return item


def reserve(db: Session, menu_item_id: str, quantity: int, *, order_id: str | None = None) -> MenuItem:
    if quantity <= 0:
        raise ValidationError('Quantity must be greater than zero', menu_item_id=menu_item_id, quantity=quantity)

    item = _lock_menu_item(db, menu_item_id)
    if item.is_out_of_stock:
        raise OutOfStock(item)

    if item.stock_quantity is None:
        return item

    if item.stock_quantity < quantity:
        logger.warning(
            'Stock reservation rejected for %s: requested %s, available %s',
            item.id, quantity, item.stock_quantity,
        )
        raise InsufficientStock(item, quantity)

    item.stock_quantity -= quantity
    if item.stock_quantity == 0:
        item.is_out_of_stock = True
        logger.info('Menu item %s (%s) is now out of stock', item.id, item.name)

    db.add(
        StockMove(
            menu_item_id=item.id,
            type=StockMoveType.SALE,
            qty_change=-quantity,
            reason=f'Order {order_id}' if order_id else 'Reservation',
            ref_order_id=order_id,
        )
    )
    db.flush()
    return item


def restock(db: Session, menu_item_id: str, quantity: int, *, reason: str | None = None) -> MenuItem:
    if quantity <= 0:
        raise ValidationError('Quantity must be greater than zero', menu_item_id=menu_item_id, quantity=quantity)

    item = _lock_menu_item(db, menu_item_id)
    item.stock_quantity = (item.stock_quantity or 0) + quantity
    item.is_out_of_stock = False
    db.add(
        StockMove(
            menu_item_id=item.id,
            type=StockMoveType.RESTOCK,
            qty_change=quantity,
            reason=reason or 'Restock',
        )
    )
    db.flush()
    logger.info('Restocked %s by %s to %s', item.id, quantity, item.stock_quantity)
    return item


def low_stock(db: Session) -> list[MenuItem]:
    threshold = func.coalesce(MenuItem.low_stock_threshold, DEFAULT_LOW_STOCK_THRESHOLD)
    return db.execute(
        select(MenuItem)
        .where(
            MenuItem.is_active.is_(True),
            MenuItem.stock_quantity.is_not(None),
            MenuItem.stock_quantity <= threshold,
        )
        .order_by(MenuItem.stock_quantity.asc(), MenuItem.name.asc())
    ).scalars().all()
