from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from buffet.errors import InvalidState, NotEntitled, NotFound, ValidationError
from buffet.models.core import CustomerSession, MenuItem, Order, OrderItem, OrderStatus, SessionStatus
from buffet.services import catalog, stock

logger = logging.getLogger(__name__)

NEXT_STATUS = {
    OrderStatus.PENDING: OrderStatus.ACCEPTED,
    OrderStatus.ACCEPTED: OrderStatus.IN_PROGRESS,
    OrderStatus.IN_PROGRESS: OrderStatus.SERVED,
}


def _order_query():
    return select(Order).options(selectinload(Order.items).selectinload(OrderItem.menu_item))


def get_order(db: Session, order_id: str) -> Order:
    order = db.execute(_order_query().where(Order.id == order_id)).scalar_one_or_none()
    if not order:
        raise NotFound('order', order_id)
    return order


def create_order(db: Session, *, session_id: str, lines: list[dict], notes: str | None = None) -> Order:
    """
    Place an order for an active session.

    Every line must name an item included in the session's package (directly
    or through an ancestor package) and be active and available. Stock is reserved line by line in
    menu-item order so concurrent orders lock rows in the same sequence.
    """
    s = db.get(CustomerSession, session_id)
    if not s:
        raise NotFound('session', session_id)
    if s.status != SessionStatus.ACTIVE:
        raise InvalidState(f'Session is {s.status.value}', session_id=session_id, status=s.status.value)
    if not lines:
        raise ValidationError('Order has no items', session_id=session_id)

    entitled = catalog.resolve_menu_ids(db, s.package_id)
    for line in lines:
        if int(line.get('quantity') or 0) <= 0:
            raise ValidationError('Quantity must be greater than zero', menu_item_id=line.get('menu_item_id'))
        if line['menu_item_id'] not in entitled:
            raise NotEntitled(line['menu_item_id'], s.package_id)
        item = db.get(MenuItem, line['menu_item_id'])
        if not item.is_active or not item.is_available:
            raise ValidationError(f'{item.name} is not available', menu_item_id=item.id)

    order = Order(session_id=s.id, status=OrderStatus.PENDING, notes=notes)
    db.add(order)
    db.flush()

    for line in sorted(lines, key=lambda l: l['menu_item_id']):
        stock.reserve(db, line['menu_item_id'], int(line['quantity']), order_id=order.id)
        db.add(OrderItem(
            order_id=order.id,
            menu_item_id=line['menu_item_id'],
            quantity=int(line['quantity']),
            waste_quantity=0,
            notes=line.get('notes'),
        ))
    db.flush()
    logger.info('Order %s placed for session %s (%s lines)', order.id, s.id, len(lines))
    return get_order(db, order.id)


def update_order_status(db: Session, order_id: str, status: OrderStatus) -> Order:
    order = get_order(db, order_id)
    current = order.status
    if status == OrderStatus.CANCELLED:
        allowed = current not in (OrderStatus.SERVED, OrderStatus.CANCELLED)
    else:
        allowed = NEXT_STATUS.get(current) == status
    if not allowed:
        logger.warning('Order %s: rejected status change %s -> %s', order.id, current.value, status.value)
        raise InvalidState(
            f'Order cannot move from {current.value} to {status.value}',
            order_id=order_id, status=current.value, requested=status.value,
        )
    order.status = status
    db.flush()
    return order


def mark_waste(db: Session, order_item_id: str, *, waste_quantity: int, reason: str | None = None) -> dict:
    item = db.get(OrderItem, order_item_id)
    if not item:
        raise NotFound('order item', order_item_id)
    if waste_quantity < 0 or waste_quantity > item.quantity:
        raise ValidationError(
            'Waste quantity must be between 0 and the ordered quantity',
            order_item_id=order_item_id, waste_quantity=waste_quantity, quantity=item.quantity,
        )
    item.waste_quantity = waste_quantity
    item.waste_reason = reason
    db.flush()
    pct = round(waste_quantity * 100 / item.quantity, 2) if item.quantity else 0.0
    return {'item': item, 'waste_percentage': pct}


def orders_for_session(db: Session, session_id: str) -> list[Order]:
    if not db.get(CustomerSession, session_id):
        raise NotFound('session', session_id)
    return db.execute(
        _order_query().where(Order.session_id == session_id).order_by(Order.created_at.asc())
    ).scalars().all()


def pending_orders(db: Session) -> list[Order]:
    return db.execute(
        _order_query()
        .where(Order.status.in_([OrderStatus.PENDING, OrderStatus.ACCEPTED, OrderStatus.IN_PROGRESS]))
        .order_by(Order.created_at.asc())
    ).scalars().all()
