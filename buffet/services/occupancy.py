"""
Table occupancy: the only place a table's status changes.

Sessions (start, end, cancel, transfer) and manual staff overrides all go
through ``transition_table`` so the allowed moves and their preconditions are
checked in one place.
"""
from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from buffet.errors import InvalidState, NotFound, TableUnavailable
from buffet.models.core import CustomerSession, DiningTable, SessionStatus, TableStatus
from buffet.util.audit import log_audit

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[TableStatus, set[TableStatus]] = {
    TableStatus.AVAILABLE: {TableStatus.OCCUPIED, TableStatus.RESERVED, TableStatus.CLEANING},
    TableStatus.OCCUPIED: {TableStatus.CLEANING},
    TableStatus.CLEANING: {TableStatus.AVAILABLE},
    TableStatus.RESERVED: {TableStatus.AVAILABLE},
}

MANUAL_TARGETS = {TableStatus.AVAILABLE, TableStatus.RESERVED, TableStatus.CLEANING}


def get_table(db: Session, table_id: str, *, lock: bool = False) -> DiningTable:
    if lock:
        table = db.execute(
            select(DiningTable)
            .where(DiningTable.id == table_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
    else:
        table = db.get(DiningTable, table_id)
    if not table:
        raise NotFound('table', table_id)
    return table


def open_session_count(db: Session, table_id: str, *, exclude_session_id: str | None = None) -> int:
    q = select(func.count(CustomerSession.id)).where(
        CustomerSession.table_id == table_id,
        CustomerSession.status == SessionStatus.ACTIVE,
    )
    if exclude_session_id:
        q = q.where(CustomerSession.id != exclude_session_id)
    return int(db.execute(q).scalar() or 0)


def transition_table(db: Session, table: DiningTable, target: TableStatus, *, reason: str,
                     actor_user_id: str | None = None, session_id: str | None = None) -> DiningTable:
    current = table.status
    if target not in ALLOWED_TRANSITIONS.get(current, set()):
        logger.warning('Rejected table %s transition %s -> %s (%s)', table.id, current.value, target.value, reason)
        raise TableUnavailable(
            table, message=f'Table {table.table_number} cannot move from {current.value} to {target.value}'
        )

    if target == TableStatus.OCCUPIED:
        if table.is_out_of_service or not table.is_active:
            raise TableUnavailable(table, message=f'Table {table.table_number} is out of service')
        if open_session_count(db, table.id, exclude_session_id=session_id) > 0:
            raise TableUnavailable(table, message=f'Table {table.table_number} already has an active session')

    table.status = target
    log_audit(
        db, actor_user_id, 'table', table.id, 'STATUS',
        before={'status': current.value}, after={'status': target.value, 'session_id': session_id},
        reason=reason,
    )
    logger.info('Table %s: %s -> %s (%s)', table.table_number, current.value, target.value, reason)
    return table


def occupy(db: Session, table: DiningTable, *, session_id: str | None, actor_user_id: str | None,
           reason: str = 'session start') -> DiningTable:
    return transition_table(
        db, table, TableStatus.OCCUPIED, reason=reason, actor_user_id=actor_user_id, session_id=session_id
    )


def release(db: Session, table: DiningTable, *, session_id: str | None, actor_user_id: str | None,
            reason: str = 'session end') -> DiningTable:
    return transition_table(
        db, table, TableStatus.CLEANING, reason=reason, actor_user_id=actor_user_id, session_id=session_id
    )


def set_table_status(db: Session, *, table_id: str, status: TableStatus,
                     actor_user_id: str | None = None) -> DiningTable:
    table = get_table(db, table_id, lock=True)
    if status not in MANUAL_TARGETS:
        raise InvalidState('Tables become occupied only by starting a session', table_id=table_id,
                           requested=status.value)
    if open_session_count(db, table.id) > 0:
        raise InvalidState('Table has an active session', table_id=table_id, status=table.status.value)
    if table.status == status:
        return table
    transition_table(db, table, status, reason='manual', actor_user_id=actor_user_id)
    db.flush()
    return table


def toggle_out_of_service(db: Session, *, table_id: str, notes: str | None = None,
                          actor_user_id: str | None = None) -> DiningTable:
    table = get_table(db, table_id, lock=True)
    going_out = not table.is_out_of_service
    if going_out and (table.status == TableStatus.OCCUPIED or open_session_count(db, table.id) > 0):
        raise InvalidState('An occupied table cannot be taken out of service', table_id=table_id)

    table.is_out_of_service = going_out
    table.service_notes = notes if going_out else None
    log_audit(
        db, actor_user_id, 'table', table.id, 'OUT_OF_SERVICE' if going_out else 'BACK_IN_SERVICE',
        after={'is_out_of_service': going_out}, reason=notes,
    )
    db.flush()
    return table


def table_dashboard(db: Session, *, branch_id: str | None = None) -> dict:
    q = select(DiningTable).where(DiningTable.is_active.is_(True))
    if branch_id:
        q = q.where(DiningTable.branch_id == branch_id)
    tables = db.execute(q.order_by(DiningTable.table_number.asc())).scalars().all()

    active = db.execute(
        select(CustomerSession).where(
            CustomerSession.status == SessionStatus.ACTIVE,
            CustomerSession.table_id.in_([t.id for t in tables]),
        )
    ).scalars().all() if tables else []
    by_table = {s.table_id: s for s in active}

    summary = {
        'total': len(tables),
        'available': sum(1 for t in tables if t.status == TableStatus.AVAILABLE and not t.is_out_of_service),
        'occupied': sum(1 for t in tables if t.status == TableStatus.OCCUPIED),
        'reserved': sum(1 for t in tables if t.status == TableStatus.RESERVED),
        'cleaning': sum(1 for t in tables if t.status == TableStatus.CLEANING),
        'out_of_service': sum(1 for t in tables if t.is_out_of_service),
    }
    return {'summary': summary, 'tables': [(t, by_table.get(t.id)) for t in tables]}
