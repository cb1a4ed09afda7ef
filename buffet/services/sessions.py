"""
Customer session lifecycle.

A session leases one table for the duration of its package. The dining
window is ``start_time .. end_time``; pausing freezes the clock and resuming
pushes ``end_time`` forward by exactly the paused interval. Time remaining
and warning levels are computed on read, so callers poll rather than
schedule timers.

Every function takes an optional ``now`` so the clock can be fixed in tests.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from buffet.config import settings
from buffet.errors import AlreadyPaused, InvalidState, NotFound, NotPaused, TableUnavailable, ValidationError
from buffet.models.common import utcnow
from buffet.models.core import (
    CustomerSession, DiningTable, Order, OrderItem, Package, SessionStatus, TableStatus,
)
from buffet.services import catalog, occupancy, receipts
from buffet.util.audit import log_audit

logger = logging.getLogger(__name__)


class WarningLevel(str, Enum):
    NONE = 'none'
    MEDIUM = 'medium'
    CRITICAL = 'critical'
    OVERTIME = 'overtime'


MEDIUM_THRESHOLD_MINUTES = 15
CRITICAL_THRESHOLD_MINUTES = 5

# minimum gap between two notifications of the same level
WARNING_INTERVALS = {
    WarningLevel.MEDIUM: timedelta(minutes=10),
    WarningLevel.CRITICAL: timedelta(minutes=5),
    WarningLevel.OVERTIME: timedelta(minutes=5),
}


@dataclass
class TimeRemaining:
    remaining_minutes: int
    is_paused: bool
    is_overtime: bool
    overtime_minutes: int
    end_time: datetime

    def to_dict(self) -> dict:
        return {
            'remaining_minutes': self.remaining_minutes,
            'is_paused': self.is_paused,
            'is_overtime': self.is_overtime,
            'overtime_minutes': self.overtime_minutes,
            'end_time': self.end_time.isoformat(),
        }


@dataclass
class TimeWarning:
    session_id: str
    table_number: str | None
    level: WarningLevel
    remaining_minutes: int
    should_notify: bool

    def to_dict(self) -> dict:
        return {
            'session_id': self.session_id,
            'table_number': self.table_number,
            'level': self.level.value,
            'remaining_minutes': self.remaining_minutes,
            'should_notify': self.should_notify,
        }


def _floor_minutes(delta: timedelta) -> int:
    return int(delta.total_seconds() // 60)


def _check_counts(adult_count: int, child_count: int) -> None:
    if adult_count < 0 or child_count < 0:
        raise ValidationError(
            'Guest counts cannot be negative', adult_count=adult_count, child_count=child_count
        )


def _snapshot(s: CustomerSession) -> dict:
    return {
        'status': s.status.value,
        'table_id': s.table_id,
        'package_id': s.package_id,
        'adult_count': s.adult_count,
        'child_count': s.child_count,
        'end_time': s.end_time,
        'paused_at': s.paused_at,
    }


def get_session(db: Session, session_id: str) -> CustomerSession:
    s = db.execute(
        select(CustomerSession)
        .where(CustomerSession.id == session_id)
        .options(selectinload(CustomerSession.table), selectinload(CustomerSession.package))
    ).scalar_one_or_none()
    if not s:
        raise NotFound('session', session_id)
    return s


def _get_active(db: Session, session_id: str) -> CustomerSession:
    s = get_session(db, session_id)
    if s.status != SessionStatus.ACTIVE:
        raise InvalidState(
            f'Session is {s.status.value}', session_id=session_id, status=s.status.value
        )
    return s


def _get_package(db: Session, package_id: str) -> Package:
    pkg = db.get(Package, package_id)
    if not pkg or not pkg.is_active:
        raise NotFound('package', package_id)
    return pkg


def start(db: Session, *, table_id: str, package_id: str, adult_count: int, child_count: int = 0,
          started_by_user_id: str | None = None, now: datetime | None = None) -> CustomerSession:
    now = now or utcnow()
    _check_counts(adult_count, child_count)
    table = occupancy.get_table(db, table_id, lock=True)
    pkg = _get_package(db, package_id)

    s = CustomerSession(
        table_id=table.id,
        package_id=pkg.id,
        adult_count=adult_count,
        child_count=child_count,
        start_time=now,
        end_time=now + timedelta(minutes=pkg.duration_minutes),
        status=SessionStatus.ACTIVE,
        paused_duration_minutes=0,
        started_by_user_id=started_by_user_id,
    )
    db.add(s)
    db.flush()

    occupancy.occupy(db, table, session_id=s.id, actor_user_id=started_by_user_id)
    s.qr_code = f'{settings.FRONTEND_URL.rstrip("/")}/customer/{s.id}'
    log_audit(db, started_by_user_id, 'session', s.id, 'START', after=_snapshot(s))
    db.flush()
    logger.info(
        'Session %s started on table %s with %s (%s adults, %s children)',
        s.id, table.table_number, pkg.name, adult_count, child_count,
    )
    return get_session(db, s.id)


def pause(db: Session, session_id: str, *, actor_user_id: str | None = None,
          now: datetime | None = None) -> CustomerSession:
    now = now or utcnow()
    s = _get_active(db, session_id)
    if s.paused_at is not None:
        raise AlreadyPaused(session_id)
    s.paused_at = now
    log_audit(db, actor_user_id, 'session', s.id, 'PAUSE', after={'paused_at': now})
    db.flush()
    logger.info('Session %s paused', s.id)
    return s


def resume(db: Session, session_id: str, *, actor_user_id: str | None = None,
           now: datetime | None = None) -> CustomerSession:
    now = now or utcnow()
    s = _get_active(db, session_id)
    if s.paused_at is None:
        raise NotPaused(session_id)

    delta = max(now - s.paused_at, timedelta(0))
    before = _snapshot(s)
    s.paused_duration_minutes = (s.paused_duration_minutes or 0) + _floor_minutes(delta)
    s.end_time = s.end_time + delta
    s.paused_at = None
    log_audit(db, actor_user_id, 'session', s.id, 'RESUME', before=before, after=_snapshot(s))
    db.flush()
    logger.info('Session %s resumed after %s, end time now %s', s.id, delta, s.end_time.isoformat())
    return s


def update_guest_count(db: Session, session_id: str, *, adult_count: int, child_count: int,
                       actor_user_id: str | None = None) -> CustomerSession:
    _check_counts(adult_count, child_count)
    s = _get_active(db, session_id)
    before = _snapshot(s)
    s.adult_count = adult_count
    s.child_count = child_count
    log_audit(db, actor_user_id, 'session', s.id, 'GUESTS', before=before, after=_snapshot(s))
    db.flush()
    return s


def update_package(db: Session, session_id: str, *, package_id: str,
                   actor_user_id: str | None = None) -> CustomerSession:
    s = _get_active(db, session_id)
    pkg = _get_package(db, package_id)
    before = _snapshot(s)
    s.package = pkg
    # the window is recomputed from the original start, paused time is not carried over
    s.end_time = s.start_time + timedelta(minutes=pkg.duration_minutes)
    db.flush()
    log_audit(db, actor_user_id, 'session', s.id, 'PACKAGE', before=before, after=_snapshot(s))
    db.flush()
    logger.info('Session %s switched to package %s', s.id, pkg.name)
    return get_session(db, s.id)


def transfer_table(db: Session, session_id: str, *, new_table_id: str,
                   actor_user_id: str | None = None) -> CustomerSession:
    s = _get_active(db, session_id)
    if s.table_id == new_table_id:
        raise InvalidState('Session is already on this table', session_id=session_id, table_id=new_table_id)

    new_table = occupancy.get_table(db, new_table_id, lock=True)
    if new_table.status != TableStatus.AVAILABLE or new_table.is_out_of_service:
        logger.warning('Transfer of session %s rejected: table %s is %s', s.id,
                       new_table.table_number, new_table.status.value)
        raise TableUnavailable(new_table)
    old_table = occupancy.get_table(db, s.table_id, lock=True)

    before = _snapshot(s)
    occupancy.occupy(db, new_table, session_id=s.id, actor_user_id=actor_user_id, reason='transfer in')
    occupancy.release(db, old_table, session_id=s.id, actor_user_id=actor_user_id, reason='transfer out')
    s.table = new_table
    db.flush()
    log_audit(db, actor_user_id, 'session', s.id, 'TRANSFER', before=before, after=_snapshot(s))
    db.flush()
    logger.info('Session %s moved from table %s to %s', s.id, old_table.table_number, new_table.table_number)
    return get_session(db, s.id)


def time_remaining(s: CustomerSession, now: datetime | None = None) -> TimeRemaining:
    now = now or utcnow()
    reference = s.paused_at if s.paused_at is not None else now
    raw = _floor_minutes(s.end_time - reference)
    return TimeRemaining(
        remaining_minutes=max(raw, 0),
        is_paused=s.paused_at is not None,
        is_overtime=raw < 0,
        overtime_minutes=max(-raw, 0),
        end_time=s.end_time,
    )


def get_time_remaining(db: Session, session_id: str, *, now: datetime | None = None) -> TimeRemaining:
    return time_remaining(get_session(db, session_id), now)


def classify(remaining_minutes: int) -> WarningLevel:
    if remaining_minutes <= 0:
        return WarningLevel.OVERTIME
    if remaining_minutes <= CRITICAL_THRESHOLD_MINUTES:
        return WarningLevel.CRITICAL
    if remaining_minutes <= MEDIUM_THRESHOLD_MINUTES:
        return WarningLevel.MEDIUM
    return WarningLevel.NONE


def _evaluate(s: CustomerSession, now: datetime) -> TimeWarning:
    if s.status != SessionStatus.ACTIVE or s.paused_at is not None:
        remaining = time_remaining(s, now).remaining_minutes
        return TimeWarning(s.id, s.table.table_number if s.table else None, WarningLevel.NONE, remaining, False)

    raw = _floor_minutes(s.end_time - now)
    level = classify(raw)
    should_notify = False
    if level != WarningLevel.NONE:
        last = s.last_warning_sent
        should_notify = last is None or now - last >= WARNING_INTERVALS[level]
    return TimeWarning(
        session_id=s.id,
        table_number=s.table.table_number if s.table else None,
        level=level,
        remaining_minutes=max(raw, 0),
        should_notify=should_notify,
    )


def check_time_warning(db: Session, session_id: str, *, now: datetime | None = None) -> TimeWarning:
    return _evaluate(get_session(db, session_id), now or utcnow())


def get_sessions_needing_warning(db: Session, *, now: datetime | None = None) -> list[TimeWarning]:
    now = now or utcnow()
    sessions = db.execute(
        select(CustomerSession)
        .where(CustomerSession.status == SessionStatus.ACTIVE, CustomerSession.paused_at.is_(None))
        .options(selectinload(CustomerSession.table))
        .order_by(CustomerSession.end_time.asc())
    ).scalars().all()
    warnings = [_evaluate(s, now) for s in sessions]
    return [w for w in warnings if w.should_notify]


def mark_warning_as_sent(db: Session, session_id: str, *, now: datetime | None = None) -> CustomerSession:
    s = get_session(db, session_id)
    s.last_warning_sent = now or utcnow()
    db.flush()
    return s


def _close(db: Session, s: CustomerSession, status: SessionStatus, *, actor_user_id: str | None,
           now: datetime, reason: str | None = None) -> CustomerSession:
    before = _snapshot(s)
    s.status = status
    s.actual_end_time = now
    s.paused_at = None
    table = occupancy.get_table(db, s.table_id, lock=True)
    occupancy.release(
        db, table, session_id=s.id, actor_user_id=actor_user_id,
        reason='session cancel' if status == SessionStatus.CANCELLED else 'session end',
    )
    log_audit(
        db, actor_user_id, 'session', s.id,
        'CANCEL' if status == SessionStatus.CANCELLED else 'END',
        before=before, after=_snapshot(s), reason=reason,
    )
    db.flush()
    logger.info('Session %s %s, table %s released for cleaning', s.id, status.value, table.table_number)
    return s


def end(db: Session, session_id: str, *, cashier_id: str | None = None, payment_data: dict | None = None,
        now: datetime | None = None):
    """
    Complete a session. With a cashier the bill is settled first and the
    receipt is returned alongside the session; without one the session simply
    completes and no receipt is produced. A session settled beforehand keeps
    its existing receipt, and passing fresh payment data for it is an error.
    """
    now = now or utcnow()
    s = _get_active(db, session_id)
    receipt = receipts.get_receipt_for_session(db, session_id)
    if receipt is not None and any((payment_data or {}).values()):
        raise InvalidState('Session already has a receipt', session_id=session_id,
                           receipt_number=receipt.receipt_number)
    if receipt is None and cashier_id:
        receipt = receipts.settle(db, session_id, cashier_id, **(payment_data or {}))
    _close(db, s, SessionStatus.COMPLETED, actor_user_id=cashier_id, now=now)
    return s, receipt


def cancel(db: Session, session_id: str, *, reason: str | None = None, actor_user_id: str | None = None,
           now: datetime | None = None) -> CustomerSession:
    s = _get_active(db, session_id)
    return _close(db, s, SessionStatus.CANCELLED, actor_user_id=actor_user_id, now=now or utcnow(), reason=reason)


def find_active_sessions(db: Session, *, branch_id: str | None = None) -> list[CustomerSession]:
    q = (
        select(CustomerSession)
        .where(CustomerSession.status == SessionStatus.ACTIVE)
        .options(selectinload(CustomerSession.table), selectinload(CustomerSession.package))
        .order_by(CustomerSession.start_time.asc())
    )
    if branch_id:
        q = q.join(DiningTable, DiningTable.id == CustomerSession.table_id).where(DiningTable.branch_id == branch_id)
    return db.execute(q).scalars().all()


def get_session_for_customer(db: Session, session_id: str, *, now: datetime | None = None) -> dict:
    s = db.execute(
        select(CustomerSession)
        .where(CustomerSession.id == session_id, CustomerSession.status == SessionStatus.ACTIVE)
        .options(
            selectinload(CustomerSession.table),
            selectinload(CustomerSession.package),
            selectinload(CustomerSession.orders).selectinload(Order.items).selectinload(OrderItem.menu_item),
        )
    ).scalar_one_or_none()
    if not s:
        raise NotFound('session', session_id)

    remaining = time_remaining(s, now)
    menu = catalog.get_package_menus(db, s.package_id)
    return {
        'session': s,
        'table_number': s.table.table_number,
        'package_name': s.package.name,
        'remaining': remaining,
        'menu': menu,
        'orders': list(s.orders),
    }
