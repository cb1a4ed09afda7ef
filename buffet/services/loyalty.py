from __future__ import annotations

import logging
from datetime import date

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from buffet.errors import InsufficientPoints, InvalidState, NotFound, ValidationError
from buffet.models.core import Member, MemberPoints, PointsTransactionType
from buffet.util.audit import log_audit

logger = logging.getLogger(__name__)


def get_member(db: Session, member_id: str, *, lock: bool = False) -> Member:
    if lock:
        member = db.execute(
            select(Member)
            .where(Member.id == member_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
    else:
        member = db.get(Member, member_id)
    if not member:
        raise NotFound('member', member_id)
    return member


def find_member_by_phone(db: Session, phone: str) -> Member | None:
    return db.execute(select(Member).where(Member.phone == phone.strip())).scalar_one_or_none()


def create_member(db: Session, *, phone: str, full_name: str, email: str | None = None,
                  date_of_birth: date | None = None) -> Member:
    phone = (phone or '').strip()
    if not phone or not (full_name or '').strip():
        raise ValidationError('Phone and name are required', phone=phone)
    if find_member_by_phone(db, phone):
        raise InvalidState('A member with this phone already exists', phone=phone)

    member = Member(phone=phone, full_name=full_name.strip(), email=email, date_of_birth=date_of_birth,
                    total_points=0, is_active=True)
    db.add(member)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        raise InvalidState('A member with this phone already exists', phone=phone)
    logger.info('Member %s registered', member.id)
    return member


def update_member(db: Session, member_id: str, *, full_name: str | None = None, email: str | None = None,
                  date_of_birth: date | None = None, is_active: bool | None = None) -> Member:
    member = get_member(db, member_id)
    if full_name is not None:
        member.full_name = full_name.strip()
    if email is not None:
        member.email = email
    if date_of_birth is not None:
        member.date_of_birth = date_of_birth
    if is_active is not None:
        member.is_active = is_active
    db.flush()
    return member


def _append(db: Session, member: Member, kind: PointsTransactionType, points: int, *,
            receipt_id: str | None, notes: str | None) -> MemberPoints:
    balance = (member.total_points or 0) + points
    row = MemberPoints(
        member_id=member.id,
        transaction_type=kind,
        points=points,
        balance_after=balance,
        receipt_id=receipt_id,
        notes=notes,
    )
    member.total_points = balance
    db.add(row)
    db.flush()
    return row


def earn(db: Session, member_id: str, points: int, *, receipt_id: str | None = None,
         notes: str | None = None) -> MemberPoints:
    if points <= 0:
        raise ValidationError('Points to earn must be positive', member_id=member_id, points=points)
    member = get_member(db, member_id, lock=True)
    row = _append(db, member, PointsTransactionType.EARNED, points, receipt_id=receipt_id, notes=notes)
    logger.info('Member %s earned %s points (balance %s)', member.id, points, row.balance_after)
    return row


def redeem(db: Session, member_id: str, points: int, *, receipt_id: str | None = None,
           notes: str | None = None) -> MemberPoints:
    if points <= 0:
        raise ValidationError('Points to redeem must be positive', member_id=member_id, points=points)
    member = get_member(db, member_id, lock=True)
    available = member.total_points or 0
    if available < points:
        logger.warning('Redemption of %s points rejected for member %s (balance %s)', points, member.id, available)
        raise InsufficientPoints(member.id, points, available)
    row = _append(db, member, PointsTransactionType.REDEEMED, -points, receipt_id=receipt_id, notes=notes)
    logger.info('Member %s redeemed %s points (balance %s)', member.id, points, row.balance_after)
    return row


def adjust(db: Session, member_id: str, points: int, *, notes: str | None = None,
           actor_user_id: str | None = None) -> MemberPoints:
    """Manual signed correction; the balance may not go below zero."""
    if points == 0:
        raise ValidationError('Adjustment cannot be zero', member_id=member_id)
    member = get_member(db, member_id, lock=True)
    available = member.total_points or 0
    if available + points < 0:
        raise InsufficientPoints(member.id, -points, available)
    row = _append(db, member, PointsTransactionType.ADJUSTED, points, receipt_id=None, notes=notes)
    log_audit(db, actor_user_id, 'member', member.id, 'POINTS_ADJUST',
              before={'total_points': available}, after={'total_points': row.balance_after}, reason=notes)
    db.flush()
    return row


def points_history(db: Session, member_id: str, *, limit: int = 50) -> list[MemberPoints]:
    get_member(db, member_id)
    return db.execute(
        select(MemberPoints)
        .where(MemberPoints.member_id == member_id)
        .order_by(MemberPoints.created_at.desc())
        .limit(limit)
    ).scalars().all()
