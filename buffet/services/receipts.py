"""
Settlement: turn an active session's bill into an immutable receipt.

``settle`` runs as a single unit of work. Bill, point redemption, receipt,
payments and point accrual are flushed into the caller's transaction; any
failure rolls all of it back so a member's balance never moves without a
receipt to show for it.
"""
from __future__ import annotations

import logging
import math
from datetime import datetime
from decimal import Decimal
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from buffet.config import settings
from buffet.errors import InvalidState, NotFound, ValidationError
from buffet.models.common import utcnow
from buffet.models.core import (
    CustomerSession, Payment, PaymentMethod, Receipt, ReceiptCounter, SessionStatus,
)
from buffet.services import billing, loyalty, settings_store
from buffet.services.billing import _money
from buffet.util.audit import log_audit

logger = logging.getLogger(__name__)

RECEIPT_PREFIX = 'RCP'
MAX_NUMBER_ATTEMPTS = 3


def _next_sequence(db: Session) -> int:
    counter = db.execute(
        select(ReceiptCounter)
        .where(ReceiptCounter.id == 1)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if counter is None:
        counter = ReceiptCounter(id=1, last_value=0)
        db.add(counter)
    counter.last_value = (counter.last_value or 0) + 1
    db.flush()
    return counter.last_value


def generate_receipt_number(db: Session, *, now: datetime | None = None) -> str:
    local = (now or utcnow()).astimezone(ZoneInfo(settings.TZ))
    return f'{RECEIPT_PREFIX}{local:%Y%m%d}{_next_sequence(db):06d}'


def _payment_lines(payments: list[dict] | None, grand_total: Decimal) -> list[dict]:
    if not payments:
        return [{'payment_method': PaymentMethod.CASH, 'amount': max(grand_total, Decimal('0'))}]
    lines = []
    for p in payments:
        method = p.get('payment_method') or p.get('method')
        try:
            method = PaymentMethod(method.value if isinstance(method, PaymentMethod) else str(method).lower())
        except ValueError:
            raise ValidationError('Unknown payment method', payment_method=method)
        amount = _money(p.get('amount', 0))
        if amount < 0:
            raise ValidationError('Payment amount cannot be negative', amount=str(amount))
        lines.append({
            'payment_method': method,
            'amount': amount,
            'reference_number': p.get('reference_number'),
            'notes': p.get('notes'),
        })
    return lines


def _add_payments(db: Session, receipt: Receipt, lines: list[dict]) -> list[Payment]:
    rows = [Payment(receipt_id=receipt.id, **line) for line in lines]
    db.add_all(rows)
    db.flush()
    return rows


def _settle_once(db: Session, session_id: str, cashier_id: str, *, member_id: str | None,
                 discount_amount: Decimal, discount_reason: str | None, points_used: int,
                 payments: list[dict] | None, now: datetime | None) -> Receipt:
    s = db.execute(
        select(CustomerSession).where(CustomerSession.id == session_id)
    ).scalar_one_or_none()
    if not s:
        raise NotFound('session', session_id)
    if s.status != SessionStatus.ACTIVE:
        raise InvalidState(f'Session is {s.status.value}', session_id=session_id, status=s.status.value)
    if db.execute(select(Receipt.id).where(Receipt.session_id == session_id)).first():
        raise InvalidState('Session already has a receipt', session_id=session_id)

    member = loyalty.get_member(db, member_id) if member_id else None

    bill = billing.calculate_bill(db, session_id)

    points_value = Decimal('0')
    if member and points_used > 0:
        points_value = Decimal(points_used) * settings_store.get_number(db, settings_store.BAHT_PER_POINT)
        loyalty.redeem(db, member.id, points_used, notes=f'Redeemed for session {session_id}')

    grand_total = bill.grand_total - discount_amount - points_value
    q = bill.quantized()
    receipt = Receipt(
        receipt_number=generate_receipt_number(db, now=now),
        session_id=s.id,
        member_id=member.id if member else None,
        subtotal=q['subtotal'],
        service_charge=q['service_charge'],
        vat=q['vat'],
        discount_amount=_money(discount_amount),
        discount_reason=discount_reason,
        points_used=points_used if member else 0,
        points_value=_money(points_value),
        grand_total=_money(grand_total),
        points_earned=0,
        cashier_id=cashier_id,
    )
    db.add(receipt)
    db.flush()

    _add_payments(db, receipt, _payment_lines(payments, receipt.grand_total))

    if member:
        rate = settings_store.get_number(db, settings_store.POINTS_PER_BAHT)
        earned = math.floor(receipt.grand_total * rate)
        if earned > 0:
            loyalty.earn(db, member.id, earned, receipt_id=receipt.id,
                         notes=f'Earned from receipt {receipt.receipt_number}')
            receipt.points_earned = earned

    log_audit(
        db, cashier_id, 'receipt', receipt.id, 'SETTLE',
        after={
            'receipt_number': receipt.receipt_number,
            'session_id': s.id,
            'grand_total': receipt.grand_total,
            'points_used': receipt.points_used,
            'points_earned': receipt.points_earned,
        },
        reason=discount_reason,
    )
    db.flush()
    return receipt


def settle(db: Session, session_id: str, cashier_id: str, *, member_id: str | None = None,
           discount_amount=0, discount_reason: str | None = None, points_used: int = 0,
           payments: list[dict] | None = None, now: datetime | None = None) -> Receipt:
    discount = _money(discount_amount or 0)
    points_used = int(points_used or 0)
    if discount < 0:
        raise ValidationError('Discount cannot be negative', discount_amount=str(discount))
    if points_used < 0:
        raise ValidationError('Points used cannot be negative', points_used=points_used)
    if points_used > 0 and not member_id:
        raise ValidationError('Points can only be redeemed by a member', points_used=points_used)

    for attempt in range(MAX_NUMBER_ATTEMPTS):
        try:
            receipt = _settle_once(
                db, session_id, cashier_id,
                member_id=member_id, discount_amount=discount, discount_reason=discount_reason,
                points_used=points_used, payments=payments, now=now,
            )
        except IntegrityError:
            db.rollback()
            logger.warning('Receipt number collision settling session %s (attempt %s)', session_id, attempt + 1)
            continue
        except Exception:
            db.rollback()
            logger.warning('Settlement of session %s rolled back', session_id, exc_info=True)
            raise
        logger.info('Session %s settled: receipt %s, total %s', session_id, receipt.receipt_number,
                    receipt.grand_total)
        return get_receipt(db, receipt.id)

    raise InvalidState('Could not allocate a unique receipt number', session_id=session_id)


def _receipt_query():
    return select(Receipt).options(
        selectinload(Receipt.session).selectinload(CustomerSession.table),
        selectinload(Receipt.session).selectinload(CustomerSession.package),
        selectinload(Receipt.member),
        selectinload(Receipt.cashier),
        selectinload(Receipt.payments),
    )


def get_receipt(db: Session, receipt_id: str) -> Receipt:
    receipt = db.execute(_receipt_query().where(Receipt.id == receipt_id)).scalar_one_or_none()
    if not receipt:
        raise NotFound('receipt', receipt_id)
    return receipt


def get_receipt_for_session(db: Session, session_id: str) -> Receipt | None:
    return db.execute(_receipt_query().where(Receipt.session_id == session_id)).scalar_one_or_none()


def list_receipts(db: Session, *, limit: int = 100) -> list[Receipt]:
    return db.execute(_receipt_query().order_by(Receipt.created_at.desc()).limit(limit)).scalars().all()
