import re
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from buffet.errors import InsufficientPoints, InvalidState, NotFound, ValidationError
from buffet.models.core import (
    Member, MemberPoints, Payment, PaymentMethod, PointsTransactionType, Receipt, SessionStatus,
)
from buffet.services import billing, loyalty, receipts, sessions, settings_store


def _silver_session(db, seed, now, table=0):
    return sessions.start(db, table_id=seed.tables[table].id, package_id=seed.silver.id,
                          adult_count=2, child_count=1, now=now)


def test_silver_bill_for_two_adults_and_a_child(db, seed, now):
    s = _silver_session(db, seed, now)
    bill = billing.calculate_bill(db, s.id)
    assert bill.subtotal == Decimal("747")
    assert bill.service_charge == Decimal("74.7")
    assert bill.vat == Decimal("57.519")
    assert bill.grand_total == Decimal("879.219")
    assert bill.quantized()["grand_total"] == Decimal("879.22")
    assert bill.to_dict()["grand_total"] == 879.22


def test_bill_reads_rates_at_call_time(db, seed, now):
    s = _silver_session(db, seed, now)
    settings_store.upsert_setting(db, key=settings_store.SERVICE_CHARGE_PERCENT, value="0")
    settings_store.upsert_setting(db, key=settings_store.VAT_PERCENT, value="7")
    bill = billing.calculate_bill(db, s.id)
    assert bill.service_charge == 0
    assert bill.grand_total == Decimal("799.29")


def test_bill_is_deterministic(db, seed, now):
    s = _silver_session(db, seed, now)
    assert billing.calculate_bill(db, s.id) == billing.calculate_bill(db, s.id)


def test_negative_setting_is_rejected(db, seed):
    with pytest.raises(ValidationError):
        settings_store.upsert_setting(db, key=settings_store.VAT_PERCENT, value="-1")


def test_unknown_session(db, seed):
    with pytest.raises(NotFound):
        billing.calculate_bill(db, "missing")


def test_settle_without_member_pays_cash(db, seed, now):
    s = _silver_session(db, seed, now)
    r = receipts.settle(db, s.id, seed.admin.id, now=now)
    assert re.fullmatch(r"RCP\d{8}\d{6}", r.receipt_number)
    assert r.receipt_number.endswith("000001")
    assert r.grand_total == Decimal("879.22")
    assert r.points_earned == 0
    assert [(p.payment_method, p.amount) for p in r.payments] == [(PaymentMethod.CASH, Decimal("879.22"))]
    assert r.session.table.table_number == "1"


def test_member_redeems_and_earns_points(db, seed, now):
    s = _silver_session(db, seed, now)
    r = receipts.settle(db, s.id, seed.admin.id, member_id=seed.member.id, points_used=100, now=now)

    assert r.points_used == 100
    assert r.points_value == Decimal("100.00")
    assert r.grand_total == Decimal("779.22")
    assert r.points_earned == 7

    ledger = db.execute(
        select(MemberPoints).where(MemberPoints.member_id == seed.member.id)
    ).scalars().all()
    redeemed = [row for row in ledger if row.transaction_type == PointsTransactionType.REDEEMED]
    assert [(row.points, row.balance_after) for row in redeemed] == [(-100, 400)]
    earned = [row for row in ledger if row.receipt_id == r.id]
    assert [(row.points, row.balance_after) for row in earned] == [(7, 407)]
    assert db.get(Member, seed.member.id).total_points == 407


def test_discount_is_subtracted_after_tax(db, seed, now):
    s = _silver_session(db, seed, now)
    r = receipts.settle(db, s.id, seed.admin.id, discount_amount="79.22", discount_reason="birthday",
                        payments=[{"payment_method": "card", "amount": 500, "reference_number": "A1"},
                                  {"payment_method": "cash", "amount": 300}], now=now)
    assert r.grand_total == Decimal("800.00")
    assert sorted(p.payment_method.value for p in r.payments) == ["card", "cash"]


def test_receipt_numbers_are_sequential(db, seed, now):
    a = receipts.settle(db, _silver_session(db, seed, now).id, seed.admin.id, now=now)
    b = receipts.settle(db, _silver_session(db, seed, now, table=1).id, seed.admin.id, now=now)
    assert a.receipt_number[:-6] == b.receipt_number[:-6]
    assert int(b.receipt_number[-6:]) == int(a.receipt_number[-6:]) + 1


def test_one_receipt_per_session(db, seed, now):
    s = _silver_session(db, seed, now)
    receipts.settle(db, s.id, seed.admin.id, now=now)
    with pytest.raises(InvalidState):
        receipts.settle(db, s.id, seed.admin.id, now=now)


def test_insufficient_points_leave_balance_untouched(db, seed, now):
    s = _silver_session(db, seed, now)
    with pytest.raises(InsufficientPoints):
        receipts.settle(db, s.id, seed.admin.id, member_id=seed.member.id, points_used=600, now=now)
    assert db.get(Member, seed.member.id).total_points == 500
    assert db.execute(select(func.count(Receipt.id))).scalar() == 0


def test_failed_payment_rolls_back_the_whole_settlement(db, seed, now, monkeypatch):
    s = _silver_session(db, seed, now)
    db.commit()

    def boom(*args, **kwargs):
        raise RuntimeError("payment gateway down")

    monkeypatch.setattr(receipts, "_add_payments", boom)
    with pytest.raises(RuntimeError):
        receipts.settle(db, s.id, seed.admin.id, member_id=seed.member.id, points_used=100, now=now)

    assert db.get(Member, seed.member.id).total_points == 500
    assert db.execute(select(func.count(Receipt.id))).scalar() == 0
    assert db.execute(select(func.count(Payment.id))).scalar() == 0
    redeemed = db.execute(
        select(func.count(MemberPoints.id)).where(MemberPoints.transaction_type == PointsTransactionType.REDEEMED)
    ).scalar()
    assert redeemed == 0
    assert sessions.get_session(db, s.id).status == SessionStatus.ACTIVE


def test_negative_inputs_are_rejected(db, seed, now):
    s = _silver_session(db, seed, now)
    with pytest.raises(ValidationError):
        receipts.settle(db, s.id, seed.admin.id, discount_amount=-5)
    with pytest.raises(ValidationError):
        receipts.settle(db, s.id, seed.admin.id, member_id=seed.member.id, points_used=-1)


def test_end_with_cashier_settles_then_completes(db, seed, now):
    s = _silver_session(db, seed, now)
    s, receipt = sessions.end(db, s.id, cashier_id=seed.admin.id,
                              payment_data={"member_id": seed.member.id}, now=now)
    assert s.status == SessionStatus.COMPLETED
    assert receipt.grand_total == Decimal("879.22")
    assert receipt.points_earned == 8
    assert receipts.list_receipts(db)[0].id == receipt.id


def test_points_without_member_keep_pending_work(db, seed, now):
    s = _silver_session(db, seed, now)
    walk_in = loyalty.create_member(db, phone="0811111111", full_name="Somchai")
    with pytest.raises(ValidationError):
        receipts.settle(db, s.id, seed.admin.id, points_used=10, now=now)
    assert loyalty.find_member_by_phone(db, "0811111111").id == walk_in.id
    assert sessions.get_session(db, s.id).status == SessionStatus.ACTIVE


def test_default_cash_line_is_never_negative(db, seed, now):
    s = _silver_session(db, seed, now)
    r = receipts.settle(db, s.id, seed.admin.id, discount_amount=900, discount_reason="comp", now=now)
    assert r.grand_total == Decimal("-20.78")
    assert [(p.payment_method, p.amount) for p in r.payments] == [(PaymentMethod.CASH, Decimal("0.00"))]


def test_end_refuses_new_payment_data_for_a_settled_session(db, seed, now):
    s = _silver_session(db, seed, now)
    first = receipts.settle(db, s.id, seed.admin.id, now=now)
    with pytest.raises(InvalidState, match="already has a receipt"):
        sessions.end(db, s.id, cashier_id=seed.admin.id, now=now, payment_data={
            "member_id": seed.member.id, "points_used": 100, "discount_amount": 50,
        })
    assert db.get(Member, seed.member.id).total_points == 500
    assert sessions.get_session(db, s.id).status == SessionStatus.ACTIVE

    s, receipt = sessions.end(db, s.id, cashier_id=seed.admin.id, now=now, payment_data={
        "member_id": None, "discount_amount": 0, "discount_reason": None, "points_used": 0, "payments": [],
    })
    assert receipt.id == first.id
    assert s.status == SessionStatus.COMPLETED
