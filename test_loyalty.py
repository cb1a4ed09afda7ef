import pytest
from sqlalchemy import select

from buffet.errors import InsufficientPoints, InvalidState, NotFound, ValidationError
from buffet.models.core import AuditLog, MemberPoints, PointsTransactionType
from buffet.services import loyalty


def _latest_balance(db, member_id):
    rows = loyalty.points_history(db, member_id)
    return rows[0].balance_after


def test_phone_is_unique(db, seed):
    with pytest.raises(InvalidState):
        loyalty.create_member(db, phone="0812345678", full_name="Someone else")
    assert loyalty.find_member_by_phone(db, " 0812345678 ").id == seed.member.id
    assert loyalty.find_member_by_phone(db, "0000000000") is None


def test_balance_matches_latest_ledger_row(db, seed):
    loyalty.redeem(db, seed.member.id, 120)
    loyalty.earn(db, seed.member.id, 15)
    loyalty.adjust(db, seed.member.id, -5, notes="typo", actor_user_id=seed.admin.id)
    assert seed.member.total_points == 390
    assert _latest_balance(db, seed.member.id) == 390

    kinds = [row.transaction_type for row in loyalty.points_history(db, seed.member.id)]
    assert kinds.count(PointsTransactionType.ADJUSTED) == 1
    audit = db.execute(select(AuditLog).where(AuditLog.action == "POINTS_ADJUST")).scalar_one()
    assert audit.reason == "typo"


def test_redeem_more_than_balance(db, seed):
    with pytest.raises(InsufficientPoints) as exc:
        loyalty.redeem(db, seed.member.id, 501)
    assert exc.value.detail["available"] == 500
    assert seed.member.total_points == 500


def test_adjust_cannot_go_negative(db, seed):
    with pytest.raises(InsufficientPoints):
        loyalty.adjust(db, seed.member.id, -501)
    with pytest.raises(ValidationError):
        loyalty.adjust(db, seed.member.id, 0)


def test_non_positive_amounts(db, seed):
    with pytest.raises(ValidationError):
        loyalty.earn(db, seed.member.id, 0)
    with pytest.raises(ValidationError):
        loyalty.redeem(db, seed.member.id, -3)


def test_update_member(db, seed):
    m = loyalty.update_member(db, seed.member.id, full_name="Somchai J.", is_active=False)
    assert m.full_name == "Somchai J."
    assert m.is_active is False
    with pytest.raises(NotFound):
        loyalty.update_member(db, "missing", full_name="x")


def test_history_is_newest_first(db, seed):
    loyalty.redeem(db, seed.member.id, 10)
    rows = loyalty.points_history(db, seed.member.id)
    assert [r.points for r in rows] == [-10, 500]
    assert all(isinstance(r, MemberPoints) for r in rows)
