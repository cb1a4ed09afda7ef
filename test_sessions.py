from datetime import timedelta

import pytest
from sqlalchemy import select

from buffet.errors import AlreadyPaused, InvalidState, NotFound, NotPaused, TableUnavailable, ValidationError
from buffet.models.core import AuditLog, SessionStatus, TableStatus
from buffet.services import sessions
from buffet.services.sessions import WarningLevel


def _start(db, seed, now, table=0, package=None, adults=2, children=1):
    return sessions.start(
        db, table_id=seed.tables[table].id, package_id=(package or seed.silver).id,
        adult_count=adults, child_count=children, started_by_user_id=seed.admin.id, now=now,
    )


def test_start_occupies_table_and_sets_window(db, seed, now):
    s = _start(db, seed, now)
    assert s.status == SessionStatus.ACTIVE
    assert s.end_time - s.start_time == timedelta(minutes=120)
    assert s.table.status == TableStatus.OCCUPIED
    assert s.qr_code.endswith(f"/customer/{s.id}")
    actions = db.execute(select(AuditLog.action).where(AuditLog.entity_id == s.id)).scalars().all()
    assert "START" in actions


def test_start_requires_free_table(db, seed, now):
    _start(db, seed, now)
    with pytest.raises(TableUnavailable):
        _start(db, seed, now)

    seed.tables[1].is_out_of_service = True
    db.flush()
    with pytest.raises(TableUnavailable):
        _start(db, seed, now, table=1)


def test_start_validates_input(db, seed, now):
    with pytest.raises(ValidationError):
        _start(db, seed, now, adults=-1)
    with pytest.raises(NotFound):
        sessions.start(db, table_id="missing", package_id=seed.silver.id, adult_count=1, now=now)


def test_pause_resume_shifts_end_time_by_paused_interval(db, seed, now):
    s = _start(db, seed, now)
    original_end = s.end_time

    sessions.pause(db, s.id, now=now + timedelta(minutes=10))
    with pytest.raises(AlreadyPaused):
        sessions.pause(db, s.id, now=now + timedelta(minutes=11))

    s = sessions.resume(db, s.id, now=now + timedelta(minutes=25, seconds=30))
    assert s.end_time == original_end + timedelta(minutes=15, seconds=30)
    assert s.paused_duration_minutes == 15
    assert s.paused_at is None

    with pytest.raises(NotPaused):
        sessions.resume(db, s.id, now=now + timedelta(minutes=30))


def test_instant_resume_leaves_end_time_alone(db, seed, now):
    s = _start(db, seed, now)
    original_end = s.end_time
    at = now + timedelta(minutes=40)

    sessions.pause(db, s.id, now=at)
    s = sessions.resume(db, s.id, now=at)
    assert s.end_time == original_end
    assert s.paused_duration_minutes == 0
    assert s.paused_at is None


def test_remaining_time_is_frozen_while_paused(db, seed, now):
    s = _start(db, seed, now)
    sessions.pause(db, s.id, now=now + timedelta(minutes=10))

    early = sessions.get_time_remaining(db, s.id, now=now + timedelta(minutes=20))
    late = sessions.get_time_remaining(db, s.id, now=now + timedelta(minutes=90))
    assert early.remaining_minutes == late.remaining_minutes == 110
    assert late.is_paused is True


def test_remaining_time_clamps_and_reports_overtime(db, seed, now):
    s = _start(db, seed, now)
    r = sessions.get_time_remaining(db, s.id, now=now + timedelta(minutes=127))
    assert r.remaining_minutes == 0
    assert r.is_overtime is True
    assert r.overtime_minutes == 7


def test_warning_levels_escalate_monotonically(db, seed, now):
    s = _start(db, seed, now)
    levels = [
        sessions.check_time_warning(db, s.id, now=now + timedelta(minutes=m)).level
        for m in (60, 104, 106, 114, 116, 119, 120, 140)
    ]
    assert levels == [
        WarningLevel.NONE, WarningLevel.NONE, WarningLevel.MEDIUM, WarningLevel.MEDIUM,
        WarningLevel.CRITICAL, WarningLevel.CRITICAL, WarningLevel.OVERTIME, WarningLevel.OVERTIME,
    ]


def test_warnings_are_deduplicated_per_level_interval(db, seed, now):
    s = _start(db, seed, now)

    t = now + timedelta(minutes=106)
    due = sessions.get_sessions_needing_warning(db, now=t)
    assert [(w.session_id, w.level) for w in due] == [(s.id, WarningLevel.MEDIUM)]
    sessions.mark_warning_as_sent(db, s.id, now=t)

    # medium needs ten quiet minutes
    assert sessions.get_sessions_needing_warning(db, now=t + timedelta(minutes=4)) == []

    # critical needs five
    w = sessions.check_time_warning(db, s.id, now=t + timedelta(minutes=10))
    assert w.level == WarningLevel.CRITICAL and w.should_notify
    sessions.mark_warning_as_sent(db, s.id, now=t + timedelta(minutes=10))
    assert not sessions.check_time_warning(db, s.id, now=t + timedelta(minutes=13)).should_notify
    assert sessions.check_time_warning(db, s.id, now=t + timedelta(minutes=15)).should_notify


def test_paused_sessions_raise_no_warnings(db, seed, now):
    s = _start(db, seed, now)
    sessions.pause(db, s.id, now=now + timedelta(minutes=110))
    assert sessions.get_sessions_needing_warning(db, now=now + timedelta(minutes=130)) == []
    assert sessions.check_time_warning(db, s.id, now=now + timedelta(minutes=130)).level == WarningLevel.NONE


def test_update_package_recomputes_from_start(db, seed, now):
    s = _start(db, seed, now)
    sessions.pause(db, s.id, now=now + timedelta(minutes=5))
    sessions.resume(db, s.id, now=now + timedelta(minutes=15))

    s = sessions.update_package(db, s.id, package_id=seed.gold.id)
    assert s.package.name == "Gold Buffet"
    assert s.end_time == s.start_time + timedelta(minutes=150)


def test_update_guest_count(db, seed, now):
    s = _start(db, seed, now)
    s = sessions.update_guest_count(db, s.id, adult_count=4, child_count=0)
    assert (s.adult_count, s.child_count) == (4, 0)
    with pytest.raises(ValidationError):
        sessions.update_guest_count(db, s.id, adult_count=1, child_count=-2)


def test_transfer_moves_occupancy(db, seed, now):
    s = _start(db, seed, now)
    with pytest.raises(InvalidState):
        sessions.transfer_table(db, s.id, new_table_id=seed.tables[0].id)

    other = _start(db, seed, now, table=2)
    with pytest.raises(TableUnavailable):
        sessions.transfer_table(db, s.id, new_table_id=other.table_id)

    s = sessions.transfer_table(db, s.id, new_table_id=seed.tables[1].id)
    assert s.table_id == seed.tables[1].id
    assert seed.tables[0].status == TableStatus.CLEANING
    assert seed.tables[1].status == TableStatus.OCCUPIED


def test_end_without_cashier_completes_without_receipt(db, seed, now):
    s = _start(db, seed, now)
    sessions.pause(db, s.id, now=now + timedelta(minutes=30))
    s, receipt = sessions.end(db, s.id, now=now + timedelta(minutes=60))
    assert receipt is None
    assert s.status == SessionStatus.COMPLETED
    assert s.paused_at is None
    assert s.actual_end_time == now + timedelta(minutes=60)
    assert seed.tables[0].status == TableStatus.CLEANING

    with pytest.raises(InvalidState):
        sessions.pause(db, s.id)
    with pytest.raises(InvalidState):
        sessions.end(db, s.id)


def test_cancel_releases_table(db, seed, now):
    s = _start(db, seed, now)
    s = sessions.cancel(db, s.id, reason="walked out", actor_user_id=seed.admin.id)
    assert s.status == SessionStatus.CANCELLED
    assert seed.tables[0].status == TableStatus.CLEANING


def test_customer_view_only_for_active_sessions(db, seed, now):
    s = _start(db, seed, now, package=seed.gold)
    view = sessions.get_session_for_customer(db, s.id, now=now + timedelta(minutes=30))
    assert view["table_number"] == "1"
    assert view["package_name"] == "Gold Buffet"
    assert view["remaining"].remaining_minutes == 120
    assert {m.name for m in view["menu"]} == {"Pork belly", "Shrimp"}

    sessions.end(db, s.id)
    with pytest.raises(NotFound):
        sessions.get_session_for_customer(db, s.id)


def test_find_active_sessions(db, seed, now):
    a = _start(db, seed, now)
    b = _start(db, seed, now, table=1)
    sessions.cancel(db, b.id)
    assert [s.id for s in sessions.find_active_sessions(db)] == [a.id]
