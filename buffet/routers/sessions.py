from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from buffet.db import get_db
from buffet.deps import require_auth, require_perm
from buffet.models.core import CustomerSession, SessionStatus
from buffet.schemas.sessions import (
    SessionStartIn, GuestCountIn, PackageChangeIn, TransferIn, CancelIn, SessionEndIn,
)
from buffet.services import sessions as svc
from buffet.services import notifications
from buffet.routers.billing import _row_from_receipt
from buffet.routers.packages import _row_from_menu_item
from buffet.routers.orders import _row_from_order

router = APIRouter(prefix="/sessions", tags=["sessions"])


def _row_from_session(s: CustomerSession) -> dict:
    row = {
        "id": s.id,
        "table_id": s.table_id,
        "table_number": s.table.table_number if s.table else None,
        "package_id": s.package_id,
        "package_name": s.package.name if s.package else None,
        "adult_count": s.adult_count,
        "child_count": s.child_count,
        "status": s.status.value,
        "start_time": s.start_time,
        "end_time": s.end_time,
        "paused_at": s.paused_at,
        "is_paused": s.paused_at is not None,
        "paused_duration_minutes": s.paused_duration_minutes or 0,
        "last_warning_sent": s.last_warning_sent,
        "actual_end_time": s.actual_end_time,
        "started_by_user_id": s.started_by_user_id,
        "qr_code": s.qr_code,
    }
    if s.status == SessionStatus.ACTIVE:
        row["time"] = svc.time_remaining(s).to_dict()
    return row


@router.post("/start")
def start_session(body: SessionStartIn, db: Session = Depends(get_db),
                  sub: str = Depends(require_perm("SESSION_MANAGE"))):
    s = svc.start(db, table_id=body.table_id, package_id=body.package_id,
                  adult_count=body.adult_count, child_count=body.child_count, started_by_user_id=sub)
    db.commit()
    return _row_from_session(s)


@router.get("/active")
def active_sessions(branch_id: str | None = None, db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    return [_row_from_session(s) for s in svc.find_active_sessions(db, branch_id=branch_id)]


@router.get("/warnings")
def pending_warnings(db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    return [w.to_dict() for w in svc.get_sessions_needing_warning(db)]


@router.post("/warnings/dispatch")
def dispatch_warnings(db: Session = Depends(get_db), sub: str = Depends(require_perm("SESSION_MANAGE"))):
    results = notifications.dispatch_time_warnings(db)
    db.commit()
    return {"warnings": results, "delivered": sum(1 for r in results if r["delivered"])}


@router.get("/customer/{session_id}")
def customer_view(session_id: str, db: Session = Depends(get_db)):
    # public: knowing the session id (from the table QR code) is the credential
    view = svc.get_session_for_customer(db, session_id)
    s = view["session"]
    return {
        "session_id": s.id,
        "table_number": view["table_number"],
        "package_name": view["package_name"],
        "adult_count": s.adult_count,
        "child_count": s.child_count,
        "start_time": s.start_time,
        "end_time": s.end_time,
        "remaining_minutes": view["remaining"].remaining_minutes,
        "is_paused": view["remaining"].is_paused,
        "menu": [_row_from_menu_item(m) for m in view["menu"]],
        "orders": [_row_from_order(o) for o in view["orders"]],
    }


@router.get("/{session_id}")
def get_session(session_id: str, db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    return _row_from_session(svc.get_session(db, session_id))


@router.post("/{session_id}/pause")
def pause_session(session_id: str, db: Session = Depends(get_db),
                  sub: str = Depends(require_perm("SESSION_MANAGE"))):
    s = svc.pause(db, session_id, actor_user_id=sub)
    db.commit()
    return _row_from_session(s)


@router.post("/{session_id}/resume")
def resume_session(session_id: str, db: Session = Depends(get_db),
                   sub: str = Depends(require_perm("SESSION_MANAGE"))):
    s = svc.resume(db, session_id, actor_user_id=sub)
    db.commit()
    return _row_from_session(s)


@router.patch("/{session_id}/guests")
def update_guests(session_id: str, body: GuestCountIn, db: Session = Depends(get_db),
                  sub: str = Depends(require_perm("SESSION_MANAGE"))):
    s = svc.update_guest_count(db, session_id, adult_count=body.adult_count,
                               child_count=body.child_count, actor_user_id=sub)
    db.commit()
    return _row_from_session(s)


@router.patch("/{session_id}/package")
def change_package(session_id: str, body: PackageChangeIn, db: Session = Depends(get_db),
                   sub: str = Depends(require_perm("SESSION_MANAGE"))):
    s = svc.update_package(db, session_id, package_id=body.package_id, actor_user_id=sub)
    db.commit()
    return _row_from_session(s)


@router.post("/{session_id}/transfer")
def transfer(session_id: str, body: TransferIn, db: Session = Depends(get_db),
             sub: str = Depends(require_perm("SESSION_MANAGE"))):
    s = svc.transfer_table(db, session_id, new_table_id=body.new_table_id, actor_user_id=sub)
    db.commit()
    return _row_from_session(s)


@router.post("/{session_id}/end")
def end_session(session_id: str, body: SessionEndIn | None = None, db: Session = Depends(get_db),
                sub: str = Depends(require_perm("BILLING"))):
    body = body or SessionEndIn()
    payment_data = None
    if body.settle:
        payment_data = {
            "member_id": body.member_id,
            "discount_amount": body.discount_amount,
            "discount_reason": body.discount_reason,
            "points_used": body.points_used,
            "payments": [p.model_dump() for p in body.payments],
        }
    s, receipt = svc.end(db, session_id, cashier_id=sub if body.settle else None, payment_data=payment_data)
    db.commit()
    return {
        "session": _row_from_session(s),
        "receipt": _row_from_receipt(receipt) if receipt else None,
    }


@router.post("/{session_id}/cancel")
def cancel_session(session_id: str, body: CancelIn | None = None, db: Session = Depends(get_db),
                   sub: str = Depends(require_perm("SESSION_MANAGE"))):
    s = svc.cancel(db, session_id, reason=body.reason if body else None, actor_user_id=sub)
    db.commit()
    return _row_from_session(s)


@router.get("/{session_id}/time")
def time_remaining(session_id: str, db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    return svc.get_time_remaining(db, session_id).to_dict()


@router.get("/{session_id}/warning")
def session_warning(session_id: str, db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    return svc.check_time_warning(db, session_id).to_dict()


@router.post("/{session_id}/warning-sent")
def warning_sent(session_id: str, db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    s = svc.mark_warning_as_sent(db, session_id)
    db.commit()
    return {"id": s.id, "last_warning_sent": s.last_warning_sent}
