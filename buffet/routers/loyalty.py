from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from buffet.db import get_db
from buffet.deps import require_auth, require_perm
from buffet.models.core import Member, MemberPoints
from buffet.schemas.loyalty import MemberIn, MemberPatch, PointsAdjustIn
from buffet.services import loyalty

router = APIRouter(prefix="/loyalty", tags=["loyalty"])


def _row_from_member(m: Member) -> dict:
    return {
        "id": m.id,
        "phone": m.phone,
        "full_name": m.full_name,
        "email": m.email,
        "date_of_birth": m.date_of_birth,
        "total_points": m.total_points or 0,
        "is_active": m.is_active,
    }


def _row_from_points(p: MemberPoints) -> dict:
    return {
        "id": p.id,
        "transaction_type": p.transaction_type.value,
        "points": p.points,
        "balance_after": p.balance_after,
        "receipt_id": p.receipt_id,
        "notes": p.notes,
        "created_at": p.created_at,
    }


@router.post("/members")
def create_member(body: MemberIn, db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    m = loyalty.create_member(db, phone=body.phone, full_name=body.full_name, email=body.email,
                              date_of_birth=body.date_of_birth)
    db.commit()
    return _row_from_member(m)


@router.get("/members/lookup")
def lookup_member(phone: str, db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    m = loyalty.find_member_by_phone(db, phone)
    if not m:
        raise HTTPException(404, detail="member not found")
    return _row_from_member(m)


@router.get("/members/{member_id}")
def get_member(member_id: str, db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    return _row_from_member(loyalty.get_member(db, member_id))


@router.patch("/members/{member_id}")
def update_member(member_id: str, body: MemberPatch, db: Session = Depends(get_db),
                  sub: str = Depends(require_perm("LOYALTY_EDIT"))):
    m = loyalty.update_member(db, member_id, **body.model_dump(exclude_unset=True))
    db.commit()
    return _row_from_member(m)


@router.get("/members/{member_id}/points")
def points_history(member_id: str, limit: int = 50, db: Session = Depends(get_db),
                   sub: str = Depends(require_auth)):
    return [_row_from_points(p) for p in loyalty.points_history(db, member_id, limit=limit)]


@router.post("/members/{member_id}/adjust")
def adjust_points(member_id: str, body: PointsAdjustIn, db: Session = Depends(get_db),
                  sub: str = Depends(require_perm("LOYALTY_EDIT"))):
    row = loyalty.adjust(db, member_id, body.points, notes=body.notes, actor_user_id=sub)
    db.commit()
    return _row_from_points(row)
