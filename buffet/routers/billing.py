from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from buffet.db import get_db
from buffet.deps import require_auth, require_perm
from buffet.models.core import Receipt
from buffet.schemas.billing import ReceiptIn
from buffet.services import billing, receipts

router = APIRouter(prefix="/billing", tags=["billing"])


def _row_from_receipt(r: Receipt) -> dict:
    s = r.session
    return {
        "id": r.id,
        "receipt_number": r.receipt_number,
        "session_id": r.session_id,
        "table_number": s.table.table_number if s and s.table else None,
        "package_name": s.package.name if s and s.package else None,
        "member_id": r.member_id,
        "member_name": r.member.full_name if r.member else None,
        "cashier_id": r.cashier_id,
        "cashier_name": r.cashier.full_name if r.cashier else None,
        "subtotal": float(r.subtotal),
        "service_charge": float(r.service_charge),
        "vat": float(r.vat),
        "discount_amount": float(r.discount_amount or 0),
        "discount_reason": r.discount_reason,
        "points_used": r.points_used,
        "points_value": float(r.points_value or 0),
        "grand_total": float(r.grand_total),
        "points_earned": r.points_earned,
        "payments": [
            {
                "id": p.id,
                "payment_method": p.payment_method.value,
                "amount": float(p.amount),
                "reference_number": p.reference_number,
                "notes": p.notes,
            }
            for p in r.payments
        ],
        "created_at": r.created_at,
    }


@router.get("/calculate/{session_id}")
def calculate(session_id: str, db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    return billing.calculate_bill(db, session_id).to_dict()


@router.post("/receipts")
def create_receipt(body: ReceiptIn, db: Session = Depends(get_db), sub: str = Depends(require_perm("BILLING"))):
    r = receipts.settle(
        db, body.session_id, sub,
        member_id=body.member_id,
        discount_amount=body.discount_amount,
        discount_reason=body.discount_reason,
        points_used=body.points_used,
        payments=[p.model_dump() for p in body.payments],
    )
    db.commit()
    return _row_from_receipt(receipts.get_receipt(db, r.id))


@router.get("/receipts")
def list_receipts(limit: int = 100, db: Session = Depends(get_db), sub: str = Depends(require_perm("BILLING"))):
    return [_row_from_receipt(r) for r in receipts.list_receipts(db, limit=limit)]


@router.get("/receipts/{receipt_id}")
def get_receipt(receipt_id: str, db: Session = Depends(get_db), sub: str = Depends(require_perm("BILLING"))):
    return _row_from_receipt(receipts.get_receipt(db, receipt_id))
