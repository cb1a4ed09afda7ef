from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from buffet.db import get_db
from buffet.deps import require_auth
from buffet.models.core import Order, OrderStatus
from buffet.schemas.orders import OrderIn, OrderStatusIn, WasteIn
from buffet.services import orders as svc

router = APIRouter(prefix="/orders", tags=["orders"])


def _row_from_order(o: Order) -> dict:
    return {
        "id": o.id,
        "session_id": o.session_id,
        "status": o.status.value,
        "notes": o.notes,
        "created_at": o.created_at,
        "items": [
            {
                "id": i.id,
                "menu_item_id": i.menu_item_id,
                "name": i.menu_item.name if i.menu_item else None,
                "quantity": i.quantity,
                "waste_quantity": i.waste_quantity or 0,
                "waste_reason": i.waste_reason,
                "notes": i.notes,
            }
            for i in o.items
        ],
    }


@router.post("")
def create_order(body: OrderIn, db: Session = Depends(get_db)):
    # customers order from the table QR page; the active session id authorizes the call
    o = svc.create_order(db, session_id=body.session_id, lines=[l.model_dump() for l in body.items],
                         notes=body.notes)
    db.commit()
    return _row_from_order(svc.get_order(db, o.id))


@router.get("/pending")
def pending(db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    return [_row_from_order(o) for o in svc.pending_orders(db)]


@router.get("/session/{session_id}")
def for_session(session_id: str, db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    return [_row_from_order(o) for o in svc.orders_for_session(db, session_id)]


@router.patch("/{order_id}/status")
def update_status(order_id: str, body: OrderStatusIn, db: Session = Depends(get_db),
                  sub: str = Depends(require_auth)):
    o = svc.update_order_status(db, order_id, OrderStatus(body.status))
    db.commit()
    return _row_from_order(svc.get_order(db, o.id))


@router.post("/items/{order_item_id}/waste")
def mark_waste(order_item_id: str, body: WasteIn, db: Session = Depends(get_db),
               sub: str = Depends(require_auth)):
    result = svc.mark_waste(db, order_item_id, waste_quantity=body.waste_quantity, reason=body.reason)
    db.commit()
    item = result["item"]
    return {
        "id": item.id,
        "quantity": item.quantity,
        "waste_quantity": item.waste_quantity,
        "waste_reason": item.waste_reason,
        "waste_percentage": result["waste_percentage"],
    }
