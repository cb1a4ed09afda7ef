from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from buffet.db import get_db
from buffet.deps import require_auth, require_perm
from buffet.models.core import MenuItem
from buffet.schemas.orders import StockReserveIn, RestockIn
from buffet.services import stock

router = APIRouter(prefix="/stock", tags=["stock"])


def _row_from_item(m: MenuItem) -> dict:
    return {
        "id": m.id,
        "name": m.name,
        "stock_quantity": m.stock_quantity,
        "low_stock_threshold": m.low_stock_threshold,
        "is_out_of_stock": m.is_out_of_stock,
    }


@router.post("/reserve")
def reserve(body: StockReserveIn, db: Session = Depends(get_db), sub: str = Depends(require_perm("STOCK_EDIT"))):
    item = stock.reserve(db, body.menu_item_id, body.quantity, order_id=body.order_id)
    db.commit()
    return _row_from_item(item)


@router.post("/restock")
def restock(body: RestockIn, db: Session = Depends(get_db), sub: str = Depends(require_perm("STOCK_EDIT"))):
    item = stock.restock(db, body.menu_item_id, body.quantity, reason=body.reason)
    db.commit()
    return _row_from_item(item)


@router.get("/low")
def low_stock(db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    return [_row_from_item(m) for m in stock.low_stock(db)]
