from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.orm import Session
from buffet.db import get_db
from buffet.deps import require_auth, require_perm
from buffet.models.core import MenuItem, Package
from buffet.services import catalog

router = APIRouter(prefix="/packages", tags=["packages"])


def _row_from_menu_item(m: MenuItem) -> dict:
    return {
        "id": m.id,
        "name": m.name,
        "description": m.description,
        "category_id": m.category_id,
        "category_name": m.category.name if m.category else None,
        "image_url": m.image_url,
        "is_available": m.is_available,
        "is_out_of_stock": m.is_out_of_stock,
        "stock_quantity": m.stock_quantity,
        "sort_order": m.sort_order,
    }


def _row_from_package(p: Package) -> dict:
    return {
        "id": p.id,
        "name": p.name,
        "description": p.description,
        "adult_price": float(p.adult_price),
        "child_price": float(p.child_price or 0),
        "duration_minutes": p.duration_minutes,
        "parent_package_id": p.parent_package_id,
        "sort_order": p.sort_order,
    }


@router.get("/")
def list_packages(db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    rows = db.execute(
        select(Package).where(Package.is_active.is_(True)).order_by(Package.sort_order.asc(), Package.name.asc())
    ).scalars().all()
    return [_row_from_package(p) for p in rows]


@router.get("/{package_id}/menus")
def package_menus(package_id: str, db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    return [_row_from_menu_item(m) for m in catalog.get_package_menus(db, package_id)]


@router.post("/{package_id}/menus/{menu_item_id}")
def assign_menu(package_id: str, menu_item_id: str, db: Session = Depends(get_db),
                sub: str = Depends(require_perm("SETTINGS_EDIT"))):
    row = catalog.assign_menu(db, package_id=package_id, menu_item_id=menu_item_id)
    db.commit()
    return {"id": row.id, "package_id": package_id, "menu_item_id": menu_item_id}


@router.delete("/{package_id}/menus/{menu_item_id}")
def unassign_menu(package_id: str, menu_item_id: str, db: Session = Depends(get_db),
                  sub: str = Depends(require_perm("SETTINGS_EDIT"))):
    removed = catalog.unassign_menu(db, package_id=package_id, menu_item_id=menu_item_id)
    db.commit()
    return {"removed": removed}
