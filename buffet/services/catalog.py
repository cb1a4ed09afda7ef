from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from buffet.errors import InvalidState, NotFound
from buffet.models.core import MenuItem, Package, PackageMenu

logger = logging.getLogger(__name__)


def _get_package(db: Session, package_id: str) -> Package:
    pkg = db.get(Package, package_id)
    if not pkg:
        raise NotFound('package', package_id)
    return pkg


def _own_menu_ids(db: Session, package_id: str) -> set[str]:
    return set(
        db.execute(select(PackageMenu.menu_item_id).where(PackageMenu.package_id == package_id)).scalars()
    )


def _resolve(db: Session, package_id: str, visited: list[str]) -> set[str]:
    if package_id in visited:
        chain = ' -> '.join(visited + [package_id])
        logger.error('Cyclic package inheritance detected: %s', chain)
        raise InvalidState('Cyclic package inheritance', package_id=package_id, chain=visited + [package_id])
    visited.append(package_id)

    pkg = _get_package(db, package_id)
    menu_ids = _own_menu_ids(db, pkg.id)
    if pkg.parent_package_id:
        menu_ids |= _resolve(db, pkg.parent_package_id, visited)
    return menu_ids


def resolve_menu_ids(db: Session, package_id: str) -> set[str]:
    """Menu item ids a package may order: its own assignments plus every ancestor's."""
    return _resolve(db, package_id, [])


def get_package_menus(db: Session, package_id: str) -> list[MenuItem]:
    menu_ids = resolve_menu_ids(db, package_id)
    if not menu_ids:
        return []
    return db.execute(
        select(MenuItem)
        .where(MenuItem.id.in_(menu_ids), MenuItem.is_active.is_(True))
        .order_by(MenuItem.sort_order.asc(), MenuItem.name.asc())
    ).scalars().all()


def assign_menu(db: Session, *, package_id: str, menu_item_id: str) -> PackageMenu:
    _get_package(db, package_id)
    if not db.get(MenuItem, menu_item_id):
        raise NotFound('menu item', menu_item_id)

    existing = db.execute(
        select(PackageMenu).where(PackageMenu.package_id == package_id, PackageMenu.menu_item_id == menu_item_id)
    ).scalar_one_or_none()
    if existing:
        return existing

    row = PackageMenu(package_id=package_id, menu_item_id=menu_item_id)
    db.add(row)
    db.flush()
    return row


def unassign_menu(db: Session, *, package_id: str, menu_item_id: str) -> bool:
    row = db.execute(
        select(PackageMenu).where(PackageMenu.package_id == package_id, PackageMenu.menu_item_id == menu_item_id)
    ).scalar_one_or_none()
    if not row:
        return False
    db.delete(row)
    db.flush()
    return True
