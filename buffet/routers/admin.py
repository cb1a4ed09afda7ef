import logging
from decimal import Decimal
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from buffet.db import get_db
from buffet.config import settings
from buffet.util.security import hash_pw
from buffet.models.core import (
    Branch, User, Role, DiningTable, TableStatus,
    Package, MenuCategory, MenuItem, Setting,
)
from buffet.services import catalog, settings_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])

ROLE_PERMISSIONS = {
    "ADMIN": [],
    "CASHIER": ["BILLING", "SESSION_MANAGE", "LOYALTY_EDIT"],
    "STAFF": ["SESSION_MANAGE"],
    "KITCHEN": ["STOCK_EDIT"],
}

DEMO_USERS = [
    ("admin", "admin123", "Administrator", "ADMIN"),
    ("cashier", "cashier123", "Cashier", "CASHIER"),
    ("staff", "staff123", "Floor Staff", "STAFF"),
    ("kitchen", "kitchen123", "Kitchen", "KITCHEN"),
]

DEMO_MENU = {
    "Meat": [("Pork belly", "15"), ("Beef", "25"), ("Chicken", "12")],
    "Seafood": [("Shrimp", "30"), ("Squid", "20")],
    "Vegetables": [("Mixed vegetables", "5")],
    "Sushi": [("Salmon sushi", "35")],
    "Dessert": [("Ice cream", "8")],
    "Drinks": [("Soft drink", "3")],
}

# name, adult, child, minutes, parent
DEMO_PACKAGES = [
    ("Silver Buffet", "299", "149", 120, None),
    ("Gold Buffet", "399", "199", 150, "Silver Buffet"),
    ("Platinum Buffet", "599", "299", 180, "Gold Buffet"),
]

@router.post("/dev-bootstrap")
def dev_bootstrap(db: Session = Depends(get_db)):
    if settings.APP_ENV != "dev":
        raise HTTPException(403, detail="Not allowed")

    b = db.query(Branch).first()
    if not b:
        b = Branch(name="Main Branch", address="Bangkok", phone="020000000")
        db.add(b); db.flush()

    roles = {}
    for name, perms in ROLE_PERMISSIONS.items():
        role = db.query(Role).filter(Role.name == name).first()
        if not role:
            role = Role(name=name, permissions=perms)
            db.add(role); db.flush()
        roles[name] = role

    for username, password, full_name, role_name in DEMO_USERS:
        if not db.query(User).filter(User.username == username).first():
            db.add(User(username=username, pass_hash=hash_pw(password), full_name=full_name,
                        role_id=roles[role_name].id, branch_id=b.id, is_active=True))

    for key, value in settings_store.DEFAULTS.items():
        if not db.query(Setting).filter(Setting.key == key).first():
            settings_store.upsert_setting(db, key=key, value=str(value))

    menu_ids = []
    for position, (cat_name, items) in enumerate(DEMO_MENU.items(), start=1):
        cat = db.query(MenuCategory).filter(MenuCategory.name == cat_name).first()
        if not cat:
            cat = MenuCategory(name=cat_name, branch_id=b.id, sort_order=position)
            db.add(cat); db.flush()
        for item_name, cost in items:
            item = db.query(MenuItem).filter(MenuItem.name == item_name).first()
            if not item:
                item = MenuItem(name=item_name, category_id=cat.id, branch_id=b.id, cost=Decimal(cost))
                db.add(item); db.flush()
            menu_ids.append(item.id)

    packages = {}
    for name, adult, child, minutes, parent in DEMO_PACKAGES:
        pkg = db.query(Package).filter(Package.name == name).first()
        if not pkg:
            pkg = Package(name=name, branch_id=b.id, adult_price=Decimal(adult), child_price=Decimal(child),
                          duration_minutes=minutes, parent_package_id=packages[parent].id if parent else None,
                          sort_order=len(packages) + 1)
            db.add(pkg); db.flush()
        packages[name] = pkg

    # the base package carries the whole menu; higher tiers inherit it
    for menu_id in menu_ids:
        catalog.assign_menu(db, package_id=packages["Silver Buffet"].id, menu_item_id=menu_id)

    for i in range(1, 11):
        number = str(i)
        if not db.query(DiningTable).filter(DiningTable.table_number == number).first():
            db.add(DiningTable(table_number=number, zone="Zone A" if i <= 5 else "Zone B", capacity=4,
                               status=TableStatus.AVAILABLE, branch_id=b.id))

    db.commit()
    logger.info("Dev bootstrap completed for branch %s", b.id)
    return {
        "branch_id": b.id,
        "admin_username": "admin",
        "admin_password": "admin123",
        "package_ids": {name: pkg.id for name, pkg in packages.items()},
    }
