# conftest.py
import os
from datetime import datetime, timezone
from decimal import Decimal
from types import SimpleNamespace

os.environ.setdefault("APP_SECRET", "test-secret")
os.environ.setdefault("APP_ENV", "dev")
os.environ["DB_URL"] = "sqlite+pysqlite:///:memory:"
os.environ.pop("WARNING_WEBHOOK_URL", None)

import pytest

from buffet.db import Base, SessionLocal, engine
from buffet.models.core import (
    DiningTable, MenuCategory, MenuItem, Package, Role, TableStatus, User,
)
from buffet.services import catalog, loyalty
from buffet.util.security import hash_pw

NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def schema():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def seed(db):
    """Three tables, the Silver/Gold/Platinum tiers with one item each, a member and two users."""
    admin_role = Role(name="ADMIN", permissions=[])
    kitchen_role = Role(name="KITCHEN", permissions=["STOCK_EDIT"])
    db.add_all([admin_role, kitchen_role]); db.flush()
    admin = User(username="admin", pass_hash=hash_pw("admin123"), full_name="Administrator",
                 role_id=admin_role.id)
    kitchen = User(username="kitchen", pass_hash=hash_pw("kitchen123"), full_name="Kitchen",
                   role_id=kitchen_role.id)
    db.add_all([admin, kitchen])

    tables = [DiningTable(table_number=str(i), capacity=4, status=TableStatus.AVAILABLE) for i in (1, 2, 3)]
    db.add_all(tables)

    silver = Package(name="Silver Buffet", adult_price=Decimal("299"), child_price=Decimal("149"),
                     duration_minutes=120, sort_order=1)
    db.add(silver); db.flush()
    gold = Package(name="Gold Buffet", adult_price=Decimal("399"), child_price=Decimal("199"),
                   duration_minutes=150, parent_package_id=silver.id, sort_order=2)
    db.add(gold); db.flush()
    platinum = Package(name="Platinum Buffet", adult_price=Decimal("599"), child_price=Decimal("299"),
                       duration_minutes=180, parent_package_id=gold.id, sort_order=3)
    db.add(platinum)

    cat = MenuCategory(name="Meat", sort_order=1)
    db.add(cat); db.flush()
    pork = MenuItem(name="Pork belly", category_id=cat.id, cost=Decimal("15"), sort_order=1)
    shrimp = MenuItem(name="Shrimp", category_id=cat.id, cost=Decimal("30"), sort_order=2)
    wagyu = MenuItem(name="Wagyu", category_id=cat.id, cost=Decimal("90"), sort_order=3,
                     stock_quantity=5, low_stock_threshold=3)
    db.add_all([pork, shrimp, wagyu]); db.flush()

    catalog.assign_menu(db, package_id=silver.id, menu_item_id=pork.id)
    catalog.assign_menu(db, package_id=gold.id, menu_item_id=shrimp.id)
    catalog.assign_menu(db, package_id=platinum.id, menu_item_id=wagyu.id)

    member = loyalty.create_member(db, phone="0812345678", full_name="Somchai")
    loyalty.earn(db, member.id, 500, notes="opening balance")
    db.commit()

    return SimpleNamespace(
        admin=admin, kitchen=kitchen, tables=tables,
        silver=silver, gold=gold, platinum=platinum,
        pork=pork, shrimp=shrimp, wagyu=wagyu,
        member=member,
    )


@pytest.fixture
def client():
    from fastapi.testclient import TestClient
    from buffet.main import app

    with TestClient(app) as c:
        yield c


@pytest.fixture
def auth_headers(client):
    r = client.get("/healthz")
    assert r.status_code == 200, f"/healthz failed: {r.text}"

    r = client.post("/admin/dev-bootstrap")
    assert r.status_code == 200, f"/admin/dev-bootstrap failed: {r.text}"

    r = client.post("/auth/login", params={"username": "admin", "password": "admin123"})
    assert r.status_code == 200, f"/auth/login failed: {r.text}"
    tok = r.json()["access_token"]
    return {"Authorization": f"Bearer {tok}"}
