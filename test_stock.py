import pytest
from sqlalchemy import select

from buffet.errors import InsufficientStock, NotFound, OutOfStock, ValidationError
from buffet.models.core import StockMove, StockMoveType
from buffet.services import stock


def test_untracked_item_is_unlimited(db, seed):
    item = stock.reserve(db, seed.pork.id, 1000)
    assert item.stock_quantity is None
    assert item.is_out_of_stock is False
    assert db.execute(select(StockMove)).scalars().all() == []


def test_reservations_conserve_stock(db, seed):
    stock.reserve(db, seed.wagyu.id, 3, order_id="o-1")
    assert seed.wagyu.stock_quantity == 2

    with pytest.raises(InsufficientStock) as exc:
        stock.reserve(db, seed.wagyu.id, 3)
    assert exc.value.detail["available"] == 2
    assert exc.value.detail["shortfall"] == 1
    assert seed.wagyu.stock_quantity == 2

    stock.reserve(db, seed.wagyu.id, 2)
    assert seed.wagyu.stock_quantity == 0
    assert seed.wagyu.is_out_of_stock is True

    moves = db.execute(select(StockMove).where(StockMove.menu_item_id == seed.wagyu.id)).scalars().all()
    assert sorted(m.qty_change for m in moves) == [-3, -2]
    assert all(m.type == StockMoveType.SALE for m in moves)


def test_out_of_stock_flag_blocks_reservation(db, seed):
    stock.reserve(db, seed.wagyu.id, 5)
    with pytest.raises(OutOfStock):
        stock.reserve(db, seed.wagyu.id, 1)


def test_restock_clears_flag(db, seed):
    stock.reserve(db, seed.wagyu.id, 5)
    item = stock.restock(db, seed.wagyu.id, 10, reason="delivery")
    assert item.stock_quantity == 10
    assert item.is_out_of_stock is False
    stock.reserve(db, seed.wagyu.id, 1)


def test_invalid_requests(db, seed):
    with pytest.raises(ValidationError):
        stock.reserve(db, seed.wagyu.id, 0)
    with pytest.raises(NotFound):
        stock.reserve(db, "missing", 1)


def test_low_stock_uses_item_threshold(db, seed):
    assert stock.low_stock(db) == []
    stock.reserve(db, seed.wagyu.id, 2)
    assert [m.id for m in stock.low_stock(db)] == [seed.wagyu.id]
