from pydantic import BaseModel, Field
from typing import Optional, Literal

OrderStatusLiteral = Literal["pending", "accepted", "in_progress", "served", "cancelled"]
TableStatusLiteral = Literal["available", "reserved", "cleaning", "occupied"]

class OrderLineIn(BaseModel):
    menu_item_id: str
    quantity: int = Field(gt=0)
    notes: Optional[str] = None

class OrderIn(BaseModel):
    session_id: str
    items: list[OrderLineIn] = Field(min_length=1)
    notes: Optional[str] = None

class OrderStatusIn(BaseModel):
    status: OrderStatusLiteral

class WasteIn(BaseModel):
    waste_quantity: int = Field(ge=0)
    reason: Optional[str] = None

class StockReserveIn(BaseModel):
    menu_item_id: str
    quantity: int
    order_id: Optional[str] = None

class RestockIn(BaseModel):
    menu_item_id: str
    quantity: int
    reason: Optional[str] = None

class TableStatusIn(BaseModel):
    status: TableStatusLiteral

class OutOfServiceIn(BaseModel):
    notes: Optional[str] = None
