from pydantic import BaseModel, Field
from typing import Optional
from buffet.schemas.sessions import PaymentLineIn

class ReceiptIn(BaseModel):
    session_id: str
    member_id: Optional[str] = None
    discount_amount: float = Field(default=0, ge=0)
    discount_reason: Optional[str] = None
    points_used: int = Field(default=0, ge=0)
    payments: list[PaymentLineIn] = []
