from pydantic import BaseModel, Field
from typing import Optional

class SessionStartIn(BaseModel):
    table_id: str
    package_id: str
    adult_count: int
    child_count: int = 0

class GuestCountIn(BaseModel):
    adult_count: int
    child_count: int = 0

class PackageChangeIn(BaseModel):
    package_id: str

class TransferIn(BaseModel):
    new_table_id: str

class CancelIn(BaseModel):
    reason: Optional[str] = None

class PaymentLineIn(BaseModel):
    payment_method: str
    amount: float = Field(ge=0)
    reference_number: Optional[str] = None
    notes: Optional[str] = None

class SessionEndIn(BaseModel):
    # settle before closing; false closes the session without a receipt
    settle: bool = True
    member_id: Optional[str] = None
    discount_amount: float = Field(default=0, ge=0)
    discount_reason: Optional[str] = None
    points_used: int = Field(default=0, ge=0)
    payments: list[PaymentLineIn] = []
