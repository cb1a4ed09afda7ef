from pydantic import BaseModel
from typing import Optional
from datetime import date

class MemberIn(BaseModel):
    phone: str
    full_name: str
    email: Optional[str] = None
    date_of_birth: Optional[date] = None

class MemberPatch(BaseModel):
    full_name: Optional[str] = None
    email: Optional[str] = None
    date_of_birth: Optional[date] = None
    is_active: Optional[bool] = None

class PointsAdjustIn(BaseModel):
    points: int
    notes: Optional[str] = None
