from pydantic import BaseModel, Field
from typing import Optional

class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"

class SettingIn(BaseModel):
    value: str = Field(min_length=1)
    description: Optional[str] = None
