"""
Usher account schemas
"""

from datetime import datetime
from typing import Literal, Optional
from pydantic import BaseModel, Field

UsherRole = Literal["Usher", "Admin"]

class UsherResponse(BaseModel):
    """Usher account, without its token"""
    usher_id: str
    username: str
    full_name: str
    role: str
    active: bool
    created_at: Optional[datetime] = None
    last_login: Optional[datetime] = None

    class Config:
        from_attributes = True

class UsherCreate(BaseModel):
    """Create usher request"""
    username: str = Field(..., pattern=r"^[a-zA-Z0-9_]{3,30}$")
    full_name: str = Field(..., min_length=1, max_length=100)
    role: UsherRole = "Usher"

class UsherUpdate(BaseModel):
    """Update usher request; omitted fields are left alone"""
    full_name: Optional[str] = Field(None, min_length=1, max_length=100)
    role: Optional[UsherRole] = None
    active: Optional[bool] = None
    rotate_token: bool = False
