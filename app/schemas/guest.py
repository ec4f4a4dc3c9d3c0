"""
Guest-related Pydantic schemas
"""

from datetime import datetime
from typing import List, Literal, Optional
from pydantic import BaseModel, Field, field_validator

def _coerce_guest_id(value):
    """Accept numeric ids from JSON clients"""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value

class GuestResponse(BaseModel):
    """Guest response schema"""
    id: str
    first_name: str
    last_name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    ticket_type: str
    plus_ones_allowed: int
    plus_ones_checked_in: int
    status: str
    confirmation_code: Optional[str] = None
    check_in_time: Optional[datetime] = None
    checked_in_by: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    last_modified: Optional[datetime] = None

    class Config:
        from_attributes = True

class CheckInLogResponse(BaseModel):
    """Audit log row"""
    id: int
    timestamp: datetime
    guest_id: Optional[str] = None
    guest_name: Optional[str] = None
    action: str
    usher_name: Optional[str] = None
    plus_ones_count: int
    notes: Optional[str] = None
    confirmation_code: Optional[str] = None

    class Config:
        from_attributes = True

class CheckInRequest(BaseModel):
    """Single guest check-in request"""
    guest_id: str = Field(..., min_length=1)
    plus_ones: int = Field(0, ge=0)
    notes: str = ""

    @field_validator("guest_id", mode="before")
    @classmethod
    def guest_id_as_text(cls, value):
        return _coerce_guest_id(value)

class UndoCheckInRequest(BaseModel):
    """Undo a recent check-in"""
    guest_id: str = Field(..., min_length=1)
    reason: str = ""

    @field_validator("guest_id", mode="before")
    @classmethod
    def guest_id_as_text(cls, value):
        return _coerce_guest_id(value)

class BulkCheckInEntry(BaseModel):
    """One guest in a bulk check-in; the engine validates identifiers"""
    guest_id: Optional[str] = None
    plus_ones: int = Field(0, ge=0)
    notes: str = ""

    @field_validator("guest_id", mode="before")
    @classmethod
    def guest_id_as_text(cls, value):
        return _coerce_guest_id(value)

class BulkCheckInRequest(BaseModel):
    """Bulk check-in request"""
    guests: List[BulkCheckInEntry]

class SearchRequest(BaseModel):
    """Guest search request"""
    query: str = ""
    status: Optional[str] = None
    ticket_type: Optional[str] = None
    sort_by: Literal["name", "checkInTime", "ticketType"] = "name"
    sort_order: Literal["asc", "desc"] = "asc"
