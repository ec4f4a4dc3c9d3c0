"""
Common Pydantic schemas
"""

from typing import Any, Optional
from pydantic import BaseModel

class StandardResponse(BaseModel):
    """Standard API response"""
    success: bool
    message: str
    data: Optional[Any] = None

class ErrorResponse(BaseModel):
    """Error response schema"""
    success: bool = False
    message: str
    error_code: Optional[str] = None
    details: Optional[Any] = None

class Pagination(BaseModel):
    """Pagination block returned with list results"""
    total: int
    page: int
    limit: int
    total_pages: int
    has_more: bool
    showing: int

    @classmethod
    def build(cls, total: int, page: int, limit: int, showing: int) -> "Pagination":
        total_pages = (total + limit - 1) // limit
        return cls(
            total=total,
            page=page,
            limit=limit,
            total_pages=total_pages,
            has_more=page < total_pages,
            showing=showing,
        )
