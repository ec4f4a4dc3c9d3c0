"""
Pydantic schemas package
"""

from .common import *
from .guest import *
from .usher import *

__all__ = [
    "StandardResponse",
    "ErrorResponse",
    "Pagination",
    "GuestResponse",
    "CheckInLogResponse",
    "CheckInRequest",
    "UndoCheckInRequest",
    "BulkCheckInEntry",
    "BulkCheckInRequest",
    "SearchRequest",
    "UsherResponse",
    "UsherCreate",
    "UsherUpdate",
]
