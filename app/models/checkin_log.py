"""
Check-in audit log model (append-only)
"""

from enum import Enum
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Index

from app.core.db import Base
from app.utils.clock import utcnow


class CheckInAction(str, Enum):
    CHECK_IN = "Check In"
    UNDO_CHECK_IN = "Undo Check In"
    BULK_CHECK_IN = "Bulk Check In"


class CheckInLog(Base):
    __tablename__ = "check_in_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    timestamp = Column(DateTime, nullable=False, default=utcnow)
    # Survives guest deletion
    guest_id = Column(String(10), ForeignKey("guests.id", ondelete="SET NULL"), nullable=True)
    guest_name = Column(String(200), nullable=True)
    action = Column(String(50), nullable=False)
    usher_name = Column(String(100), nullable=True)
    plus_ones_count = Column(Integer, nullable=False, default=0)
    notes = Column(Text, nullable=True)
    confirmation_code = Column(String(255), nullable=True)

    __table_args__ = (
        Index("idx_log_timestamp", "timestamp"),
        Index("idx_log_guest_id", "guest_id"),
        Index("idx_log_action", "action"),
    )
