"""
Guest model
"""

from enum import Enum
from sqlalchemy import Column, Integer, String, Text, DateTime, CheckConstraint, Index

from app.core.db import Base
from app.utils.clock import utcnow


class GuestStatus(str, Enum):
    NOT_CHECKED_IN = "Not Checked In"
    CHECKED_IN = "Checked In"


class Guest(Base):
    __tablename__ = "guests"

    id = Column(String(10), primary_key=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(255), nullable=True, index=True)
    phone = Column(String(20), nullable=True)
    ticket_type = Column(String(50), nullable=False)
    plus_ones_allowed = Column(Integer, nullable=False, default=0)
    plus_ones_checked_in = Column(Integer, nullable=False, default=0)
    status = Column(String(50), nullable=False, default=GuestStatus.NOT_CHECKED_IN.value, index=True)
    confirmation_code = Column(String(255), nullable=True, index=True)
    check_in_time = Column(DateTime, nullable=True, index=True)
    checked_in_by = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    last_modified = Column(DateTime, default=utcnow)

    __table_args__ = (
        CheckConstraint("plus_ones_allowed >= 0", name="chk_plus_ones_allowed"),
        CheckConstraint(
            "plus_ones_checked_in >= 0 AND plus_ones_checked_in <= plus_ones_allowed",
            name="chk_plus_ones_count",
        ),
        Index("idx_guests_name", "last_name", "first_name"),
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"
