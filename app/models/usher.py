"""
Usher model
"""

from sqlalchemy import Column, String, Boolean, DateTime

from app.core.db import Base
from app.utils.clock import utcnow


class Usher(Base):
    __tablename__ = "ushers"

    usher_id = Column(String(10), primary_key=True)
    username = Column(String(50), unique=True, nullable=False, index=True)
    full_name = Column(String(100), nullable=False)
    role = Column(String(20), nullable=False, default="Usher", index=True)
    active = Column(Boolean, nullable=False, default=True, index=True)
    api_token = Column(String(255), unique=True, nullable=True, index=True)
    created_at = Column(DateTime, default=utcnow)
    last_login = Column(DateTime, nullable=True)
