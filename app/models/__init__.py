"""
Database models package
"""

from .guest import Guest, GuestStatus
from .usher import Usher
from .checkin_log import CheckInLog, CheckInAction

__all__ = ["Guest", "GuestStatus", "Usher", "CheckInLog", "CheckInAction"]
