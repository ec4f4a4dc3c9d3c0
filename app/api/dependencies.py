"""
Shared route dependencies
"""

from typing import Optional

from fastapi import Request

from app.services.admin_service import AdminService
from app.services.cache_service import ReadCache
from app.services.checkin_service import CheckInService
from app.services.guest_query_service import GuestQueryService


def get_read_cache(request: Request) -> Optional[ReadCache]:
    """The process-wide read cache created at startup"""
    return getattr(request.app.state, "cache", None)


def get_checkin_service(request: Request) -> CheckInService:
    return CheckInService(cache=get_read_cache(request))


def get_guest_query_service(request: Request) -> GuestQueryService:
    return GuestQueryService(cache=get_read_cache(request))


def get_admin_service(request: Request) -> AdminService:
    return AdminService(cache=get_read_cache(request))
