"""
Security utilities and authentication
"""

import logging

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.db import get_db
from app.services.checkin_service import Actor
from app.services.repositories import UsherRepo
from app.utils.responses import forbidden_error, unauthorized_error

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)

def get_current_actor(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db)
) -> Actor:
    """Resolve the bearer token to an active usher"""
    if credentials is None or not credentials.credentials:
        unauthorized_error("Authentication required")

    usher = UsherRepo.get_active_by_token(db, credentials.credentials)
    if usher is None:
        logger.warning("Rejected request with unknown or inactive token")
        unauthorized_error("Invalid or inactive token")

    return Actor(username=usher.username, full_name=usher.full_name, role=usher.role)

def require_admin(actor: Actor = Depends(get_current_actor)) -> Actor:
    """Only admins may use the admin routes"""
    if actor.role != settings.ADMIN_ROLE:
        logger.warning(f"Admin route refused for {actor.username} (role {actor.role})")
        forbidden_error("Admin privileges required")
    return actor
