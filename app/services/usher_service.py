"""
Usher account management: create, list, update and deactivate
"""

import logging
import secrets
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import ErrorCode, StoreError, UsherAdminError, ValidationError
from app.models import Usher
from app.schemas.usher import UsherCreate, UsherResponse, UsherUpdate
from app.services.checkin_service import Actor
from app.services.repositories import UsherRepo
from app.utils.clock import utcnow

logger = logging.getLogger(__name__)

class UsherService:
    """Admin-side usher account operations. Tokens are issued here and never stored elsewhere."""

    TOKEN_BYTES = 32

    @staticmethod
    def issue_token(db: Session) -> str:
        """Generate an api token not held by any usher"""
        token = secrets.token_urlsafe(UsherService.TOKEN_BYTES)
        while UsherRepo.token_exists(db, token):
            token = secrets.token_urlsafe(UsherService.TOKEN_BYTES)
        return token

    @staticmethod
    def list_ushers(db: Session) -> List[Dict[str, Any]]:
        return [UsherResponse.model_validate(u).model_dump(mode="json") for u in UsherRepo.list_all(db)]

    @staticmethod
    def create_usher(request: UsherCreate, actor: Actor, db: Session) -> Tuple[Dict[str, Any], str]:
        """Create an active usher. Returns (usher, api_token)."""
        full_name = request.full_name.strip()
        if not full_name:
            raise ValidationError("Full name is required", {"field": "full_name"})

        if UsherRepo.get_by_username(db, request.username) is not None:
            logger.warning(f"{actor.username} tried to create duplicate usher '{request.username}'")
            raise UsherAdminError(
                ErrorCode.USERNAME_TAKEN,
                f'Username "{request.username}" is already taken',
                {"field": "username"},
            )

        try:
            token = UsherService.issue_token(db)
            usher = Usher(
                usher_id=UsherRepo.next_id(db),
                username=request.username,
                full_name=full_name,
                role=request.role,
                active=True,
                api_token=token,
                created_at=utcnow(),
            )
            db.add(usher)
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            raise UsherAdminError(
                ErrorCode.USERNAME_TAKEN,
                f'Username "{request.username}" is already taken',
                {"field": "username"},
            ) from exc
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error(f"Creating usher '{request.username}' failed: {exc}")
            raise StoreError("Failed to create usher") from exc

        logger.info(f"{actor.username} created usher {usher.usher_id} ({usher.username}, {usher.role})")
        return UsherResponse.model_validate(usher).model_dump(mode="json"), token

    @staticmethod
    def update_usher(
        usher_id: str, request: UsherUpdate, actor: Actor, db: Session
    ) -> Tuple[Dict[str, Any], Optional[str]]:
        """Apply the given fields. Returns (usher, new_token or None)."""
        changes = request.model_dump(exclude_unset=True, exclude={"rotate_token"})
        changes = {name: value for name, value in changes.items() if value is not None}
        if not changes and not request.rotate_token:
            raise ValidationError(
                "No update fields provided",
                {"fields": "At least one of full_name, role, active, rotate_token is required"},
            )
        if "full_name" in changes:
            changes["full_name"] = changes["full_name"].strip()
            if not changes["full_name"]:
                raise ValidationError("Full name cannot be empty", {"field": "full_name"})

        usher = UsherService._require_usher(db, usher_id)
        if changes.get("active") is False:
            UsherService._check_removable(usher, actor, db, "deactivate")
        elif changes.get("role", usher.role) != usher.role:
            UsherService._check_removable(usher, actor, db, "demote")

        token = None
        try:
            for name, value in changes.items():
                setattr(usher, name, value)
            if not usher.active:
                usher.api_token = None
            elif request.rotate_token or usher.api_token is None:
                token = UsherService.issue_token(db)
                usher.api_token = token
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error(f"Updating usher {usher_id} failed: {exc}")
            raise StoreError("Failed to update usher") from exc

        logger.info(
            f"{actor.username} updated usher {usher_id}: fields={sorted(changes)} token_rotated={token is not None}"
        )
        return UsherResponse.model_validate(usher).model_dump(mode="json"), token

    @staticmethod
    def deactivate_usher(usher_id: str, actor: Actor, db: Session) -> Dict[str, Any]:
        """Soft delete: mark inactive and revoke the token"""
        usher = UsherService._require_usher(db, usher_id)
        UsherService._check_removable(usher, actor, db, "delete")

        try:
            usher.active = False
            usher.api_token = None
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error(f"Deactivating usher {usher_id} failed: {exc}")
            raise StoreError("Failed to deactivate usher") from exc

        logger.info(f"{actor.username} deactivated usher {usher_id} ({usher.username})")
        return UsherResponse.model_validate(usher).model_dump(mode="json")

    @staticmethod
    def _require_usher(db: Session, usher_id: str) -> Usher:
        usher = UsherRepo.get(db, usher_id)
        if usher is None:
            raise UsherAdminError(ErrorCode.NOT_FOUND, f'Usher with ID "{usher_id}" not found')
        return usher

    @staticmethod
    def _check_removable(usher: Usher, actor: Actor, db: Session, verb: str) -> None:
        """Refuse to lock out the caller or the last active admin"""
        if usher.username == actor.username:
            logger.warning(f"{actor.username} tried to {verb} their own account")
            raise UsherAdminError(ErrorCode.INVALID_OPERATION, f"You cannot {verb} your own account")
        if (
            usher.active
            and usher.role == settings.ADMIN_ROLE
            and UsherRepo.count_active_with_role(db, settings.ADMIN_ROLE) <= 1
        ):
            logger.warning(f"{actor.username} tried to {verb} the last active admin {usher.usher_id}")
            raise UsherAdminError(
                ErrorCode.INVALID_OPERATION,
                "Cannot remove the last active admin account",
                {"reason": "At least one admin account must remain active"},
            )
