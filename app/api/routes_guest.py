"""
Guest API routes - usher authentication required

Handlers are plain ``def`` so FastAPI runs them on its thread pool; the
engine holds row locks for the length of a transaction and must not block
the event loop.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.dependencies import get_checkin_service, get_guest_query_service
from app.core.db import get_db
from app.core.errors import StoreError, ValidationError
from app.schemas.guest import BulkCheckInRequest, CheckInRequest, SearchRequest, UndoCheckInRequest
from app.services.checkin_service import Actor, CheckInService
from app.services.guest_query_service import GuestQueryService
from app.utils.responses import error_response, failure_response, success_response
from app.utils.security import get_current_actor

router = APIRouter()

def _validation_failed(exc: ValidationError):
    return error_response(
        message=exc.message,
        error_code=exc.code.value,
        details=exc.details or None,
        status_code=400
    )

def _store_unavailable(exc: StoreError):
    return error_response(
        message=str(exc),
        error_code=exc.code.value,
        status_code=503
    )

@router.get("")
def list_guests(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    status: Optional[str] = Query(None),
    ticket_type: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    queries: GuestQueryService = Depends(get_guest_query_service)
):
    """List guests, paginated and ordered by name"""
    data, cached = queries.list_guests(db, page=page, limit=limit, status=status, ticket_type=ticket_type)
    return success_response(
        message="Guests retrieved successfully",
        data={**data, "cached": cached}
    )

@router.post("/search")
def search_guests(
    search: SearchRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor)
):
    """Search guests by name, email, phone or id"""
    data = GuestQueryService.search_guests(search, db)
    return success_response(
        message=f"Found {data['total']} guests",
        data=data
    )

@router.post("/check-in")
def check_in_guest(
    checkin_data: CheckInRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    service: CheckInService = Depends(get_checkin_service)
):
    """Check in a guest"""
    try:
        result = service.check_in(
            guest_id=checkin_data.guest_id,
            plus_ones=checkin_data.plus_ones,
            notes=checkin_data.notes,
            actor=actor,
            db=db
        )
    except ValidationError as exc:
        return _validation_failed(exc)
    except StoreError as exc:
        return _store_unavailable(exc)

    if not result.ok:
        return failure_response(result.failure)

    guest = result.guest
    return success_response(
        message=f"{guest.first_name} {guest.last_name} checked in successfully",
        data={
            "guest": guest.model_dump(mode="json"),
            "confirmation_code": result.confirmation_code,
            "plus_ones": guest.plus_ones_checked_in,
            "total_party_size": 1 + guest.plus_ones_checked_in
        }
    )

@router.post("/undo-check-in")
def undo_check_in(
    undo_data: UndoCheckInRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    service: CheckInService = Depends(get_checkin_service)
):
    """Undo a check-in made within the undo window"""
    try:
        result = service.undo_check_in(
            guest_id=undo_data.guest_id,
            reason=undo_data.reason,
            actor=actor,
            db=db
        )
    except ValidationError as exc:
        return _validation_failed(exc)
    except StoreError as exc:
        return _store_unavailable(exc)

    if not result.ok:
        return failure_response(result.failure)

    guest = result.guest
    previous = result.previous
    return success_response(
        message=f"Check-in undone for {guest.first_name} {guest.last_name}",
        data={
            "guest": guest.model_dump(mode="json"),
            "previous_check_in": {
                "confirmation_code": previous.confirmation_code,
                "check_in_time": previous.check_in_time,
                "plus_ones": previous.plus_ones,
                "checked_in_by": previous.checked_in_by
            }
        }
    )

@router.post("/bulk-check-in")
def bulk_check_in(
    bulk_data: BulkCheckInRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    service: CheckInService = Depends(get_checkin_service)
):
    """Check in a batch of guests; any failure rolls back the whole batch"""
    try:
        result = service.bulk_check_in(bulk_data.guests, actor=actor, db=db)
    except ValidationError as exc:
        return _validation_failed(exc)
    except StoreError as exc:
        return _store_unavailable(exc)

    data = {
        "checked_in": [
            {
                "guest_id": item.guest_id,
                "guest_name": item.guest_name,
                "confirmation_code": item.confirmation_code,
                "plus_ones": item.plus_ones,
                "ticket_type": item.ticket_type
            }
            for item in result.checked_in
        ],
        "failed": [
            {
                "guest_id": item.guest_id,
                "guest_name": item.guest_name,
                "reason": item.reason,
                "code": item.code.value,
                "details": item.details or None
            }
            for item in result.failed
        ],
        "total_requested": result.total_requested,
        "committed": result.committed
    }

    if not result.committed:
        return error_response(
            message=f"Bulk check-in rolled back: {len(result.failed)} of {result.total_requested} guests failed",
            error_code="BULK_ROLLED_BACK",
            details=data,
            status_code=409
        )

    return success_response(
        message=f"Checked in {len(result.checked_in)} guests",
        data=data
    )

@router.get("/{guest_id}")
def get_guest(
    guest_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    queries: GuestQueryService = Depends(get_guest_query_service)
):
    """Guest detail with recent check-in history"""
    data, cached = queries.get_guest_detail(guest_id, db)
    if data is None:
        return error_response(
            message=f"Guest with ID {guest_id} not found",
            error_code="NOT_FOUND",
            status_code=404
        )
    return success_response(
        message="Guest retrieved successfully",
        data={**data, "cached": cached}
    )
