"""
Admin API routes - requires an Admin token
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Query, Request, UploadFile
from fastapi.responses import Response
from sqlalchemy.orm import Session

from app.api.dependencies import get_admin_service, get_read_cache
from app.core.config import settings
from app.core.db import get_db
from app.core.errors import ErrorCode, StoreError, UsherAdminError, ValidationError
from app.schemas.usher import UsherCreate, UsherUpdate
from app.services.admin_service import AdminService
from app.services.cache_service import GUEST_KEY_PATTERN
from app.services.checkin_service import Actor
from app.services.excel_service import ExcelService
from app.services.usher_service import UsherService
from app.utils.clock import utcnow
from app.utils.responses import error_response, success_response
from app.utils.security import require_admin

logger = logging.getLogger(__name__)

router = APIRouter()

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

USHER_ERROR_STATUS = {
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.USERNAME_TAKEN: 409,
}

def _usher_refused(exc):
    """Map a refused usher change or bad input to an error response"""
    if isinstance(exc, StoreError):
        return error_response(message=str(exc), error_code=exc.code.value, status_code=503)
    return error_response(
        message=exc.message,
        error_code=exc.code.value,
        details=exc.details or None,
        status_code=USHER_ERROR_STATUS.get(exc.code, 400)
    )

def _xlsx(content: bytes, filename: str) -> Response:
    return Response(
        content=content,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f"attachment; filename={filename}"}
    )

@router.get("/stats")
def get_stats(
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_admin),
    admin: AdminService = Depends(get_admin_service)
):
    """Check-in dashboard statistics"""
    data, cached = admin.get_stats(db)
    return success_response(
        message="Statistics retrieved successfully",
        data={**data, "cached": cached}
    )

@router.get("/audit-log")
def get_audit_log(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    guest_id: Optional[str] = Query(None),
    action: Optional[str] = Query(None),
    usher_name: Optional[str] = Query(None),
    start_date: Optional[str] = Query(None),
    end_date: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_admin),
    admin: AdminService = Depends(get_admin_service)
):
    """Check-in audit trail, newest first"""
    try:
        data = admin.get_audit_log(
            db,
            page=page,
            limit=limit,
            guest_id=guest_id,
            action=action,
            usher_name=usher_name,
            start_date=start_date,
            end_date=end_date
        )
    except ValidationError as exc:
        return error_response(
            message=exc.message,
            error_code=exc.code.value,
            details=exc.details or None,
            status_code=400
        )
    return success_response(
        message="Audit log retrieved successfully",
        data=data
    )

@router.get("/export/guests.xlsx")
def export_guests(
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_admin)
):
    """Export the guest list with check-in state"""
    stamp = utcnow().strftime("%Y%m%d_%H%M%S")
    return _xlsx(ExcelService.export_guests(db), f"guests_{stamp}.xlsx")

@router.get("/export/audit-log.xlsx")
def export_audit_log(
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_admin)
):
    """Export the full check-in audit trail"""
    stamp = utcnow().strftime("%Y%m%d_%H%M%S")
    return _xlsx(ExcelService.export_audit_log(db), f"checkin_log_{stamp}.xlsx")

@router.get("/guests/template.xlsx")
def download_template(actor: Actor = Depends(require_admin)):
    """Download the guest import template"""
    return _xlsx(ExcelService.create_template(), "guest_import_template.xlsx")

@router.post("/guests/import")
async def import_guests(
    request: Request,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_admin)
):
    """Upload and import new guests from an Excel file"""
    # Validate file type
    if not file.filename or not file.filename.endswith(('.xlsx', '.xls')):
        return error_response(
            message="Invalid file format. Please upload an Excel file (.xlsx or .xls)",
            status_code=400
        )

    file_content = await file.read()
    if len(file_content) > settings.MAX_UPLOAD_SIZE:
        return error_response(
            message=f"File too large. Maximum size is {settings.MAX_UPLOAD_SIZE // (1024 * 1024)}MB",
            status_code=400
        )

    success, errors, processed_count = ExcelService.process_excel_upload(
        file_content=file_content,
        db=db
    )

    if not success:
        return error_response(
            message="Excel file validation failed",
            details=errors,
            status_code=422
        )

    cache = get_read_cache(request)
    if cache is not None:
        cache.invalidate_pattern(GUEST_KEY_PATTERN)

    logger.info(f"{actor.username} imported {processed_count} guests from {file.filename}")
    return success_response(
        message=f"Excel file processed successfully. {processed_count} guests imported.",
        data={
            "processed_count": processed_count,
            "filename": file.filename
        }
    )

@router.get("/ushers")
def list_ushers(
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_admin)
):
    """All usher accounts, by full name"""
    ushers = UsherService.list_ushers(db)
    return success_response(
        message="Ushers retrieved successfully",
        data={"ushers": ushers, "total": len(ushers)}
    )

@router.post("/ushers")
def create_usher(
    request: UsherCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_admin)
):
    """Create an usher and issue its api token"""
    try:
        usher, token = UsherService.create_usher(request, actor, db)
    except (UsherAdminError, ValidationError, StoreError) as exc:
        return _usher_refused(exc)
    return success_response(
        message=f'Usher "{usher["username"]}" created successfully',
        data={"usher": usher, "api_token": token},
        status_code=201
    )

@router.patch("/ushers/{usher_id}")
def update_usher(
    usher_id: str,
    request: UsherUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_admin)
):
    """Update name, role or active flag, optionally rotating the token"""
    try:
        usher, token = UsherService.update_usher(usher_id, request, actor, db)
    except (UsherAdminError, ValidationError, StoreError) as exc:
        return _usher_refused(exc)
    data = {"usher": usher}
    if token is not None:
        data["api_token"] = token
    return success_response(
        message=f'Usher "{usher["username"]}" updated successfully',
        data=data
    )

@router.delete("/ushers/{usher_id}")
def deactivate_usher(
    usher_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_admin)
):
    """Deactivate an usher and revoke its token"""
    try:
        usher = UsherService.deactivate_usher(usher_id, actor, db)
    except (UsherAdminError, StoreError) as exc:
        return _usher_refused(exc)
    return success_response(
        message=f'Usher "{usher["username"]}" has been deactivated',
        data={"usher": usher}
    )
