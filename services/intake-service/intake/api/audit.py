from typing import List, Optional
from fastapi import APIRouter, Depends, Query
from intake.api.deps import get_audit_service, require_admin
from intake.schemas.audit import AuditLogResponse
from intake.services.audit_service import AuditService
from intake.services.session import Identity

router = APIRouter(prefix="/audit", tags=["Audit"])

@router.get("", response_model=List[AuditLogResponse])
def get_audit_logs(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    actor: Optional[str] = None,
    action: Optional[str] = None,
    identity: Identity = Depends(require_admin),
    audit: AuditService = Depends(get_audit_service),
):
    """
    Retrieve the append-only audit trail, newest first, with optional filtering.
    """
    return audit.list_entries(skip=skip, limit=limit, actor=actor, action=action)
