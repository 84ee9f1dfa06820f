# consentlink/api/v1/endpoints/audit.py
from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from consentlink.core.caller import Caller
from consentlink.core.database import get_db
from consentlink.dependencies.caller import get_caller
from consentlink.schemas.audit import AuditEntryResponse, AuditPage
from consentlink.services.audit_service import MAX_PAGE_SIZE, list_audit_entries

router = APIRouter()


@router.get("", response_model=AuditPage, tags=["audit"])
def list_audit_endpoint(
    connection_id: str | None = Query(None),
    limit: int = Query(50, ge=1, le=MAX_PAGE_SIZE),
    before: datetime | None = Query(None, description="created_at cursor from the previous page"),
    before_id: str | None = Query(None, description="id cursor from the previous page"),
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
) -> AuditPage:
    """Sharing audit entries involving the caller's tenant, newest first."""
    entries = list_audit_entries(
        db,
        caller=caller,
        connection_id=connection_id,
        limit=limit,
        before=before,
        before_id=before_id,
    )
    items = [AuditEntryResponse.model_validate(e) for e in entries]
    if len(items) < limit:
        return AuditPage(items=items)
    return AuditPage(items=items, next_before=items[-1].created_at, next_before_id=items[-1].id)
