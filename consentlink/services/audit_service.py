# consentlink/services/audit_service.py
"""
Append-only sharing audit trail.

record_event only adds and flushes: the calling service commits it together
with the state change it describes, or rolls both back.
"""

import logging
from datetime import datetime

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from consentlink.core.caller import Caller
from consentlink.core.exceptions import NotAuthorized, ValidationError
from consentlink.models.connection import Connection
from consentlink.models.sharing_audit import AuditEventType, SharingAuditLog
from consentlink.utils.datetime_utils import as_utc, utc_now

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 200


def record_event(
    db: Session,
    *,
    event_type: AuditEventType,
    actor_tenant_id: str | None = None,
    actor_user_id: str | None = None,
    target_tenant_id: str | None = None,
    connection_id: str | None = None,
    grant_id: str | None = None,
    share_id: str | None = None,
    detail: dict | None = None,
    now: datetime | None = None,
) -> SharingAuditLog:
    entry = SharingAuditLog(
        event_type=AuditEventType(event_type).value,
        actor_tenant_id=actor_tenant_id,
        actor_user_id=actor_user_id,
        target_tenant_id=target_tenant_id,
        connection_id=connection_id,
        grant_id=grant_id,
        share_id=share_id,
        detail=dict(detail or {}),
        created_at=now or utc_now(),
    )
    db.add(entry)
    db.flush()
    return entry


def list_audit_entries(
    db: Session,
    *,
    caller: Caller,
    connection_id: str | None = None,
    limit: int = 50,
    before: datetime | None = None,
    before_id: str | None = None,
) -> list[SharingAuditLog]:
    """
    Entries where the caller's tenant is the actor or the target, newest first.

    Pagination is a (created_at, id) cursor: pass the created_at and id of
    the last entry of a page as `before` and `before_id` to get the next one.
    Entries written in one transaction share a created_at, so `before` alone
    skips those of them that did not fit on the previous page.
    """
    if caller.tenant_id is None:
        raise NotAuthorized("Audit log requires a tenant caller.")
    if limit < 1 or limit > MAX_PAGE_SIZE:
        raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}.")

    query = db.query(SharingAuditLog).filter(
        or_(
            SharingAuditLog.actor_tenant_id == caller.tenant_id,
            SharingAuditLog.target_tenant_id == caller.tenant_id,
        )
    )

    if connection_id is not None:
        connection = db.query(Connection).filter(Connection.id == connection_id).first()
        if connection is None or caller.tenant_id not in connection.tenant_parties():
            raise NotAuthorized("You are not a party of this connection.")
        query = query.filter(SharingAuditLog.connection_id == connection_id)

    if before is not None:
        before = as_utc(before)
        if before_id is None:
            query = query.filter(SharingAuditLog.created_at < before)
        else:
            query = query.filter(
                or_(
                    SharingAuditLog.created_at < before,
                    and_(
                        SharingAuditLog.created_at == before,
                        SharingAuditLog.id < before_id,
                    ),
                )
            )

    return (
        query.order_by(SharingAuditLog.created_at.desc(), SharingAuditLog.id.desc())
        .limit(limit)
        .all()
    )
