# consentlink/services/access_resolver_service.py
"""
Turns a grant or a share token into the records its holder may see right now.

Every read goes through here: status and expiry are checked on each call
(revocation takes effect on the next read), filters are applied in a fixed
order, and each successful read is audited with counts only.
"""

import logging
from datetime import date, datetime

from sqlalchemy.orm import Session

from consentlink.core.caller import Caller
from consentlink.core.config import get_settings
from consentlink.core.exceptions import (
    Expired,
    NotAuthorized,
    NotFound,
    Revoked,
    ValidationError,
)
from consentlink.core.transaction import atomic
from consentlink.models.connection import ConnectionStatus
from consentlink.models.consent_grant import ConsentGrant, GrantStatus
from consentlink.models.share_token import ShareStatus, ShareToken
from consentlink.models.sharing_audit import AuditEventType
from consentlink.schemas.access import (
    FilteredView,
    SharedResourceData,
    ShareFailureReason,
    ShareResolution,
    ShareSummary,
)
from consentlink.services.audit_service import record_event
from consentlink.services.consent_grant_service import expire_grant, is_grant_counterpart
from consentlink.services.resource_store import Record, ResourceStore
from consentlink.services.share_token_service import derive_share_status
from consentlink.utils.datetime_utils import in_date_window, is_past, utc_now
from consentlink.utils.email_utils import emails_match
from consentlink.utils.token_utils import constant_time_equals, looks_like_token

logger = logging.getLogger(__name__)

# Scope flag -> resource type fetched for it
SHARE_CATEGORIES = {
    "includeVet": "vet_records",
    "includeLab": "lab_results",
    "includeFiles": "files",
}


def intersect_windows(
    grant_from: date | None,
    grant_to: date | None,
    requested_from: date | None,
    requested_to: date | None,
) -> tuple[date | None, date | None]:
    """Narrow the grant window by a requested one; a request never widens it."""
    effective_from = grant_from
    if requested_from is not None and (effective_from is None or requested_from > effective_from):
        effective_from = requested_from
    effective_to = grant_to
    if requested_to is not None and (effective_to is None or requested_to < effective_to):
        effective_to = requested_to
    return effective_from, effective_to


def filter_records(
    records: list[Record],
    *,
    allowed_ids: list[str] | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    excluded_fields: list[str] | None = None,
) -> list[Record]:
    """
    Apply, in order: the id allow-list, the inclusive date window on each
    record's "date", then removal of excluded fields. The id always survives.
    """
    allowed = set(allowed_ids) if allowed_ids is not None else None
    redact = [f for f in (excluded_fields or []) if f != "id"]

    visible: list[Record] = []
    for record in records:
        if allowed is not None and record.get("id") not in allowed:
            continue
        if not in_date_window(record.get("date"), date_from, date_to):
            continue
        cleaned = dict(record)
        for name in redact:
            cleaned.pop(name, None)
        visible.append(cleaned)
    return visible


def resolve_grant(
    db: Session,
    *,
    caller: Caller,
    grant_id: str,
    store: ResourceStore,
    date_from: date | None = None,
    date_to: date | None = None,
    now: datetime | None = None,
) -> FilteredView:
    """
    Records the grant's counterpart may read right now.

    Raises NotFound, NotAuthorized, Revoked, Expired or ValidationError.
    """
    now = now or utc_now()

    grant = db.query(ConsentGrant).filter(ConsentGrant.id == grant_id).first()
    if grant is None:
        raise NotFound("Grant not found.")
    connection = grant.connection

    # Authorization before status, so a stranger learns nothing about history
    if not is_grant_counterpart(grant, connection, caller):
        logger.info(f"Denied read of grant {grant.id}: caller is not the counterpart")
        raise NotAuthorized("This grant was not issued to you.")

    if grant.status == GrantStatus.REVOKED or connection.status == ConnectionStatus.REVOKED:
        raise Revoked("This grant has been revoked.")
    if grant.status == GrantStatus.EXPIRED:
        raise Expired("This grant has expired.")
    if is_past(grant.expires_at, now):
        expire_grant(db, grant, now=now)
        raise Expired("This grant has expired.")

    if date_from is not None and date_to is not None and date_from > date_to:
        raise ValidationError("date_from must not be after date_to.")
    effective_from, effective_to = intersect_windows(grant.date_from, grant.date_to, date_from, date_to)

    records: list[Record] = []
    if grant.resource_type in get_settings().grant_resource_types:
        fetched = store.fetch_by_type_and_owner(
            grant.resource_type,
            grant.grantor_tenant_id,
            ids=grant.resource_ids,
        )
        records = filter_records(
            fetched,
            allowed_ids=grant.resource_ids,
            date_from=effective_from,
            date_to=effective_to,
            excluded_fields=grant.excluded_fields,
        )
    else:
        logger.warning(f"Grant {grant.id} names unknown resource type {grant.resource_type}")

    with atomic(db):
        record_event(
            db,
            event_type=AuditEventType.DATA_ACCESSED,
            actor_tenant_id=caller.tenant_id,
            actor_user_id=caller.user_id,
            target_tenant_id=grant.grantor_tenant_id,
            connection_id=connection.id,
            grant_id=grant.id,
            detail={"resource_type": grant.resource_type, "record_count": len(records)},
            now=now,
        )

    return FilteredView(
        grant_id=grant.id,
        resource_type=grant.resource_type,
        access_level=grant.access_level,
        forward_only=grant.forward_only,
        resource_ids=grant.resource_ids,
        effective_from=effective_from,
        effective_to=effective_to,
        records=records,
    )


def _find_share(db: Session, token: str) -> ShareToken | None:
    if not looks_like_token(token):
        return None
    share = db.query(ShareToken).filter(ShareToken.token == token).first()
    if share is None or not constant_time_equals(share.token, token):
        return None
    return share


def resolve_share_token(
    db: Session,
    *,
    token: str,
    store: ResourceStore,
    presented_email: str | None = None,
    now: datetime | None = None,
) -> ShareResolution:
    """
    Resolve a public share link.

    Policy failures come back as ShareResolution.failure(reason); only
    infrastructure errors (database, resource store) raise.
    """
    now = now or utc_now()

    share = _find_share(db, token)
    if share is None:
        return ShareResolution.failure(ShareFailureReason.NOT_FOUND)

    status = derive_share_status(share, now)
    if status == ShareStatus.REVOKED:
        return ShareResolution.failure(ShareFailureReason.REVOKED)
    if status == ShareStatus.EXPIRED:
        return ShareResolution.failure(ShareFailureReason.EXPIRED)

    if share.recipient_email is not None:
        if not presented_email:
            return ShareResolution.failure(ShareFailureReason.EMAIL_LOCK_REQUIRES_LOGIN)
        if not emails_match(presented_email, share.recipient_email):
            logger.info(f"Share {share.id}: email lock mismatch")
            return ShareResolution.failure(ShareFailureReason.EMAIL_MISMATCH)

    settings = get_settings()
    subjects = store.fetch_by_type_and_owner(
        settings.share_subject_resource_type,
        share.owning_tenant_id,
        ids=[share.subject_resource_id],
    )
    subject = next((s for s in subjects if s.get("id") == share.subject_resource_id), None)
    if subject is None:
        logger.warning(f"Share {share.id}: subject {share.subject_resource_id} no longer exists")
        return ShareResolution.failure(ShareFailureReason.NOT_FOUND)

    data = SharedResourceData(subject=subject)
    scope = share.scope
    for flag, resource_type in SHARE_CATEGORIES.items():
        if not scope.get(flag):
            continue
        fetched = store.fetch_by_type_and_owner(
            resource_type,
            share.owning_tenant_id,
            subject_id=share.subject_resource_id,
        )
        setattr(
            data,
            resource_type,
            filter_records(fetched, date_from=share.date_from, date_to=share.date_to),
        )

    with atomic(db):
        record_event(
            db,
            event_type=AuditEventType.DATA_ACCESSED,
            target_tenant_id=share.owning_tenant_id,
            share_id=share.id,
            detail={
                "subject_resource_id": share.subject_resource_id,
                "vet_records": len(data.vet_records),
                "lab_results": len(data.lab_results),
                "files": len(data.files),
            },
            now=now,
        )

    return ShareResolution(
        success=True,
        share=ShareSummary(
            id=share.id,
            date_from=share.date_from,
            date_to=share.date_to,
            expires_at=share.expires_at,
            scope=scope,
        ),
        data=data,
    )
