# consentlink/services/consent_grant_service.py
"""
Consent grants: scoped read permissions attached to an accepted connection.

Either tenant of an accepted connection may grant, since either side may hold
data the other wants. The grantor is always the caller's tenant.
"""

import logging
from datetime import date, datetime

from sqlalchemy.orm import Session

from consentlink.core.caller import Caller
from consentlink.core.config import get_settings
from consentlink.core.exceptions import (
    InvalidState,
    NotAuthorized,
    NotFound,
    ValidationError,
)
from consentlink.core.transaction import atomic
from consentlink.models.connection import Connection, ConnectionStatus
from consentlink.models.consent_grant import ConsentGrant, GrantStatus
from consentlink.models.sharing_audit import AuditEventType
from consentlink.services.audit_service import record_event
from consentlink.services.connection_service import (
    counterpart_tenant_id,
    is_party,
    is_recipient,
)
from consentlink.utils.datetime_utils import as_utc, is_past, utc_now

logger = logging.getLogger(__name__)


def effective_grant_status(grant: ConsentGrant, now: datetime | None = None) -> GrantStatus:
    """Stored status, with active grants past expiry reported as expired."""
    if grant.status == GrantStatus.ACTIVE and is_past(grant.expires_at, now or utc_now()):
        return GrantStatus.EXPIRED
    return grant.status


def is_grant_counterpart(grant: ConsentGrant, connection: Connection, caller: Caller) -> bool:
    """
    The counterpart is the side of the connection that did not issue the grant.
    """
    if grant.grantor_tenant_id == connection.initiator_tenant_id:
        return is_recipient(connection, caller)
    return caller.acts_for(connection.initiator_tenant_id)


def _clean_list(values: list[str] | None, field: str) -> list[str]:
    cleaned: list[str] = []
    for value in values or []:
        if not isinstance(value, str) or not value.strip():
            raise ValidationError(f"{field} must contain non-empty strings.")
        if value.strip() not in cleaned:
            cleaned.append(value.strip())
    return cleaned


def create_grant(
    db: Session,
    *,
    caller: Caller,
    connection_id: str,
    resource_type: str,
    resource_ids: list[str] | None = None,
    access_level: str = "read",
    date_from: date | None = None,
    date_to: date | None = None,
    forward_only: bool = False,
    excluded_fields: list[str] | None = None,
    expires_at: datetime | None = None,
    metadata: dict | None = None,
    now: datetime | None = None,
) -> str:
    """
    Issue a grant from the caller's tenant to the other party of the connection.
    Returns the grant id.
    """
    now = now or utc_now()
    settings = get_settings()

    connection = db.query(Connection).filter(Connection.id == connection_id).first()
    if connection is None:
        raise NotFound("Connection not found.")
    if caller.tenant_id is None or caller.tenant_id not in connection.tenant_parties():
        raise NotAuthorized("Only a tenant party of this connection can grant access.")
    if connection.status != ConnectionStatus.ACCEPTED:
        raise InvalidState(
            f"Grants can only be attached to accepted connections (this one is {connection.status.value})."
        )

    resource_type = (resource_type or "").strip()
    if not resource_type:
        raise ValidationError("resource_type is required.")
    access_level = (access_level or "read").strip()
    if access_level not in settings.grant_access_levels:
        raise ValidationError(
            f"access_level must be one of: {', '.join(settings.grant_access_levels)}."
        )
    if date_from is not None and date_to is not None and date_from > date_to:
        raise ValidationError("date_from must not be after date_to.")
    if expires_at is not None and as_utc(expires_at) <= as_utc(now):
        raise ValidationError("expires_at must be in the future.")

    grant = ConsentGrant(
        connection_id=connection.id,
        grantor_tenant_id=caller.tenant_id,
        resource_type=resource_type,
        resource_ids=_clean_list(resource_ids, "resource_ids") if resource_ids is not None else None,
        access_level=access_level,
        date_from=date_from,
        date_to=date_to,
        forward_only=bool(forward_only),
        excluded_fields=_clean_list(excluded_fields, "excluded_fields"),
        metadata_json=dict(metadata or {}),
        status=GrantStatus.ACTIVE,
        expires_at=expires_at,
        created_at=now,
    )

    with atomic(db):
        # Re-check under the same transaction as the insert
        still_accepted = (
            db.query(Connection.id)
            .filter(Connection.id == connection.id, Connection.status == ConnectionStatus.ACCEPTED)
            .first()
        )
        if still_accepted is None:
            raise InvalidState("The connection is no longer accepted.")

        db.add(grant)
        db.flush()
        record_event(
            db,
            event_type=AuditEventType.GRANT_CREATED,
            actor_tenant_id=caller.tenant_id,
            actor_user_id=caller.user_id,
            target_tenant_id=counterpart_tenant_id(connection, caller.tenant_id),
            connection_id=connection.id,
            grant_id=grant.id,
            detail={
                "resource_type": resource_type,
                "access_level": access_level,
                "resource_count": len(grant.resource_ids) if grant.resource_ids is not None else None,
            },
            now=now,
        )

    logger.info(
        f"Grant {grant.id} ({resource_type}) created on connection {connection.id} "
        f"by tenant {caller.tenant_id}"
    )
    return grant.id


def revoke_grant(
    db: Session,
    *,
    caller: Caller,
    grant_id: str,
    now: datetime | None = None,
) -> None:
    """Revoke a grant. Only the grantor may revoke; takes effect on the next read."""
    now = now or utc_now()

    grant = db.query(ConsentGrant).filter(ConsentGrant.id == grant_id).first()
    if grant is None:
        raise NotFound("Grant not found.")
    if not caller.acts_for(grant.grantor_tenant_id):
        raise NotAuthorized("Only the grantor can revoke this grant.")
    if grant.status != GrantStatus.ACTIVE:
        raise InvalidState(f"Cannot revoke a {grant.status.value} grant.")

    connection = grant.connection

    with atomic(db):
        updated = (
            db.query(ConsentGrant)
            .filter(ConsentGrant.id == grant.id, ConsentGrant.status == GrantStatus.ACTIVE)
            .update(
                {"status": GrantStatus.REVOKED, "revoked_at": now},
                synchronize_session="fetch",
            )
        )
        if updated != 1:
            raise InvalidState("Grant is no longer active.")
        record_event(
            db,
            event_type=AuditEventType.GRANT_REVOKED,
            actor_tenant_id=caller.tenant_id,
            actor_user_id=caller.user_id,
            target_tenant_id=counterpart_tenant_id(connection, grant.grantor_tenant_id),
            connection_id=grant.connection_id,
            grant_id=grant.id,
            detail={"resource_type": grant.resource_type},
            now=now,
        )

    logger.info(f"Grant {grant.id} revoked by tenant {caller.tenant_id}")


def expire_grant(db: Session, grant: ConsentGrant, *, now: datetime) -> None:
    """Flip an active grant past its expiry to expired, in its own transaction."""
    connection = grant.connection
    with atomic(db):
        updated = (
            db.query(ConsentGrant)
            .filter(ConsentGrant.id == grant.id, ConsentGrant.status == GrantStatus.ACTIVE)
            .update({"status": GrantStatus.EXPIRED}, synchronize_session="fetch")
        )
        if updated != 1:
            return
        record_event(
            db,
            event_type=AuditEventType.GRANT_EXPIRED,
            target_tenant_id=counterpart_tenant_id(connection, grant.grantor_tenant_id),
            connection_id=grant.connection_id,
            grant_id=grant.id,
            now=now,
        )
    logger.info(f"Grant {grant.id} expired")


def list_grants(
    db: Session,
    *,
    caller: Caller,
    connection_id: str,
    as_recipient: bool,
    now: datetime | None = None,
) -> list[ConsentGrant]:
    """
    Grants on a connection, seen from one side.

    - as grantor: every grant the caller's tenant issued, history included
    - as recipient: only grants the caller can use right now; revoked and
      expired grants are never shown to the receiving side
    """
    now = now or utc_now()

    connection = db.query(Connection).filter(Connection.id == connection_id).first()
    if connection is None:
        raise NotFound("Connection not found.")
    if not is_party(connection, caller):
        raise NotAuthorized("You are not a party of this connection.")

    grants = (
        db.query(ConsentGrant)
        .filter(ConsentGrant.connection_id == connection.id)
        .order_by(ConsentGrant.created_at.desc(), ConsentGrant.id.desc())
        .all()
    )

    if not as_recipient:
        if caller.tenant_id is None:
            return []
        return [g for g in grants if g.grantor_tenant_id == caller.tenant_id]

    if connection.status != ConnectionStatus.ACCEPTED:
        return []
    return [
        g
        for g in grants
        if is_grant_counterpart(g, connection, caller)
        and effective_grant_status(g, now) == GrantStatus.ACTIVE
    ]


def get_grant(
    db: Session,
    *,
    caller: Caller,
    grant_id: str,
) -> ConsentGrant:
    """
    A grant as seen by its grantor or its counterpart. The counterpart only
    sees grants that are currently usable, same as in list_grants.
    """
    grant = db.query(ConsentGrant).filter(ConsentGrant.id == grant_id).first()
    if grant is None:
        raise NotFound("Grant not found.")
    if caller.acts_for(grant.grantor_tenant_id):
        return grant
    if not is_grant_counterpart(grant, grant.connection, caller):
        raise NotAuthorized("You cannot view this grant.")
    if effective_grant_status(grant) != GrantStatus.ACTIVE:
        raise NotFound("Grant not found.")
    return grant
