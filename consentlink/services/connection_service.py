# consentlink/services/connection_service.py
"""
Connection handshake between an initiator tenant and a recipient.

Every transition is a guarded UPDATE (only applied if the row is still in the
expected status) committed together with its audit entry. A caller that loses
a race gets InvalidState and nothing is written, unless it lost to an
identical accept, which is reported as the idempotent repeat it is.
"""

import logging
from datetime import datetime

from sqlalchemy import or_
from sqlalchemy.orm import Session

from consentlink.core.caller import Caller
from consentlink.core.config import get_settings
from consentlink.core.exceptions import (
    Expired,
    InvalidState,
    NotAuthorized,
    NotFound,
    ValidationError,
)
from consentlink.core.transaction import atomic
from consentlink.models.connection import (
    RECIPIENT_FIELDS,
    TERMINAL_CONNECTION_STATUSES,
    Connection,
    ConnectionStatus,
)
from consentlink.models.consent_grant import ConsentGrant, GrantStatus
from consentlink.models.sharing_audit import AuditEventType
from consentlink.services.audit_service import record_event
from consentlink.utils.datetime_utils import as_utc, days_from_now, is_past, utc_now
from consentlink.utils.email_utils import normalise_email
from consentlink.utils.token_utils import constant_time_equals, generate_token, looks_like_token

logger = logging.getLogger(__name__)


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _normalise_recipient(
    recipient_tenant_id: str | None,
    recipient_profile_id: str | None,
    recipient_email: str | None,
    recipient_phone: str | None,
) -> dict[str, str | None]:
    recipient = {
        "recipient_tenant_id": _clean(recipient_tenant_id),
        "recipient_profile_id": _clean(recipient_profile_id),
        "recipient_email": _clean(recipient_email),
        "recipient_phone": _clean(recipient_phone),
    }
    present = [name for name in RECIPIENT_FIELDS if recipient[name] is not None]
    if not present:
        raise ValidationError("A recipient (tenant, profile, email or phone) is required.")
    if len(present) > 1:
        raise ValidationError(
            f"Exactly one recipient must be given, got: {', '.join(present)}."
        )

    if recipient["recipient_email"] is not None:
        recipient["recipient_email"] = normalise_email(
            recipient["recipient_email"], field_name="Recipient email"
        )

    if recipient["recipient_phone"] is not None:
        digits = recipient["recipient_phone"].replace(" ", "").replace("-", "")
        if not digits.lstrip("+").isdigit() or len(digits.lstrip("+")) < 6:
            raise ValidationError("Recipient phone is not a valid number.")
        recipient["recipient_phone"] = digits

    return recipient


def effective_status(connection: Connection, now: datetime | None = None) -> ConnectionStatus:
    """Stored status, with pending connections past expiry reported as expired."""
    if connection.status == ConnectionStatus.PENDING and is_past(
        connection.expires_at, now or utc_now()
    ):
        return ConnectionStatus.EXPIRED
    return connection.status


def is_recipient(connection: Connection, caller: Caller) -> bool:
    """
    Whether the caller is the recipient side of the connection.

    Email/phone invitations have no confirmed party until accepted; after
    acceptance the accepting profile is the recipient.
    """
    if connection.recipient_tenant_id is not None:
        return caller.acts_for(connection.recipient_tenant_id)
    if connection.recipient_profile_id is not None:
        return caller.profile_id is not None and caller.profile_id == connection.recipient_profile_id
    return (
        connection.accepted_profile_id is not None
        and caller.profile_id == connection.accepted_profile_id
    )


def is_party(connection: Connection, caller: Caller) -> bool:
    return caller.acts_for(connection.initiator_tenant_id) or is_recipient(connection, caller)


def counterpart_tenant_id(connection: Connection, tenant_id: str) -> str | None:
    """The other tenant of the connection, None when the other side is an individual."""
    if tenant_id == connection.initiator_tenant_id:
        return connection.recipient_tenant_id
    return connection.initiator_tenant_id


def _get_by_token(db: Session, token: str) -> Connection:
    if not looks_like_token(token):
        raise NotFound("Connection not found.")
    connection = db.query(Connection).filter(Connection.token == token).first()
    if connection is None or not constant_time_equals(connection.token, token):
        raise NotFound("Connection not found.")
    return connection


def _transition(
    db: Session,
    connection: Connection,
    *,
    expected: ConnectionStatus,
    new_status: ConnectionStatus,
    now: datetime,
    **values,
) -> None:
    updated = (
        db.query(Connection)
        .filter(Connection.id == connection.id, Connection.status == expected)
        .update(
            {"status": new_status, "updated_at": now, **values},
            synchronize_session="fetch",
        )
    )
    if updated != 1:
        raise InvalidState(
            f"Connection is no longer {expected.value}; cannot move it to {new_status.value}."
        )


def _expire(db: Session, connection: Connection, now: datetime) -> None:
    """Flip a stale pending connection to expired in its own transaction."""
    with atomic(db):
        _transition(
            db,
            connection,
            expected=ConnectionStatus.PENDING,
            new_status=ConnectionStatus.EXPIRED,
            now=now,
        )
        record_event(
            db,
            event_type=AuditEventType.CONNECTION_EXPIRED,
            actor_tenant_id=None,
            target_tenant_id=connection.initiator_tenant_id,
            connection_id=connection.id,
            now=now,
        )
    logger.info(f"Connection {connection.id} expired")


def _fail_if_stale(db: Session, connection: Connection, now: datetime) -> None:
    if connection.status == ConnectionStatus.PENDING and is_past(connection.expires_at, now):
        _expire(db, connection, now)
        raise Expired("This connection request has expired.")


def create_connection(
    db: Session,
    *,
    caller: Caller,
    initiator_tenant_id: str,
    connection_type: str,
    recipient_tenant_id: str | None = None,
    recipient_profile_id: str | None = None,
    recipient_email: str | None = None,
    recipient_phone: str | None = None,
    expires_at: datetime | None = None,
    metadata: dict | None = None,
    now: datetime | None = None,
) -> Connection:
    """
    Create a pending connection from initiator_tenant_id to exactly one recipient.
    """
    now = now or utc_now()

    if not caller.acts_for(initiator_tenant_id):
        raise NotAuthorized("You can only create connections for your own tenant.")

    connection_type = _clean(connection_type)
    if connection_type is None:
        raise ValidationError("connection_type is required.")

    recipient = _normalise_recipient(
        recipient_tenant_id, recipient_profile_id, recipient_email, recipient_phone
    )
    if recipient["recipient_tenant_id"] == initiator_tenant_id:
        raise ValidationError("A tenant cannot connect to itself.")

    if expires_at is None:
        default_days = get_settings().connection_default_expiry_days
        if default_days is not None:
            expires_at = days_from_now(default_days, now)
    elif as_utc(expires_at) <= as_utc(now):
        raise ValidationError("expires_at must be in the future.")

    connection = Connection(
        connection_type=connection_type,
        initiator_tenant_id=initiator_tenant_id,
        initiator_user_id=caller.user_id,
        status=ConnectionStatus.PENDING,
        token=generate_token(),
        expires_at=expires_at,
        metadata_json=dict(metadata or {}),
        created_at=now,
        updated_at=now,
        **recipient,
    )

    with atomic(db):
        db.add(connection)
        db.flush()
        record_event(
            db,
            event_type=AuditEventType.CONNECTION_CREATED,
            actor_tenant_id=initiator_tenant_id,
            actor_user_id=caller.user_id,
            target_tenant_id=connection.recipient_tenant_id,
            connection_id=connection.id,
            detail={
                "connection_type": connection_type,
                "recipient_kind": connection.recipient_kind,
            },
            now=now,
        )

    db.refresh(connection)
    logger.info(
        f"Connection {connection.id} created by tenant {initiator_tenant_id} "
        f"({connection.recipient_kind} recipient)"
    )
    return connection


def accept_connection(
    db: Session,
    *,
    caller: Caller,
    token: str,
    now: datetime | None = None,
) -> str:
    """
    Accept a pending connection. Returns the connection id.

    Re-accepting an already accepted connection by the same party is a no-op.
    """
    now = now or utc_now()
    connection = _get_by_token(db, token)

    binds_profile = (
        connection.recipient_tenant_id is None and connection.recipient_profile_id is None
    )
    if binds_profile:
        if caller.profile_id is None:
            raise NotAuthorized("Sign in with a personal profile to accept this invitation.")
    elif not is_recipient(connection, caller):
        raise NotAuthorized("Only the recipient can accept this connection.")

    if connection.status == ConnectionStatus.ACCEPTED:
        if binds_profile and connection.accepted_profile_id != caller.profile_id:
            raise InvalidState("This invitation has already been accepted.")
        return connection.id

    if connection.status != ConnectionStatus.PENDING:
        raise InvalidState(f"Cannot accept a {connection.status.value} connection.")

    _fail_if_stale(db, connection, now)

    values = {"accepted_at": now}
    if binds_profile:
        values["accepted_profile_id"] = caller.profile_id

    try:
        with atomic(db):
            _transition(
                db,
                connection,
                expected=ConnectionStatus.PENDING,
                new_status=ConnectionStatus.ACCEPTED,
                now=now,
                **values,
            )
            record_event(
                db,
                event_type=AuditEventType.CONNECTION_ACCEPTED,
                actor_tenant_id=caller.tenant_id,
                actor_user_id=caller.user_id,
                target_tenant_id=connection.initiator_tenant_id,
                connection_id=connection.id,
                now=now,
            )
    except InvalidState:
        # A concurrent accept by the same party won; treat ours as the repeat
        db.refresh(connection)
        same_party = (
            connection.accepted_profile_id == caller.profile_id if binds_profile else True
        )
        if connection.status == ConnectionStatus.ACCEPTED and same_party:
            logger.info(f"Connection {connection.id} already accepted by a concurrent request")
            return connection.id
        raise

    logger.info(f"Connection {connection.id} accepted")
    return connection.id


def reject_connection(
    db: Session,
    *,
    caller: Caller,
    token: str,
    now: datetime | None = None,
) -> Connection:
    """
    Reject a pending connection.

    For email/phone invitations the token alone identifies the recipient, so
    an invitee can decline without creating an account.
    """
    now = now or utc_now()
    connection = _get_by_token(db, token)

    binds_profile = (
        connection.recipient_tenant_id is None and connection.recipient_profile_id is None
    )
    if not binds_profile and not is_recipient(connection, caller):
        raise NotAuthorized("Only the recipient can reject this connection.")

    if connection.status != ConnectionStatus.PENDING:
        raise InvalidState(f"Cannot reject a {connection.status.value} connection.")

    _fail_if_stale(db, connection, now)

    with atomic(db):
        _transition(
            db,
            connection,
            expected=ConnectionStatus.PENDING,
            new_status=ConnectionStatus.REJECTED,
            now=now,
        )
        record_event(
            db,
            event_type=AuditEventType.CONNECTION_REJECTED,
            actor_tenant_id=caller.tenant_id,
            actor_user_id=caller.user_id,
            target_tenant_id=connection.initiator_tenant_id,
            connection_id=connection.id,
            now=now,
        )

    logger.info(f"Connection {connection.id} rejected")
    return connection


def revoke_connection(
    db: Session,
    *,
    caller: Caller,
    token: str,
    now: datetime | None = None,
) -> Connection:
    """
    Revoke a connection and every active grant attached to it.

    Pending connections can only be revoked by the initiator; accepted ones by
    either party. Each cascaded grant gets its own audit entry, in the same
    transaction as the connection revoke.
    """
    now = now or utc_now()
    connection = _get_by_token(db, token)

    is_initiator = caller.acts_for(connection.initiator_tenant_id)
    if not is_initiator and not is_recipient(connection, caller):
        raise NotAuthorized("Only a party of this connection can revoke it.")

    if connection.status in TERMINAL_CONNECTION_STATUSES:
        raise InvalidState(f"Cannot revoke a {connection.status.value} connection.")

    expected = connection.status
    if expected == ConnectionStatus.PENDING:
        if not is_initiator:
            raise NotAuthorized("Only the initiator can revoke a pending connection; reject it instead.")
        _fail_if_stale(db, connection, now)

    with atomic(db):
        _transition(
            db,
            connection,
            expected=expected,
            new_status=ConnectionStatus.REVOKED,
            now=now,
            revoked_at=now,
        )

        active_grants = (
            db.query(ConsentGrant)
            .filter(
                ConsentGrant.connection_id == connection.id,
                ConsentGrant.status == GrantStatus.ACTIVE,
            )
            .order_by(ConsentGrant.created_at.asc(), ConsentGrant.id.asc())
            .all()
        )
        for grant in active_grants:
            updated = (
                db.query(ConsentGrant)
                .filter(ConsentGrant.id == grant.id, ConsentGrant.status == GrantStatus.ACTIVE)
                .update(
                    {"status": GrantStatus.REVOKED, "revoked_at": now},
                    synchronize_session="fetch",
                )
            )
            if updated != 1:
                raise InvalidState("A grant changed while the connection was being revoked.")
            record_event(
                db,
                event_type=AuditEventType.GRANT_REVOKED,
                actor_tenant_id=caller.tenant_id,
                actor_user_id=caller.user_id,
                target_tenant_id=counterpart_tenant_id(connection, grant.grantor_tenant_id),
                connection_id=connection.id,
                grant_id=grant.id,
                detail={"cascade": True, "resource_type": grant.resource_type},
                now=now,
            )

        record_event(
            db,
            event_type=AuditEventType.CONNECTION_REVOKED,
            actor_tenant_id=caller.tenant_id,
            actor_user_id=caller.user_id,
            target_tenant_id=(
                connection.recipient_tenant_id if is_initiator else connection.initiator_tenant_id
            ),
            connection_id=connection.id,
            detail={"revoked_grants": len(active_grants)},
            now=now,
        )

    logger.info(
        f"Connection {connection.id} revoked ({len(active_grants)} grants cascaded)"
    )
    return connection


def get_connection(
    db: Session,
    *,
    caller: Caller,
    connection_id: str,
) -> Connection:
    connection = db.query(Connection).filter(Connection.id == connection_id).first()
    if connection is None:
        raise NotFound("Connection not found.")
    if not is_party(connection, caller):
        raise NotAuthorized("You are not a party of this connection.")
    return connection


def list_connections(
    db: Session,
    *,
    caller: Caller,
    status: ConnectionStatus | None = None,
    now: datetime | None = None,
) -> list[Connection]:
    """
    Connections where the caller's tenant is initiator or recipient, or the
    caller's profile is the recipient, newest first.

    A status filter matches the effective status, so stale pending rows are
    listed as expired even before the sweeper has run.
    """
    now = now or utc_now()

    filters = []
    if caller.tenant_id is not None:
        filters.append(Connection.initiator_tenant_id == caller.tenant_id)
        filters.append(Connection.recipient_tenant_id == caller.tenant_id)
    if caller.profile_id is not None:
        filters.append(Connection.recipient_profile_id == caller.profile_id)
        filters.append(Connection.accepted_profile_id == caller.profile_id)
    if not filters:
        return []

    connections = (
        db.query(Connection)
        .filter(or_(*filters))
        .order_by(Connection.created_at.desc(), Connection.id.desc())
        .all()
    )
    if status is None:
        return connections
    return [c for c in connections if effective_status(c, now) == status]


def expire_stale_connections(db: Session, *, now: datetime | None = None) -> int:
    """
    Mark every pending connection past its expiry as expired.

    Not needed for correctness (expiry is also evaluated at read time); keeps
    listings and counts tidy. Returns the number of connections expired.
    """
    now = now or utc_now()

    candidates = (
        db.query(Connection)
        .filter(
            Connection.status == ConnectionStatus.PENDING,
            Connection.expires_at.isnot(None),
            Connection.expires_at < now,
        )
        .all()
    )

    expired = 0
    with atomic(db):
        for connection in candidates:
            if not is_past(connection.expires_at, now):
                continue
            updated = (
                db.query(Connection)
                .filter(
                    Connection.id == connection.id,
                    Connection.status == ConnectionStatus.PENDING,
                )
                .update(
                    {"status": ConnectionStatus.EXPIRED, "updated_at": now},
                    synchronize_session="fetch",
                )
            )
            # Accepted or rejected concurrently: leave it alone
            if updated != 1:
                continue
            record_event(
                db,
                event_type=AuditEventType.CONNECTION_EXPIRED,
                target_tenant_id=connection.initiator_tenant_id,
                connection_id=connection.id,
                detail={"sweeper": True},
                now=now,
            )
            expired += 1

    logger.info(f"Expired {expired} stale connection(s)")
    return expired
