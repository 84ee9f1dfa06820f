# consentlink/services/share_token_service.py
"""
Public share links ("horse shares"): one subject resource, a pack of included
record categories, an optional email lock, optional date window.

Shares never go through a connection. Expiry is derived at read time and never
written back; the stored status is only ever active or revoked.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta

from sqlalchemy.orm import Session

from consentlink.core.caller import Caller
from consentlink.core.config import get_settings
from consentlink.core.exceptions import NotAuthorized, NotFound, ValidationError
from consentlink.core.transaction import atomic
from consentlink.models.share_token import ShareStatus, ShareToken
from consentlink.models.sharing_audit import AuditEventType
from consentlink.services.audit_service import record_event
from consentlink.utils.datetime_utils import is_past, utc_now
from consentlink.utils.email_utils import normalise_email
from consentlink.utils.token_utils import generate_token

logger = logging.getLogger(__name__)

SCOPE_FLAGS = ("includeVet", "includeLab", "includeFiles")
CUSTOM_PACK = "custom"
NEVER = "never"
MAX_EXPIRY_DAYS = 3650


@dataclass
class SharePartition:
    active: list[ShareToken] = field(default_factory=list)
    inactive: list[ShareToken] = field(default_factory=list)


def resolve_pack_scope(pack_key: str, override: dict | None = None) -> dict[str, bool]:
    """
    Scope flags for a pack, with explicit per-flag overrides applied on top.
    Flags left out of the override (or set to None) keep the pack default.
    """
    packs = get_settings().share_packs
    if pack_key not in packs:
        raise ValidationError(f"Unknown share pack '{pack_key}'.")

    defaults = packs[pack_key]
    scope = {flag: bool(defaults.get(flag, False)) for flag in SCOPE_FLAGS}

    for flag, value in (override or {}).items():
        if flag not in SCOPE_FLAGS:
            raise ValidationError(f"Unknown scope flag '{flag}'.")
        if value is not None:
            scope[flag] = bool(value)
    return scope


def compute_expires_at(expires_in, now: datetime) -> datetime | None:
    """
    expires_in: days (int or digit string), a timedelta, "never", or None for
    the configured default.
    """
    if expires_in is None:
        return now + timedelta(days=get_settings().share_default_expiry_days)
    if isinstance(expires_in, str):
        if expires_in.strip().lower() == NEVER:
            return None
        if not expires_in.strip().isdigit():
            raise ValidationError("expires_in must be a number of days or 'never'.")
        expires_in = int(expires_in.strip())
    if isinstance(expires_in, bool):
        raise ValidationError("expires_in must be a number of days or 'never'.")
    if isinstance(expires_in, int):
        if expires_in > MAX_EXPIRY_DAYS:
            raise ValidationError(f"expires_in must be at most {MAX_EXPIRY_DAYS} days.")
        expires_in = timedelta(days=expires_in)
    if not isinstance(expires_in, timedelta):
        raise ValidationError("expires_in must be a number of days or 'never'.")
    if expires_in <= timedelta(0):
        raise ValidationError("expires_in must be positive.")
    if expires_in > timedelta(days=MAX_EXPIRY_DAYS):
        raise ValidationError(f"expires_in must be at most {MAX_EXPIRY_DAYS} days.")
    try:
        return now + expires_in
    except OverflowError:
        raise ValidationError("expires_in is out of range.")


def derive_share_status(share: ShareToken, now: datetime | None = None) -> ShareStatus:
    if share.status == ShareStatus.REVOKED:
        return ShareStatus.REVOKED
    if is_past(share.expires_at, now or utc_now()):
        return ShareStatus.EXPIRED
    return ShareStatus.ACTIVE


def _require_manager(caller: Caller, owner_tenant_id: str) -> None:
    if not caller.acts_for(owner_tenant_id):
        raise NotAuthorized("You can only manage shares of your own tenant.")
    if not caller.has_any_role(get_settings().share_manager_roles):
        raise NotAuthorized("Your role cannot manage share links.")


def create_share(
    db: Session,
    *,
    caller: Caller,
    owner_tenant_id: str,
    subject_resource_id: str,
    pack_key: str = CUSTOM_PACK,
    scope: dict | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    recipient_email: str | None = None,
    expires_in=None,
    now: datetime | None = None,
) -> ShareToken:
    """
    Issue a public link for one subject resource. The returned share carries
    the token; it is the only secret and is never derived from the id.
    """
    now = now or utc_now()
    _require_manager(caller, owner_tenant_id)

    subject_resource_id = (subject_resource_id or "").strip()
    if not subject_resource_id:
        raise ValidationError("subject_resource_id is required.")
    pack_key = (pack_key or CUSTOM_PACK).strip()
    resolved_scope = resolve_pack_scope(pack_key, scope)
    if date_from is not None and date_to is not None and date_from > date_to:
        raise ValidationError("date_from must not be after date_to.")

    share = ShareToken(
        owning_tenant_id=owner_tenant_id,
        subject_resource_id=subject_resource_id,
        created_by_user_id=caller.user_id,
        token=generate_token(),
        pack_key=pack_key,
        include_vet=resolved_scope["includeVet"],
        include_lab=resolved_scope["includeLab"],
        include_files=resolved_scope["includeFiles"],
        recipient_email=normalise_email(recipient_email, field_name="recipient_email"),
        date_from=date_from,
        date_to=date_to,
        status=ShareStatus.ACTIVE,
        expires_at=compute_expires_at(expires_in, now),
        created_at=now,
    )

    with atomic(db):
        db.add(share)
        db.flush()
        record_event(
            db,
            event_type=AuditEventType.SHARE_CREATED,
            actor_tenant_id=owner_tenant_id,
            actor_user_id=caller.user_id,
            share_id=share.id,
            detail={
                "subject_resource_id": subject_resource_id,
                "pack_key": pack_key,
                "scope": resolved_scope,
                "email_locked": share.recipient_email is not None,
            },
            now=now,
        )

    db.refresh(share)
    logger.info(f"Share {share.id} ({pack_key}) created for subject {subject_resource_id}")
    return share


def revoke_share(
    db: Session,
    *,
    caller: Caller,
    share_id: str,
    now: datetime | None = None,
) -> None:
    """Revoke a share. Revoking an already revoked or expired share is a no-op."""
    now = now or utc_now()

    share = db.query(ShareToken).filter(ShareToken.id == share_id).first()
    if share is None:
        raise NotFound("Share not found.")
    _require_manager(caller, share.owning_tenant_id)

    if derive_share_status(share, now) != ShareStatus.ACTIVE:
        return

    with atomic(db):
        updated = (
            db.query(ShareToken)
            .filter(ShareToken.id == share.id, ShareToken.status == ShareStatus.ACTIVE)
            .update(
                {"status": ShareStatus.REVOKED, "revoked_at": now},
                synchronize_session="fetch",
            )
        )
        # Revoked concurrently: same outcome, nothing to audit
        if updated != 1:
            return
        record_event(
            db,
            event_type=AuditEventType.SHARE_REVOKED,
            actor_tenant_id=caller.tenant_id,
            actor_user_id=caller.user_id,
            share_id=share.id,
            detail={"subject_resource_id": share.subject_resource_id},
            now=now,
        )

    logger.info(f"Share {share.id} revoked")


def list_shares(
    db: Session,
    *,
    caller: Caller,
    subject_resource_id: str,
    now: datetime | None = None,
) -> SharePartition:
    """The caller tenant's shares of one subject, split by derived status."""
    now = now or utc_now()
    if caller.tenant_id is None:
        raise NotAuthorized("Listing shares requires a tenant caller.")

    shares = (
        db.query(ShareToken)
        .filter(
            ShareToken.owning_tenant_id == caller.tenant_id,
            ShareToken.subject_resource_id == subject_resource_id,
        )
        .order_by(ShareToken.created_at.desc(), ShareToken.id.desc())
        .all()
    )

    partition = SharePartition()
    for share in shares:
        if derive_share_status(share, now) == ShareStatus.ACTIVE:
            partition.active.append(share)
        else:
            partition.inactive.append(share)
    return partition
