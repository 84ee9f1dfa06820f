# consentlink/api/v1/endpoints/shares.py
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from consentlink.core.caller import Caller
from consentlink.core.database import get_db
from consentlink.dependencies.caller import get_caller, get_optional_caller
from consentlink.schemas.access import ShareResolution
from consentlink.schemas.share_token import (
    ShareCreate,
    ShareCreated,
    ShareListResponse,
    ShareResponse,
)
from consentlink.services.access_resolver_service import resolve_share_token
from consentlink.services.resource_store import ResourceStore, get_resource_store
from consentlink.services.share_token_service import create_share, list_shares, revoke_share

router = APIRouter()


@router.post(
    "",
    response_model=ShareCreated,
    status_code=status.HTTP_201_CREATED,
    tags=["shares"],
)
def create_share_endpoint(
    payload: ShareCreate,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
) -> ShareCreated:
    """
    Create a public link for one subject resource.
    Requires an owner or manager role in the caller's tenant.
    """
    share = create_share(
        db,
        caller=caller,
        owner_tenant_id=caller.tenant_id,
        subject_resource_id=payload.subject_resource_id,
        pack_key=payload.pack_key,
        scope=payload.scope.model_dump(exclude_none=True) if payload.scope else None,
        date_from=payload.date_from,
        date_to=payload.date_to,
        recipient_email=payload.recipient_email,
        expires_in=payload.expires_in,
    )
    return ShareCreated(id=share.id, token=share.token)


@router.get("", response_model=ShareListResponse, tags=["shares"])
def list_shares_endpoint(
    subject_resource_id: str = Query(..., description="Subject whose links to list"),
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
) -> ShareListResponse:
    partition = list_shares(db, caller=caller, subject_resource_id=subject_resource_id)
    return ShareListResponse(
        active=[ShareResponse.from_share(s) for s in partition.active],
        inactive=[ShareResponse.from_share(s) for s in partition.inactive],
    )


@router.post("/{share_id}/revoke", status_code=status.HTTP_204_NO_CONTENT, tags=["shares"])
def revoke_share_endpoint(
    share_id: str,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
) -> None:
    revoke_share(db, caller=caller, share_id=share_id)


@router.get("/public/{token}", response_model=ShareResolution, tags=["shares"])
def view_public_share(
    token: str,
    caller: Caller = Depends(get_optional_caller),
    db: Session = Depends(get_db),
    store: ResourceStore = Depends(get_resource_store),
) -> ShareResolution:
    """
    Public, read-only view of a share link. No authentication required.

    Failures are returned as {success: false, error: <reason>} with HTTP 200
    so the page can render a specific message. Email-locked links need a
    bearer token with a verified email.
    """
    return resolve_share_token(
        db,
        token=token,
        store=store,
        presented_email=caller.verified_email,
    )
