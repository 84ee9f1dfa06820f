# consentlink/dependencies/caller.py
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from consentlink.core.caller import ANONYMOUS, Caller
from consentlink.core.security import caller_from_claims, decode_token

bearer_scheme = HTTPBearer(auto_error=False)


def get_caller(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> Caller:
    """
    Dependency to build the Caller from a JWT bearer token.

    Usage:

    @router.post("/connections")
    def create(caller: Caller = Depends(get_caller)):
        ...
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        payload = decode_token(credentials.credentials)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not payload.get("sub"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
        )

    return caller_from_claims(payload)


def get_optional_caller(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> Caller:
    """
    Like get_caller, but anonymous visitors (public share links) are allowed.
    A token that is present but invalid is still rejected.
    """
    if credentials is None:
        return ANONYMOUS
    return get_caller(credentials)
