# consentlink/api/v1/router.py
from fastapi import APIRouter

from consentlink.api.v1.endpoints import (
    audit,
    connections,
    grants,
    shares,
)

api_router = APIRouter()

api_router.include_router(connections.router, prefix="/connections", tags=["connections"])
api_router.include_router(grants.connection_grants_router, prefix="/connections", tags=["grants"])
api_router.include_router(grants.router, prefix="/grants", tags=["grants"])
api_router.include_router(shares.router, prefix="/shares", tags=["shares"])
api_router.include_router(audit.router, prefix="/audit", tags=["audit"])
