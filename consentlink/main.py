import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from consentlink.api.v1.router import api_router
from consentlink.core.config import get_settings
from consentlink.core.exceptions import SharingError
from consentlink.services.resource_store import ResourceStoreError

settings = get_settings()
logger = logging.getLogger(__name__)

app = FastAPI(
    title="ConsentLink Sharing Backend",
)


@app.exception_handler(SharingError)
async def sharing_error_handler(request: Request, exc: SharingError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.code, "message": exc.message},
    )


@app.exception_handler(ResourceStoreError)
async def resource_store_error_handler(request: Request, exc: ResourceStoreError) -> JSONResponse:
    logger.error(f"Resource store failure on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=502,
        content={"error": "resource_store_unavailable", "message": "Shared records could not be loaded."},
    )


@app.get("/health", tags=["health"])
async def root_health() -> dict:
    """
    Global health check endpoint.
    """
    return {"status": "ok"}


# Mount versioned API router
app.include_router(api_router, prefix=settings.api_v1_prefix)
