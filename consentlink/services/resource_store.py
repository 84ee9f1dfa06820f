# consentlink/services/resource_store.py
"""
Read-only access to the stores that own the shared records
(vet records, lab results, files, horse profiles).

The sharing core treats records as opaque dicts shaped {id, date, ...fields}.
It filters them but never interprets them, and never writes back.
"""

import logging
from typing import Iterable, Protocol

import httpx

from consentlink.core.config import get_settings

logger = logging.getLogger(__name__)

Record = dict


class ResourceStoreError(RuntimeError):
    """A resource owner could not be reached or answered with garbage."""


class ResourceStore(Protocol):
    def fetch_by_type_and_owner(
        self,
        resource_type: str,
        owner_tenant_id: str,
        ids: list[str] | None = None,
        subject_id: str | None = None,
    ) -> list[Record]:
        """
        Records of resource_type owned by owner_tenant_id.

        ids restricts to an allow-list; subject_id restricts to records about
        one subject resource (e.g. one horse).
        """
        ...


class InMemoryResourceStore:
    """
    Resource store backed by a dict, for tests and local development.

    Records are registered per (resource_type, owner_tenant_id); a record may
    carry a "subject_id" linking it to a subject resource.
    """

    def __init__(self) -> None:
        self._records: dict[tuple[str, str], list[Record]] = {}

    def add(self, resource_type: str, owner_tenant_id: str, records: Iterable[Record]) -> None:
        bucket = self._records.setdefault((resource_type, owner_tenant_id), [])
        for record in records:
            if "id" not in record:
                raise ValueError("records need an id")
            bucket.append(dict(record))

    def fetch_by_type_and_owner(
        self,
        resource_type: str,
        owner_tenant_id: str,
        ids: list[str] | None = None,
        subject_id: str | None = None,
    ) -> list[Record]:
        records = self._records.get((resource_type, owner_tenant_id), [])
        if ids is not None:
            allowed = set(ids)
            records = [r for r in records if r["id"] in allowed]
        if subject_id is not None:
            records = [r for r in records if r.get("subject_id") == subject_id]
        # Copies: callers redact fields in place
        return [dict(r) for r in records]


class HttpResourceStore:
    """
    Resource store that asks the owning service over HTTP:

        GET {base_url}/{resource_type}?owner_tenant_id=...&ids=a&ids=b&subject_id=...

    and expects a JSON list of records (or {"items": [...]}).
    """

    def __init__(self, base_url: str, timeout: float = 5.0, client: httpx.Client | None = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client

    def fetch_by_type_and_owner(
        self,
        resource_type: str,
        owner_tenant_id: str,
        ids: list[str] | None = None,
        subject_id: str | None = None,
    ) -> list[Record]:
        # An empty allow-list selects nothing; no need to ask
        if ids is not None and not ids:
            return []

        params: list[tuple[str, str]] = [("owner_tenant_id", owner_tenant_id)]
        params.extend(("ids", i) for i in ids or [])
        if subject_id is not None:
            params.append(("subject_id", subject_id))

        url = f"{self.base_url}/{resource_type}"
        try:
            if self._client is not None:
                response = self._client.get(url, params=params, timeout=self.timeout)
            else:
                response = httpx.get(url, params=params, timeout=self.timeout)
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.error(f"Resource store request failed for {resource_type}: {exc}")
            raise ResourceStoreError(f"Could not load {resource_type}") from exc

        if isinstance(payload, dict):
            payload = payload.get("items", [])
        if not isinstance(payload, list):
            raise ResourceStoreError(f"Unexpected response shape for {resource_type}")
        return [r for r in payload if isinstance(r, dict) and "id" in r]


def get_resource_store() -> ResourceStore:
    """FastAPI dependency; overridden in tests with an InMemoryResourceStore."""
    settings = get_settings()
    return HttpResourceStore(
        settings.resource_store_url,
        timeout=settings.resource_store_timeout_seconds,
    )
