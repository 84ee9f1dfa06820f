from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SHARE_PACKS: dict[str, dict[str, bool]] = {
    "medical_summary": {"includeVet": True, "includeLab": True, "includeFiles": False},
    "vet_only": {"includeVet": True, "includeLab": False, "includeFiles": False},
    "lab_only": {"includeVet": False, "includeLab": True, "includeFiles": False},
    "full_record": {"includeVet": True, "includeLab": True, "includeFiles": True},
    "custom": {"includeVet": False, "includeLab": False, "includeFiles": False},
}


class Settings(BaseSettings):
    app_env: str = "local"
    api_v1_prefix: str = "/api/v1"

    # Security
    secret_key: str = "changeme"  # override in .env

    # Database
    database_url: str = "sqlite:///./consentlink.db"

    # Redis (sharing event hook)
    redis_url: str | None = None
    sharing_events_channel: str = "sharing-events"

    # Resource owners (read-only)
    resource_store_url: str = "http://localhost:8001/internal/resources"
    resource_store_timeout_seconds: float = 5.0

    # Connections
    connection_default_expiry_days: int | None = 7

    # Consent grants
    grant_access_levels: list[str] = ["read"]
    grant_resource_types: list[str] = ["lab_results", "vet_records", "breeding_records"]

    # Share tokens
    share_default_expiry_days: int = 7
    share_manager_roles: list[str] = ["owner", "manager"]
    share_packs: dict[str, dict[str, bool]] = DEFAULT_SHARE_PACKS
    share_subject_resource_type: str = "horses"

    # Pydantic v2 style config
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    """
    Cached settings instance so the .env is parsed once.
    """
    return Settings()
