from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class RBACSettings(BaseSettings):
    # Resolution cache
    cache_enabled: bool = True
    cache_ttl: int = Field(3600, ge=0)  # seconds
    cache_prefix: str = "rbac:"

    # Role hierarchy
    enable_hierarchy: bool = True
    enable_inheritance: bool = True
    max_hierarchy_depth: int = Field(10, ge=1)

    # Permission matching
    wildcard_permissions: bool = False  # honour resource:* and *:* grants

    # Audit
    audit_decisions: bool = False  # also record authorize() outcomes

    # Database
    database_url: str = "sqlite:///./warden.db"
    storage_timeout: float = Field(5.0, gt=0)  # seconds

    # Redis, None keeps the resolution cache in process memory
    redis_url: Optional[str] = None
    cache_timeout: float = Field(2.0, gt=0)  # seconds

    # Logging
    log_level: str = "INFO"
    log_dir: Optional[str] = None

    @property
    def inheritance_active(self) -> bool:
        return self.enable_hierarchy and self.enable_inheritance

    model_config = SettingsConfigDict(
        env_prefix="RBAC_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"  # Allow extra env vars without raising validation errors
    )


@lru_cache
def get_settings() -> RBACSettings:
    return RBACSettings()
