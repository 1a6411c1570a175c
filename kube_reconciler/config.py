"""Configuration management for the reconciler."""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Reconciler settings."""

    model_config = SettingsConfigDict(
        env_prefix="KUBE_RECONCILER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    log_level: str = "INFO"

    # Kubernetes Settings
    kubeconfig_path: Optional[str] = Field(
        default="~/.kube/config",
        description="Path to kubeconfig file; unset to use in-cluster config",
    )
    kubeconfig_data: Optional[str] = Field(
        default=None,
        description="Base64 encoded kubeconfig, takes precedence over the path",
    )
    context: Optional[str] = None
    default_namespace: str = "default"

    # Cluster API Settings
    api_retry_attempts: int = Field(default=3, ge=1)

    # Rollout Settings
    poll_interval_seconds: float = Field(default=2.0, gt=0)
    rollout_timeout_seconds: float = Field(default=300.0, gt=0)
    fail_fast: bool = Field(
        default=True,
        description="Report a rollout degraded as soon as a pod is stuck",
    )

    # Apply Settings
    dry_run: bool = False


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
