import secrets
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Persistence layer configuration loaded from environment variables."""

    # Remote backend-as-a-service; both must be set for REMOTE mode to be possible
    remote_url: Optional[str] = Field(None, alias="REMOTE_URL")
    remote_anon_key: Optional[str] = Field(None, alias="REMOTE_ANON_KEY")

    local_database_url: str = Field(
        "sqlite+aiosqlite:///./rollcall_local.db", alias="LOCAL_DATABASE_URL"
    )

    generic_probe_url: str = Field("https://www.google.com", alias="GENERIC_PROBE_URL")
    reachability_timeout_seconds: float = Field(5.0, alias="REACHABILITY_TIMEOUT_SECONDS")
    diagnose_network_timeout_seconds: float = Field(5.0, alias="DIAGNOSE_NETWORK_TIMEOUT_SECONDS")
    diagnose_remote_timeout_seconds: float = Field(5.0, alias="DIAGNOSE_REMOTE_TIMEOUT_SECONDS")

    auth_check_retries: int = Field(2, alias="AUTH_CHECK_RETRIES")
    auth_retry_backoff_seconds: float = Field(1.0, alias="AUTH_RETRY_BACKOFF_SECONDS")
    auth_soft_timeout_seconds: float = Field(8.0, alias="AUTH_SOFT_TIMEOUT_SECONDS")
    auth_hard_timeout_seconds: float = Field(15.0, alias="AUTH_HARD_TIMEOUT_SECONDS")

    # Signs access tokens issued by the local identity provider only
    local_jwt_secret_key: str = Field(
        default_factory=lambda: secrets.token_urlsafe(32), alias="LOCAL_JWT_SECRET_KEY"
    )
    jwt_algorithm: str = Field("HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(60, alias="ACCESS_TOKEN_EXPIRE_MINUTES")

    log_level: str = Field("INFO", alias="LOG_LEVEL")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"
        populate_by_name = True

    @property
    def remote_configured(self) -> bool:
        return bool(self.remote_url and self.remote_anon_key)
