import os
from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    root_namespace: str = Field("elearning", alias="ELEARNING_ROOT_NAMESPACE")
    legacy_namespace: str = Field("Elearning", alias="ELEARNING_LEGACY_NAMESPACE")
    store_backend: Literal["memory", "database", "firebase"] = Field(
        "memory",
        alias="ELEARNING_STORE_BACKEND",
    )
    database_url: Optional[str] = Field(None, alias="ELEARNING_DATABASE_URL")
    database_pool_size: int = Field(10, alias="ELEARNING_DATABASE_POOL_SIZE")
    database_max_overflow: int = Field(10, alias="ELEARNING_DATABASE_MAX_OVERFLOW")
    database_echo: bool = Field(False, alias="ELEARNING_DATABASE_ECHO")
    firebase_url: Optional[str] = Field(None, alias="ELEARNING_FIREBASE_URL")
    firebase_auth_token: Optional[str] = Field(None, alias="ELEARNING_FIREBASE_AUTH_TOKEN")
    firebase_timeout_seconds: float = Field(10.0, alias="ELEARNING_FIREBASE_TIMEOUT")
    cache_ttl_seconds: float = Field(300.0, alias="ELEARNING_CACHE_TTL_SECONDS")
    write_back_enabled: bool = Field(True, alias="ELEARNING_WRITE_BACK")
    migrate_on_startup: bool = Field(False, alias="ELEARNING_MIGRATE_ON_STARTUP")

    class Config:
        env_file = os.getenv("ENV_FILE", ".env")
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache
def get_settings() -> Settings:
    try:
        return Settings()  # type: ignore[arg-type]
    except ValidationError as exc:
        raise RuntimeError(f"Invalid backend configuration: {exc}") from exc
